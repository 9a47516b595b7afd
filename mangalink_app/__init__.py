# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import os
import time
import uuid

from flask import Flask, jsonify, request, g


def create_app(services=None):
    """
    Create and configure an instance of the Flask application.

    Args:
        services: Prebuilt extensions.Services (tests inject fakes here);
            built from the environment when omitted.
    """
    app = Flask(__name__, instance_relative_config=True)

    app.config.from_mapping(
        JSON_SORT_KEYS=False,
    )

    # Ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # =============================================================================
    # LOGGING
    # =============================================================================
    from .log import log, debug_log_event, drain_messages

    @app.before_request
    def assign_request_id():
        g.request_id = uuid.uuid4().hex[:12]
        g.request_start = time.time()

    @app.after_request
    def debug_request_log(response):
        duration_ms = None
        start_time = getattr(g, 'request_start', None)
        if start_time:
            duration_ms = int((time.time() - start_time) * 1000)
        debug_log_event({
            'event': 'request',
            'request_id': getattr(g, 'request_id', None),
            'method': request.method,
            'path': request.path,
            'query': request.query_string.decode('utf-8', errors='ignore'),
            'status': response.status_code,
            'duration_ms': duration_ms,
            'remote_addr': request.remote_addr,
        })
        return response

    @app.teardown_request
    def debug_exception_log(error=None):
        if not error:
            return
        debug_log_event({
            'event': 'exception',
            'request_id': getattr(g, 'request_id', None),
            'method': request.method if request else None,
            'path': request.path if request else None,
            'error_type': error.__class__.__name__,
            'error': str(error)
        })

    # =============================================================================
    # SERVICES
    # =============================================================================
    from .extensions import get_services, set_services
    from .routes.validators import set_allowed_providers

    if services is not None:
        set_services(services)
    services = get_services()
    set_allowed_providers(services.providers.keys())

    # =============================================================================
    # BLUEPRINTS & ROUTES
    # =============================================================================
    from .routes.resolve_api import resolve_bp
    from .routes.history_api import history_bp

    app.register_blueprint(resolve_bp)
    app.register_blueprint(history_bp)

    @app.route('/api/providers')
    def list_providers():
        current = get_services()
        return jsonify({
            'providers': [
                {'id': p.id, 'name': p.name, 'base_url': p.base_url}
                for p in current.providers.values()
            ],
            'catalog': current.catalog.name,
            'cache': current.cache.stats(),
        })

    @app.route('/api/logs')
    def get_logs():
        """Pending UI log lines."""
        return jsonify({'logs': drain_messages()})

    # Set config for app.run()
    app.config['HOST'] = os.environ.get('FLASK_HOST', '127.0.0.1')
    app.config['PORT'] = int(os.environ.get('FLASK_PORT', '5000'))
    app.config['DEBUG'] = os.environ.get('FLASK_DEBUG', 'false').lower() in ('true', '1', 'yes')

    log(f"MangaLink ready: {len(services.providers)} providers ({', '.join(services.providers) or 'none'})")
    return app

# App instance should be created by the caller (run.py or WSGI entrypoint)
