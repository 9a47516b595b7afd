"""
Link resolution API Blueprint.

Resolves catalog entries to provider entries (and back), runs orchestrated
provider searches, and drives remaps through the reconcile flow.
"""

import asyncio
import logging
from typing import Optional

from flask import Blueprint, jsonify, request

from mangalink_app.catalog.models import ListStatus
from mangalink_app.errors import (
    MangaLinkError, CatalogError, ProviderUnavailable, UnknownProvider, ReconcileStateError
)
from mangalink_app.extensions import get_services
from mangalink_app.history.ledger import HistoryKeys
from mangalink_app.log import log
from mangalink_app.reconcile.engine import ReconcilePolicy, RemapKind
from .validators import validate_fields, validate_provider_name, parse_provider_list, sanitize_string

logger = logging.getLogger(__name__)

resolve_bp = Blueprint('resolve_api', __name__, url_prefix='/api/resolve')


def run_async(coro):
    """
    Run async coroutine in sync Flask context.

    Flask routes are sync, the engine is async. Each call gets its own
    short-lived loop.
    """
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error(message: str, detail: Optional[str] = None, code: str = 'invalid_request', status: int = 400):
    payload = {'error': message, 'code': code}
    if detail:
        payload['detail'] = detail
    return jsonify(payload), status


def _failure(exc: MangaLinkError):
    if isinstance(exc, UnknownProvider):
        return _error(str(exc), code='unknown_provider', status=400)
    if isinstance(exc, ReconcileStateError):
        return _error(str(exc), code='invalid_state', status=409)
    if isinstance(exc, ProviderUnavailable):
        return _error('Provider unavailable', detail=str(exc), code='provider_unavailable', status=502)
    if isinstance(exc, CatalogError):
        return _error('Catalog request failed', detail=str(exc), code='catalog_error', status=502)
    return _error(str(exc), code='error', status=500)


def _flag(value: Optional[str]) -> bool:
    return (value or '').lower() in ('1', 'true', 'yes')


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

@resolve_bp.route('/catalog/<catalog_id>', methods=['GET'])
def resolve_catalog(catalog_id: str):
    """
    Provider link for a catalog entry.

    Query:
        providers: comma-separated provider names (default: all)
        live: 1 to skip the search cache
    """
    providers, error = parse_provider_list(request.args.get('providers'))
    if error:
        return _error(error)
    live = _flag(request.args.get('live'))
    services = get_services()

    async def _resolve():
        entry = await services.catalog.get_by_id(catalog_id)
        if entry is None:
            return None, None
        return entry, await services.resolver.resolve_for_catalog_entry(entry, providers or None, live=live)

    try:
        entry, result = run_async(_resolve())
    except MangaLinkError as e:
        return _failure(e)
    except Exception as e:
        logger.error(f"Resolve failed for catalog {catalog_id}: {e}")
        return _error('Resolve failed', detail=str(e), code='server_error', status=500)

    if entry is None:
        return _error('Catalog entry not found', code='not_found', status=404)
    if result.reconcile is not None:
        services.pending.add(result.reconcile)

    payload = result.to_dict()
    payload['catalog'] = entry.to_dict()
    log(f"Resolved catalog {catalog_id}: {result.status}")
    return jsonify(payload)


@resolve_bp.route('/provider', methods=['POST'])
def resolve_provider():
    """
    Catalog link for a provider entry.

    Request:
        {"provider": "asurascans", "id": "solo-leveling"}
    """
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [('provider', str, 50), ('id', str, 500)])
    if error:
        return _error(error)
    error = validate_provider_name(data['provider'])
    if error:
        return _error(error)
    services = get_services()

    async def _resolve():
        provider = services.providers.get(data['provider'])
        if provider is None:
            raise UnknownProvider(data['provider'])
        provider_id = provider.normalize_id(data['id'])
        try:
            entry = await provider.get_details(provider_id)
        except Exception as e:
            raise ProviderUnavailable(provider.id, e) from e
        if entry is None:
            return None
        entry.id = provider_id
        return await services.resolver.resolve_for_provider_entry(data['provider'], entry)

    try:
        result = run_async(_resolve())
    except MangaLinkError as e:
        return _failure(e)
    except Exception as e:
        logger.error(f"Resolve failed for {data['provider']}:{data['id']}: {e}")
        return _error('Resolve failed', detail=str(e), code='server_error', status=500)

    if result is None:
        return _error('Provider entry not found', code='not_found', status=404)
    if result.reconcile is not None:
        services.pending.add(result.reconcile)
    return jsonify(result.to_dict())


@resolve_bp.route('/search', methods=['GET'])
def search_providers():
    """Orchestrated search: per-provider status plus merged results."""
    query = sanitize_string(request.args.get('q', '')).strip()
    if not query:
        return _error('Query required')
    providers, error = parse_provider_list(request.args.get('providers'))
    if error:
        return _error(error)
    try:
        page = max(int(request.args.get('page', 1)), 1)
    except ValueError:
        return _error('Invalid page number')

    services = get_services()
    orchestrator = services.resolver.orchestrator()
    try:
        state = run_async(orchestrator.search(query, providers or None, page))
    except MangaLinkError as e:
        return _failure(e)

    payload = state.to_dict()
    payload['cache'] = services.cache.stats()
    return jsonify(payload)


# ---------------------------------------------------------------------------
# Remap
# ---------------------------------------------------------------------------

@resolve_bp.route('/remap', methods=['POST'])
def begin_remap():
    """
    Link a catalog entry to a provider entry chosen by the user.

    Request:
        {"catalog_id": "151807", "provider": "mangadex", "provider_id": "...",
         "kind": "provider" | "catalog", "history": {...keys}}

    Returns {'status': 'applied', 'mapping': ...} when progress agrees,
    otherwise {'status': 'pending', 'context': ...}.
    """
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [
        ('catalog_id', str, 64),
        ('provider', str, 50),
        ('provider_id', str, 500),
    ])
    if error:
        return _error(error)
    error = validate_provider_name(data['provider'])
    if error:
        return _error(error)
    try:
        kind = RemapKind(data.get('kind') or RemapKind.PROVIDER.value)
    except ValueError:
        return _error(f"Unknown remap kind: {data.get('kind')}")
    keys = HistoryKeys.from_dict(data['history']) if isinstance(data.get('history'), dict) else None

    services = get_services()
    try:
        context = run_async(services.resolver.begin_remap(
            data['catalog_id'], data['provider'], data['provider_id'],
            kind=kind,
            history_keys=keys,
        ))
    except MangaLinkError as e:
        return _failure(e)

    if context is None:
        mapping = services.mappings.get_by_catalog_id(data['catalog_id'], data['provider'])
        log(f"Remap applied: {data['catalog_id']} -> {data['provider']}")
        return jsonify({'status': 'applied', 'mapping': mapping.to_dict() if mapping else None})

    services.pending.add(context)
    return jsonify({'status': 'pending', 'context': context.to_dict()})


@resolve_bp.route('/remap/<context_id>/apply', methods=['POST'])
def apply_remap(context_id: str):
    """Apply a policy: higher | provider | catalog | none."""
    services = get_services()
    context = services.pending.get(context_id)
    if context is None:
        return _error('Remap not found or expired', code='not_found', status=404)

    data = request.get_json(silent=True) or {}
    try:
        policy = ReconcilePolicy(data.get('policy') or '')
    except ValueError:
        return _error(f"Unknown policy: {data.get('policy')}")

    try:
        outcome = run_async(services.resolver.apply_reconcile(context, policy))
    except MangaLinkError as e:
        return _failure(e)
    services.pending.release(context)

    status = 'partial' if outcome.partial else 'resolved'
    log(f"Remap {context_id} {status} with policy {policy.value}")
    return jsonify({'status': status, 'context_id': context_id, 'outcome': outcome.to_dict()})


@resolve_bp.route('/remap/<context_id>/cancel', methods=['POST'])
def cancel_remap(context_id: str):
    services = get_services()
    context = services.pending.get(context_id)
    if context is None:
        return _error('Remap not found or expired', code='not_found', status=404)
    try:
        previous = services.resolver.cancel_remap(context)
    except MangaLinkError as e:
        return _failure(e)
    services.pending.release(context)
    return jsonify({'status': 'cancelled', 'previous': previous.to_dict() if previous else None})


@resolve_bp.route('/remap/<context_id>/retry', methods=['POST'])
def retry_remap(context_id: str):
    """Retry the progress push of a partially applied remap."""
    services = get_services()
    context = services.pending.get(context_id)
    if context is None:
        return _error('Remap not found or expired', code='not_found', status=404)
    try:
        outcome = run_async(services.resolver.retry_sync(context))
    except MangaLinkError as e:
        return _failure(e)
    services.pending.release(context)
    return jsonify({'status': 'partial' if outcome.partial else 'resolved', 'outcome': outcome.to_dict()})


# ---------------------------------------------------------------------------
# Catalog list status
# ---------------------------------------------------------------------------

@resolve_bp.route('/catalog/<catalog_id>/status', methods=['POST'])
def update_status(catalog_id: str):
    data = request.get_json(silent=True) or {}
    status = ListStatus.parse(data.get('status') if isinstance(data.get('status'), str) else None)
    if status is None:
        return _error(f"Unknown list status: {data.get('status')}")
    try:
        run_async(get_services().resolver.update_status(catalog_id, status))
    except MangaLinkError as e:
        return _failure(e)
    return jsonify({'status': 'ok', 'list_status': status.value})
