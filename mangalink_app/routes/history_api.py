from flask import Blueprint, jsonify, request

from mangalink_app.extensions import get_services
from mangalink_app.history.ledger import HistoryKeys
from mangalink_app.log import log
from sources.base import Chapter
from .validators import validate_fields, parse_chapters

history_bp = Blueprint('history_api', __name__, url_prefix='/api/history')


def _keys(data):
    """History keys from a request body; None when it names no series."""
    keys = HistoryKeys.from_dict(data)
    return None if keys.is_empty() else keys


def _missing_keys():
    return jsonify({'error': 'Provide series_id, anilist_id, provider_series_id or title'}), 400


@history_bp.route('', methods=['GET'])
def get_history():
    """Return recently read series, newest first."""
    try:
        limit = int(request.args.get('limit', 20))
        if limit < 1 or limit > 200:
            return jsonify({'error': 'Limit must be between 1 and 200'}), 400
    except ValueError:
        return jsonify({'error': 'Invalid limit'}), 400

    items = get_services().ledger.recent(limit=limit)
    return jsonify({'items': [item.to_dict() for item in items]})


@history_bp.route('/open', methods=['POST'])
def record_open():
    """A chapter was opened."""
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [('chapter', dict, None)])
    if error:
        return jsonify({'error': error}), 400
    keys = _keys(data)
    if keys is None:
        return _missing_keys()
    chapter = data['chapter']
    if not chapter.get('id'):
        return jsonify({'error': "Chapter needs an 'id'"}), 400
    page = data.get('page')
    if page is not None and not isinstance(page, int):
        return jsonify({'error': "Field 'page' must be int"}), 400

    try:
        item = get_services().ledger.record_open(
            keys,
            Chapter.from_dict(chapter),
            series_title=data.get('series_title'),
            series_image=data.get('series_image'),
            source=data.get('source'),
            page=page,
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    log(f"🕑 History updated: {item.series_title} ch {item.chapter_number}")
    return jsonify(item.to_dict())


@history_bp.route('/item', methods=['POST'])
def get_item():
    """Look a series up by any key it is known by."""
    data = request.get_json(silent=True) or {}
    keys = _keys(data)
    if keys is None:
        return _missing_keys()
    ledger = get_services().ledger
    item = ledger.get_item(keys)
    if item is None:
        return jsonify({'error': 'Not found'}), 404
    payload = item.to_dict()
    if data.get('chapter_id'):
        payload['resume_page'] = ledger.get_page(keys, str(data['chapter_id']))
    return jsonify(payload)


@history_bp.route('/toggle', methods=['POST'])
def toggle_read():
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [('chapter_id', str, 500)])
    if error:
        return jsonify({'error': error}), 400
    keys = _keys(data)
    if keys is None:
        return _missing_keys()
    try:
        read = get_services().ledger.toggle_read(keys, data['chapter_id'], series_title=data.get('series_title'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'read_chapters': sorted(read)})


@history_bp.route('/mark-up-to', methods=['POST'])
def mark_up_to():
    """Mark a chapter and every chapter before it as read."""
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [('chapter_id', str, 500), ('chapters', list, None)])
    if error:
        return jsonify({'error': error}), 400
    chapters, error = parse_chapters(data['chapters'])
    if error:
        return jsonify({'error': error}), 400
    keys = _keys(data)
    if keys is None:
        return _missing_keys()
    try:
        read = get_services().ledger.mark_up_to(
            keys, data['chapter_id'], chapters, series_title=data.get('series_title')
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'read_chapters': sorted(read)})


@history_bp.route('/mark-range', methods=['POST'])
def mark_range():
    """Mark every chapter numbered within [start, end] as read."""
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [('chapters', list, None)])
    if error:
        return jsonify({'error': error}), 400
    if data.get('start') is None or data.get('end') is None:
        return jsonify({'error': "Fields 'start' and 'end' are required"}), 400
    chapters, error = parse_chapters(data['chapters'])
    if error:
        return jsonify({'error': error}), 400
    keys = _keys(data)
    if keys is None:
        return _missing_keys()
    try:
        read = get_services().ledger.mark_range(
            keys, data['start'], data['end'], chapters, series_title=data.get('series_title')
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'read_chapters': sorted(read)})


@history_bp.route('/mark-all', methods=['POST'])
def mark_all():
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [('chapters', list, None)])
    if error:
        return jsonify({'error': error}), 400
    chapters, error = parse_chapters(data['chapters'])
    if error:
        return jsonify({'error': error}), 400
    keys = _keys(data)
    if keys is None:
        return _missing_keys()
    try:
        item = get_services().ledger.mark_all(keys, chapters, series_title=data.get('series_title'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(item.to_dict())


@history_bp.route('/clear-series', methods=['POST'])
def clear_series():
    data = request.get_json(silent=True) or {}
    keys = _keys(data)
    if keys is None:
        return _missing_keys()
    if not get_services().ledger.clear_series(keys):
        return jsonify({'error': 'Not found'}), 404
    return jsonify({'status': 'ok'})


@history_bp.route('/clear', methods=['POST'])
def clear_history():
    """Explicit "clear history": removes every local record."""
    removed = get_services().ledger.clear()
    log(f"🕑 History cleared ({removed} items)")
    return jsonify({'status': 'ok', 'removed': removed})
