"""Lightweight request validation helpers."""

import re
from typing import Any, Dict, Iterable, List, Tuple, Optional, Set

from sources.base import Chapter


Rule = Tuple[str, type, Optional[int]]

# Allowed provider names - populated at app init from the registered providers
_allowed_providers: Set[str] = set()

# Safe characters for provider names (alphanumeric, dash, underscore)
PROVIDER_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+$')

MAX_CHAPTERS = 5000


def set_allowed_providers(names: Iterable[str]) -> None:
    """Set the list of valid provider names (called during app init)."""
    global _allowed_providers
    _allowed_providers = set(names)


def validate_fields(payload: Dict[str, Any], rules: List[Rule]) -> Optional[str]:
    """
    Validate required fields with optional max length.

    Args:
        payload: Incoming JSON dict.
        rules: List of (field, type, max_length or None).

    Returns:
        None if valid, or error message string.
    """
    for field, expected_type, max_len in rules:
        if field not in payload:
            return f"Missing required field: {field}"
        value = payload.get(field)
        if not isinstance(value, expected_type):
            return f"Field '{field}' must be {expected_type.__name__}"
        if max_len is not None and len(str(value)) > max_len:
            return f"Field '{field}' exceeds max length {max_len}"
    return None


def validate_provider_name(name: Optional[str]) -> Optional[str]:
    """
    Validate a provider name against the safe pattern and known providers.

    Returns:
        None if valid, or error message string.
    """
    if not name:
        return "Missing provider"
    if not PROVIDER_NAME_PATTERN.match(name):
        return "Invalid provider format"
    if _allowed_providers and name not in _allowed_providers:
        return f"Unknown provider: {name}"
    return None


def parse_provider_list(raw: Any) -> Tuple[List[str], Optional[str]]:
    """
    Providers from a comma-separated query arg or a JSON list.

    Returns:
        (names, error_or_none). An empty list means "all providers".
    """
    if raw in (None, ''):
        return [], None
    if isinstance(raw, str):
        names = [n.strip() for n in raw.split(',') if n.strip()]
    elif isinstance(raw, list):
        names = [str(n).strip() for n in raw if str(n).strip()]
    else:
        return [], "Field 'providers' must be a list or comma-separated string"
    for name in names:
        error = validate_provider_name(name)
        if error:
            return [], error
    return names, None


def parse_chapters(raw: Any) -> Tuple[List[Chapter], Optional[str]]:
    """Chapter list from JSON ([{id, number, title?, date?}, ...])."""
    if raw is None:
        return [], None
    if not isinstance(raw, list):
        return [], "Field 'chapters' must be a list"
    if len(raw) > MAX_CHAPTERS:
        return [], f"Too many chapters (max {MAX_CHAPTERS})"
    chapters = []
    for item in raw:
        if not isinstance(item, dict) or not item.get('id'):
            return [], "Each chapter needs an 'id'"
        chapters.append(Chapter.from_dict(item))
    return chapters, None


def sanitize_string(value: str, max_length: int = 500) -> str:
    """Strip control characters and limit length."""
    if not isinstance(value, str):
        return ""
    return ''.join(c for c in value if c >= ' ')[:max_length]
