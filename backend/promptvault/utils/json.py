"""JSON parsing helpers shared by the parsers and the prompt store."""

import json
from typing import Any


def parse_json_field(raw: str | dict | None) -> dict[str, Any]:
    """Parse a JSON object column, returning {} on failure or empty.

    For metadata stored as TEXT in SQLite. Returns {} for: None, empty
    string, invalid JSON, non-dict JSON.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (ValueError, TypeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def parse_json_or_none(raw: str | bytes | None) -> Any | None:
    """Parse a JSON document, None on failure.

    Used where a bad document is expected and should be skipped rather than
    raised (JSONL lines, format sniffing).
    """
    if raw is None:
        return None
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            return None
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except (ValueError, TypeError):
        return None


def dumps_compact(value: Any) -> str:
    """Serialize for storage: no whitespace, non-ASCII kept as-is."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
