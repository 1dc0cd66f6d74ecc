import re
from typing import Any, Optional

_WHITESPACE = re.compile(r"\s+")


def slug_from_name(name: Optional[str] = "") -> str:
    """'  Gummy Bears ' -> 'gummy-bears'"""
    return _WHITESPACE.sub("-", str(name or "").strip().lower())


def item_key(item: Any) -> str:
    """
    Stable inventory key for an ordered item.

    Accepts a schema object or a plain dict. An explicit id wins;
    otherwise the key is derived from the name.
    """
    if isinstance(item, dict):
        item_id, name = item.get("id"), item.get("name")
    else:
        item_id, name = getattr(item, "id", None), getattr(item, "name", None)
    if item_id:
        return str(item_id)
    return slug_from_name(name)


def item_label(item: Any) -> str:
    """Human readable name used in error messages and log rows."""
    if isinstance(item, dict):
        return str(item.get("name") or item.get("id") or "")
    return str(getattr(item, "name", None) or getattr(item, "id", None) or "")
