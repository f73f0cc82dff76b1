"""Shared utility functions."""
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

PASSWORD_BLACKLIST = {
    "123456",
    "123456789",
    "password",
    "qwerty",
    "111111",
    "12345678",
}


def is_password_strong(password: str, min_length: int = 8) -> bool:
    """Return True if password meets simple strength requirements."""
    if len(password) < min_length:
        return False
    if password.lower() in PASSWORD_BLACKLIST:
        return False
    if re.fullmatch(r"\d+", password):
        return False
    return True


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def build_query(filters: Optional[Mapping[str, Any]]) -> List[Tuple[str, str]]:
    """Flatten a filter mapping into query pairs, skipping unset values.

    Sequences repeat the key once per item, the way the server expects
    ``status=pending&status=confirmed``.
    """
    pairs: List[Tuple[str, str]] = []
    for key, value in (filters or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            pairs.extend((key, _query_value(v)) for v in value)
        else:
            pairs.append((key, _query_value(value)))
    return pairs


def merge_by_id(items: Iterable[Any], updated: Any, prepend_new: bool = True) -> List[Any]:
    """Replace the item sharing ``updated.id`` or add it when absent."""
    result = list(items)
    for index, item in enumerate(result):
        if item.id == updated.id:
            result[index] = updated
            return result
    if prepend_new:
        result.insert(0, updated)
    else:
        result.append(updated)
    return result


def compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}
