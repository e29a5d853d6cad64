"""
Reading stored arrays back from the Realtime Database
"""

from typing import Any, List


def stored_list(value: Any) -> List[Any]:
    """
    Normalize a stored array to a list without holes.

    The database hands arrays with missing indices back as objects keyed by
    index; those are reordered by integer key, not by key string.

    Raises:
        TypeError: If the value is neither a list nor an object
    """
    if value is None:
        return []
    if isinstance(value, dict):
        keys = list(value)
        if all(str(key).isdigit() for key in keys):
            keys.sort(key=int)
        value = [value[key] for key in keys]
    if not isinstance(value, list):
        raise TypeError(f"Expected a list, got {type(value).__name__}")
    return [item for item in value if item is not None]
