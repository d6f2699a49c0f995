from copy import deepcopy
import re
from typing import Any, Dict, Optional


#: Dicts stored under these keys are user data (log driver options, docker
#: labels), so we never rename the keys inside them.
OPAQUE_KEYS = {
    'options',
    'dockerLabels',
    'driverOpts',
    'labels',
}


def camelize(name: str) -> str:
    """
    Convert a snake_case shipfish.yml key to the camelCase key the ECS API uses.
    Keys that are already camelCase pass through unchanged.

    Args:
        name: the key to convert

    Returns:
        ``name`` converted to camelCase.
    """
    if '_' not in name:
        return name
    first, *rest = name.split('_')
    return first + ''.join(word[:1].upper() + word[1:] for word in rest)


def camelize_keys(data: Any) -> Any:
    """
    Recursively convert the keys of every dict in ``data`` with :py:func:`camelize`.
    The contents of dicts under any of :py:data:`OPAQUE_KEYS` are left alone.
    """
    if isinstance(data, dict):
        converted = {}
        for key, value in data.items():
            new_key = camelize(key) if isinstance(key, str) else key
            if new_key in OPAQUE_KEYS:
                converted[new_key] = deepcopy(value)
            else:
                converted[new_key] = camelize_keys(value)
        return converted
    if isinstance(data, (list, tuple)):
        return [camelize_keys(v) for v in data]
    return data


def deep_merge(base: Optional[Dict[str, Any]], overlay: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Return a new dict that is ``base`` with ``overlay`` merged onto it.  Nested
    dicts merge key by key; any other value, lists included, in ``overlay``
    replaces the value in ``base`` wholesale.  Neither argument is modified.
    """
    merged = deepcopy(base) if base else {}
    for key, value in (overlay or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def family_revision(arn: str) -> str:
    """
    Given a task definition ARN, return just the ``family:revision`` part of it.
    Anything that doesn't look like an ARN is returned unchanged.
    """
    m = re.search(r'task-definition/(?P<family_revision>[^/]+)$', arn)
    if m:
        return m.group('family_revision')
    return arn
