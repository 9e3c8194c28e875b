"""Deep merge for settings updates."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any


def deep_merge(target: dict[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``source`` into ``target`` in place and return ``target``.

    Mappings merge recursively. Everything else, lists included, replaces the
    target value outright; lists are never merged element-wise. A mapping in
    ``source`` over a non-mapping in ``target`` replaces it with a fresh dict.
    Values taken from ``source`` are deep-copied so later mutation of the
    update payload cannot reach the merged document.
    """
    for key, value in source.items():
        if isinstance(value, Mapping):
            existing = target.get(key)
            if not isinstance(existing, dict):
                existing = {}
                target[key] = existing
            deep_merge(existing, value)
        else:
            target[key] = copy.deepcopy(value)
    return target
