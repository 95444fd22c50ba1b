from __future__ import annotations

from typing import Any, Hashable


def bounded_cache_put(cache: dict, key: Hashable, value: Any, *, max_items: int) -> None:
    cache[key] = value
    # Simple bounded cache: remove oldest inserted keys when we exceed size.
    while len(cache) > max_items:
        oldest = next(iter(cache.keys()))
        if oldest == key:
            break
        cache.pop(oldest, None)
