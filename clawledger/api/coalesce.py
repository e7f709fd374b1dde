"""
Request coalescing for chart and token-stats cache misses.

Only the first request for a key goes upstream; requests arriving while
it runs wait for it and are answered from the cache it filled.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

STALE_AFTER = 300.0

# key -> (lock, last used)
_inflight: dict[str, tuple[asyncio.Lock, float]] = {}
_swept_at = 0.0


def _sweep(now: float) -> None:
    global _swept_at
    if now - _swept_at < STALE_AFTER:
        return
    _swept_at = now
    for key in [k for k, (lock, used) in _inflight.items() if now - used > STALE_AFTER and not lock.locked()]:
        del _inflight[key]


async def coalesce(
    key: str,
    fetch: Callable[[], Awaitable[Any]],
    from_cache: Callable[[], Awaitable[Optional[Any]]],
) -> Any:
    """Run `fetch` once per key at a time; waiters re-read `from_cache` first."""
    now = time.monotonic()
    _sweep(now)

    lock, _ = _inflight.get(key, (asyncio.Lock(), now))
    _inflight[key] = (lock, now)

    waited = lock.locked()
    async with lock:
        if waited:
            cached = await from_cache()
            if cached is not None:
                return cached
        return await fetch()
