import asyncio
import functools
import time
from typing import Callable, Any, Dict, Tuple


def ttl_cache(seconds: int):
    """Memoize a coroutine for ``seconds``; concurrent misses on a key share one call."""
    store: Dict[Tuple[Any, ...], Tuple[float, Any]] = {}
    locks: Dict[Tuple[Any, ...], asyncio.Lock] = {}

    def deco(fn: Callable):
        @functools.wraps(fn)
        async def wrapped(*args, **kwargs):
            key = (fn.__name__, args, tuple(sorted(kwargs.items())))
            lock = locks.setdefault(key, asyncio.Lock())
            async with lock:
                now = time.time()
                if key in store:
                    ts, val = store[key]
                    if now - ts < seconds:
                        return val
                val = await fn(*args, **kwargs)
                store[key] = (now, val)
                return val

        wrapped.cache_clear = store.clear
        return wrapped
    return deco
