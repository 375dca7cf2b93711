import time
from typing import Callable, Dict, List, Mapping, Optional

from .errors import RateLimited


def client_id(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """Identify the caller for rate limiting, preferring proxy headers."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if peer:
        return peer
    return f"anonymous-{(headers.get('user-agent') or '')[:20]}"


class RateLimiter:
    """Sliding-window request counter per client.

    The checked client is pruned on every call; once per window all idle
    clients are dropped.
    """

    def __init__(self, limit: int = 60, window: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._requests: Dict[str, List[float]] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._requests)

    def _sweep(self, now: float) -> None:
        idle = [c for c, stamps in self._requests.items() if not stamps or now - stamps[-1] >= self.window]
        for c in idle:
            del self._requests[c]
        self._last_sweep = now

    def is_limited(self, client: str) -> bool:
        now = self._clock()
        if now - self._last_sweep >= self.window:
            self._sweep(now)

        recent = [ts for ts in self._requests.get(client, []) if now - ts < self.window]
        if len(recent) >= self.limit:
            self._requests[client] = recent
            return True
        recent.append(now)
        self._requests[client] = recent
        return False

    def check(self, client: str) -> None:
        if self.is_limited(client):
            raise RateLimited()

    def reset(self) -> None:
        self._requests.clear()
