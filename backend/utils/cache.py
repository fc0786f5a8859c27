import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CachedValue(Generic[T]):
    value: T
    ttl: float
    fetched_at: float = field(default_factory=time.monotonic)

    def is_stale(self, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        return now - self.fetched_at >= self.ttl


class CachedLoader(Generic[T]):
    """
    Short-lived cache in front of an async loader.

    Values are never authoritative: a stale entry is reloaded on the next
    `get`, and `invalidate` drops everything.
    """

    def __init__(
        self,
        loader: Callable[..., Awaitable[T]],
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, CachedValue[T]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: Hashable = None) -> T:
        entry = self._entries.get(key)
        if entry is not None and not entry.is_stale(self._clock()):
            return entry.value
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.is_stale(self._clock()):
                return entry.value
            value = await (
                self._loader() if key is None else self._loader(key)
            )
            self._entries[key] = CachedValue(
                value=value, ttl=self.ttl, fetched_at=self._clock()
            )
            return value

    def invalidate(self, key: Hashable = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
