import pytest

from utils.cache import CachedLoader


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestCachedLoader:
    @pytest.mark.asyncio
    async def test_reuses_value_until_stale(self):
        clock = FakeClock()
        calls = []

        async def load():
            calls.append(clock.now)
            return {"u1"}

        cache = CachedLoader(load, ttl=60, clock=clock)

        assert await cache.get() == {"u1"}
        clock.now = 59
        await cache.get()
        assert len(calls) == 1

        clock.now = 60
        await cache.get()
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        async def load(user_id):
            return f"user-{user_id}"

        cache = CachedLoader(load, ttl=60)

        assert await cache.get(1) == "user-1"
        assert await cache.get(2) == "user-2"

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self):
        calls = []

        async def load():
            calls.append(1)
            return len(calls)

        cache = CachedLoader(load, ttl=60)

        assert await cache.get() == 1
        cache.invalidate()
        assert await cache.get() == 2

    @pytest.mark.asyncio
    async def test_loader_error_is_not_cached(self):
        attempts = []

        async def load():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("down")
            return "ok"

        cache = CachedLoader(load, ttl=60)

        with pytest.raises(RuntimeError):
            await cache.get()
        assert await cache.get() == "ok"
