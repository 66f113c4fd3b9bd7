from __future__ import annotations

import asyncio

from app.schemas.translation import TranslationResult
from app.services.cleanup import cache_maintenance_loop
from app.services.debounce import Debouncer
from app.services.fingerprint_cache import FingerprintCache


def test_triggers_coalesce_into_one_call():
    calls: list[int] = []

    async def scenario():
        debouncer = Debouncer(0.01, lambda: calls.append(1))
        for _ in range(5):
            debouncer.trigger()
        assert debouncer.pending
        await asyncio.sleep(0.05)
        return debouncer

    debouncer = asyncio.run(scenario())
    assert calls == [1]
    assert not debouncer.pending


def test_async_callback_and_flush():
    calls: list[str] = []

    async def callback():
        calls.append("ran")

    async def scenario():
        debouncer = Debouncer(10.0, callback)
        debouncer.trigger()
        await debouncer.flush()
        return debouncer.pending

    assert asyncio.run(scenario()) is False
    assert calls == ["ran"]


def test_failing_callback_is_logged_not_raised(caplog):
    async def callback():
        raise RuntimeError("disk full")

    async def scenario():
        debouncer = Debouncer(0.01, callback)
        debouncer.trigger()
        await asyncio.sleep(0.03)
        await debouncer.drain()

    asyncio.run(scenario())
    assert "debounced callback failed" in caplog.text


def test_cancel_prevents_the_call():
    calls: list[int] = []

    async def scenario():
        debouncer = Debouncer(0.01, lambda: calls.append(1))
        debouncer.trigger()
        debouncer.cancel()
        await asyncio.sleep(0.03)

    asyncio.run(scenario())
    assert calls == []


def test_maintenance_loop_sweeps_expired_entries(clock):
    cache = FingerprintCache(clock=clock, ttl_sec=60)
    cache.set("old", TranslationResult(full_text="x"), "inline-only")
    clock.advance(61)

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(cache_maintenance_loop(cache, stop, interval_sec=0.01))
        await asyncio.sleep(0.03)
        stop.set()
        await task

    asyncio.run(scenario())
    assert len(cache) == 0
