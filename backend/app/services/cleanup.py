from __future__ import annotations

import asyncio
import contextlib
import logging

from app.services.fingerprint_cache import FingerprintCache


logger = logging.getLogger(__name__)


async def cache_maintenance_loop(cache: FingerprintCache, stop_event: asyncio.Event, interval_sec: float) -> None:
    while not stop_event.is_set():
        removed = cache.clean_expired()
        if removed:
            logger.info("cache maintenance removed=%s remaining=%s", removed, len(cache))

        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=interval_sec)
