from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from app.core.settings import Settings
from app.schemas.messages import MessageEnvelope
from app.schemas.translation import BatchRequest, BatchResponse, TranslationMode, TranslationResult, UnitRequest
from app.services.messaging import MessageTransport
from app.services.visibility import TextUnit


logger = logging.getLogger(__name__)


class BatchDispatchError(RuntimeError):
    pass


def take_batch(queue: deque[TextUnit], max_units: int, max_chars: int) -> list[TextUnit]:
    """Pop units from the left of `queue` while both caps hold; an oversized unit goes alone."""
    batch: list[TextUnit] = []
    chars = 0
    while queue:
        size = len(queue[0].text)
        if batch and (len(batch) >= max_units or chars + size > max_chars):
            break
        unit = queue.popleft()
        batch.append(unit)
        chars += size
    return batch


def partition_units(units: Sequence[TextUnit], max_units: int, max_chars: int) -> list[list[TextUnit]]:
    pending = deque(units)
    batches: list[list[TextUnit]] = []
    while pending:
        batches.append(take_batch(pending, max_units, max_chars))
    return batches


class BatchScheduler:
    """Turns relevant-unit notifications into at most `max_concurrent` outstanding batches.

    Newest notifications are served first. A unit is either queued, in flight, or
    processed; results are applied by unit id at most once.
    """

    def __init__(
        self,
        transport: MessageTransport,
        *,
        on_render: Callable[[TextUnit, TranslationResult], None],
        on_processed: Callable[[str], None] | None = None,
        region_exists: Callable[[TextUnit], bool] | None = None,
        max_units: int = 15,
        max_chars: int = 10000,
        max_concurrent: int = 3,
        in_flight_timeout_sec: float = 60.0,
        sweep_interval_sec: float = 10.0,
        mode: TranslationMode = "inline-only",
        source_location: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.on_render = on_render
        self.on_processed = on_processed
        self.region_exists = region_exists
        self.max_units = max_units
        self.max_chars = max_chars
        self.max_concurrent = max_concurrent
        self.in_flight_timeout_sec = in_flight_timeout_sec
        self.sweep_interval_sec = sweep_interval_sec
        self.mode: TranslationMode = mode
        self.source_location = source_location
        self.clock = clock
        self.enabled = True

        self._queue: deque[TextUnit] = deque()
        self._queued: set[str] = set()
        # unit id -> (dispatch time, dispatch number)
        self._in_flight: dict[str, tuple[float, int]] = {}
        self._processed: set[str] = set()
        self._active = 0
        self._generation = 0
        self._tasks: set[asyncio.Task[Any]] = set()
        self._sweep_stop: asyncio.Event | None = None
        self._sweep_task: asyncio.Task[None] | None = None

        self.dispatched_batches = 0
        self.failed_batches = 0
        self.provider_calls = 0
        self.cache_hits = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: MessageTransport,
        **kwargs: Any,
    ) -> BatchScheduler:
        return cls(
            transport,
            max_units=settings.max_units_per_batch,
            max_chars=settings.max_chars_per_batch,
            max_concurrent=settings.max_concurrent_batches,
            in_flight_timeout_sec=settings.in_flight_timeout_sec,
            sweep_interval_sec=settings.stale_sweep_interval_sec,
            **kwargs,
        )

    @property
    def active_batches(self) -> int:
        return self._active

    @property
    def queued_ids(self) -> list[str]:
        return [unit.id for unit in self._queue]

    @property
    def in_flight_ids(self) -> set[str]:
        return set(self._in_flight)

    def is_processed(self, unit_id: str) -> bool:
        return unit_id in self._processed

    def notify(self, units: Iterable[TextUnit]) -> None:
        if not self.enabled:
            return
        fresh: list[TextUnit] = []
        for unit in units:
            if unit.id in self._in_flight or unit.id in self._processed:
                continue
            if unit.id in self._queued:
                self._queue = deque(item for item in self._queue if item.id != unit.id)
            fresh.append(unit)
        self._queue.extendleft(reversed(fresh))
        self._queued.update(unit.id for unit in fresh)
        self._drain()

    def disable(self) -> None:
        self.enabled = False
        self._drop_bookkeeping()

    def enable(self) -> None:
        self.enabled = True

    def reset(self, mode: TranslationMode | None = None) -> None:
        if mode is not None:
            self.mode = mode
        self._drop_bookkeeping()
        self._processed.clear()

    def sweep_stale(self, now: float | None = None) -> list[str]:
        now = self.clock() if now is None else now
        stale = [
            unit_id for unit_id, (started, _) in self._in_flight.items() if now - started > self.in_flight_timeout_sec
        ]
        for unit_id in stale:
            del self._in_flight[unit_id]
        if stale:
            logger.warning("purged stale in-flight units count=%s", len(stale))
        return stale

    async def start(self) -> None:
        if self._sweep_task is not None:
            return
        self._sweep_stop = asyncio.Event()
        self._sweep_task = asyncio.create_task(self._sweep_loop(self._sweep_stop))

    async def stop(self) -> None:
        if self._sweep_stop is not None and self._sweep_task is not None:
            self._sweep_stop.set()
            await self._sweep_task
        self._sweep_task = None
        self._sweep_stop = None

    async def wait_idle(self) -> None:
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def _sweep_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            self.sweep_stale()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self.sweep_interval_sec)

    def _drop_bookkeeping(self) -> None:
        self._queue.clear()
        self._queued.clear()
        self._in_flight.clear()
        self._active = 0
        self._generation += 1

    def _drain(self) -> None:
        while self.enabled and self._queue and self._active < self.max_concurrent:
            batch = take_batch(self._queue, self.max_units, self.max_chars)
            now = self.clock()
            self.dispatched_batches += 1
            dispatch = self.dispatched_batches
            for unit in batch:
                self._queued.discard(unit.id)
                self._in_flight[unit.id] = (now, dispatch)
            self._active += 1
            task = asyncio.create_task(self._run(batch, self._generation, dispatch))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, batch: list[TextUnit], generation: int, dispatch: int) -> None:
        request = BatchRequest(
            units=[UnitRequest(id=unit.id, text=unit.text, locator=unit.locator) for unit in batch],
            mode=self.mode,
            source_location=self.source_location,
        )
        envelope = MessageEnvelope(type="BATCH_TRANSLATE_TEXT", payload=request.model_dump(mode="json"))
        try:
            reply = await self.transport.send(envelope)
            if not reply.success:
                raise BatchDispatchError(reply.error or "batch translation failed")
            response = BatchResponse.model_validate(reply.data)
        except Exception as exc:  # noqa: BLE001
            self.failed_batches += 1
            logger.warning("batch failed units=%s error=%s", len(batch), exc)
            if generation == self._generation:
                self._release(batch, dispatch)
        else:
            if generation == self._generation:
                self._apply(batch, response, dispatch)
            else:
                logger.debug("ignoring late batch response units=%s", len(batch))
        finally:
            if generation == self._generation:
                self._active -= 1
                self._drain()

    def _clear_in_flight(self, unit_id: str, dispatch: int) -> None:
        # A purged unit may have been re-dispatched under a newer marker.
        marker = self._in_flight.get(unit_id)
        if marker is not None and marker[1] == dispatch:
            del self._in_flight[unit_id]

    def _release(self, batch: list[TextUnit], dispatch: int) -> None:
        for unit in batch:
            self._clear_in_flight(unit.id, dispatch)

    def _apply(self, batch: list[TextUnit], response: BatchResponse, dispatch: int) -> None:
        self.provider_calls += response.provider_call_count
        self.cache_hits += response.cache_hit_count
        by_id = {item.id: item for item in response.results}
        for unit in batch:
            self._clear_in_flight(unit.id, dispatch)
            if unit.id in self._processed:
                continue
            item = by_id.get(unit.id)
            if item is None:
                logger.warning("batch response has no result for unit=%s", unit.id)
                continue

            self._processed.add(unit.id)
            if self.on_processed is not None:
                self.on_processed(unit.id)
            if item.result.is_empty:
                continue
            if self.region_exists is not None and not self.region_exists(unit):
                logger.debug("region gone before render unit=%s", unit.id)
                continue
            try:
                self.on_render(unit, item.result)
            except Exception:  # noqa: BLE001
                logger.exception("render callback failed unit=%s", unit.id)
