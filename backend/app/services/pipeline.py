from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from app.core.settings import Settings
from app.schemas.translation import TranslationMode, TranslationResult
from app.services.messaging import MessageTransport
from app.services.scheduler import BatchScheduler
from app.services.visibility import DocumentModel, TextUnit, VisibilityTracker


logger = logging.getLogger(__name__)


class ReaderPipeline:
    """Page-side wiring: tracker emissions feed the scheduler, applied results mark units processed."""

    def __init__(
        self,
        document: DocumentModel,
        transport: MessageTransport,
        on_render: Callable[[TextUnit, TranslationResult], None],
        *,
        settings: Settings,
        mode: TranslationMode = "inline-only",
        source_location: str = "",
    ) -> None:
        self.document = document
        self.tracker = VisibilityTracker.from_settings(settings, document, self._on_relevant)
        self.scheduler = BatchScheduler.from_settings(
            settings,
            transport,
            on_render=on_render,
            on_processed=self.tracker.mark_processed,
            region_exists=self._region_exists,
            mode=mode,
            source_location=source_location,
        )

    async def start(self, handles: Iterable[int]) -> None:
        self.tracker.observe_all(handles)
        await self.scheduler.start()
        self.tracker.check_current_viewport()

    async def stop(self) -> None:
        self.tracker.disable()
        await self.scheduler.stop()
        await self.scheduler.wait_idle()

    def on_geometry_change(self) -> None:
        self.tracker.on_geometry_change()

    def set_mode(self, mode: TranslationMode) -> None:
        logger.info("translation mode switched mode=%s", mode)
        self.scheduler.reset(mode)
        self.tracker.reset_tracking()
        self.tracker.check_current_viewport()

    def enable(self) -> None:
        self.scheduler.enable()
        self.tracker.enable()
        self.tracker.check_current_viewport()

    def disable(self) -> None:
        self.tracker.disable()
        self.scheduler.disable()

    def _on_relevant(self, units: list[TextUnit]) -> None:
        self.scheduler.notify(units)

    def _region_exists(self, unit: TextUnit) -> bool:
        return self.document.text(unit.handle) is not None
