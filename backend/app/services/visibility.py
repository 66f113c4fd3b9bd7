from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

from app.core.settings import Settings
from app.services.debounce import Debouncer


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rect:
    top: float
    bottom: float
    left: float = 0.0
    right: float = 0.0

    def near(self, viewport: Rect, margin: float) -> bool:
        return self.bottom >= viewport.top - margin and self.top <= viewport.bottom + margin


class DocumentModel(Protocol):
    """Read-only view of the document. A `None` return means the region is gone."""

    def viewport(self) -> Rect: ...

    def bounds(self, handle: int) -> Rect | None: ...

    def text(self, handle: int) -> str | None: ...

    def locator(self, handle: int) -> str: ...

    def anchor(self, handle: int) -> str | None: ...


@dataclass
class TextUnit:
    id: str
    handle: int
    text: str
    locator: str
    processed: bool = False


class VisibilityTracker:
    def __init__(
        self,
        document: DocumentModel,
        on_relevant: Callable[[list[TextUnit]], None],
        *,
        margin_px: float = 800.0,
        min_chars: int = 50,
        debounce_sec: float = 0.3,
    ) -> None:
        self.document = document
        self.on_relevant = on_relevant
        self.margin_px = margin_px
        self.min_chars = min_chars
        self.enabled = True
        self.emissions = 0
        self._units: dict[str, TextUnit] = {}
        self._by_handle: dict[int, str] = {}
        self._relevant: set[str] = set()
        self._id_counter = 0
        self._debounce = Debouncer(debounce_sec, self._flush)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        document: DocumentModel,
        on_relevant: Callable[[list[TextUnit]], None],
    ) -> VisibilityTracker:
        return cls(
            document,
            on_relevant,
            margin_px=settings.prefetch_margin_px,
            min_chars=settings.min_unit_chars,
            debounce_sec=settings.debounce_delay_sec,
        )

    @property
    def relevant_ids(self) -> set[str]:
        return set(self._relevant)

    def unit(self, unit_id: str) -> TextUnit | None:
        return self._units.get(unit_id)

    def units(self) -> list[TextUnit]:
        return list(self._units.values())

    def observe(self, handle: int) -> TextUnit | None:
        existing = self._by_handle.get(handle)
        if existing is not None:
            return self._units[existing]

        text = self.document.text(handle)
        if text is None:
            return None
        unit = TextUnit(
            id=self._new_id(self.document.anchor(handle)),
            handle=handle,
            text=text,
            locator=self.document.locator(handle),
        )
        self._units[unit.id] = unit
        self._by_handle[handle] = unit.id
        return unit

    def observe_all(self, handles: Iterable[int]) -> list[TextUnit]:
        observed = [self.observe(handle) for handle in handles]
        return [unit for unit in observed if unit is not None]

    def unobserve(self, handle: int) -> None:
        unit_id = self._by_handle.pop(handle, None)
        if unit_id is None:
            return
        self._units.pop(unit_id, None)
        self._relevant.discard(unit_id)

    def mark_processed(self, unit_id: str) -> None:
        unit = self._units.get(unit_id)
        if unit is not None:
            unit.processed = True
        self._relevant.discard(unit_id)

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False
        self._relevant.clear()
        self._debounce.cancel()

    def reset_tracking(self) -> None:
        self._relevant.clear()
        self._debounce.cancel()
        self.emissions = 0
        for unit in self._units.values():
            unit.processed = False

    def on_geometry_change(self) -> None:
        if not self.enabled:
            return
        if self._recompute():
            self._debounce.trigger()

    def check_current_viewport(self) -> list[TextUnit]:
        if not self.enabled:
            return []
        self._debounce.cancel()
        self._recompute()
        return self._emit()

    def _new_id(self, anchor: str | None) -> str:
        if anchor:
            candidate = f"para_{anchor}"
            if candidate not in self._units:
                return candidate
        while True:
            candidate = f"para_{self._id_counter}"
            self._id_counter += 1
            if candidate not in self._units:
                return candidate

    def _is_relevant(self, unit: TextUnit, viewport: Rect) -> bool:
        if unit.processed:
            return False
        text = self.document.text(unit.handle)
        if text is None:
            return False
        unit.text = text
        if len(text.strip()) < self.min_chars:
            return False
        bounds = self.document.bounds(unit.handle)
        return bounds is not None and bounds.near(viewport, self.margin_px)

    def _recompute(self) -> bool:
        viewport = self.document.viewport()
        relevant = {unit.id for unit in self._units.values() if self._is_relevant(unit, viewport)}
        changed = relevant != self._relevant
        self._relevant = relevant
        return changed

    def _flush(self) -> None:
        if self.enabled:
            self._emit()

    def _emit(self) -> list[TextUnit]:
        units = [unit for unit in self._units.values() if unit.id in self._relevant and not unit.processed]
        if not units:
            return []
        self.emissions += 1
        logger.debug("relevant units emitted count=%s emission=%s", len(units), self.emissions)
        self.on_relevant(units)
        return units
