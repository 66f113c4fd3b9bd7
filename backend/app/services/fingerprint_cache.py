from __future__ import annotations

import hashlib
import logging
import math
import re
import time
from collections.abc import Callable, Iterable

import orjson
from pydantic import ValidationError

from app.core.settings import Settings
from app.schemas.translation import (
    CacheEntry,
    CacheRecord,
    CacheRecordEntry,
    CacheStats,
    TranslationMode,
    TranslationResult,
)
from app.services.debounce import Debouncer
from app.services.kv_store import KeyValueStore


logger = logging.getLogger(__name__)

WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text).strip().lower()


def fingerprint(text: str, mode: TranslationMode | str) -> str:
    digest = hashlib.sha1(normalize_text(text).encode("utf-8")).hexdigest()
    return f"{mode}:{digest}"


class FingerprintCache:
    """Mode-aware translation cache with lazy TTL and batched LRU eviction.

    The in-memory index answers every read. When a store is attached, writes are
    coalesced and persisted after `persist_delay_sec` of quiet.
    """

    def __init__(
        self,
        *,
        max_entries: int = 500,
        ttl_sec: float = 7 * 24 * 60 * 60,
        version: int = 1,
        evict_trigger_ratio: float = 0.95,
        evict_fraction: float = 0.1,
        store: KeyValueStore | None = None,
        storage_key: str = "paragraph_cache",
        persist_delay_sec: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_entries = max_entries
        self.ttl_ms = int(ttl_sec * 1000)
        self.version = version
        self.evict_trigger_ratio = evict_trigger_ratio
        self.evict_fraction = evict_fraction
        self.store = store
        self.storage_key = storage_key
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._persist = Debouncer(persist_delay_sec, self.flush)
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> FingerprintCache:
        return cls(
            max_entries=settings.cache_max_entries,
            ttl_sec=settings.cache_ttl_sec,
            version=settings.cache_version,
            evict_trigger_ratio=settings.cache_evict_trigger_ratio,
            evict_fraction=settings.cache_evict_fraction,
            store=store,
            storage_key=settings.cache_storage_key,
            persist_delay_sec=settings.cache_persist_delay_sec,
            clock=clock,
        )

    fingerprint = staticmethod(fingerprint)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    async def initialize(self) -> int:
        if self.store is None:
            return 0

        raw = await self.store.get(self.storage_key)
        if not raw:
            return 0
        if raw.get("version") != self.version:
            logger.info(
                "cache version mismatch stored=%s current=%s; discarding persisted entries",
                raw.get("version"),
                self.version,
            )
            await self.store.remove(self.storage_key)
            return 0

        try:
            record = CacheRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning("persisted cache unreadable, starting empty: %s", exc.errors()[:3])
            await self.store.remove(self.storage_key)
            return 0

        now = self._now_ms()
        loaded = 0
        for key, item in record.entries.items():
            if now - item.created_at > self.ttl_ms:
                continue
            self._entries[key] = CacheEntry(fingerprint=key, **item.model_dump())
            loaded += 1
        logger.info("cache loaded entries=%s dropped=%s", loaded, len(record.entries) - loaded)
        return loaded

    def get(self, key: str) -> TranslationResult | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        now = self._now_ms()
        if now - entry.created_at > self.ttl_ms:
            del self._entries[key]
            self.misses += 1
            self._schedule_persist()
            return None

        entry.last_accessed_at = now
        self.hits += 1
        return entry.result.model_copy(update={"cached": True}, deep=True)

    def get_batch(self, keys: Iterable[str]) -> tuple[dict[str, TranslationResult], list[str]]:
        hits: dict[str, TranslationResult] = {}
        misses: list[str] = []
        for key in keys:
            if key in hits or key in misses:
                continue
            result = self.get(key)
            if result is None:
                misses.append(key)
            else:
                hits[key] = result
        return hits, misses

    def set(
        self,
        key: str,
        result: TranslationResult,
        mode: TranslationMode,
        source_location: str = "",
    ) -> None:
        self.set_batch([(key, result)], mode, source_location)

    def set_batch(
        self,
        items: Iterable[tuple[str, TranslationResult]],
        mode: TranslationMode,
        source_location: str = "",
    ) -> None:
        now = self._now_ms()
        inserted: set[str] = set()
        for key, result in items:
            self._entries[key] = CacheEntry(
                fingerprint=key,
                result=result.model_copy(update={"cached": False}, deep=True),
                mode=mode,
                source_location=source_location,
                created_at=now,
                last_accessed_at=now,
            )
            inserted.add(key)
        if not inserted:
            return
        if len(self._entries) >= self.max_entries * self.evict_trigger_ratio:
            self._evict(protected=inserted)
        self._schedule_persist()

    def clean_expired(self) -> int:
        now = self._now_ms()
        expired = [key for key, entry in self._entries.items() if now - entry.created_at > self.ttl_ms]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("cache expired entries removed count=%s", len(expired))
            self._schedule_persist()
        return len(expired)

    async def clear_all(self) -> None:
        self._entries.clear()
        self._persist.cancel()
        if self.store is not None:
            await self.store.remove(self.storage_key)

    def get_stats(self) -> CacheStats:
        entries = list(self._entries.values())
        created = [entry.created_at for entry in entries]
        return CacheStats(
            total_entries=len(entries),
            memory_usage=len(orjson.dumps(self._record().model_dump(mode="json"))) * 2,
            oldest_entry=min(created) if created else None,
            newest_entry=max(created) if created else None,
            hits=self.hits,
            misses=self.misses,
            evictions=self.evictions,
        )

    async def flush(self) -> None:
        self._persist.cancel()
        if self.store is None:
            return
        await self.store.set(self.storage_key, self._record().model_dump(mode="json"))

    async def aclose(self) -> None:
        if self.store is not None and self._persist.pending:
            await self.flush()
        await self._persist.drain()

    def _evict(self, protected: set[str]) -> None:
        count = max(math.ceil(self.max_entries * self.evict_fraction), len(self._entries) - self.max_entries + 1)
        ordered = sorted(
            self._entries.values(),
            key=lambda entry: (entry.last_accessed_at, entry.fingerprint in protected),
        )
        for entry in ordered[:count]:
            del self._entries[entry.fingerprint]
        self.evictions += min(count, len(ordered))
        logger.info("cache evicted entries=%s remaining=%s", min(count, len(ordered)), len(self._entries))

    def _record(self) -> CacheRecord:
        return CacheRecord(
            version=self.version,
            entries={
                key: CacheRecordEntry(
                    result=entry.result,
                    mode=entry.mode,
                    source_location=entry.source_location,
                    created_at=entry.created_at,
                    last_accessed_at=entry.last_accessed_at,
                )
                for key, entry in self._entries.items()
            },
        )

    def _schedule_persist(self) -> None:
        if self.store is not None:
            self._persist.trigger()

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)
