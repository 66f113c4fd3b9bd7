from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from app.core.redis_client import get_async_redis
from app.core.settings import Settings
from app.services.coordinator import TranslationCoordinator
from app.services.difficulty import DifficultyClassifier
from app.services.fingerprint_cache import FingerprintCache
from app.services.kv_store import KeyValueStore, MemoryKeyValueStore, RedisKeyValueStore
from app.services.messaging import MessageRouter
from app.services.provider import ProviderClient
from app.services.user_store import UserStore
from app.services.vocabulary import VocabularyService


logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    sync_store: KeyValueStore
    local_store: KeyValueStore
    classifier: DifficultyClassifier
    cache: FingerprintCache
    user_store: UserStore
    vocabulary: VocabularyService
    provider: ProviderClient
    coordinator: TranslationCoordinator
    router: MessageRouter

    async def initialize(self) -> None:
        await self.cache.initialize()
        await self.vocabulary.initialize()

    async def aclose(self) -> None:
        await self.cache.aclose()
        await self.provider.aclose()


def _default_stores(settings: Settings) -> tuple[KeyValueStore, KeyValueStore]:
    if settings.storage_backend == "redis":
        redis = get_async_redis(settings.redis_url)
        return (
            RedisKeyValueStore(redis, settings.sync_scope_prefix),
            RedisKeyValueStore(redis, settings.local_scope_prefix),
        )
    return MemoryKeyValueStore(), MemoryKeyValueStore()


def build_services(
    settings: Settings,
    *,
    sync_store: KeyValueStore | None = None,
    local_store: KeyValueStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    tiers: dict[str, int] | None = None,
    clock: Callable[[], float] = time.time,
) -> Services:
    if sync_store is None or local_store is None:
        default_sync, default_local = _default_stores(settings)
        sync_store = sync_store or default_sync
        local_store = local_store or default_local

    classifier = DifficultyClassifier.from_settings(settings, tiers=tiers)
    cache = FingerprintCache.from_settings(settings, store=local_store, clock=clock)
    user_store = UserStore(sync_store, local_store)
    vocabulary = VocabularyService(user_store, classifier)
    provider = ProviderClient.from_settings(settings, client=http_client)
    coordinator = TranslationCoordinator(
        settings=settings,
        cache=cache,
        classifier=classifier,
        vocabulary=vocabulary,
        user_store=user_store,
        provider=provider,
    )
    router = MessageRouter(coordinator=coordinator, vocabulary=vocabulary, user_store=user_store, cache=cache)
    logger.info(
        "services built storage=%s cache_capacity=%s wordlist_size=%s",
        settings.storage_backend,
        settings.cache_max_entries,
        len(classifier.tiers or {}),
    )
    return Services(
        settings=settings,
        sync_store=sync_store,
        local_store=local_store,
        classifier=classifier,
        cache=cache,
        user_store=user_store,
        vocabulary=vocabulary,
        provider=provider,
        coordinator=coordinator,
        router=router,
    )
