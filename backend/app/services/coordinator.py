from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.core.settings import Settings
from app.schemas.translation import (
    BatchRequest,
    BatchResponse,
    TextTranslationRequest,
    TranslationResult,
    UnitRequest,
    UnitResult,
)
from app.services.difficulty import DifficultyClassifier, cjk_ratio
from app.services.fingerprint_cache import FingerprintCache
from app.services.provider import ConfigurationError, MalformedResponseError, ProviderClient, ProviderRuntime
from app.services.translator import build_batch_prompt, parse_batch_response
from app.services.user_store import UserStore
from app.services.vocabulary import VocabularyService


logger = logging.getLogger(__name__)


@dataclass
class _PendingText:
    fingerprint: str
    text: str
    units: list[UnitRequest] = field(default_factory=list)


class TranslationCoordinator:
    """Serves one batch: cache, local filter, one provider call for the rest, cache write-back."""

    def __init__(
        self,
        *,
        settings: Settings,
        cache: FingerprintCache,
        classifier: DifficultyClassifier,
        vocabulary: VocabularyService,
        user_store: UserStore,
        provider: ProviderClient,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.classifier = classifier
        self.vocabulary = vocabulary
        self.user_store = user_store
        self.provider = provider

    async def resolve_runtime(self) -> ProviderRuntime:
        reader_settings = await self.user_store.load_settings()
        config = reader_settings.provider
        if config is not None:
            return ProviderRuntime(
                id=config.id,
                model=config.model,
                api_key=config.api_key,
                base_url=config.base_url,
                api_format=config.api_format,
                timeout_sec=config.timeout_sec,
            )
        if not self.settings.provider_api_key:
            raise ConfigurationError("no translation provider configured")
        return ProviderRuntime(
            id=self.settings.provider_id,
            model=self.settings.provider_model,
            api_key=self.settings.provider_api_key,
            base_url=self.settings.provider_base_url,
            api_format=self.settings.provider_api_format,
            timeout_sec=self.settings.provider_timeout_sec,
        )

    async def translate_batch(self, request: BatchRequest) -> BatchResponse:
        runtime = await self.resolve_runtime()
        profile = await self.vocabulary.current()

        results: dict[str, TranslationResult] = {}
        cached_ids: set[str] = set()
        pending: dict[str, _PendingText] = {}
        for unit in request.units:
            key = self.cache.fingerprint(unit.text, request.mode)
            pending.setdefault(key, _PendingText(fingerprint=key, text=unit.text)).units.append(unit)

        hits, misses = self.cache.get_batch(pending)
        for key, result in hits.items():
            for unit in pending[key].units:
                results[unit.id] = result
                cached_ids.add(unit.id)

        to_translate: list[_PendingText] = []
        skipped = 0
        for key in misses:
            item = pending[key]
            if cjk_ratio(item.text) > self.settings.cjk_skip_ratio or not self.classifier.has_potential_unknown_words(
                item.text, profile.estimated_vocabulary_size
            ):
                skipped += len(item.units)
                for unit in item.units:
                    results[unit.id] = TranslationResult()
                continue
            to_translate.append(item)

        provider_calls = 0
        if to_translate:
            prompt = build_batch_prompt(
                [item.text for item in to_translate],
                vocabulary_size=profile.estimated_vocabulary_size,
                exam_type=profile.exam_type,
                mode=request.mode,
            )
            provider_calls = 1
            try:
                raw = await self.provider.call(prompt, runtime)
            except MalformedResponseError as exc:
                logger.warning("provider reply unusable, degrading batch to empty results: %s", exc)
                parsed: list[TranslationResult | None] = [None] * len(to_translate)
            else:
                parsed = parse_batch_response(raw, expected_size=len(to_translate))

            fresh: list[tuple[str, TranslationResult]] = []
            for item, result in zip(to_translate, parsed, strict=True):
                if result is not None:
                    fresh.append((item.fingerprint, result))
                for unit in item.units:
                    results[unit.id] = result if result is not None else TranslationResult()
            self.cache.set_batch(fresh, request.mode, request.source_location)

        logger.info(
            "batch served units=%s cache_hits=%s filtered=%s translated=%s provider_calls=%s",
            len(request.units),
            len(cached_ids),
            skipped,
            sum(len(item.units) for item in to_translate),
            provider_calls,
        )
        return BatchResponse(
            results=[
                UnitResult(id=unit.id, result=results[unit.id], cached=unit.id in cached_ids)
                for unit in request.units
            ],
            provider_call_count=provider_calls,
            cache_hit_count=len(cached_ids),
        )

    async def translate_text(self, request: TextTranslationRequest) -> TranslationResult:
        """Translate one selected passage. No local filter: the reader asked for it explicitly."""
        runtime = await self.resolve_runtime()
        key = self.cache.fingerprint(request.text, request.mode)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("text served from cache chars=%s", len(request.text))
            return cached

        profile = await self.vocabulary.current()
        prompt = build_batch_prompt(
            [request.text],
            vocabulary_size=profile.estimated_vocabulary_size,
            exam_type=profile.exam_type,
            mode=request.mode,
            context=request.context,
        )
        try:
            raw = await self.provider.call(prompt, runtime)
        except MalformedResponseError as exc:
            logger.warning("provider reply unusable for text translation: %s", exc)
            return TranslationResult()

        result = parse_batch_response(raw, expected_size=1)[0]
        if result is None:
            return TranslationResult()
        self.cache.set(key, result, request.mode, request.source_location)
        logger.info("text translated chars=%s words=%s", len(request.text), len(result.words))
        return result
