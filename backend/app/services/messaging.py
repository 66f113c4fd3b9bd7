from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from app.schemas.messages import (
    AddVocabularyPayload,
    InitializeProfilePayload,
    MarkWordPayload,
    MessageEnvelope,
    MessageResponse,
    SubmitQuizPayload,
    VocabularyWordPayload,
)
from app.schemas.profile import (
    ProviderConfigPublic,
    QuizQuestionPublic,
    ReaderSettings,
    ReaderSettingsPublic,
    UserProfileUpdate,
)
from app.schemas.translation import BatchRequest, TextTranslationRequest
from app.services.coordinator import TranslationCoordinator
from app.services.fingerprint_cache import FingerprintCache
from app.services.provider import ConfigurationError
from app.services.user_store import UserStore
from app.services.vocabulary import QUIZ_BATTERY, VocabularyService


logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


class MessageTransport(Protocol):
    async def send(self, envelope: MessageEnvelope) -> MessageResponse: ...


def public_settings(settings: ReaderSettings) -> ReaderSettingsPublic:
    provider = None
    if settings.provider is not None:
        provider = ProviderConfigPublic(
            id=settings.provider.id,
            api_format=settings.provider.api_format,
            model=settings.provider.model,
            base_url=settings.provider.base_url,
            timeout_sec=settings.provider.timeout_sec,
            has_api_key=bool(settings.provider.api_key),
        )
    return ReaderSettingsPublic(
        enabled=settings.enabled,
        translation_mode=settings.translation_mode,
        show_phonetic=settings.show_phonetic,
        provider=provider,
    )


class MessageRouter:
    """Background-side endpoint of the messaging channel. `dispatch` never raises."""

    def __init__(
        self,
        *,
        coordinator: TranslationCoordinator,
        vocabulary: VocabularyService,
        user_store: UserStore,
        cache: FingerprintCache,
        on_configuration_error: Callable[[str], None] | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.vocabulary = vocabulary
        self.user_store = user_store
        self.cache = cache
        self.on_configuration_error = on_configuration_error
        self.last_configuration_error: str | None = None
        self._handlers: dict[str, Handler] = {
            "TRANSLATE_TEXT": self._translate_text,
            "BATCH_TRANSLATE_TEXT": self._batch_translate,
            "MARK_WORD_KNOWN": self._mark_known,
            "MARK_WORD_UNKNOWN": self._mark_unknown,
            "GET_VOCABULARY": self._get_vocabulary,
            "ADD_TO_VOCABULARY": self._add_to_vocabulary,
            "REMOVE_FROM_VOCABULARY": self._remove_word,
            "GET_USER_PROFILE": self._get_profile,
            "UPDATE_USER_PROFILE": self._update_profile,
            "INITIALIZE_PROFILE": self._initialize_profile,
            "GET_QUIZ": self._get_quiz,
            "SUBMIT_QUIZ": self._submit_quiz,
            "SHOULD_REASSESS": self._should_reassess,
            "GET_SETTINGS": self._get_settings,
            "UPDATE_SETTINGS": self._update_settings,
            "GET_CACHE_STATS": self._get_cache_stats,
            "CLEAR_CACHE": self._clear_cache,
        }

    @property
    def message_types(self) -> list[str]:
        return list(self._handlers)

    async def dispatch(self, envelope: MessageEnvelope) -> MessageResponse:
        handler = self._handlers.get(envelope.type)
        if handler is None:
            return MessageResponse(success=False, error=f"unknown message type: {envelope.type}")

        try:
            data = await handler(envelope.payload)
        except ConfigurationError as exc:
            self._report_configuration_error(str(exc))
            return MessageResponse(success=False, error=str(exc))
        except ValidationError as exc:
            return MessageResponse(success=False, error=f"invalid payload for {envelope.type}: {exc.errors()[:3]}")
        except Exception as exc:  # noqa: BLE001
            logger.warning("message failed type=%s error=%s", envelope.type, exc)
            return MessageResponse(success=False, error=str(exc) or exc.__class__.__name__)
        return MessageResponse(success=True, data=data)

    def _report_configuration_error(self, message: str) -> None:
        if message == self.last_configuration_error:
            return
        self.last_configuration_error = message
        logger.error("translation provider configuration error: %s", message)
        if self.on_configuration_error is not None:
            self.on_configuration_error(message)

    async def _translate_text(self, payload: dict[str, Any]) -> Any:
        request = TextTranslationRequest.model_validate(payload)
        result = await self.coordinator.translate_text(request)
        self.last_configuration_error = None
        return result.model_dump(mode="json")

    async def _batch_translate(self, payload: dict[str, Any]) -> Any:
        request = BatchRequest.model_validate(payload)
        response = await self.coordinator.translate_batch(request)
        self.last_configuration_error = None
        return response.model_dump(mode="json")

    async def _mark_known(self, payload: dict[str, Any]) -> Any:
        body = MarkWordPayload.model_validate(payload)
        profile = await self.vocabulary.mark_word(body.word, True, body.difficulty)
        return profile.model_dump(mode="json")

    async def _mark_unknown(self, payload: dict[str, Any]) -> Any:
        body = MarkWordPayload.model_validate(payload)
        profile = await self.vocabulary.mark_word(body.word, False, body.difficulty)
        await self.vocabulary.add_to_notebook(body.word, body.context, body.translation)
        return profile.model_dump(mode="json")

    async def _get_vocabulary(self, payload: dict[str, Any]) -> Any:
        return [entry.model_dump(mode="json") for entry in await self.vocabulary.notebook()]

    async def _add_to_vocabulary(self, payload: dict[str, Any]) -> Any:
        body = AddVocabularyPayload.model_validate(payload)
        entry = await self.vocabulary.add_to_notebook(body.word, body.context, body.translation)
        return entry.model_dump(mode="json")

    async def _remove_word(self, payload: dict[str, Any]) -> Any:
        body = VocabularyWordPayload.model_validate(payload)
        profile = await self.vocabulary.remove_word(body.word)
        return profile.model_dump(mode="json")

    async def _get_profile(self, payload: dict[str, Any]) -> Any:
        profile = await self.vocabulary.current()
        stats = await self.vocabulary.stats()
        return {**profile.model_dump(mode="json"), "level": stats.level}

    async def _update_profile(self, payload: dict[str, Any]) -> Any:
        update = UserProfileUpdate.model_validate(payload)
        profile = await self.vocabulary.update_profile(update)
        return profile.model_dump(mode="json")

    async def _initialize_profile(self, payload: dict[str, Any]) -> Any:
        body = InitializeProfilePayload.model_validate(payload)
        profile = await self.vocabulary.initialize_from_exam(body.exam_type, body.exam_score)
        return profile.model_dump(mode="json")

    async def _get_quiz(self, payload: dict[str, Any]) -> Any:
        return [
            QuizQuestionPublic(index=idx, word=question.word, options=question.options).model_dump()
            for idx, question in enumerate(QUIZ_BATTERY)
        ]

    async def _submit_quiz(self, payload: dict[str, Any]) -> Any:
        body = SubmitQuizPayload.model_validate(payload)
        profile = await self.vocabulary.submit_quiz(body.answers)
        return profile.model_dump(mode="json")

    async def _should_reassess(self, payload: dict[str, Any]) -> Any:
        return {"should_reassess": await self.vocabulary.should_reassess()}

    async def _get_settings(self, payload: dict[str, Any]) -> Any:
        settings = await self.user_store.load_settings()
        return public_settings(settings).model_dump(mode="json")

    async def _update_settings(self, payload: dict[str, Any]) -> Any:
        current = await self.user_store.load_settings()
        merged = {**current.model_dump(mode="json"), **payload}
        provider_patch = payload.get("provider")
        if isinstance(provider_patch, dict) and not provider_patch.get("api_key") and current.provider is not None:
            merged["provider"] = {**provider_patch, "api_key": current.provider.api_key}
        updated = ReaderSettings.model_validate(merged)
        await self.user_store.save_settings(updated)
        self.last_configuration_error = None
        return public_settings(updated).model_dump(mode="json")

    async def _get_cache_stats(self, payload: dict[str, Any]) -> Any:
        return self.cache.get_stats().model_dump(mode="json")

    async def _clear_cache(self, payload: dict[str, Any]) -> Any:
        await self.cache.clear_all()
        return {"cleared": True}


class LocalTransport:
    def __init__(self, router: MessageRouter) -> None:
        self.router = router

    async def send(self, envelope: MessageEnvelope) -> MessageResponse:
        return await self.router.dispatch(envelope)


class HttpTransport:
    """Page-side transport posting envelopes to the service's /messages endpoint."""

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None, timeout_sec: float = 90.0) -> None:
        self.endpoint = f"{base_url.rstrip('/')}/messages"
        self.timeout_sec = timeout_sec
        self._client = client
        self._owns_client = client is None

    async def send(self, envelope: MessageEnvelope) -> MessageResponse:
        if self._client is None:
            self._client = httpx.AsyncClient()
        resp = await self._client.post(self.endpoint, json=envelope.model_dump(mode="json"), timeout=self.timeout_sec)
        resp.raise_for_status()
        return MessageResponse.model_validate(resp.json())

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
