from __future__ import annotations

import asyncio
import importlib.util
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.settings import Settings
from app.services.retry import exponential_delay, retry_on, retry_with_backoff


SYSTEM_PROMPT = "You are an English learning assistant. Always respond with valid JSON."
DEFAULT_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
}
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 4096
_HTTP2_AVAILABLE = importlib.util.find_spec("h2") is not None
logger = logging.getLogger(__name__)


@dataclass
class ProviderRuntime:
    id: str
    model: str
    api_key: str
    base_url: str | None = None
    api_format: str = "openai"
    timeout_sec: int = 60


class TranslationError(RuntimeError):
    pass


class ConfigurationError(TranslationError):
    pass


class TransientProviderError(TranslationError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(TranslationError):
    pass


def validate_runtime(provider: ProviderRuntime) -> None:
    if provider.api_format not in DEFAULT_BASE_URLS:
        raise ConfigurationError(f"unsupported api format: {provider.api_format}")
    if not provider.api_key or not provider.api_key.strip():
        raise ConfigurationError(f"missing API key for provider={provider.id}")
    if not provider.model or not provider.model.strip():
        raise ConfigurationError(f"missing model for provider={provider.id}")
    if provider.base_url and not provider.base_url.startswith(("http://", "https://")):
        raise ConfigurationError(f"invalid base url for provider={provider.id}: {provider.base_url}")


def _format_http_error(resp: httpx.Response) -> str:
    detail = ""
    try:
        data = resp.json()
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict):
                detail = str(err.get("message") or err.get("code") or "")
            if not detail:
                detail = str(data.get("message") or "")
        elif data is not None:
            detail = str(data)
    except ValueError:
        detail = resp.text.strip()

    detail = detail.strip()
    if detail:
        return f"HTTP {resp.status_code}: {detail}"
    return f"HTTP {resp.status_code}"


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.status_code < 400:
        return
    message = _format_http_error(resp)
    if resp.status_code in (401, 403, 404):
        raise ConfigurationError(message)
    if resp.status_code == 429 or resp.status_code >= 500:
        raise TransientProviderError(message, status_code=resp.status_code)
    raise TranslationError(message)


def _text_from_parts(content: Any) -> str:
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "\n".join(parts)
    return content if isinstance(content, str) else ""


class ProviderClient:
    """Sends one prompt to a chat-style provider and returns the reply text."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        max_attempts: int = 4,
        initial_delay_sec: float = 1.5,
        backoff_multiplier: float = 2.0,
        max_delay_sec: float = 20.0,
        temperature: float = 0.3,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self.max_attempts = max_attempts
        self.delay = exponential_delay(initial_delay_sec, backoff_multiplier, max_delay_sec)
        self.temperature = temperature
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient | None = None) -> ProviderClient:
        return cls(
            client,
            max_attempts=settings.retry_max_attempts,
            initial_delay_sec=settings.retry_initial_delay_sec,
            backoff_multiplier=settings.retry_backoff_multiplier,
            max_delay_sec=settings.retry_max_delay_sec,
            temperature=settings.translation_temperature,
        )

    async def call(self, prompt: str, provider: ProviderRuntime) -> str:
        validate_runtime(provider)
        return await retry_with_backoff(
            lambda: self._call_once(prompt, provider),
            should_retry=retry_on(TransientProviderError, max_attempts=self.max_attempts),
            delay=self.delay,
            sleep=self.sleep,
            label=f"provider call provider={provider.id}",
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _call_once(self, prompt: str, provider: ProviderRuntime) -> str:
        if provider.api_format == "anthropic":
            content = await self._anthropic_messages(prompt, provider)
        else:
            content = await self._chat_completion(prompt, provider)
        if not content.strip():
            raise TransientProviderError("empty translation response")
        return content.strip()

    async def _chat_completion(self, prompt: str, provider: ProviderRuntime) -> str:
        base_url = (provider.base_url or DEFAULT_BASE_URLS["openai"]).rstrip("/")
        payload = {
            "model": provider.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {provider.api_key}",
            "Content-Type": "application/json",
        }
        data = await self._post(f"{base_url}/chat/completions", payload, headers, provider.timeout_sec)
        choices = data.get("choices")
        if not choices:
            return ""
        if not isinstance(choices, list) or not isinstance(choices[0], dict):
            raise MalformedResponseError("chat completion has no usable choices")
        message = choices[0].get("message")
        if not isinstance(message, dict):
            raise MalformedResponseError("chat completion choice has no message")
        return _text_from_parts(message.get("content"))

    async def _anthropic_messages(self, prompt: str, provider: ProviderRuntime) -> str:
        base_url = (provider.base_url or DEFAULT_BASE_URLS["anthropic"]).rstrip("/")
        payload = {
            "model": provider.model,
            "max_tokens": ANTHROPIC_MAX_TOKENS,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
        }
        headers = {
            "x-api-key": provider.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        data = await self._post(f"{base_url}/messages", payload, headers, provider.timeout_sec)
        content = data.get("content")
        if not isinstance(content, list):
            raise MalformedResponseError("anthropic reply has no content blocks")
        return _text_from_parts(content)

    async def _post(self, endpoint: str, payload: dict[str, Any], headers: dict[str, str], timeout: float) -> dict[str, Any]:
        client = self._get_client()
        try:
            resp = await client.post(endpoint, json=payload, headers=headers, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise TransientProviderError(f"provider timed out after {timeout}s") from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(f"provider transport error: {exc}") from exc

        _raise_for_status(resp)
        try:
            data = resp.json()
        except ValueError as exc:
            raise MalformedResponseError("provider returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise MalformedResponseError("provider returned an unexpected body shape")
        return data

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                # httpx requires optional dependency h2 for HTTP/2.
                http2=_HTTP2_AVAILABLE,
                limits=httpx.Limits(max_connections=16, max_keepalive_connections=8),
            )
        return self._client
