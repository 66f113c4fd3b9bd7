from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from app.services.provider import (
    SYSTEM_PROMPT,
    ConfigurationError,
    MalformedResponseError,
    ProviderClient,
    ProviderRuntime,
    TransientProviderError,
    TranslationError,
    validate_runtime,
)


REPLY = '{"paragraphs": [{"id": 0, "words": []}]}'


def openai_body(content: str = REPLY) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class ScriptedProvider:
    """Replays queued responses and records every request it sees."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


async def no_sleep(_seconds: float) -> None:
    return None


def make_client(handler: ScriptedProvider, **kwargs) -> ProviderClient:
    kwargs.setdefault("max_attempts", 4)
    return ProviderClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)), sleep=no_sleep, **kwargs)


def runtime(**overrides) -> ProviderRuntime:
    values = {"id": "openai", "model": "gpt-4o-mini", "api_key": "sk-test-key", "base_url": "https://llm.test/v1"}
    values.update(overrides)
    return ProviderRuntime(**values)


class TestValidateRuntime:
    def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            validate_runtime(runtime(api_key="  "))

    def test_bad_base_url(self):
        with pytest.raises(ConfigurationError):
            validate_runtime(runtime(base_url="llm.test"))

    def test_unknown_format(self):
        with pytest.raises(ConfigurationError):
            validate_runtime(runtime(api_format="gopher"))


class TestProviderClient:
    def test_chat_completion_request_shape(self):
        handler = ScriptedProvider(httpx.Response(200, json=openai_body()))
        client = make_client(handler)

        reply = asyncio.run(client.call("translate this", runtime()))

        assert reply == REPLY
        request = handler.requests[0]
        assert str(request.url) == "https://llm.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test-key"
        body = json.loads(request.content)
        assert body["model"] == "gpt-4o-mini"
        assert body["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert body["messages"][1]["content"] == "translate this"
        assert body["response_format"] == {"type": "json_object"}

    def test_server_errors_are_retried(self):
        handler = ScriptedProvider(
            httpx.Response(503, json={"error": {"message": "overloaded"}}),
            httpx.Response(429, text="slow down"),
            httpx.Response(200, json=openai_body()),
        )
        reply = asyncio.run(make_client(handler).call("p", runtime()))
        assert reply == REPLY
        assert len(handler.requests) == 3

    def test_retry_budget_is_bounded(self):
        handler = ScriptedProvider(httpx.Response(500, json={"error": {"message": "boom"}}))
        with pytest.raises(TransientProviderError) as exc_info:
            asyncio.run(make_client(handler, max_attempts=3).call("p", runtime()))
        assert exc_info.value.status_code == 500
        assert "boom" in str(exc_info.value)
        assert len(handler.requests) == 3

    def test_auth_failure_is_not_retried(self):
        handler = ScriptedProvider(httpx.Response(401, json={"error": {"message": "bad key"}}))
        with pytest.raises(ConfigurationError):
            asyncio.run(make_client(handler).call("p", runtime()))
        assert len(handler.requests) == 1

    def test_client_error_is_not_retried(self):
        handler = ScriptedProvider(httpx.Response(400, json={"message": "bad request"}))
        with pytest.raises(TranslationError) as exc_info:
            asyncio.run(make_client(handler).call("p", runtime()))
        assert not isinstance(exc_info.value, (TransientProviderError, ConfigurationError))
        assert len(handler.requests) == 1

    def test_missing_key_never_reaches_the_network(self):
        handler = ScriptedProvider(httpx.Response(200, json=openai_body()))
        with pytest.raises(ConfigurationError):
            asyncio.run(make_client(handler).call("p", runtime(api_key="")))
        assert handler.requests == []

    def test_timeouts_are_retried(self):
        request = httpx.Request("POST", "https://llm.test/v1/chat/completions")
        handler = ScriptedProvider(
            httpx.ReadTimeout("slow", request=request),
            httpx.Response(200, json=openai_body()),
        )
        assert asyncio.run(make_client(handler).call("p", runtime())) == REPLY
        assert len(handler.requests) == 2

    def test_empty_content_counts_as_transient(self):
        handler = ScriptedProvider(httpx.Response(200, json=openai_body("   ")))
        with pytest.raises(TransientProviderError):
            asyncio.run(make_client(handler, max_attempts=2).call("p", runtime()))
        assert len(handler.requests) == 2

    def test_non_json_body_is_malformed(self):
        handler = ScriptedProvider(httpx.Response(200, text="<html>gateway</html>"))
        with pytest.raises(MalformedResponseError):
            asyncio.run(make_client(handler).call("p", runtime()))
        assert len(handler.requests) == 1

    @pytest.mark.parametrize(
        "body",
        [
            {"choices": [{"message": None}]},
            {"choices": ["not-a-choice"]},
            {"choices": {"message": {"content": REPLY}}},
        ],
    )
    def test_chat_reply_without_a_message_is_malformed(self, body):
        handler = ScriptedProvider(httpx.Response(200, json=body))
        with pytest.raises(MalformedResponseError):
            asyncio.run(make_client(handler).call("p", runtime()))
        assert len(handler.requests) == 1

    def test_anthropic_reply_without_content_blocks_is_malformed(self):
        handler = ScriptedProvider(httpx.Response(200, json={"content": None, "role": "assistant"}))
        provider = runtime(id="anthropic", api_format="anthropic", model="claude-test")
        with pytest.raises(MalformedResponseError):
            asyncio.run(make_client(handler).call("p", provider))
        assert len(handler.requests) == 1

    def test_anthropic_format(self):
        handler = ScriptedProvider(
            httpx.Response(200, json={"content": [{"type": "text", "text": REPLY}], "role": "assistant"})
        )
        provider = runtime(id="anthropic", api_format="anthropic", model="claude-test", base_url=None)

        reply = asyncio.run(make_client(handler).call("p", provider))

        assert reply == REPLY
        request = handler.requests[0]
        assert str(request.url) == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "sk-test-key"
        assert "anthropic-version" in request.headers
        body = json.loads(request.content)
        assert body["system"] == SYSTEM_PROMPT
        assert body["messages"] == [{"role": "user", "content": "p"}]
