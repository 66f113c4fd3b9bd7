from __future__ import annotations

import json
import re

import httpx
import pytest

from app.core.container import Services, build_services
from app.core.settings import Settings


COMMON_TIERS: dict[str, int] = {
    word: 1
    for word in (
        "the people were there with their family and friends this morning "
        "they walked into city after work because water was cold that day "
        "every child read book school house"
    ).split()
}
COMMON_TIERS.update({"paradigm": 7, "resilient": 5, "ubiquitous": 7, "sycophant": 9, "ability": 3})

PARAGRAPH_RE = re.compile(r"^\[PARA_(\d+)\]\n(.*)$", re.MULTILINE)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLLM:
    """Chat-completions endpoint that glosses the longest word of every [PARA_n] paragraph."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.prompts: list[str] = []
        self.skip_ids: set[int] = set()
        self.raw_reply: str | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        prompt = json.loads(request.content)["messages"][-1]["content"]
        self.prompts.append(prompt)
        if self.raw_reply is not None:
            return httpx.Response(200, text=self.raw_reply)

        entries = []
        for raw_id, text in PARAGRAPH_RE.findall(prompt):
            idx = int(raw_id)
            if idx in self.skip_ids:
                continue
            word = max(text.split(), key=len).strip(".,")
            start = text.find(word)
            entries.append(
                {
                    "id": idx,
                    "words": [{"original": word, "translation": f"译:{word}", "position": [start, start + len(word)], "difficulty": 7}],
                    "fullText": f"译文:{text}",
                }
            )
        content = json.dumps({"paragraphs": entries}, ensure_ascii=False)
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})

    def paragraphs(self, call: int = -1) -> list[str]:
        return [text for _, text in PARAGRAPH_RE.findall(self.prompts[call])]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        storage_backend="memory",
        provider_api_key=None,
        retry_initial_delay_sec=0.0,
        retry_max_delay_sec=0.0,
        debounce_delay_sec=0.01,
        cache_persist_delay_sec=0.01,
    )


@pytest.fixture
def configured_settings(settings: Settings) -> Settings:
    return settings.model_copy(update={"provider_api_key": "sk-test-key", "provider_base_url": "https://llm.test/v1"})


@pytest.fixture
def tiers() -> dict[str, int]:
    return dict(COMMON_TIERS)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def make_services(tiers, clock, llm):
    def _make(settings: Settings) -> Services:
        client = httpx.AsyncClient(transport=httpx.MockTransport(llm))
        return build_services(settings, http_client=client, tiers=tiers, clock=clock)

    return _make


@pytest.fixture
def services(make_services, configured_settings) -> Services:
    return make_services(configured_settings)
