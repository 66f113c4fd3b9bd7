from __future__ import annotations

import asyncio

import pytest

from app.schemas.profile import ProviderConfigIn, ReaderSettings
from app.schemas.translation import BatchRequest, UnitRequest
from app.services.fingerprint_cache import fingerprint
from app.services.provider import ConfigurationError


HARD_A = "The people were there with their ubiquitous family this morning."
HARD_B = "They walked into the city after work because the paradigm was cold."
EASY = "The people were there with their family and friends this morning."


def batch(*pairs, mode="inline-only") -> BatchRequest:
    return BatchRequest(units=[UnitRequest(id=unit_id, text=text) for unit_id, text in pairs], mode=mode)


class TestTranslateBatch:
    def test_repeat_text_in_later_batch_is_served_from_cache(self, services, llm):
        async def scenario():
            first = await services.coordinator.translate_batch(batch(("p1", HARD_A)))
            second = await services.coordinator.translate_batch(batch(("p7", HARD_A), ("p8", HARD_B)))
            return first, second

        first, second = asyncio.run(scenario())

        assert first.provider_call_count == 1
        assert first.cache_hit_count == 0
        assert second.provider_call_count == 1
        assert second.cache_hit_count == 1
        assert [item.id for item in second.results] == ["p7", "p8"]
        assert second.results[0].cached is True
        assert second.results[0].result.words[0].original == "ubiquitous"
        assert second.results[1].result.words[0].original == "paradigm"
        assert len(llm.requests) == 2
        assert llm.paragraphs() == [HARD_B]

    def test_duplicate_text_in_one_batch_is_sent_once(self, services, llm):
        response = asyncio.run(services.coordinator.translate_batch(batch(("p1", HARD_A), ("p2", HARD_A))))

        assert response.provider_call_count == 1
        assert response.cache_hit_count == 0
        assert llm.paragraphs() == [HARD_A]
        assert "[PARA_1]" not in llm.prompts[0]
        assert response.results[0].result == response.results[1].result
        assert not response.results[0].result.is_empty

    def test_easy_paragraphs_skip_the_provider_and_are_not_cached(self, services, llm):
        response = asyncio.run(services.coordinator.translate_batch(batch(("p1", EASY), ("p2", HARD_B))))

        assert response.provider_call_count == 1
        assert llm.paragraphs() == [HARD_B]
        assert response.results[0].result.is_empty
        assert fingerprint(EASY, "inline-only") not in services.cache
        assert fingerprint(HARD_B, "inline-only") in services.cache

    def test_all_easy_batch_makes_no_call(self, services, llm):
        response = asyncio.run(services.coordinator.translate_batch(batch(("p1", EASY))))
        assert response.provider_call_count == 0
        assert llm.requests == []

    def test_numeric_paragraph_makes_no_call(self, services, llm):
        figures = "2019 2020 2021 2022 2023 12 34 56 78 90 to be or 1000 2000 3000"
        response = asyncio.run(services.coordinator.translate_batch(batch(("p1", figures))))
        assert response.provider_call_count == 0
        assert response.results[0].result.is_empty
        assert llm.requests == []

    def test_mostly_chinese_text_is_skipped(self, services, llm):
        response = asyncio.run(services.coordinator.translate_batch(batch(("p1", "这是一个中文段落 with ubiquitous"))))
        assert response.provider_call_count == 0
        assert response.results[0].result.is_empty

    def test_missing_entry_degrades_to_empty_and_is_retried_later(self, services, llm):
        llm.skip_ids = {1}

        async def scenario():
            first = await services.coordinator.translate_batch(batch(("p1", HARD_A), ("p2", HARD_B)))
            llm.skip_ids = set()
            second = await services.coordinator.translate_batch(batch(("p2", HARD_B)))
            return first, second

        first, second = asyncio.run(scenario())

        assert not first.results[0].result.is_empty
        assert first.results[1].result.is_empty
        assert second.cache_hit_count == 0
        assert second.provider_call_count == 1
        assert llm.paragraphs() == [HARD_B]
        assert not second.results[0].result.is_empty

    def test_unparseable_reply_degrades_to_empty(self, services, llm):
        llm.raw_reply = "<html>bad gateway</html>"
        response = asyncio.run(services.coordinator.translate_batch(batch(("p1", HARD_A))))
        assert response.provider_call_count == 1
        assert response.results[0].result.is_empty
        assert len(services.cache) == 0

    def test_modes_are_cached_separately(self, services, llm):
        async def scenario():
            await services.coordinator.translate_batch(batch(("p1", HARD_A)))
            return await services.coordinator.translate_batch(batch(("p1", HARD_A), mode="bilingual"))

        response = asyncio.run(scenario())
        assert response.cache_hit_count == 0
        assert len(llm.requests) == 2


class TestProviderResolution:
    def test_missing_credentials_raise(self, make_services, settings, llm):
        services = make_services(settings)
        with pytest.raises(ConfigurationError):
            asyncio.run(services.coordinator.translate_batch(batch(("p1", HARD_A))))
        assert llm.requests == []

    def test_reader_settings_override_environment(self, make_services, settings, llm):
        services = make_services(settings)
        override = ReaderSettings(
            provider=ProviderConfigIn(id="custom", model="local-model", api_key="sk-user-key-123", base_url="https://other.test/v1")
        )

        async def scenario():
            await services.user_store.save_settings(override)
            return await services.coordinator.translate_batch(batch(("p1", HARD_A)))

        response = asyncio.run(scenario())

        assert response.provider_call_count == 1
        request = llm.requests[0]
        assert request.url.host == "other.test"
        assert request.headers["Authorization"] == "Bearer sk-user-key-123"
