from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


TranslationMode = Literal["inline-only", "bilingual", "full-translate"]
TRANSLATION_MODES: tuple[str, ...] = ("inline-only", "bilingual", "full-translate")


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TranslatedWord(_WireModel):
    original: str
    translation: str
    span: tuple[int, int] = Field(default=(0, 0), validation_alias=AliasChoices("span", "position"))
    difficulty: int = 5
    is_phrase: bool = Field(default=False, validation_alias=AliasChoices("is_phrase", "isPhrase"))

    @field_validator("difficulty", mode="before")
    @classmethod
    def _clamp_difficulty(cls, value: Any) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError):
            return 5
        return max(1, min(10, number))


class TranslatedSentence(_WireModel):
    original: str
    translation: str
    grammar_note: str | None = Field(default=None, validation_alias=AliasChoices("grammar_note", "grammarNote"))


class GrammarPoint(_WireModel):
    original: str
    explanation: str
    type: str = "other"
    span: tuple[int, int] = Field(default=(0, 0), validation_alias=AliasChoices("span", "position"))


class TranslationResult(_WireModel):
    words: list[TranslatedWord] = Field(default_factory=list)
    sentences: list[TranslatedSentence] = Field(default_factory=list)
    full_text: str | None = Field(default=None, validation_alias=AliasChoices("full_text", "fullText"))
    grammar_points: list[GrammarPoint] | None = Field(
        default=None, validation_alias=AliasChoices("grammar_points", "grammarPoints")
    )
    cached: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.words and not self.full_text


class UnitRequest(BaseModel):
    id: str = Field(min_length=1)
    text: str
    locator: str = ""


class BatchRequest(BaseModel):
    units: list[UnitRequest]
    mode: TranslationMode = "inline-only"
    source_location: str = ""


class TextTranslationRequest(BaseModel):
    text: str = Field(min_length=1)
    context: str = ""
    mode: TranslationMode = "inline-only"
    source_location: str = ""


class UnitResult(BaseModel):
    id: str
    result: TranslationResult
    cached: bool = False


class BatchResponse(BaseModel):
    results: list[UnitResult] = Field(default_factory=list)
    provider_call_count: int = 0
    cache_hit_count: int = 0


class CacheEntry(BaseModel):
    fingerprint: str
    result: TranslationResult
    mode: TranslationMode
    source_location: str = ""
    created_at: int
    last_accessed_at: int


class CacheRecordEntry(BaseModel):
    result: TranslationResult
    mode: TranslationMode
    source_location: str = ""
    created_at: int
    last_accessed_at: int


class CacheRecord(BaseModel):
    version: int
    entries: dict[str, CacheRecordEntry] = Field(default_factory=dict)


class CacheStats(BaseModel):
    total_entries: int
    memory_usage: int
    oldest_entry: int | None = None
    newest_entry: int | None = None
    hits: int = 0
    misses: int = 0
    evictions: int = 0
