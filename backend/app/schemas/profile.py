from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.translation import TranslationMode


ExamType = Literal["cet4", "cet6", "toefl", "ielts", "gre", "custom"]
ApiFormat = Literal["openai", "anthropic"]


class UserProfile(BaseModel):
    exam_type: ExamType = "cet4"
    exam_score: float | None = 425
    estimated_vocabulary_size: int = 4500
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    known_words: set[str] = Field(default_factory=set)
    unknown_words: set[str] = Field(default_factory=set)
    marks_since_assessment: int = 0
    last_assessed_at: datetime | None = None


class UserProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exam_type: ExamType | None = None
    exam_score: float | None = None
    estimated_vocabulary_size: int | None = Field(default=None, ge=1)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class UnknownWordEntry(BaseModel):
    word: str = Field(min_length=1)
    context: str = ""
    translation: str = ""
    marked_at: datetime
    review_count: int = 0
    last_review_at: datetime | None = None


class ProviderConfigIn(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    api_format: ApiFormat = "openai"
    model: str = Field(min_length=1, max_length=128)
    api_key: str = Field(min_length=8)
    base_url: str | None = None
    timeout_sec: int = Field(default=60, ge=5, le=300)


class ProviderConfigPublic(BaseModel):
    id: str
    api_format: ApiFormat = "openai"
    model: str
    base_url: str | None = None
    timeout_sec: int = 60
    has_api_key: bool = False


class ReaderSettings(BaseModel):
    enabled: bool = True
    translation_mode: TranslationMode = "inline-only"
    show_phonetic: bool = True
    provider: ProviderConfigIn | None = None


class ReaderSettingsPublic(BaseModel):
    enabled: bool
    translation_mode: TranslationMode
    show_phonetic: bool
    provider: ProviderConfigPublic | None = None


class QuizQuestion(BaseModel):
    word: str
    options: list[str]
    correct_index: int
    difficulty: int = Field(ge=1, le=10)


class QuizQuestionPublic(BaseModel):
    index: int
    word: str
    options: list[str]


class VocabularyStats(BaseModel):
    estimated_vocabulary_size: int
    confidence: float
    level: str
    known_count: int
    unknown_count: int
