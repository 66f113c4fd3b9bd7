from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from app.schemas.profile import ExamType


MessageType = Literal[
    "TRANSLATE_TEXT",
    "BATCH_TRANSLATE_TEXT",
    "MARK_WORD_KNOWN",
    "MARK_WORD_UNKNOWN",
    "GET_VOCABULARY",
    "ADD_TO_VOCABULARY",
    "REMOVE_FROM_VOCABULARY",
    "GET_USER_PROFILE",
    "UPDATE_USER_PROFILE",
    "INITIALIZE_PROFILE",
    "GET_QUIZ",
    "SUBMIT_QUIZ",
    "SHOULD_REASSESS",
    "GET_SETTINGS",
    "UPDATE_SETTINGS",
    "GET_CACHE_STATS",
    "CLEAR_CACHE",
]


class MessageEnvelope(BaseModel):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None


class MarkWordPayload(BaseModel):
    word: str = Field(min_length=1)
    difficulty: int | None = Field(default=None, ge=1, le=10)
    context: str = ""
    translation: str = ""


class VocabularyWordPayload(BaseModel):
    word: str = Field(min_length=1)


class AddVocabularyPayload(BaseModel):
    word: str = Field(min_length=1)
    context: str = ""
    translation: str = ""


class InitializeProfilePayload(BaseModel):
    exam_type: ExamType
    exam_score: float | None = None


class SubmitQuizPayload(BaseModel):
    answers: list[int]
