from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from app.schemas.profile import (
    ExamType,
    QuizQuestion,
    UnknownWordEntry,
    UserProfile,
    UserProfileUpdate,
    VocabularyStats,
)
from app.services.difficulty import DifficultyClassifier
from app.services.user_store import UserStore


logger = logging.getLogger(__name__)

MIN_VOCABULARY = 1000
MAX_VOCABULARY = 15000
MARKING_BASE_RATE = 0.1
MARKING_CONFIDENCE_STEP = 0.01
QUIZ_MIN_VOCABULARY = 2000
QUIZ_VOCABULARY_SPAN = 13000
QUIZ_CONFIDENCE = 0.9
REASSESS_MIN_CONFIDENCE = 0.3
REASSESS_MIN_MARKS = 100
REASSESS_AFTER = timedelta(days=30)

EXAM_VOCABULARY_SIZES: dict[str, int] = {
    "cet4": 4500,
    "cet6": 6000,
    "toefl": 8000,
    "ielts": 7000,
    "gre": 12000,
    "custom": 5000,
}
# (lowest score, highest score, multiplier at lowest score); multiplier reaches 1.0 at the top
EXAM_SCORE_SCALES: dict[str, tuple[float, float, float]] = {
    "cet4": (220, 710, 0.6),
    "cet6": (220, 710, 0.6),
    "toefl": (0, 120, 0.5),
    "ielts": (0, 9, 0.5),
    "gre": (130, 170, 0.5),
}
LEVEL_LABELS: tuple[tuple[int, str], ...] = (
    (3000, "beginner"),
    (5000, "intermediate"),
    (8000, "upper-intermediate"),
    (12000, "advanced"),
)

QUIZ_BATTERY: tuple[QuizQuestion, ...] = (
    QuizQuestion(word="abandon", options=["to give up completely", "to build", "to praise", "to hurry"], correct_index=0, difficulty=3),
    QuizQuestion(word="sophisticated", options=["simple", "highly developed and complex", "dirty", "ancient"], correct_index=1, difficulty=5),
    QuizQuestion(word="ubiquitous", options=["rare", "hidden", "present everywhere", "broken"], correct_index=2, difficulty=7),
    QuizQuestion(word="ephemeral", options=["lasting a very short time", "eternal", "heavy", "loud"], correct_index=0, difficulty=8),
    QuizQuestion(word="benevolent", options=["cruel", "well meaning and kindly", "lazy", "jealous"], correct_index=1, difficulty=6),
    QuizQuestion(word="paradigm", options=["a puzzle", "a pair of coins", "a typical model or pattern", "a paragraph"], correct_index=2, difficulty=7),
    QuizQuestion(word="resilient", options=["fragile", "able to recover quickly", "silent", "resistant to change"], correct_index=1, difficulty=5),
    QuizQuestion(word="pragmatic", options=["dealing with things sensibly", "dramatic", "theoretical", "careless"], correct_index=0, difficulty=6),
    QuizQuestion(word="ambiguous", options=["clear", "ambitious", "open to more than one meaning", "hostile"], correct_index=2, difficulty=5),
    QuizQuestion(word="meticulous", options=["careless", "showing great attention to detail", "tiny", "fearful"], correct_index=1, difficulty=6),
    QuizQuestion(word="eloquent", options=["fluent and persuasive", "elegant in dress", "elderly", "silent"], correct_index=0, difficulty=6),
    QuizQuestion(word="eclectic", options=["electric", "strict", "drawing from diverse sources", "outdated"], correct_index=2, difficulty=7),
    QuizQuestion(word="paradox", options=["a parade", "a seemingly contradictory statement", "a medicine", "a rule"], correct_index=1, difficulty=5),
    QuizQuestion(word="ameliorate", options=["to make better", "to make worse", "to love", "to measure"], correct_index=0, difficulty=8),
    QuizQuestion(word="superfluous", options=["excellent", "fluid", "more than is needed", "superficial"], correct_index=2, difficulty=7),
    QuizQuestion(word="sycophant", options=["a musician", "a servile flatterer", "a sickness", "a critic"], correct_index=1, difficulty=9),
    QuizQuestion(word="recalcitrant", options=["obstinately uncooperative", "calculating", "recovered", "generous"], correct_index=0, difficulty=9),
    QuizQuestion(word="obviate", options=["to make obvious", "to deviate", "to remove a need or difficulty", "to obey"], correct_index=2, difficulty=8),
    QuizQuestion(word="alacrity", options=["alarm", "brisk and cheerful readiness", "sadness", "allergy"], correct_index=1, difficulty=8),
    QuizQuestion(word="perfunctory", options=["done without care or interest", "perfect", "functional", "permanent"], correct_index=0, difficulty=8),
)


def _now() -> datetime:
    return datetime.now(UTC)


def vocabulary_size_for_exam(exam_type: ExamType | str, score: float | None = None) -> int:
    base = EXAM_VOCABULARY_SIZES.get(exam_type, EXAM_VOCABULARY_SIZES["custom"])
    scale = EXAM_SCORE_SCALES.get(exam_type)
    if score is None or scale is None:
        return base
    low, high, floor = scale
    normalized = max(0.0, min(1.0, (score - low) / (high - low)))
    return round(base * (floor + normalized * (1 - floor)))


def level_label(vocabulary_size: int) -> str:
    for upper, label in LEVEL_LABELS:
        if vocabulary_size < upper:
            return label
    return "expert"


def apply_marking(profile: UserProfile, word: str, is_known: bool, difficulty: int) -> None:
    """One evidence point: a known hard word nudges the estimate up, an unknown easy word down."""
    normalized = word.strip().lower()
    expected = difficulty / 10 * MAX_VOCABULARY
    current = profile.estimated_vocabulary_size
    learning_rate = MARKING_BASE_RATE * (1 - profile.confidence)

    adjustment = 0.0
    if (is_known and expected > current) or (not is_known and expected < current):
        adjustment = (expected - current) * learning_rate

    profile.estimated_vocabulary_size = round(max(MIN_VOCABULARY, min(MAX_VOCABULARY, current + adjustment)))
    profile.confidence = min(1.0, profile.confidence + MARKING_CONFIDENCE_STEP)
    profile.marks_since_assessment += 1
    if is_known:
        profile.known_words.add(normalized)
        profile.unknown_words.discard(normalized)
    else:
        profile.unknown_words.add(normalized)
        profile.known_words.discard(normalized)


def score_quiz(answers: Sequence[int], battery: Sequence[QuizQuestion] = QUIZ_BATTERY) -> float:
    if len(answers) != len(battery):
        raise ValueError(f"expected {len(battery)} answers, got {len(answers)}")

    total_weight = 0.0
    earned = 0.0
    for answer, question in zip(answers, battery, strict=True):
        weight = question.difficulty / 10
        total_weight += weight
        if answer == question.correct_index:
            earned += weight
    return earned / total_weight if total_weight else 0.0


def apply_quiz(profile: UserProfile, answers: Sequence[int], now: datetime | None = None) -> float:
    accuracy = score_quiz(answers)
    profile.estimated_vocabulary_size = round(QUIZ_MIN_VOCABULARY + accuracy * QUIZ_VOCABULARY_SPAN)
    profile.confidence = QUIZ_CONFIDENCE
    profile.marks_since_assessment = 0
    profile.last_assessed_at = now or _now()
    return accuracy


def should_reassess(profile: UserProfile, now: datetime | None = None) -> bool:
    if profile.confidence < REASSESS_MIN_CONFIDENCE:
        return True
    if profile.marks_since_assessment <= REASSESS_MIN_MARKS:
        return False
    if profile.last_assessed_at is None:
        return True
    return (now or _now()) - profile.last_assessed_at > REASSESS_AFTER


class VocabularyService:
    """Holds the authoritative in-memory profile; every mutation completes before persisting."""

    def __init__(
        self,
        store: UserStore,
        classifier: DifficultyClassifier,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.store = store
        self.classifier = classifier
        self.clock = clock
        self._profile: UserProfile | None = None

    async def initialize(self) -> UserProfile:
        return await self.current()

    async def current(self) -> UserProfile:
        if self._profile is None:
            loaded = await self.store.load_profile()
            if self._profile is None:
                self._profile = loaded
        return self._profile

    async def mark_word(self, word: str, is_known: bool, difficulty: int | None = None) -> UserProfile:
        profile = await self.current()
        if difficulty is None:
            difficulty = self.classifier.estimate_word_difficulty(word)
        before = profile.estimated_vocabulary_size
        apply_marking(profile, word, is_known, difficulty)
        logger.debug(
            "word marked word=%s known=%s difficulty=%s estimate=%s->%s",
            word,
            is_known,
            difficulty,
            before,
            profile.estimated_vocabulary_size,
        )
        await self.store.save_profile(profile)
        return profile

    async def remove_word(self, word: str) -> UserProfile:
        profile = await self.current()
        normalized = word.strip().lower()
        profile.known_words.discard(normalized)
        profile.unknown_words.discard(normalized)
        await self.store.save_profile(profile)
        notebook = await self.store.load_notebook()
        kept = [entry for entry in notebook if entry.word != normalized]
        if len(kept) != len(notebook):
            await self.store.save_notebook(kept)
        return profile

    async def notebook(self) -> list[UnknownWordEntry]:
        return await self.store.load_notebook()

    async def add_to_notebook(self, word: str, context: str = "", translation: str = "") -> UnknownWordEntry:
        """Record an unknown word with where it was met; re-adding a word replaces its entry."""
        normalized = word.strip().lower()
        entry = UnknownWordEntry(word=normalized, context=context, translation=translation, marked_at=self.clock())
        notebook = [item for item in await self.store.load_notebook() if item.word != normalized]
        notebook.append(entry)
        await self.store.save_notebook(notebook)

        profile = await self.current()
        profile.unknown_words.add(normalized)
        profile.known_words.discard(normalized)
        await self.store.save_profile(profile)
        return entry

    async def update_profile(self, update: UserProfileUpdate) -> UserProfile:
        profile = await self.current()
        merged = {**profile.model_dump(), **update.model_dump(exclude_unset=True)}
        self._profile = UserProfile.model_validate(merged)
        await self.store.save_profile(self._profile, include_words=False)
        return self._profile

    async def initialize_from_exam(self, exam_type: ExamType, exam_score: float | None = None) -> UserProfile:
        await self.current()
        self._profile = UserProfile(
            exam_type=exam_type,
            exam_score=exam_score,
            estimated_vocabulary_size=vocabulary_size_for_exam(exam_type, exam_score),
        )
        await self.store.save_profile(self._profile)
        return self._profile

    async def submit_quiz(self, answers: Sequence[int]) -> UserProfile:
        profile = await self.current()
        accuracy = apply_quiz(profile, answers, now=self.clock())
        logger.info("quiz applied accuracy=%.3f estimate=%s", accuracy, profile.estimated_vocabulary_size)
        await self.store.save_profile(profile, include_words=False)
        return profile

    async def should_reassess(self) -> bool:
        return should_reassess(await self.current(), now=self.clock())

    async def stats(self) -> VocabularyStats:
        profile = await self.current()
        return VocabularyStats(
            estimated_vocabulary_size=profile.estimated_vocabulary_size,
            confidence=profile.confidence,
            level=level_label(profile.estimated_vocabulary_size),
            known_count=len(profile.known_words),
            unknown_count=len(profile.unknown_words),
        )
