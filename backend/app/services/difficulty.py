from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from app.core.settings import Settings
from app.schemas.profile import UserProfile


logger = logging.getLogger(__name__)

WORDLIST_DIR = Path(__file__).resolve().parent.parent / "data" / "vocabulary"
# Ordered from most common to rarest; a word keeps the first tier it appears in.
TIER_FILES: tuple[tuple[str, int], ...] = (
    ("common", 1),
    ("cet4", 3),
    ("cet6", 5),
    ("toefl", 7),
    ("ielts", 7),
    ("gre", 9),
)
UNLISTED_DIFFICULTY = 8
UNLOADED_DIFFICULTY = 5
EASY_WORD_MAX_DIFFICULTY = 3

NON_WORD_RE = re.compile(r"[^\w\s']", re.ASCII)
NUMERIC_RE = re.compile(r"^\d+$")
CJK_CHAR_RE = re.compile(r"[\u4e00-\u9fff]")
COMPLEX_SUFFIX_RE = re.compile(r"(ing|ed|ly|ment)$")

FilterPolicy = Literal["any", "ratio"]


def load_wordlists(directory: Path = WORDLIST_DIR) -> dict[str, int]:
    tiers: dict[str, int] = {}
    for name, difficulty in TIER_FILES:
        path = directory / f"{name}.txt"
        if not path.exists():
            logger.warning("wordlist missing name=%s path=%s", name, path)
            continue
        added = 0
        for line in path.read_text(encoding="utf-8").splitlines():
            word = line.strip().lower()
            if not word or word.startswith("#") or word in tiers:
                continue
            tiers[word] = difficulty
            added += 1
        logger.debug("wordlist loaded name=%s words=%s", name, added)
    return tiers


def tokenize(text: str) -> list[str]:
    cleaned = NON_WORD_RE.sub(" ", text.lower())
    tokens: list[str] = []
    for token in cleaned.split():
        if NUMERIC_RE.match(token) or len(token) <= 2:
            continue
        tokens.append(token)
    return tokens


def cjk_ratio(text: str) -> float:
    stripped = re.sub(r"\s+", "", text)
    if not stripped:
        return 0.0
    return len(CJK_CHAR_RE.findall(stripped)) / len(stripped)


@dataclass
class DifficultyClassifier:
    tiers: dict[str, int] | None = None
    bands: list[tuple[int, int]] = field(default_factory=lambda: [(3000, 2), (5000, 3), (8000, 5)])
    top_threshold: int = 7
    policy: FilterPolicy = "any"
    min_ratio: float = 0.05

    @classmethod
    def from_settings(cls, settings: Settings, tiers: dict[str, int] | None = None) -> DifficultyClassifier:
        return cls(
            tiers=load_wordlists() if tiers is None else tiers,
            bands=list(settings.vocabulary_bands),
            top_threshold=settings.vocabulary_top_threshold,
            policy=settings.filter_policy,
            min_ratio=settings.filter_min_ratio,
        )

    @property
    def loaded(self) -> bool:
        return self.tiers is not None

    def difficulty(self, word: str) -> int:
        if self.tiers is None:
            return UNLOADED_DIFFICULTY
        return self.tiers.get(word.strip().lower(), UNLISTED_DIFFICULTY)

    def is_easy_word(self, word: str, threshold: int = EASY_WORD_MAX_DIFFICULTY) -> bool:
        return self.difficulty(word) <= threshold

    def frequency_rank(self, word: str) -> int:
        return self.difficulty(word) * 1000

    def threshold_for(self, vocabulary_size: int) -> int:
        for upper, threshold in self.bands:
            if vocabulary_size < upper:
                return threshold
        return self.top_threshold

    def flaggable_words(self, text: str, vocabulary_size: int) -> list[str]:
        threshold = self.threshold_for(vocabulary_size)
        return [token for token in tokenize(text) if self.difficulty(token) >= threshold]

    def has_potential_unknown_words(self, text: str, vocabulary_size: int) -> bool:
        if self.tiers is None or not text.strip():
            return True
        tokens = tokenize(text)
        if not tokens:
            return False

        threshold = self.threshold_for(vocabulary_size)
        flagged = sum(1 for token in tokens if self.difficulty(token) >= threshold)
        if self.policy == "ratio":
            return flagged / len(tokens) >= self.min_ratio
        return flagged >= 1

    def estimate_word_difficulty(self, word: str, profile: UserProfile | None = None) -> int:
        normalized = word.strip().lower()
        if profile is not None:
            if normalized in profile.known_words:
                return 1
            if normalized in profile.unknown_words:
                return 10

        difficulty = self.difficulty(normalized)
        if len(normalized) <= 3 and difficulty > 3:
            difficulty -= 2
        elif len(normalized) > 10:
            difficulty += -1 if COMPLEX_SUFFIX_RE.search(normalized) else 1
        return max(1, min(10, difficulty))
