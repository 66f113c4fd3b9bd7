from __future__ import annotations

import pytest

from app.schemas.profile import UserProfile
from app.services.difficulty import (
    UNLISTED_DIFFICULTY,
    DifficultyClassifier,
    cjk_ratio,
    load_wordlists,
    tokenize,
)


COMMON_SENTENCE = "The people were there with their family and friends this morning"


class TestTokenize:
    def test_drops_numbers_short_tokens_and_punctuation(self):
        """Purely numeric and very short tokens never reach the classifier."""
        assert tokenize("It is 2024, an OK day's work!") == ["day's", "work"]

    def test_lowercases(self):
        assert tokenize("Paradigm SHIFT") == ["paradigm", "shift"]


class TestDifficultyClassifier:
    def test_known_tiers_and_unlisted_default(self, tiers):
        classifier = DifficultyClassifier(tiers=tiers)
        assert classifier.difficulty("the") == 1
        assert classifier.difficulty("  Paradigm ") == 7
        assert classifier.difficulty("zymurgy") == UNLISTED_DIFFICULTY
        assert classifier.frequency_rank("resilient") == 5000

    def test_unloaded_classifier_is_neutral_and_fails_safe(self):
        classifier = DifficultyClassifier(tiers=None)
        assert classifier.difficulty("anything") == 5
        assert classifier.has_potential_unknown_words(COMMON_SENTENCE, 15000) is True

    def test_is_easy_word(self, tiers):
        classifier = DifficultyClassifier(tiers=tiers)
        assert classifier.is_easy_word("people")
        assert classifier.is_easy_word("ability")
        assert not classifier.is_easy_word("resilient")

    @pytest.mark.parametrize(
        ("vocabulary", "threshold"),
        [(1500, 2), (2999, 2), (3000, 3), (4999, 3), (5000, 5), (7999, 5), (8000, 7), (14000, 7)],
    )
    def test_threshold_bands(self, vocabulary, threshold):
        assert DifficultyClassifier(tiers={}).threshold_for(vocabulary) == threshold

    def test_single_unlisted_word_is_flagged_at_low_vocabulary(self, tiers):
        """One word outside every tier is enough to translate for a 2,000-word reader."""
        classifier = DifficultyClassifier(tiers=tiers)
        text = f"{COMMON_SENTENCE} zymurgy"
        assert classifier.has_potential_unknown_words(text, 2000) is True

    def test_mid_tier_word_flagged_low_but_not_high(self, tiers):
        classifier = DifficultyClassifier(tiers=tiers)
        text = f"{COMMON_SENTENCE} resilient"
        assert classifier.has_potential_unknown_words(text, 2000) is True
        assert classifier.has_potential_unknown_words(text, 9000) is False

    def test_only_common_words_are_not_flagged(self, tiers):
        classifier = DifficultyClassifier(tiers=tiers)
        assert classifier.has_potential_unknown_words(COMMON_SENTENCE, 2000) is False

    def test_text_without_tokens_is_not_flagged(self, tiers):
        classifier = DifficultyClassifier(tiers=tiers)
        assert classifier.has_potential_unknown_words("12 34 a an", 2000) is False
        assert classifier.has_potential_unknown_words("2021 2022 2023 12 34 to be or", 2000) is False

    def test_blank_text_or_unloaded_classifier_fails_safe(self, tiers):
        assert DifficultyClassifier(tiers=tiers).has_potential_unknown_words("   ", 9000) is True
        assert DifficultyClassifier().has_potential_unknown_words("12 34", 9000) is True

    def test_tokenizer_splits_on_non_ascii_letters(self):
        assert tokenize("caf\u00e9 na\u00efve \u4e2d\u6587 resilient") == ["caf", "resilient"]

    def test_ratio_policy_needs_enough_flagged_tokens(self, tiers):
        text = " ".join(["people"] * 20 + ["zymurgy"])
        any_policy = DifficultyClassifier(tiers=tiers, policy="any")
        ratio_policy = DifficultyClassifier(tiers=tiers, policy="ratio", min_ratio=0.05)
        assert any_policy.has_potential_unknown_words(text, 2000) is True
        assert ratio_policy.has_potential_unknown_words(text, 2000) is False
        assert ratio_policy.has_potential_unknown_words(text + " zymology", 2000) is True

    def test_flaggable_words(self, tiers):
        classifier = DifficultyClassifier(tiers=tiers)
        assert classifier.flaggable_words("The resilient paradigm", 6000) == ["resilient", "paradigm"]


class TestEstimateWordDifficulty:
    def test_personal_history_wins(self, tiers):
        classifier = DifficultyClassifier(tiers=tiers)
        profile = UserProfile(known_words={"sycophant"}, unknown_words={"people"})
        assert classifier.estimate_word_difficulty("Sycophant", profile) == 1
        assert classifier.estimate_word_difficulty("people", profile) == 10

    def test_length_adjustments(self, tiers):
        classifier = DifficultyClassifier(tiers=tiers)
        assert classifier.estimate_word_difficulty("zyx") == UNLISTED_DIFFICULTY - 2
        assert classifier.estimate_word_difficulty("overwhelming") == UNLISTED_DIFFICULTY - 1
        assert classifier.estimate_word_difficulty("unfathomable") == UNLISTED_DIFFICULTY + 1
        assert classifier.estimate_word_difficulty("the") == 1


class TestPackagedWordlists:
    def test_tiers_are_disjoint_and_ordered(self):
        tiers = load_wordlists()
        assert tiers["the"] == 1
        assert tiers["ability"] == 3
        assert tiers["paradox"] == 5
        assert tiers["ubiquitous"] == 7
        assert tiers["sycophant"] == 9
        assert all(not word.startswith("#") for word in tiers)


def test_cjk_ratio():
    assert cjk_ratio("") == 0.0
    assert cjk_ratio("plain english") == 0.0
    assert cjk_ratio("你好世界 hello") == pytest.approx(4 / 9)
