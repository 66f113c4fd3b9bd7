from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from app.schemas.translation import TranslatedWord, TranslationMode, TranslationResult


PARA_MARKER_RE = re.compile(r"(?m)^\s*\[PARA_(\d+)\]\s*")
PARA_ID_RE = re.compile(r"(\d+)")
logger = logging.getLogger(__name__)

MODE_INSTRUCTIONS: dict[str, str] = {
    "inline-only": (
        "For each paragraph list only the words and phrases this reader probably does not know, "
        "with a short Chinese translation. Leave fullText empty."
    ),
    "bilingual": (
        "For each paragraph list the words and phrases this reader probably does not know, "
        "and give a complete Chinese translation in fullText."
    ),
    "full-translate": (
        "For each paragraph give a complete Chinese translation in fullText, split difficult "
        "sentences into sentences with a short grammarNote, and list notable grammarPoints."
    ),
}

RESPONSE_SHAPE = (
    '{"paragraphs": [{"id": 0, "fullText": "...", '
    '"words": [{"original": "...", "translation": "...", "position": [start, end], "difficulty": 1-10, "isPhrase": false}], '
    '"sentences": [{"original": "...", "translation": "...", "grammarNote": "..."}], '
    '"grammarPoints": [{"original": "...", "explanation": "...", "type": "...", "position": [start, end]}]}]}'
)


def build_batch_prompt(
    texts: list[str],
    *,
    vocabulary_size: int,
    exam_type: str,
    mode: TranslationMode,
    context: str = "",
) -> str:
    paragraphs = "\n\n".join(f"[PARA_{idx}]\n{normalize_text_for_prompt(text)}" for idx, text in enumerate(texts))
    lines = [
        f"The reader's estimated English vocabulary is about {vocabulary_size} words (exam level: {exam_type}).",
        MODE_INSTRUCTIONS.get(mode, MODE_INSTRUCTIONS["inline-only"]),
        f"There are {len(texts)} paragraphs, each introduced by a [PARA_n] marker.",
        "Positions are character offsets inside that paragraph's text.",
        f"Return one JSON object, with one entry per paragraph and id equal to n: {RESPONSE_SHAPE}",
        "",
        paragraphs,
    ]
    if context.strip():
        lines += ["", f"Surrounding context, for disambiguation only: {normalize_text_for_prompt(context)}"]
    return "\n".join(lines)


def normalize_text_for_prompt(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _strip_code_fence(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)
    return text.strip()


def _extract_json_candidates(raw: str) -> list[str]:
    text = _strip_code_fence(raw)
    candidates = [text]

    object_match = re.search(r"\{[\s\S]*\}", text)
    if object_match:
        candidates.append(object_match.group(0))

    dedup: list[str] = []
    for item in candidates:
        if item and item not in dedup:
            dedup.append(item)
    return dedup


def _parse_paragraph_entries(raw: str) -> list[Any] | None:
    for candidate in _extract_json_candidates(raw):
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict) and isinstance(parsed.get("paragraphs"), list):
            return parsed["paragraphs"]
        if isinstance(parsed, list):
            return parsed
    return _parse_marked_output(raw)


def _parse_marked_output(raw: str) -> list[Any] | None:
    """Fallback for replies that echo the [PARA_n] markers with one JSON object after each."""
    text = _strip_code_fence(raw)
    matches = list(PARA_MARKER_RE.finditer(text))
    if not matches:
        return None

    entries: list[Any] = []
    for idx, match in enumerate(matches):
        start = match.end()
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(text)
        chunk = text[start:end].strip()
        try:
            body = json.loads(chunk)
        except ValueError:
            continue
        if isinstance(body, dict):
            entries.append({**body, "id": int(match.group(1))})
    return entries or None


def _entry_index(entry: Any) -> int | None:
    if not isinstance(entry, dict):
        return None
    raw_id = entry.get("id")
    if isinstance(raw_id, bool):
        return None
    if isinstance(raw_id, int):
        return raw_id
    if isinstance(raw_id, str):
        match = PARA_ID_RE.search(raw_id)
        if match:
            return int(match.group(1))
    return None


def _validate_entry(entry: dict[str, Any], index: int) -> TranslationResult | None:
    words = []
    for item in entry.get("words") or []:
        try:
            words.append(TranslatedWord.model_validate(item))
        except ValidationError:
            logger.debug("dropping invalid word entry paragraph=%s item=%r", index, item)
    body = {key: value for key, value in entry.items() if key not in ("id", "words", "cached")}
    try:
        result = TranslationResult.model_validate(body)
    except ValidationError as exc:
        logger.warning("invalid paragraph entry paragraph=%s errors=%s", index, exc.errors()[:3])
        return None
    result.words = words
    return result


def parse_batch_response(raw: str, expected_size: int) -> list[TranslationResult | None]:
    """Split one provider reply back into `expected_size` per-paragraph results by id.

    A slot is None when the reply omitted that paragraph or its entry was invalid.
    Never raises on malformed input.
    """
    results: list[TranslationResult | None] = [None] * expected_size
    entries = _parse_paragraph_entries(raw)
    if entries is None:
        logger.warning("batch response parse failed expected=%s excerpt=%r", expected_size, raw[:200])
        return results

    extra_ids: list[Any] = []
    for entry in entries:
        index = _entry_index(entry)
        if index is None or not 0 <= index < expected_size:
            extra_ids.append(entry.get("id") if isinstance(entry, dict) else entry)
            continue
        if results[index] is not None:
            logger.warning("duplicate paragraph id in batch response id=%s; keeping first", index)
            continue
        results[index] = _validate_entry(entry, index)

    missing_ids = [idx for idx, item in enumerate(results) if item is None]
    if missing_ids:
        logger.warning("batch response missing paragraphs expected=%s missing=%s", expected_size, missing_ids)
    if extra_ids:
        logger.warning("batch response contained unknown paragraph ids=%s", extra_ids)
    return results
