"""Deterministic scoring for questions that carry an answer key."""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, Optional

from ...models.assessment_session import QuestionType

_LETTERS = "abcdefghijklmnopqrstuvwxyz"
_TRUE_WORDS = {"true", "t", "yes", "y", "1"}
_FALSE_WORDS = {"false", "f", "no", "n", "0"}

OBJECTIVE_TYPES = frozenset(
    {
        QuestionType.MULTIPLE_CHOICE.value,
        QuestionType.MULTIPLE_SELECT.value,
        QuestionType.TRUE_FALSE.value,
        QuestionType.SHORT_ANSWER.value,
    }
)


def _norm(value: Any) -> str:
    return re.sub(r"\s+", " ", str(value if value is not None else "")).strip().lower()


def _resolve_choice(raw: Any, options: Optional[list]) -> str:
    """Map an index, a letter or option text to normalised option text."""
    text = _norm(raw)
    opts = [_norm(o) for o in (options or [])]
    if text in opts:
        return text
    if opts and text.isdigit() and int(text) < len(opts):
        return opts[int(text)]
    if opts and len(text) == 1 and text in _LETTERS[: len(opts)]:
        return opts[_LETTERS.index(text)]
    return text


def _parse_selection(answer_text: str) -> list:
    try:
        parsed = json.loads(answer_text)
        if isinstance(parsed, list):
            return parsed
    except (json.JSONDecodeError, TypeError):
        pass
    return [part for part in re.split(r"[,\n;]", answer_text or "") if part.strip()]


def _parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = _norm(value)
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    return None


def score_multiple_choice(answer_text: str, correct: Any, options: Optional[list]) -> tuple[int, str]:
    chosen = _resolve_choice(answer_text, options)
    expected = _resolve_choice(correct, options)
    if chosen and chosen == expected:
        return 100, "Correct."
    return 0, f"Incorrect. The correct answer is: {correct}."


def score_true_false(answer_text: str, correct: Any) -> tuple[int, str]:
    chosen = _parse_bool(answer_text)
    expected = _parse_bool(correct)
    if chosen is not None and chosen == expected:
        return 100, "Correct."
    return 0, f"Incorrect. The statement is {'true' if expected else 'false'}."


def score_multiple_select(answer_text: str, correct: Iterable[Any], options: Optional[list]) -> tuple[int, str]:
    """Partial credit: correct picks minus wrong picks, floored at zero."""
    expected = {_resolve_choice(c, options) for c in correct}
    chosen = {_resolve_choice(c, options) for c in _parse_selection(answer_text)}
    if not expected:
        return 0, "No answer key available."
    hits = len(chosen & expected)
    wrong = len(chosen - expected)
    score = round(100 * max(0, hits - wrong) / len(expected))
    return score, f"{hits} of {len(expected)} correct options selected, {wrong} incorrect."


def score_keywords(answer_text: str, keywords: Iterable[str]) -> tuple[int, str]:
    terms = [k for k in (keywords or []) if str(k).strip()]
    if not terms:
        return 0, "No answer key available."
    text = _norm(answer_text)
    found = [k for k in terms if _norm(k) in text]
    score = round(100 * len(found) / len(terms))
    missing = [k for k in terms if k not in found]
    feedback = f"Covered {len(found)} of {len(terms)} key points."
    if missing:
        feedback += " Missing: " + ", ".join(str(m) for m in missing) + "."
    return score, feedback


def score_objective(question: Any, answer_text: str) -> Optional[tuple[int, str, dict]]:
    """Return ``(score, feedback, details)`` or None when no answer key applies."""
    qtype = question.question_type
    correct = question.correct_answer
    if qtype == QuestionType.MULTIPLE_CHOICE.value and correct is not None:
        score, feedback = score_multiple_choice(answer_text, correct, question.options)
        return score, feedback, {"method": "answer_key"}
    if qtype == QuestionType.TRUE_FALSE.value and correct is not None:
        score, feedback = score_true_false(answer_text, correct)
        return score, feedback, {"method": "answer_key"}
    if qtype == QuestionType.MULTIPLE_SELECT.value and isinstance(correct, list) and correct:
        score, feedback = score_multiple_select(answer_text, correct, question.options)
        return score, feedback, {"method": "partial_credit"}
    if qtype == QuestionType.SHORT_ANSWER.value:
        if correct is not None and _norm(answer_text) == _norm(correct):
            return 100, "Correct.", {"method": "answer_key"}
        if question.keywords:
            score, feedback = score_keywords(answer_text, question.keywords)
            return score, feedback, {"method": "keyword_coverage"}
    return None
