"""
Answer scoring and session aggregation.

``AnswerScorer.score`` never raises: collaborator failures are absorbed into
the result with ``degraded``/``needs_review`` markers so a session can always
be completed.
"""

from __future__ import annotations

import logging
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ...models.assessment_session import QuestionType, SessionStatus
from ...platform.config import settings as default_settings
from ...shared.errors import SandboxFault, ScoringDegraded
from ..integrations.claude.service import TextGenerator, parse_score_response
from .code_runner import CodeRunner
from .objective import score_objective

logger = logging.getLogger("assessment_engine.scoring")

SCORING_SYSTEM_PROMPT = (
    "You are an experienced technical interviewer grading a candidate's answer. "
    "Respond ONLY with a JSON object of the form {\"score\": <integer 0-100>, \"feedback\": \"<2-3 sentences>\"}."
)

FEEDBACK_SYSTEM_PROMPT = (
    "You are a supportive interview coach. Write a short, constructive summary "
    "of the candidate's performance in plain text (no markdown, under 120 words)."
)

_CRITERIA = {
    QuestionType.BEHAVIORAL.value: "Use of the STAR structure (situation, task, action, result), specificity, ownership and reflection.",
    QuestionType.SYSTEM_DESIGN.value: "Requirements gathering, component breakdown, data model, scalability, reliability and trade-offs.",
    QuestionType.LONG_ANSWER.value: "Correctness, depth, clarity and use of concrete examples.",
    QuestionType.SHORT_ANSWER.value: "Correctness and precision.",
}
_DEFAULT_CRITERIA = "Correctness, clarity, completeness and communication."


@dataclass
class ScoreResult:
    sub_score: int
    feedback: str
    degraded: bool = False
    needs_review: bool = False
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QuestionSnapshot:
    """Detached copy of a question's immutable content used outside transactions."""

    id: int
    ordinal: int
    prompt: str
    question_type: str
    difficulty: str
    weight: float = 1.0
    test_cases: Optional[list] = None
    sample_answer: Optional[str] = None
    options: Optional[list] = None
    correct_answer: Any = None
    keywords: Optional[list] = None
    entrypoint: Optional[str] = None

    @classmethod
    def from_model(cls, question: Any) -> "QuestionSnapshot":
        return cls(
            id=question.id,
            ordinal=question.ordinal,
            prompt=question.prompt,
            question_type=question.question_type,
            difficulty=question.difficulty,
            weight=float(question.weight if question.weight is not None else 1.0),
            test_cases=list(question.test_cases or []),
            sample_answer=question.sample_answer,
            options=list(question.options) if question.options else None,
            correct_answer=question.correct_answer,
            keywords=list(question.keywords) if question.keywords else None,
            entrypoint=question.entrypoint,
        )


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def aggregate_overall_score(items: Iterable[tuple[Optional[int], float]]) -> int:
    """Weighted mean of ``(sub_score, weight)`` pairs; unscored entries count as 0."""
    total = 0.0
    weights = 0.0
    for sub_score, weight in items:
        w = float(weight if weight is not None else 1.0)
        total += float(sub_score or 0) * w
        weights += w
    if weights <= 0:
        return 0
    return max(0, min(100, round_half_up(total / weights)))


class AnswerScorer:
    def __init__(self, text_generator: TextGenerator, code_runner: CodeRunner, settings_obj: Any = None):
        self.text_generator = text_generator
        self.code_runner = code_runner
        self.settings = settings_obj or default_settings

    def score(self, question: QuestionSnapshot, answer_text: Optional[str], code: Optional[str]) -> ScoreResult:
        if question.question_type == QuestionType.CODING.value:
            return self._score_coding(question, code or answer_text or "")

        objective = score_objective(question, answer_text or "")
        if objective is not None:
            sub_score, feedback, details = objective
            return ScoreResult(sub_score=sub_score, feedback=feedback, details=details)

        return self._score_open_ended(question, answer_text or "")

    # ------------------------------------------------------------------
    # Coding
    # ------------------------------------------------------------------

    def _score_coding(self, question: QuestionSnapshot, code: str) -> ScoreResult:
        if not code.strip():
            return ScoreResult(0, "No code was submitted.", details={"method": "test_cases", "reason": "empty"})

        cases = list(question.test_cases or [])
        if not cases:
            base = int(self.settings.CODING_NO_TEST_CASES_BASE_SCORE)
            return ScoreResult(
                base,
                "This question has no automated test cases; a base score was recorded pending review.",
                needs_review=True,
                details={"method": "test_cases", "reason": "no_test_cases"},
            )

        try:
            outcomes = self.code_runner.run_cases(code, question.entrypoint, cases)
        except SandboxFault as exc:
            logger.error("Code runner failed for question=%s: %s", question.id, exc.message)
            return self._runner_unavailable(cases, exc.context.get("reason") or exc.message)
        except Exception as exc:
            logger.exception("Unexpected code runner failure for question=%s", question.id)
            return self._runner_unavailable(cases, str(exc))

        passed = sum(1 for o in outcomes if o.passed)
        total = len(cases)
        sub_score = round_half_up(100 * passed / total)
        feedback = f"Passed {passed} of {total} test cases."
        first_failure = next((o for o in outcomes if not o.passed), None)
        if first_failure is not None:
            label = first_failure.description or f"case {first_failure.index + 1}"
            reason = first_failure.error or "returned an unexpected value"
            feedback += f" First failure: {label} ({reason})."
        return ScoreResult(
            sub_score,
            feedback,
            details={
                "method": "test_cases",
                "passed": passed,
                "total": total,
                "cases": [o.to_dict() for o in outcomes],
            },
        )

    def _runner_unavailable(self, cases: Sequence[dict], reason: str) -> ScoreResult:
        return ScoreResult(
            0,
            "Your code could not be executed due to a platform problem. It has been flagged for manual review.",
            degraded=True,
            needs_review=True,
            details={"method": "test_cases", "passed": 0, "total": len(cases), "reason": f"runner_unavailable: {reason}"},
        )

    # ------------------------------------------------------------------
    # Open-ended
    # ------------------------------------------------------------------

    def _rubric_prompt(self, question: QuestionSnapshot, answer_text: str) -> str:
        expected = ""
        if question.sample_answer:
            expected = f"\nEXPECTED POINTS (reference answer):\n{question.sample_answer}\n"
        elif question.keywords:
            expected = "\nEXPECTED POINTS:\n- " + "\n- ".join(str(k) for k in question.keywords) + "\n"
        return (
            f"QUESTION ({question.question_type}, {question.difficulty}):\n{question.prompt}\n"
            f"\nGRADING CRITERIA:\n{_CRITERIA.get(question.question_type, _DEFAULT_CRITERIA)}\n"
            f"{expected}"
            f"\nCANDIDATE ANSWER:\n{answer_text}\n"
            "\nScore the answer from 0 to 100 and give brief, specific feedback."
        )

    def _score_open_ended(self, question: QuestionSnapshot, answer_text: str) -> ScoreResult:
        if not answer_text.strip():
            return ScoreResult(0, "No answer was provided.", details={"method": "rubric", "reason": "empty"})
        try:
            raw = self.text_generator.generate(
                self._rubric_prompt(question, answer_text),
                system=SCORING_SYSTEM_PROMPT,
                max_tokens=400,
            )
            parsed = parse_score_response(raw)
            if parsed is None:
                raise ScoringDegraded("Unparseable scoring response", reason="parse_failure")
            score, feedback = parsed
            return ScoreResult(score, feedback or "Answer scored.", details={"method": "rubric"})
        except ScoringDegraded as exc:
            reason = exc.context.get("reason", "parse_failure")
        except Exception as exc:
            logger.warning("Open-ended scoring unavailable for question=%s: %s", question.id, exc)
            reason = "timeout" if isinstance(exc, (TimeoutError, FutureTimeoutError)) else "collaborator_error"
        return ScoreResult(
            int(self.settings.OPEN_ENDED_FALLBACK_SCORE),
            self.settings.OPEN_ENDED_FALLBACK_FEEDBACK,
            degraded=True,
            needs_review=True,
            details={"method": "rubric", "reason": reason},
        )

    # ------------------------------------------------------------------
    # Session feedback
    # ------------------------------------------------------------------

    def overall_feedback(
        self,
        *,
        kind: str,
        role: Optional[str],
        overall_score: int,
        questions: List[Dict[str, Any]],
    ) -> tuple[str, bool]:
        """Narrative summary for a completed session. Returns ``(text, degraded)``."""
        lines = [
            f"Q{q['ordinal']} [{q['question_type']}] score={q.get('sub_score') if q.get('sub_score') is not None else 'unanswered'}: "
            f"{(q.get('feedback') or '').strip()[:300]}"
            for q in questions
        ]
        prompt = (
            f"Session type: {kind}\n"
            f"Target role: {role or 'not specified'}\n"
            f"Overall score: {overall_score}/100\n\n"
            "Per-question results:\n" + "\n".join(lines) + "\n\n"
            "Summarise strengths, the most important areas to improve and one concrete next step."
        )
        try:
            text = (self.text_generator.generate(prompt, system=FEEDBACK_SYSTEM_PROMPT, max_tokens=400) or "").strip()
            if text:
                return text, False
            logger.warning("Overall feedback generation returned empty text")
        except Exception as exc:
            logger.warning("Overall feedback generation unavailable: %s", exc)
        return self.settings.OVERALL_FEEDBACK_FALLBACK, True


def deterministic_summary(status: str, overall_score: int, answered: int, total: int) -> str:
    """Fixed summary for sessions that end without a final submission."""
    if status == SessionStatus.EXPIRED.value:
        opening = "Time ran out before the session was submitted."
    elif status == SessionStatus.TERMINATED_FOR_INTEGRITY.value:
        opening = "The session was ended after repeated integrity violations."
    else:
        opening = "The session ended."
    return (
        f"{opening} {answered} of {total} questions were answered; unanswered questions scored 0. "
        f"Overall score: {overall_score}/100."
    )
