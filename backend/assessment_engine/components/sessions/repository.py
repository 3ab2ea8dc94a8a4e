"""Session DB helpers, timeline events and serialization."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ...models.assessment_session import AssessmentSession, QuestionType, SessionQuestion, SessionStatus
from ...shared.errors import QuestionNotFound, SessionNotFound
from ...shared.utils import utcnow
from .deadline import deadline_for, remaining_seconds
from .integrity import integrity_summary

_CHOICE_TYPES = {
    QuestionType.MULTIPLE_CHOICE.value,
    QuestionType.MULTIPLE_SELECT.value,
    QuestionType.TRUE_FALSE.value,
}


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------

def get_session_for_user(
    db: Session,
    public_id: str,
    user_id: str,
    *,
    for_update: bool = False,
) -> AssessmentSession:
    """Load a session owned by ``user_id``. Foreign sessions look exactly like missing ones."""
    query = db.query(AssessmentSession).filter(AssessmentSession.public_id == public_id)
    if for_update:
        query = query.with_for_update()
    session = query.first()
    if session is None or session.user_id != user_id:
        raise SessionNotFound("Session not found")
    return session


def get_question_in_session(session: AssessmentSession, question_id: int) -> SessionQuestion:
    for question in session.questions:
        if question.id == question_id:
            return question
    raise QuestionNotFound("Question not found in this session", question_id=question_id)


def get_live_session_for_user(db: Session, user_id: str) -> Optional[AssessmentSession]:
    return (
        db.query(AssessmentSession)
        .filter(
            AssessmentSession.user_id == user_id,
            AssessmentSession.status == SessionStatus.IN_PROGRESS,
        )
        .order_by(AssessmentSession.started_at.desc())
        .first()
    )


def list_sessions_for_user(db: Session, user_id: str, *, limit: int = 20, offset: int = 0) -> List[AssessmentSession]:
    return (
        db.query(AssessmentSession)
        .filter(AssessmentSession.user_id == user_id)
        .order_by(AssessmentSession.created_at.desc(), AssessmentSession.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def append_session_timeline_event(
    session: AssessmentSession,
    event_type: str,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """Append a structured lifecycle event to session.timeline."""
    timeline = list(session.timeline or [])
    timeline.append(
        {
            "event_type": event_type,
            "timestamp": utcnow().isoformat(),
            **(payload or {}),
        }
    )
    session.timeline = timeline


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_question(question: SessionQuestion, *, reveal: bool) -> Dict[str, Any]:
    """Question view; answer keys, expected outputs and sample answers only when ``reveal``."""
    data: Dict[str, Any] = {
        "id": question.id,
        "ordinal": question.ordinal,
        "prompt": question.prompt,
        "question_type": question.question_type,
        "difficulty": question.difficulty,
        "weight": question.weight,
        "hints": list(question.hints or []),
        "answered": question.is_answered,
    }
    if question.question_type in _CHOICE_TYPES:
        data["options"] = list(question.options or []) if question.question_type != QuestionType.TRUE_FALSE.value else [True, False]
    if question.question_type == QuestionType.CODING.value:
        data["entrypoint"] = question.entrypoint
        data["examples"] = [
            {"input": case.get("input"), "description": case.get("description")}
            for case in (question.test_cases or [])
        ]

    if question.is_answered:
        data.update(
            {
                "answer_text": question.answer_text,
                "submitted_code": question.submitted_code,
                "time_spent_seconds": question.time_spent_seconds,
                "answered_at": _iso(question.answered_at),
                "sub_score": question.sub_score,
                "feedback": question.feedback,
            }
        )

    if reveal:
        data.update(
            {
                "source": question.source,
                "test_cases": list(question.test_cases or []),
                "sample_answer": question.sample_answer,
                "correct_answer": question.correct_answer,
                "keywords": question.keywords,
                "sub_score": question.sub_score,
                "feedback": question.feedback,
                "scoring_degraded": bool(question.scoring_degraded),
                "needs_review": bool(question.needs_review),
                "scoring_details": question.scoring_details,
            }
        )
    return data


def serialize_result(session: AssessmentSession) -> Dict[str, Any]:
    return {
        "session_id": session.public_id,
        "status": session.status.value,
        "overall_score": session.overall_score,
        "overall_feedback": session.overall_feedback,
        "result_degraded": bool(session.result_degraded),
        "termination_reason": session.termination_reason,
        "completed_at": _iso(session.completed_at),
        "integrity": integrity_summary(session),
        "questions": [
            {
                "id": q.id,
                "ordinal": q.ordinal,
                "question_type": q.question_type,
                "weight": q.weight,
                "answered": q.is_answered,
                "sub_score": q.sub_score,
                "feedback": q.feedback,
                "scoring_degraded": bool(q.scoring_degraded),
                "needs_review": bool(q.needs_review),
            }
            for q in session.questions
        ],
    }


def serialize_session(
    session: AssessmentSession,
    *,
    include_questions: bool = True,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    reveal = session.is_terminal
    deadline = deadline_for(session)
    data: Dict[str, Any] = {
        "id": session.public_id,
        "kind": session.kind,
        "category": session.category,
        "difficulty": session.difficulty,
        "role": session.role,
        "company": session.company,
        "language": session.language,
        "status": session.status.value,
        "duration_seconds": session.duration_seconds,
        "started_at": _iso(session.started_at),
        "deadline": _iso(deadline),
        "time_remaining_seconds": remaining_seconds(session, now) if session.status == SessionStatus.IN_PROGRESS else 0,
        "question_count": len(session.questions),
        "questions_requested": session.questions_requested,
        "provisioning_shortfall": session.provisioning_shortfall or 0,
        "integrity": integrity_summary(session),
        "created_at": _iso(session.created_at),
    }
    if include_questions:
        data["questions"] = [serialize_question(q, reveal=reveal) for q in session.questions]
    if reveal:
        data["result"] = serialize_result(session)
    return data
