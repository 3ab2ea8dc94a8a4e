"""Candidate-facing session routes: thin handlers that delegate to the orchestrator."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ...components.provisioning.service import SessionConfig
from ...components.sessions.repository import serialize_question, serialize_session
from ...components.sessions.service import SessionOrchestrator
from ...deps import get_current_user_id, get_orchestrator
from ...platform.database import get_db
from ...schemas.session import AnswerSubmit, SessionComplete, SessionCreate, ViolationReport

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_session(
    data: SessionCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    session = orchestrator.create(
        db,
        user_id,
        SessionConfig(
            kind=data.kind.value,
            category=data.category.value,
            difficulty=data.difficulty.value,
            question_count=data.question_count,
            duration_seconds=data.duration_seconds,
            role=data.role,
            company=data.company,
            language=data.language,
            seed=data.seed,
        ),
    )
    return serialize_session(session)


@router.get("")
def list_sessions(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    sessions = orchestrator.list_sessions(db, user_id, limit=limit, offset=offset)
    return [serialize_session(s, include_questions=False) for s in sessions]


@router.get("/{session_id}")
def get_session(
    session_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    return serialize_session(orchestrator.get_session(db, session_id, user_id))


@router.get("/{session_id}/questions/{question_id}")
def get_question(
    session_id: str,
    question_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    session, question = orchestrator.get_question(db, session_id, user_id, question_id)
    return serialize_question(question, reveal=session.is_terminal)


@router.get("/{session_id}/time")
def get_time_remaining(
    session_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.time_remaining(db, session_id, user_id)


@router.post("/{session_id}/answers")
def submit_answer(
    session_id: str,
    data: AnswerSubmit,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.submit_answer(
        db,
        session_id,
        user_id,
        data.question_id,
        answer_text=data.answer_text,
        code=data.code,
        time_spent_seconds=data.time_spent_seconds,
    )


@router.post("/{session_id}/violations")
def report_violation(
    session_id: str,
    data: ViolationReport,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.report_violation(db, session_id, user_id, data.violation_type.value, data.detail)


@router.post("/{session_id}/complete")
def complete_session(
    session_id: str,
    data: SessionComplete | None = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    final_submission = bool(data.final_submission) if data else False
    return orchestrator.complete(db, session_id, user_id, final_submission=final_submission)


@router.post("/{session_id}/cancel")
def cancel_session(
    session_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.cancel(db, session_id, user_id)
