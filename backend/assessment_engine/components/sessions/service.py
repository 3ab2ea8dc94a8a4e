"""
Session orchestration: lifecycle, answers, integrity and completion.

Lifecycle is ``created -> in_progress -> {completed | expired |
terminated_for_integrity | cancelled}`` and never moves backwards. Every
mutating operation on a session runs under a per-session lock and re-reads
the row (``FOR UPDATE`` where the database supports it) before deciding.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.assessment_session import (
    AssessmentSession,
    SessionKind,
    SessionQuestion,
    SessionStatus,
)
from ...platform.config import settings as default_settings
from ...platform.request_context import set_session_id
from ...shared.errors import (
    ActiveSessionExists,
    CompletionFailed,
    EntitlementExhausted,
    ProvisioningShortfall,
    ScoringInProgress,
    SessionExpired,
    SessionIncomplete,
    SessionNotActive,
    SessionTerminated,
)
from ...shared.utils import KeyedLockRegistry, ensure_utc, utcnow
from ..entitlements.service import EntitlementGate
from ..provisioning.service import QuestionProvisioner, SessionConfig
from ..scoring.service import AnswerScorer, QuestionSnapshot, aggregate_overall_score, deterministic_summary
from .deadline import deadline_for, elapsed_seconds, is_expired, remaining_seconds
from .integrity import record_violation, remaining_before_termination, should_terminate
from .repository import (
    append_session_timeline_event,
    get_live_session_for_user,
    get_question_in_session,
    get_session_for_user,
    list_sessions_for_user,
    serialize_result,
)

logger = logging.getLogger("assessment_engine.sessions")

_session_locks = KeyedLockRegistry()
_user_locks = KeyedLockRegistry()
_SCORING_POLL_SECONDS = 0.05


def _apply_score(question: SessionQuestion, result: Any) -> None:
    question.sub_score = result.sub_score
    question.feedback = result.feedback
    question.scoring_degraded = result.degraded
    question.needs_review = result.needs_review
    question.scoring_details = result.details
    question.scored_at = utcnow()


def _not_active_error(session: AssessmentSession) -> SessionNotActive:
    status = session.status.value
    if session.status == SessionStatus.EXPIRED:
        return SessionExpired("Session time has expired", status=status)
    if session.status == SessionStatus.TERMINATED_FOR_INTEGRITY:
        return SessionTerminated("Session was terminated after repeated integrity violations", status=status)
    return SessionNotActive("Session is not in progress", status=status)


class SessionOrchestrator:
    def __init__(
        self,
        provisioner: QuestionProvisioner,
        scorer: AnswerScorer,
        entitlements: EntitlementGate,
        settings_obj: Any = None,
    ):
        self.provisioner = provisioner
        self.scorer = scorer
        self.entitlements = entitlements
        self.settings = settings_obj or default_settings

    @property
    def violation_threshold(self) -> int:
        return int(self.settings.INTEGRITY_VIOLATION_THRESHOLD)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(self, db: Session, user_id: str, config: SessionConfig) -> AssessmentSession:
        kind = SessionKind(config.kind).value
        count = max(1, min(int(config.question_count), int(self.settings.MAX_QUESTIONS_PER_SESSION)))
        duration = int(config.duration_seconds or self.settings.default_duration_for(kind))

        with _user_locks.hold(user_id):
            self.expire_overdue_sessions(db, user_id=user_id)

            eligibility = self.entitlements.check_eligibility(db, user_id, kind)
            if not eligibility.allowed:
                raise EntitlementExhausted(
                    "No free sessions or credits remaining. Purchase credits to continue.",
                    requires_payment=True,
                    kind=kind,
                )
            live = get_live_session_for_user(db, user_id)
            if live is not None:
                raise ActiveSessionExists(
                    "Finish or cancel your current session before starting a new one",
                    status=live.status.value,
                    session_id=live.public_id,
                )
            self.entitlements.ensure_record(db, user_id)

            provisioned = self.provisioner.provision(
                SessionConfig(
                    kind=kind,
                    category=config.category,
                    difficulty=config.difficulty,
                    question_count=count,
                    duration_seconds=duration,
                    role=config.role,
                    company=config.company,
                    language=config.language,
                    seed=config.seed,
                )
            )
            if not provisioned.questions:
                logger.error("No questions provisioned user=%s kind=%s category=%s", user_id, kind, config.category)
                raise ProvisioningShortfall("No questions could be provisioned for this configuration; please try again")

            public_id = uuid.uuid4().hex
            set_session_id(public_id)
            try:
                source = self.entitlements.consume_entitlement(db, user_id, kind, session_public_id=public_id)
                session = AssessmentSession(
                    public_id=public_id,
                    user_id=user_id,
                    kind=kind,
                    category=config.category,
                    difficulty=config.difficulty,
                    role=config.role,
                    company=config.company,
                    language=config.language or "python",
                    status=SessionStatus.CREATED,
                    duration_seconds=duration,
                    selection_seed=provisioned.seed,
                    questions_requested=provisioned.requested,
                    provisioning_shortfall=provisioned.shortfall,
                    entitlement_source=source,
                    violation_log=[],
                    timeline=[],
                )
                for pq in provisioned.questions:
                    session.questions.append(
                        SessionQuestion(
                            ordinal=pq.ordinal,
                            prompt=pq.prompt,
                            question_type=pq.question_type,
                            difficulty=pq.difficulty,
                            weight=pq.weight,
                            source=pq.source,
                            bank_key=pq.bank_key,
                            hints=pq.hints,
                            test_cases=pq.test_cases,
                            sample_answer=pq.sample_answer,
                            options=pq.options,
                            correct_answer=pq.correct_answer,
                            keywords=pq.keywords,
                            entrypoint=pq.entrypoint,
                        )
                    )
                append_session_timeline_event(
                    session,
                    "session_created",
                    {
                        "entitlement_source": source,
                        "questions": len(provisioned.questions),
                        "generated": provisioned.generated,
                        "shortfall": provisioned.shortfall,
                    },
                )
                db.add(session)
                db.flush()

                session.status = SessionStatus.IN_PROGRESS
                session.started_at = utcnow()
                append_session_timeline_event(session, "session_started", {"duration_seconds": duration})
                db.commit()
            except Exception:
                db.rollback()
                raise
            db.refresh(session)

        logger.info(
            "Session started id=%s user=%s kind=%s questions=%d shortfall=%d source=%s",
            public_id,
            user_id,
            kind,
            len(provisioned.questions),
            provisioned.shortfall,
            source,
        )
        return session

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def submit_answer(
        self,
        db: Session,
        session_id: str,
        user_id: str,
        question_id: int,
        answer_text: Optional[str] = None,
        code: Optional[str] = None,
        time_spent_seconds: int = 0,
    ) -> Dict[str, Any]:
        set_session_id(session_id)
        with _session_locks.hold(session_id):
            session = get_session_for_user(db, session_id, user_id, for_update=True)
            self._require_active(db, session)
            question = get_question_in_session(session, question_id)

            now = utcnow()
            question.answer_text = answer_text
            question.submitted_code = code
            question.time_spent_seconds = max(0, min(int(time_spent_seconds or 0), elapsed_seconds(session, now)))
            question.answered_at = now
            question.sub_score = None
            question.feedback = None
            question.scoring_degraded = False
            question.needs_review = False
            question.scoring_details = None
            question.scored_at = None
            append_session_timeline_event(
                session,
                "answer_submitted",
                {"question_id": question.id, "ordinal": question.ordinal},
            )
            db.commit()
            snapshot = QuestionSnapshot.from_model(question)

        result = self.scorer.score(snapshot, answer_text, code)

        with _session_locks.hold(session_id):
            db.expire_all()
            session = get_session_for_user(db, session_id, user_id, for_update=True)
            question = get_question_in_session(session, question_id)
            scored = False
            if session.status != SessionStatus.IN_PROGRESS:
                logger.info("Dropping late score question=%s status=%s", question_id, session.status.value)
            elif ensure_utc(question.answered_at) != now:
                logger.info("Dropping superseded score question=%s", question_id)
            else:
                _apply_score(question, result)
                db.commit()
                scored = True
            if not scored:
                db.rollback()
            remaining = remaining_seconds(session) if session.status == SessionStatus.IN_PROGRESS else 0

        return {
            "session_id": session_id,
            "question_id": question_id,
            "accepted": True,
            "scored": scored,
            "time_remaining_seconds": remaining,
        }

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def report_violation(
        self,
        db: Session,
        session_id: str,
        user_id: str,
        violation_type: str,
        detail: Optional[str] = None,
    ) -> Dict[str, Any]:
        set_session_id(session_id)
        with _session_locks.hold(session_id):
            session = get_session_for_user(db, session_id, user_id, for_update=True)
            if session.status != SessionStatus.IN_PROGRESS:
                raise _not_active_error(session)
            if is_expired(session):
                self._finalize_without_submission(db, session, SessionStatus.EXPIRED, "time_expired")
                db.commit()
                raise SessionExpired("Session time has expired", status=session.status.value)

            count = record_violation(session, violation_type, detail)
            append_session_timeline_event(session, "integrity_violation", {"type": violation_type, "count": count})
            terminated = should_terminate(session, self.violation_threshold)
            if terminated:
                self._finalize_without_submission(
                    db, session, SessionStatus.TERMINATED_FOR_INTEGRITY, "integrity_threshold_reached"
                )
            db.commit()

        logger.info(
            "Integrity violation session=%s type=%s count=%d terminated=%s",
            session_id,
            violation_type,
            count,
            terminated,
        )
        return {
            "session_id": session_id,
            "violation_count": count,
            "terminated": terminated,
            "remaining_before_termination": remaining_before_termination(session, self.violation_threshold),
        }

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete(
        self,
        db: Session,
        session_id: str,
        user_id: str,
        final_submission: bool = False,
    ) -> Dict[str, Any]:
        """Score and close the session.

        Answers still being scored by a concurrent ``submit_answer`` are waited
        for (up to ``SCORING_WAIT_SECONDS``) rather than counted as zero; past
        that budget the caller gets a retryable ``ScoringInProgress``.
        """
        set_session_id(session_id)
        wait_until = time.monotonic() + max(0.0, float(self.settings.SCORING_WAIT_SECONDS))
        while True:
            with _session_locks.hold(session_id):
                db.expire_all()
                session = get_session_for_user(db, session_id, user_id, for_update=True)
                if session.is_terminal:
                    return serialize_result(session)
                if session.status != SessionStatus.IN_PROGRESS:
                    raise _not_active_error(session)
                if is_expired(session):
                    self._finalize_without_submission(db, session, SessionStatus.EXPIRED, "time_expired")
                    db.commit()
                    return serialize_result(session)
                if should_terminate(session, self.violation_threshold):
                    self._finalize_without_submission(
                        db, session, SessionStatus.TERMINATED_FOR_INTEGRITY, "integrity_threshold_reached"
                    )
                    db.commit()
                    return serialize_result(session)

                pending = [q for q in session.questions if q.scoring_pending]
                stale_before = utcnow() - timedelta(seconds=int(self.settings.SCORING_STALE_AFTER_SECONDS))
                abandoned = [q for q in pending if ensure_utc(q.answered_at) <= stale_before]
                if abandoned:
                    self._rescore_abandoned(db, abandoned)
                    pending = [q for q in pending if q not in abandoned]
                if not pending:
                    return self._finish(db, session, user_id, final_submission)

                ordinals = [q.ordinal for q in pending]
                db.rollback()
            if time.monotonic() >= wait_until:
                logger.info("Completion deferred session=%s pending=%s", session_id, ordinals)
                raise ScoringInProgress(
                    "Answers are still being scored; retry shortly",
                    status=SessionStatus.IN_PROGRESS.value,
                    pending=ordinals,
                    retry_after_seconds=1,
                )
            time.sleep(_SCORING_POLL_SECONDS)

    def _finish(self, db: Session, session: AssessmentSession, user_id: str, final_submission: bool) -> Dict[str, Any]:
        session_id = session.public_id
        unanswered = [q.ordinal for q in session.questions if not q.is_answered]
        if unanswered and not final_submission:
            raise SessionIncomplete(
                "Answer every question or submit with final_submission=true",
                status=session.status.value,
                unanswered=unanswered,
            )

        overall = aggregate_overall_score((q.sub_score, q.weight) for q in session.questions)
        feedback, feedback_degraded = self.scorer.overall_feedback(
            kind=session.kind,
            role=session.role,
            overall_score=overall,
            questions=[
                {
                    "ordinal": q.ordinal,
                    "question_type": q.question_type,
                    "sub_score": q.sub_score,
                    "feedback": q.feedback,
                }
                for q in session.questions
            ],
        )

        try:
            now = utcnow()
            session.status = SessionStatus.COMPLETED
            session.completed_at = now
            session.overall_score = overall
            session.overall_feedback = feedback
            session.result_degraded = feedback_degraded or any(q.scoring_degraded for q in session.questions)
            append_session_timeline_event(
                session,
                "session_completed",
                {"overall_score": overall, "unanswered": len(unanswered)},
            )
            self.entitlements.record_session_result(db, user_id, overall)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to persist completion for session=%s", session_id)
            raise CompletionFailed("Could not save the session result; please retry") from exc

        logger.info("Session completed id=%s score=%d degraded=%s", session_id, overall, session.result_degraded)
        return serialize_result(session)

    def _rescore_abandoned(self, db: Session, questions: List[SessionQuestion]) -> None:
        """Score answers whose original scoring never reported back. Caller holds the session lock."""
        for question in questions:
            logger.warning("Rescoring abandoned answer question=%s answered_at=%s", question.id, question.answered_at)
            snapshot = QuestionSnapshot.from_model(question)
            result = self.scorer.score(snapshot, question.answer_text, question.submitted_code)
            _apply_score(question, result)
        db.commit()

    def cancel(self, db: Session, session_id: str, user_id: str) -> Dict[str, Any]:
        set_session_id(session_id)
        with _session_locks.hold(session_id):
            session = get_session_for_user(db, session_id, user_id, for_update=True)
            if session.status == SessionStatus.CANCELLED:
                return serialize_result(session)
            if session.status != SessionStatus.IN_PROGRESS:
                raise _not_active_error(session)
            if is_expired(session):
                self._finalize_without_submission(db, session, SessionStatus.EXPIRED, "time_expired")
                db.commit()
                raise SessionExpired("Session time has expired", status=session.status.value)

            session.status = SessionStatus.CANCELLED
            session.completed_at = utcnow()
            session.overall_score = None
            session.termination_reason = "cancelled_by_user"
            append_session_timeline_event(session, "session_cancelled")
            db.commit()
        logger.info("Session cancelled id=%s", session_id)
        return serialize_result(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_session(self, db: Session, session_id: str, user_id: str) -> AssessmentSession:
        """Return the session, expiring it first if its deadline has passed."""
        set_session_id(session_id)
        session = get_session_for_user(db, session_id, user_id)
        if session.status == SessionStatus.IN_PROGRESS and is_expired(session):
            self._expire_if_overdue(db, session_id, user_id)
            db.refresh(session)
        return session

    def get_question(self, db: Session, session_id: str, user_id: str, question_id: int):
        session = self.get_session(db, session_id, user_id)
        return session, get_question_in_session(session, question_id)

    def time_remaining(self, db: Session, session_id: str, user_id: str) -> Dict[str, Any]:
        session = self.get_session(db, session_id, user_id)
        deadline = deadline_for(session)
        return {
            "session_id": session.public_id,
            "status": session.status.value,
            "time_remaining_seconds": remaining_seconds(session) if session.status == SessionStatus.IN_PROGRESS else 0,
            "deadline": deadline.isoformat() if deadline else None,
            "server_time": utcnow().isoformat(),
        }

    def list_sessions(self, db: Session, user_id: str, *, limit: int = 20, offset: int = 0) -> List[AssessmentSession]:
        self.expire_overdue_sessions(db, user_id=user_id)
        return list_sessions_for_user(db, user_id, limit=limit, offset=offset)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def expire_overdue_sessions(
        self,
        db: Session,
        *,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Finalize every in-progress session past its deadline. Returns how many were expired."""
        query = db.query(AssessmentSession.public_id, AssessmentSession.user_id).filter(
            AssessmentSession.status == SessionStatus.IN_PROGRESS
        )
        if user_id is not None:
            query = query.filter(AssessmentSession.user_id == user_id)
        expired = 0
        for public_id, owner in query.all():
            if self._expire_if_overdue(db, public_id, owner, now=now):
                expired += 1
        if expired:
            logger.info("Expired %d overdue sessions", expired)
        return expired

    def _expire_if_overdue(self, db: Session, session_id: str, user_id: str, now: Optional[datetime] = None) -> bool:
        with _session_locks.hold(session_id):
            session = get_session_for_user(db, session_id, user_id, for_update=True)
            if session.status != SessionStatus.IN_PROGRESS or not is_expired(session, now):
                db.rollback()
                return False
            self._finalize_without_submission(db, session, SessionStatus.EXPIRED, "time_expired")
            db.commit()
            return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_active(self, db: Session, session: AssessmentSession) -> None:
        if session.status != SessionStatus.IN_PROGRESS:
            raise _not_active_error(session)
        if is_expired(session):
            self._finalize_without_submission(db, session, SessionStatus.EXPIRED, "time_expired")
            db.commit()
            raise SessionExpired("Session time has expired", status=session.status.value)
        if should_terminate(session, self.violation_threshold):
            self._finalize_without_submission(
                db, session, SessionStatus.TERMINATED_FOR_INTEGRITY, "integrity_threshold_reached"
            )
            db.commit()
            raise SessionTerminated(
                "Session was terminated after repeated integrity violations",
                status=session.status.value,
            )

    def _finalize_without_submission(
        self,
        db: Session,
        session: AssessmentSession,
        status: SessionStatus,
        reason: str,
    ) -> None:
        """Score with missing answers as zero and close the session. Caller commits."""
        overall = aggregate_overall_score((q.sub_score, q.weight) for q in session.questions)
        answered = sum(1 for q in session.questions if q.is_answered)
        session.status = status
        session.completed_at = utcnow()
        session.overall_score = overall
        session.overall_feedback = deterministic_summary(status.value, overall, answered, len(session.questions))
        session.result_degraded = any(q.scoring_degraded for q in session.questions)
        session.termination_reason = reason
        append_session_timeline_event(
            session,
            f"session_{status.value}",
            {"reason": reason, "overall_score": overall},
        )
        self.entitlements.record_session_result(db, session.user_id, overall)
        logger.info("Session finalized id=%s status=%s score=%d", session.public_id, status.value, overall)
