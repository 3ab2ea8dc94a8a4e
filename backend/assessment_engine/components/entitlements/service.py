"""Entitlement gate: free quota, purchased credits and running score stats.

Counters are only ever moved with single conditional UPDATE statements so two
concurrent session starts can never both spend the same free slot or credit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.assessment_session import SessionKind
from ...models.entitlement import EntitlementLedgerEntry, EntitlementRecord
from ...platform.config import settings as default_settings
from ...shared.errors import EntitlementExhausted, PaymentNotVerified
from ...shared.utils import utcnow

logger = logging.getLogger("assessment_engine.entitlements")

PLAN_FREE = "free"
PLAN_UNLIMITED = "unlimited"

_FREE_COLUMNS = {
    SessionKind.MOCK_INTERVIEW.value: EntitlementRecord.free_interviews_used,
    SessionKind.SKILLS_TEST.value: EntitlementRecord.free_tests_used,
}


@dataclass(frozen=True)
class Eligibility:
    allowed: bool
    reason: str
    free_remaining: int
    credits_balance: int


class EntitlementGate:
    def __init__(self, settings_obj: Any = None):
        self.settings = settings_obj or default_settings

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _free_quota(self, kind: str) -> int:
        return self.settings.free_quota.for_kind(_kind_value(kind))

    def _free_used(self, record: EntitlementRecord | None, kind: str) -> int:
        if record is None:
            return 0
        if _kind_value(kind) == SessionKind.MOCK_INTERVIEW.value:
            return int(record.free_interviews_used or 0)
        return int(record.free_tests_used or 0)

    def free_remaining(self, record: EntitlementRecord | None, kind: str) -> int:
        return max(0, self._free_quota(kind) - self._free_used(record, kind))

    def check_eligibility(self, db: Session, user_id: str, kind: str) -> Eligibility:
        """Read-only decision on whether ``user_id`` may start a ``kind`` session."""
        record = db.get(EntitlementRecord, user_id)
        free_left = self.free_remaining(record, kind)
        credits = int(record.credits_balance or 0) if record else 0
        if record is not None and record.plan == PLAN_UNLIMITED:
            return Eligibility(True, "unlimited_plan", free_left, credits)
        if free_left > 0:
            return Eligibility(True, "free_quota", free_left, credits)
        if credits > 0:
            return Eligibility(True, "credit_balance", free_left, credits)
        return Eligibility(False, "no_free_quota_or_credits", 0, credits)

    def get_entitlement(self, db: Session, user_id: str) -> Dict[str, Any]:
        record = db.get(EntitlementRecord, user_id)
        return {
            "user_id": user_id,
            "plan": record.plan if record else PLAN_FREE,
            "free_remaining": {
                SessionKind.MOCK_INTERVIEW.value: self.free_remaining(record, SessionKind.MOCK_INTERVIEW.value),
                SessionKind.SKILLS_TEST.value: self.free_remaining(record, SessionKind.SKILLS_TEST.value),
            },
            "credits_balance": int(record.credits_balance or 0) if record else 0,
            "sessions_scored": int(record.sessions_scored or 0) if record else 0,
            "average_score": round(float(record.average_score or 0.0), 1) if record else 0.0,
            "best_score": int(record.best_score or 0) if record else 0,
            "last_session_at": record.last_session_at.isoformat() if record and record.last_session_at else None,
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def ensure_record(self, db: Session, user_id: str) -> EntitlementRecord:
        """Return the user's record, inserting a fresh free-plan row if missing. Commits."""
        record = db.get(EntitlementRecord, user_id)
        if record is not None:
            return record
        db.add(EntitlementRecord(user_id=user_id, plan=PLAN_FREE))
        try:
            db.commit()
        except IntegrityError:
            # Another request inserted the row first.
            db.rollback()
        return db.get(EntitlementRecord, user_id)

    def consume_entitlement(
        self,
        db: Session,
        user_id: str,
        kind: str,
        *,
        session_public_id: Optional[str] = None,
    ) -> str:
        """Spend one entitlement inside the caller's transaction; returns its source.

        Does not commit: the caller commits together with the new session row.
        """
        now = utcnow()
        kind_value = _kind_value(kind)

        matched = db.execute(
            update(EntitlementRecord)
            .where(EntitlementRecord.user_id == user_id, EntitlementRecord.plan == PLAN_UNLIMITED)
            .values(last_session_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if matched == 1:
            source, delta, reason = "plan", 0, "plan_session"
        else:
            free_col = _FREE_COLUMNS[kind_value]
            matched = db.execute(
                update(EntitlementRecord)
                .where(EntitlementRecord.user_id == user_id, free_col < self._free_quota(kind_value))
                .values({free_col: free_col + 1, "last_session_at": now})
                .execution_options(synchronize_session=False)
            ).rowcount
            if matched == 1:
                source, delta, reason = "free", 0, "free_session"
            else:
                matched = db.execute(
                    update(EntitlementRecord)
                    .where(EntitlementRecord.user_id == user_id, EntitlementRecord.credits_balance > 0)
                    .values(credits_balance=EntitlementRecord.credits_balance - 1, last_session_at=now)
                    .execution_options(synchronize_session=False)
                ).rowcount
                if matched != 1:
                    logger.info("Entitlement exhausted user=%s kind=%s", user_id, kind_value)
                    raise EntitlementExhausted(
                        "No free sessions or credits remaining. Purchase credits to continue.",
                        requires_payment=True,
                        kind=kind_value,
                    )
                source, delta, reason = "credit", -1, "credit_session"

        record = db.get(EntitlementRecord, user_id, populate_existing=True)
        db.add(
            EntitlementLedgerEntry(
                user_id=user_id,
                delta=delta,
                balance_after=int(record.credits_balance or 0),
                reason=reason,
                session_public_id=session_public_id,
                entry_metadata={"kind": kind_value},
            )
        )
        db.flush()
        logger.info("Entitlement consumed user=%s kind=%s source=%s", user_id, kind_value, source)
        return source

    def grant_credits(
        self,
        db: Session,
        user_id: str,
        count: int,
        *,
        payment_verified: bool,
        request_ref: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> tuple[EntitlementLedgerEntry, bool]:
        """Add ``count`` credits once per ``request_ref``. Returns (entry, created)."""
        if not payment_verified:
            raise PaymentNotVerified("Credit purchase has not been verified")
        if int(count) <= 0:
            raise ValueError("count must be positive")

        existing = (
            db.query(EntitlementLedgerEntry)
            .filter(EntitlementLedgerEntry.external_ref == request_ref)
            .first()
        )
        if existing:
            return existing, False

        self.ensure_record(db, user_id)
        db.execute(
            update(EntitlementRecord)
            .where(EntitlementRecord.user_id == user_id)
            .values(credits_balance=EntitlementRecord.credits_balance + int(count))
            .execution_options(synchronize_session=False)
        )
        record = db.get(EntitlementRecord, user_id, populate_existing=True)
        entry = EntitlementLedgerEntry(
            user_id=user_id,
            delta=int(count),
            balance_after=int(record.credits_balance or 0),
            reason="credit_purchase",
            external_ref=request_ref,
            entry_metadata=metadata or {},
        )
        db.add(entry)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = (
                db.query(EntitlementLedgerEntry)
                .filter(EntitlementLedgerEntry.external_ref == request_ref)
                .first()
            )
            if existing is None:
                raise
            return existing, False
        db.refresh(entry)
        logger.info("Granted %d credits user=%s ref=%s", count, user_id, request_ref)
        return entry, True

    def record_session_result(self, db: Session, user_id: str, score: int) -> None:
        """Fold a final session score into the running stats. Does not commit."""
        record = db.get(EntitlementRecord, user_id)
        if record is None:
            record = EntitlementRecord(user_id=user_id, plan=PLAN_FREE)
            db.add(record)
        scored = int(record.sessions_scored or 0)
        average = float(record.average_score or 0.0)
        record.sessions_scored = scored + 1
        record.average_score = ((average * scored) + score) / (scored + 1)
        record.best_score = max(int(record.best_score or 0), int(score))


def _kind_value(kind: Any) -> str:
    return kind.value if isinstance(kind, SessionKind) else str(kind)
