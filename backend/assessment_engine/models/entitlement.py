from sqlalchemy import CheckConstraint, Column, DateTime, Float, Integer, JSON, String
from sqlalchemy.sql import func

from ..platform.database import Base


class EntitlementRecord(Base):
    __tablename__ = "entitlement_records"
    __table_args__ = (CheckConstraint("credits_balance >= 0", name="ck_entitlement_records_credits_non_negative"),)

    user_id = Column(String, primary_key=True)
    # "free" or "unlimited" (demo and internal accounts)
    plan = Column(String, default="free", nullable=False)
    free_interviews_used = Column(Integer, default=0, nullable=False)
    free_tests_used = Column(Integer, default=0, nullable=False)
    credits_balance = Column(Integer, default=0, nullable=False)

    sessions_scored = Column(Integer, default=0, nullable=False)
    average_score = Column(Float, default=0.0, nullable=False)
    best_score = Column(Integer, default=0, nullable=False)
    last_session_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class EntitlementLedgerEntry(Base):
    __tablename__ = "entitlement_ledger"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    delta = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    external_ref = Column(String, nullable=True, unique=True, index=True)
    session_public_id = Column(String, index=True, nullable=True)
    entry_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
