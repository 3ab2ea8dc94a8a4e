from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Float, Text, Enum, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..platform.database import Base
import enum


class SessionKind(str, enum.Enum):
    SKILLS_TEST = "skills_test"
    MOCK_INTERVIEW = "mock_interview"


class SessionCategory(str, enum.Enum):
    TECHNICAL = "technical"
    BEHAVIORAL = "behavioral"
    SYSTEM_DESIGN = "system_design"
    MIXED = "mixed"


class Difficulty(str, enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class SessionStatus(str, enum.Enum):
    CREATED = "created"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"
    TERMINATED_FOR_INTEGRITY = "terminated_for_integrity"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        SessionStatus.COMPLETED,
        SessionStatus.EXPIRED,
        SessionStatus.TERMINATED_FOR_INTEGRITY,
        SessionStatus.CANCELLED,
    }
)


class QuestionType(str, enum.Enum):
    CODING = "coding"
    MULTIPLE_CHOICE = "multiple_choice"
    MULTIPLE_SELECT = "multiple_select"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    LONG_ANSWER = "long_answer"
    BEHAVIORAL = "behavioral"
    SYSTEM_DESIGN = "system_design"


class ViolationType(str, enum.Enum):
    TAB_SWITCH = "tab_switch"
    COPY_ATTEMPT = "copy_attempt"
    PASTE_ATTEMPT = "paste_attempt"
    BLOCKED_SHORTCUT = "blocked_shortcut"
    CONTEXT_MENU = "context_menu"


def _values(enum_cls):
    return [member.value for member in enum_cls]


class AssessmentSession(Base):
    __tablename__ = "assessment_sessions"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(32), unique=True, index=True, nullable=False)
    user_id = Column(String, index=True, nullable=False)
    kind = Column(String, nullable=False)
    category = Column(String, nullable=False)
    difficulty = Column(String, nullable=False)
    role = Column(String)
    company = Column(String)
    language = Column(String, default="python")
    status = Column(
        Enum(SessionStatus, native_enum=False, length=32, values_callable=_values),
        default=SessionStatus.CREATED,
        nullable=False,
        index=True,
    )
    duration_seconds = Column(Integer, nullable=False)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    # Integrity counters (server-owned; clients only report events)
    violation_count = Column(Integer, default=0, nullable=False)
    violation_log = Column(JSON)
    tab_switch_count = Column(Integer, default=0, nullable=False)
    clipboard_count = Column(Integer, default=0, nullable=False)
    shortcut_count = Column(Integer, default=0, nullable=False)
    context_menu_count = Column(Integer, default=0, nullable=False)

    # Result
    overall_score = Column(Integer)
    overall_feedback = Column(Text)
    result_degraded = Column(Boolean, default=False, nullable=False)
    termination_reason = Column(String)

    # Provisioning / entitlement audit
    selection_seed = Column(Integer)
    questions_requested = Column(Integer)
    provisioning_shortfall = Column(Integer, default=0, nullable=False)
    entitlement_source = Column(String)
    timeline = Column(JSON)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    questions = relationship(
        "SessionQuestion",
        back_populates="session",
        order_by="SessionQuestion.ordinal",
        cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class SessionQuestion(Base):
    __tablename__ = "session_questions"
    __table_args__ = (UniqueConstraint("session_id", "ordinal", name="uq_session_questions_ordinal"),)

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("assessment_sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    ordinal = Column(Integer, nullable=False)

    # Provisioned content (immutable once the session exists)
    prompt = Column(Text, nullable=False)
    question_type = Column(String, nullable=False)
    difficulty = Column(String, nullable=False)
    weight = Column(Float, default=1.0, nullable=False)
    source = Column(String, default="bank")
    bank_key = Column(String)
    hints = Column(JSON)
    test_cases = Column(JSON)
    sample_answer = Column(Text)
    options = Column(JSON)
    correct_answer = Column(JSON)
    keywords = Column(JSON)
    entrypoint = Column(String)

    # Candidate response
    answer_text = Column(Text)
    submitted_code = Column(Text)
    time_spent_seconds = Column(Integer, default=0)
    answered_at = Column(DateTime(timezone=True))

    # Per-question result
    sub_score = Column(Integer)
    feedback = Column(Text)
    scoring_degraded = Column(Boolean, default=False, nullable=False)
    needs_review = Column(Boolean, default=False, nullable=False)
    scoring_details = Column(JSON)
    scored_at = Column(DateTime(timezone=True))

    session = relationship("AssessmentSession", back_populates="questions")

    @property
    def is_answered(self) -> bool:
        return self.answered_at is not None

    @property
    def scoring_pending(self) -> bool:
        return self.answered_at is not None and self.scored_at is None
