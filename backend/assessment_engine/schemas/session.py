from typing import Optional, Dict, Any

from pydantic import BaseModel, Field, model_validator

from ..models.assessment_session import Difficulty, SessionCategory, SessionKind, ViolationType


class SessionCreate(BaseModel):
    kind: SessionKind
    category: SessionCategory = SessionCategory.TECHNICAL
    difficulty: Difficulty = Difficulty.MEDIUM
    question_count: int = Field(default=3, ge=1, le=10)
    duration_seconds: Optional[int] = Field(default=None, ge=60, le=4 * 3600)
    role: Optional[str] = Field(default=None, max_length=200)
    company: Optional[str] = Field(default=None, max_length=200)
    language: str = Field(default="python", pattern=r"^python$")
    seed: Optional[int] = Field(default=None, ge=0, le=2**31 - 1)


class AnswerSubmit(BaseModel):
    question_id: int = Field(gt=0)
    answer_text: Optional[str] = Field(default=None, max_length=20000)
    code: Optional[str] = Field(default=None, max_length=50000)
    time_spent_seconds: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _has_content(self):
        if self.answer_text is None and self.code is None:
            raise ValueError("answer_text or code is required")
        return self


class ViolationReport(BaseModel):
    violation_type: ViolationType
    detail: Optional[str] = Field(default=None, max_length=500)


class SessionComplete(BaseModel):
    final_submission: bool = False


class CreditGrant(BaseModel):
    count: int = Field(gt=0, le=1000)
    payment_verified: bool
    idempotency_key: str = Field(min_length=1, max_length=200)
    metadata: Optional[Dict[str, Any]] = None
