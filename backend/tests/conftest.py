import os
# Override settings before any engine imports so tests never touch a real database
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
# Keep external collaborators disabled by default. Individual tests inject fakes.
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["AI_SCORING_ENABLED"] = "false"
os.environ["E2B_API_KEY"] = ""
os.environ["CODE_EXECUTION_BACKEND"] = "subprocess"
os.environ["CLAUDE_MODEL"] = "claude-3-5-haiku-latest"
os.environ["INTERNAL_API_TOKEN"] = "test-internal-token"

import json
import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from assessment_engine.components.entitlements.service import EntitlementGate
from assessment_engine.components.provisioning.service import (
    ProvisionedQuestion,
    ProvisioningResult,
    QuestionProvisioner,
)
from assessment_engine.components.scoring.code_runner import CaseOutcome
from assessment_engine.components.scoring.service import AnswerScorer
from assessment_engine.components.sessions.service import SessionOrchestrator
from assessment_engine.deps import get_orchestrator
from assessment_engine.main import app
from assessment_engine.models.entitlement import EntitlementRecord
from assessment_engine.platform.config import settings
from assessment_engine.platform.database import Base, get_db
from assessment_engine.platform.middleware import _rate_limit_store

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False, "timeout": 30})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Enable foreign key support for SQLite
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class FakeTextGenerator:
    """Returns queued responses in order (the last one repeats) or raises ``error``."""

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [json.dumps({"score": 80, "feedback": "Solid answer."})])
        self.error = error
        self.calls = []

    def generate(self, prompt, *, system=None, max_tokens=None, temperature=0.0):
        self.calls.append({"prompt": prompt, "system": system})
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class FakeCodeRunner:
    """Passes cases according to ``pattern`` (default: all pass) or raises ``error``."""

    def __init__(self, pattern=None, error=None):
        self.pattern = pattern
        self.error = error
        self.calls = []

    def run_cases(self, code, entrypoint, cases):
        self.calls.append({"code": code, "entrypoint": entrypoint, "cases": cases})
        if self.error is not None:
            raise self.error
        outcomes = []
        for i, case in enumerate(cases):
            passed = True if self.pattern is None else bool(self.pattern[i])
            outcomes.append(
                CaseOutcome(
                    index=i,
                    passed=passed,
                    description=case.get("description", ""),
                    actual=case.get("expected") if passed else None,
                    error=None if passed else "AssertionError: wrong value",
                )
            )
        return outcomes


class StaticProvisioner:
    """Provisioner double that always returns copies of the given questions."""

    def __init__(self, questions, requested=None, seed=1234):
        self.questions = questions
        self.requested = requested
        self.seed = seed
        self.calls = 0

    def provision(self, config, seed=None):
        self.calls += 1
        questions = [ProvisionedQuestion(**vars(q)) for q in self.questions]
        for ordinal, q in enumerate(questions, start=1):
            q.ordinal = ordinal
        requested = self.requested if self.requested is not None else config.question_count
        return ProvisioningResult(
            questions=questions,
            requested=requested,
            shortfall=max(0, requested - len(questions)),
            generated=0,
            seed=self.seed,
        )


def open_question(prompt="Describe a hard bug you fixed.", weight=1.0, qtype="behavioral"):
    return ProvisionedQuestion(
        ordinal=0,
        prompt=prompt,
        question_type=qtype,
        difficulty="medium",
        weight=weight,
        sample_answer="A STAR-structured story.",
    )


def coding_question(weight=1.0, cases=None):
    return ProvisionedQuestion(
        ordinal=0,
        prompt="Write add(a, b).",
        question_type="coding",
        difficulty="easy",
        weight=weight,
        entrypoint="add",
        test_cases=cases
        if cases is not None
        else [
            {"input": {"a": 1, "b": 2}, "expected": 3, "description": "small numbers"},
            {"input": {"a": -1, "b": 1}, "expected": 0, "description": "negatives"},
            {"input": {"a": 0, "b": 0}, "expected": 0, "description": "zeros"},
        ],
    )


def choice_question(correct="O(1)", weight=1.0):
    return ProvisionedQuestion(
        ordinal=0,
        prompt="Append complexity?",
        question_type="multiple_choice",
        difficulty="easy",
        weight=weight,
        options=["O(1)", "O(n)"],
        correct_answer=correct,
    )


def make_settings(**overrides):
    return settings.model_copy(update=overrides)


def build_orchestrator(provisioner=None, text_generator=None, code_runner=None, **setting_overrides):
    cfg = make_settings(**setting_overrides)
    generator = text_generator or FakeTextGenerator()
    runner = code_runner or FakeCodeRunner()
    return SessionOrchestrator(
        provisioner=provisioner or QuestionProvisioner(generator),
        scorer=AnswerScorer(generator, runner, settings_obj=cfg),
        entitlements=EntitlementGate(cfg),
        settings_obj=cfg,
    )


def rewind_session(db, session, seconds):
    """Move a session's start back in time to simulate elapsed wall-clock time."""
    session.started_at = session.started_at - timedelta(seconds=seconds)
    db.commit()
    db.refresh(session)


def grant_credits(db, user_id, count=1):
    record = db.get(EntitlementRecord, user_id)
    if record is None:
        record = EntitlementRecord(user_id=user_id, plan="free")
        db.add(record)
    record.credits_balance = int(record.credits_balance or 0) + count
    db.commit()


def new_user_id() -> str:
    return f"user-{uuid.uuid4().hex[:10]}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    yield db
    db.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db):
    return TestingSessionLocal


@pytest.fixture
def text_generator():
    return FakeTextGenerator()


@pytest.fixture
def code_runner():
    return FakeCodeRunner()


@pytest.fixture
def orchestrator(text_generator, code_runner):
    return build_orchestrator(
        provisioner=StaticProvisioner([coding_question(), open_question(), choice_question()]),
        text_generator=text_generator,
        code_runner=code_runner,
    )


@pytest.fixture(scope="function")
def client(db, text_generator, code_runner):
    api_orchestrator = build_orchestrator(text_generator=text_generator, code_runner=code_runner)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: api_orchestrator
    Base.metadata.create_all(bind=engine)
    # Clear in-memory rate limit state between tests to prevent 429 bleed-through
    _rate_limit_store.clear()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    _rate_limit_store.clear()
    Base.metadata.drop_all(bind=engine)
