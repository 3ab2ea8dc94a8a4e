from pydantic_settings import BaseSettings
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class FreeQuota:
    mock_interview: int
    skills_test: int

    def for_kind(self, kind: str) -> int:
        return int(getattr(self, kind, 0) or 0)


class Settings(BaseSettings):
    # Deployment environment
    DEPLOYMENT_ENV: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # "json" | "text"

    # Database
    DATABASE_URL: str = "sqlite:///./assessment_engine.db"

    # Internal callers (payment verification webhook relay)
    INTERNAL_API_TOKEN: str = "dev-internal-token-change-in-production"

    # Claude / Anthropic (text generation collaborator)
    ANTHROPIC_API_KEY: str = ""
    CLAUDE_MODEL: str = "claude-3-5-haiku-latest"
    # Tried in order when the configured model is retired or unknown to the API.
    CLAUDE_FALLBACK_MODELS: str = "claude-3-5-haiku-20241022,claude-3-haiku-20240307"
    MAX_TOKENS_PER_RESPONSE: int = 1024
    TEXT_GENERATION_TIMEOUT_SECONDS: float = 8.0
    # Scoring/feedback degrade to fixed fallbacks when disabled or unconfigured.
    AI_SCORING_ENABLED: bool = True

    # Code execution
    CODE_EXECUTION_BACKEND: str = "subprocess"  # "subprocess" | "e2b"
    # "bwrap" runs the subprocess backend inside bubblewrap namespaces and fails
    # closed when it is unavailable; "process" is for local development only.
    CODE_EXECUTION_ISOLATION: str = "bwrap"  # "bwrap" | "process"
    BWRAP_EXECUTABLE: str = "bwrap"
    CODE_EXECUTION_TIMEOUT_SECONDS: float = 2.0
    CODE_EXECUTION_MEMORY_MB: int = 256
    CODE_EXECUTION_MAX_OUTPUT_BYTES: int = 65536
    E2B_API_KEY: str = ""
    E2B_TEMPLATE: Optional[str] = None

    # Proctoring
    INTEGRITY_VIOLATION_THRESHOLD: int = 5
    # Comma-separated key combos the client surface blocks and reports.
    PROCTORING_BLOCKED_SHORTCUTS: str = "Ctrl+C,Ctrl+V,Ctrl+X,Ctrl+A,Ctrl+U,Ctrl+S,Ctrl+P,Ctrl+Shift+I,Ctrl+Shift+J,F12,Alt+Tab"

    # Entitlements
    FREE_MOCK_INTERVIEWS: int = 1
    FREE_SKILLS_TESTS: int = 2

    # Session timing
    MOCK_INTERVIEW_DURATION_SECONDS: int = 3600
    SKILLS_TEST_DURATION_SECONDS: int = 1800
    MAX_QUESTIONS_PER_SESSION: int = 10
    # Completion waits this long for answers still being scored, then asks the
    # caller to retry. Scoring pending longer than the stale bound is redone.
    SCORING_WAIT_SECONDS: float = 30.0
    SCORING_STALE_AFTER_SECONDS: int = 120

    # Scoring fallbacks
    CODING_NO_TEST_CASES_BASE_SCORE: int = 30
    OPEN_ENDED_FALLBACK_SCORE: int = 50
    OPEN_ENDED_FALLBACK_FEEDBACK: str = (
        "Automated scoring was unavailable for this answer, so a neutral score was recorded. "
        "It will be reviewed manually."
    )
    OVERALL_FEEDBACK_FALLBACK: str = (
        "Great job completing the session! Review the per-question feedback and keep practicing "
        "to sharpen your skills."
    )

    # URLs
    FRONTEND_URL: str = "http://localhost:5173"
    CORS_EXTRA_ORIGINS: Optional[str] = None

    @property
    def resolved_claude_model(self) -> str:
        model = (self.CLAUDE_MODEL or "").strip()
        return model or "claude-3-5-haiku-latest"

    @property
    def free_quota(self) -> FreeQuota:
        return FreeQuota(
            mock_interview=max(0, self.FREE_MOCK_INTERVIEWS),
            skills_test=max(0, self.FREE_SKILLS_TESTS),
        )

    @property
    def blocked_shortcuts(self) -> list[str]:
        return [s.strip() for s in (self.PROCTORING_BLOCKED_SHORTCUTS or "").split(",") if s.strip()]

    def default_duration_for(self, kind: str) -> int:
        if kind == "mock_interview":
            return self.MOCK_INTERVIEW_DURATION_SECONDS
        return self.SKILLS_TEST_DURATION_SECONDS

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


settings = Settings()
