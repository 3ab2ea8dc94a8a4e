from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

from ...components.entitlements.service import EntitlementGate
from ...components.integrations.claude.service import build_text_generator
from ...components.provisioning.service import QuestionProvisioner
from ...components.scoring.code_runner import CaseOutcome, build_code_runner
from ...components.scoring.service import AnswerScorer
from ...components.sessions.service import SessionOrchestrator
from ...platform.config import settings


class TextGenerationAdapter(Protocol):
    def generate(self, prompt: str, *, system: Optional[str] = None, max_tokens: Optional[int] = None, temperature: float = 0.0) -> str: ...


class CodeRunnerAdapter(Protocol):
    def run_cases(self, code: str, entrypoint: Optional[str], cases: Sequence[dict]) -> list[CaseOutcome]: ...


def build_text_generation_adapter(settings_obj: Any = None) -> TextGenerationAdapter:
    return build_text_generator(settings_obj or settings)


def build_code_runner_adapter(settings_obj: Any = None) -> CodeRunnerAdapter:
    return build_code_runner(settings_obj or settings)


def build_session_orchestrator(
    *,
    text_generator: Optional[TextGenerationAdapter] = None,
    code_runner: Optional[CodeRunnerAdapter] = None,
    settings_obj: Any = None,
) -> SessionOrchestrator:
    cfg = settings_obj or settings
    generator = text_generator or build_text_generation_adapter(cfg)
    runner = code_runner or build_code_runner_adapter(cfg)
    return SessionOrchestrator(
        provisioner=QuestionProvisioner(generator),
        scorer=AnswerScorer(generator, runner, settings_obj=cfg),
        entitlements=EntitlementGate(cfg),
        settings_obj=cfg,
    )
