"""
Anthropic Claude text-generation collaborator.

Used for open-ended answer scoring, overall session feedback and question
generation. Every call is bounded by a wall-clock timeout; callers treat any
exception as "collaborator unavailable" and fall back.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional, Protocol

from ....platform.config import settings as default_settings
from ....shared.utils import call_with_timeout

logger = logging.getLogger("assessment_engine.integrations.claude")

_SCORE_LINE = re.compile(r"SCORE\s*[:=]\s*(\d{1,3})", re.IGNORECASE)
_FEEDBACK_LINE = re.compile(r"FEEDBACK\s*[:=]\s*(.+)", re.IGNORECASE | re.DOTALL)


def model_chain(primary: Optional[str], fallbacks: Optional[str]) -> list[str]:
    """Models to try in order: the configured one, then each distinct fallback."""
    chain: list[str] = []
    for name in [primary or "", *(fallbacks or "").split(",")]:
        name = name.strip()
        if name and name not in chain:
            chain.append(name)
    return chain


def is_missing_model_error(exc: Exception) -> bool:
    """True when the API rejected the request because the model does not exist."""
    if getattr(exc, "status_code", None) == 404:
        return True
    text = str(exc or "").lower()
    return "not_found_error" in text or ("model" in text and "not found" in text)


class TextGenerator(Protocol):
    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.0,
    ) -> str:
        ...


class TextGenerationUnavailable(RuntimeError):
    """Raised when text generation is disabled or no API key is configured."""


class ClaudeTextGenerator:
    """TextGenerator backed by the Anthropic Messages API."""

    def __init__(self, api_key: str, settings_obj: Any = None, client: Any = None):
        self.settings = settings_obj or default_settings
        self.timeout_seconds = float(self.settings.TEXT_GENERATION_TIMEOUT_SECONDS)
        if client is None:
            from anthropic import Anthropic

            client = Anthropic(api_key=api_key, timeout=self.timeout_seconds, max_retries=0)
        self.client = client
        self.model = self.settings.resolved_claude_model
        self.models = model_chain(self.model, self.settings.CLAUDE_FALLBACK_MODELS)
        self.max_tokens_per_response = self.settings.MAX_TOKENS_PER_RESPONSE
        logger.info("ClaudeTextGenerator initialised with models=%s", ",".join(self.models))

    def _create(self, prompt: str, system: Optional[str], max_tokens: int, temperature: float) -> str:
        last_exc: Exception | None = None
        for model_name in self.models:
            kwargs: Dict[str, Any] = {
                "model": model_name,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": [{"role": "user", "content": prompt}],
            }
            if system:
                kwargs["system"] = system
            try:
                response = self.client.messages.create(**kwargs)
            except Exception as exc:
                if is_missing_model_error(exc):
                    logger.warning("Claude model unavailable, trying fallback (model=%s)", model_name)
                    last_exc = exc
                    continue
                raise
            if model_name != self.model:
                logger.info("Claude fallback model used (requested=%s, used=%s)", self.model, model_name)
            return response.content[0].text
        raise last_exc or RuntimeError("No Claude model candidates configured")

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.0,
    ) -> str:
        """Return the generated text or raise; never exceeds the configured timeout."""
        tokens = int(max_tokens or self.max_tokens_per_response)
        return call_with_timeout(
            self._create, self.timeout_seconds, prompt, system, tokens, temperature
        )


class DisabledTextGenerator:
    """Stand-in used when AI scoring is switched off; every call fails fast."""

    def generate(self, prompt: str, **_: Any) -> str:
        raise TextGenerationUnavailable("Text generation is disabled")


def build_text_generator(settings_obj: Any = None) -> TextGenerator:
    cfg = settings_obj or default_settings
    if not cfg.AI_SCORING_ENABLED or not cfg.ANTHROPIC_API_KEY:
        logger.info("Text generation disabled (enabled=%s, key_set=%s)", cfg.AI_SCORING_ENABLED, bool(cfg.ANTHROPIC_API_KEY))
        return DisabledTextGenerator()
    return ClaudeTextGenerator(api_key=cfg.ANTHROPIC_API_KEY, settings_obj=cfg)


def parse_json_object(raw_text: str) -> Dict[str, Any] | None:
    try:
        parsed = json.loads(raw_text)
        return parsed if isinstance(parsed, dict) else None
    except (json.JSONDecodeError, TypeError):
        match = re.search(r"\{[\s\S]*\}", raw_text or "")
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            return None


def parse_json_list(raw_text: str) -> list | None:
    try:
        parsed = json.loads(raw_text)
    except (json.JSONDecodeError, TypeError):
        match = re.search(r"\[[\s\S]*\]", raw_text or "")
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    if isinstance(parsed, dict) and isinstance(parsed.get("questions"), list):
        return parsed["questions"]
    return parsed if isinstance(parsed, list) else None


def parse_score_response(raw_text: str) -> tuple[int, str] | None:
    """Extract ``(score, feedback)`` from a rubric response.

    Accepts a JSON object with ``score``/``feedback`` keys or ``SCORE:``/
    ``FEEDBACK:`` lines. Returns None when no score in 0..100 is present.
    """
    payload = parse_json_object(raw_text)
    if payload is not None and "score" in payload:
        try:
            score = int(round(float(payload["score"])))
        except (TypeError, ValueError):
            return None
        if not 0 <= score <= 100:
            return None
        feedback = str(payload.get("feedback") or "").strip()
        return score, feedback

    match = _SCORE_LINE.search(raw_text or "")
    if not match:
        return None
    score = int(match.group(1))
    if not 0 <= score <= 100:
        return None
    feedback_match = _FEEDBACK_LINE.search(raw_text or "")
    feedback = feedback_match.group(1).strip() if feedback_match else ""
    return score, feedback
