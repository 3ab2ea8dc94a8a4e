"""
Question provisioning for new sessions.

Draws from the curated bank with a seeded RNG (the seed is persisted on the
session so a draw can be reproduced), borrows at most one question from an
adjacent difficulty tier, and asks the text-generation collaborator for the
rest. Generated batches are accepted or rejected as a whole.
"""

from __future__ import annotations

import json
import logging
import random
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ...models.assessment_session import QuestionType, SessionKind
from ..integrations.claude.service import TextGenerator, parse_json_list
from .question_bank import BankItem, adjacent_difficulties, bank_items

logger = logging.getLogger("assessment_engine.provisioning")

MAX_PROMPT_CHARS = 4000

ALLOWED_TYPES = {
    SessionKind.SKILLS_TEST.value: frozenset(
        {
            QuestionType.CODING.value,
            QuestionType.MULTIPLE_CHOICE.value,
            QuestionType.MULTIPLE_SELECT.value,
            QuestionType.TRUE_FALSE.value,
            QuestionType.SHORT_ANSWER.value,
        }
    ),
    SessionKind.MOCK_INTERVIEW.value: frozenset(
        {
            QuestionType.CODING.value,
            QuestionType.BEHAVIORAL.value,
            QuestionType.SYSTEM_DESIGN.value,
            QuestionType.LONG_ANSWER.value,
        }
    ),
}

GENERATION_SYSTEM_PROMPT = (
    "You write interview and assessment questions. Respond ONLY with a JSON array; "
    "no prose before or after it."
)


@dataclass(frozen=True)
class SessionConfig:
    kind: str
    category: str
    difficulty: str
    question_count: int
    duration_seconds: Optional[int] = None
    role: Optional[str] = None
    company: Optional[str] = None
    language: str = "python"
    seed: Optional[int] = None


@dataclass
class ProvisionedQuestion:
    ordinal: int
    prompt: str
    question_type: str
    difficulty: str
    weight: float = 1.0
    source: str = "bank"
    bank_key: Optional[str] = None
    hints: List[str] = field(default_factory=list)
    test_cases: List[Dict[str, Any]] = field(default_factory=list)
    sample_answer: Optional[str] = None
    options: Optional[List[Any]] = None
    correct_answer: Any = None
    keywords: Optional[List[str]] = None
    entrypoint: Optional[str] = None


@dataclass
class ProvisioningResult:
    questions: List[ProvisionedQuestion]
    requested: int
    shortfall: int
    generated: int
    seed: int


class GeneratedBatchRejected(ValueError):
    pass


def _from_bank(item: BankItem) -> ProvisionedQuestion:
    return ProvisionedQuestion(
        ordinal=0,
        prompt=item["prompt"],
        question_type=item["question_type"],
        difficulty=item["difficulty"],
        weight=float(item.get("weight") or 1.0),
        source="bank",
        bank_key=item["key"],
        hints=list(item.get("hints") or []),
        test_cases=[dict(case) for case in item.get("test_cases") or []],
        sample_answer=item.get("sample_answer"),
        options=list(item["options"]) if item.get("options") else None,
        correct_answer=item.get("correct_answer"),
        keywords=list(item["keywords"]) if item.get("keywords") else None,
        entrypoint=item.get("entrypoint"),
    )


def validate_generated_item(raw: Any, kind: str, difficulty: str) -> ProvisionedQuestion:
    """Convert one generated item or raise ``GeneratedBatchRejected``."""
    if not isinstance(raw, dict):
        raise GeneratedBatchRejected("item is not an object")
    prompt = raw.get("prompt") or raw.get("question")
    if not isinstance(prompt, str) or not prompt.strip() or len(prompt) > MAX_PROMPT_CHARS:
        raise GeneratedBatchRejected("missing or oversized prompt")
    qtype = str(raw.get("question_type") or raw.get("type") or "").strip().lower()
    if qtype not in ALLOWED_TYPES.get(kind, frozenset()):
        raise GeneratedBatchRejected(f"question type {qtype!r} not allowed for {kind}")

    hints = raw.get("hints") or []
    if not isinstance(hints, list) or not all(isinstance(h, str) for h in hints):
        raise GeneratedBatchRejected("hints must be a list of strings")
    sample_answer = raw.get("sample_answer")
    if not isinstance(sample_answer, str) or not sample_answer.strip():
        raise GeneratedBatchRejected("missing sample answer")

    question = ProvisionedQuestion(
        ordinal=0,
        prompt=prompt.strip(),
        question_type=qtype,
        difficulty=difficulty,
        source="generated",
        hints=[h.strip() for h in hints if h.strip()][:5],
        sample_answer=sample_answer.strip(),
    )

    if qtype == QuestionType.CODING.value:
        entrypoint = raw.get("entrypoint")
        cases = raw.get("test_cases")
        if not isinstance(entrypoint, str) or not entrypoint.isidentifier():
            raise GeneratedBatchRejected("coding question needs a valid entrypoint")
        if not isinstance(cases, list) or not cases:
            raise GeneratedBatchRejected("coding question needs test cases")
        for case in cases:
            if not isinstance(case, dict) or "input" not in case or "expected" not in case:
                raise GeneratedBatchRejected("test case needs input and expected")
        question.entrypoint = entrypoint
        question.test_cases = [
            {"input": c["input"], "expected": c["expected"], "description": str(c.get("description") or "")}
            for c in cases
        ]
    elif qtype in (QuestionType.MULTIPLE_CHOICE.value, QuestionType.MULTIPLE_SELECT.value):
        options = raw.get("options")
        correct = raw.get("correct_answer")
        if not isinstance(options, list) or len(options) < 2 or not all(isinstance(o, str) for o in options):
            raise GeneratedBatchRejected("choice question needs at least two string options")
        if qtype == QuestionType.MULTIPLE_CHOICE.value:
            if correct not in options:
                raise GeneratedBatchRejected("correct answer must be one of the options")
        elif not isinstance(correct, list) or not correct or any(c not in options for c in correct):
            raise GeneratedBatchRejected("correct answers must be a subset of the options")
        question.options = list(options)
        question.correct_answer = correct
    elif qtype == QuestionType.TRUE_FALSE.value:
        correct = raw.get("correct_answer")
        if not isinstance(correct, bool):
            raise GeneratedBatchRejected("true/false question needs a boolean answer")
        question.correct_answer = correct
    elif qtype == QuestionType.SHORT_ANSWER.value:
        keywords = raw.get("keywords")
        correct = raw.get("correct_answer")
        if keywords is not None and (not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords)):
            raise GeneratedBatchRejected("keywords must be a list of strings")
        if not keywords and not isinstance(correct, str):
            raise GeneratedBatchRejected("short answer needs keywords or a correct answer")
        question.keywords = list(keywords) if keywords else None
        question.correct_answer = correct if isinstance(correct, str) else None
    return question


class QuestionProvisioner:
    def __init__(self, text_generator: Optional[TextGenerator] = None):
        self.text_generator = text_generator

    def provision(self, config: SessionConfig, seed: Optional[int] = None) -> ProvisioningResult:
        requested = max(0, int(config.question_count))
        if seed is None:
            seed = config.seed if config.seed is not None else secrets.randbelow(2**31)
        rng = random.Random(seed)

        exact = bank_items(config.category, config.difficulty, config.kind)
        picks: List[BankItem] = rng.sample(exact, min(requested, len(exact)))

        if len(picks) < requested:
            chosen = {item["key"] for item in picks}
            neighbours = [
                item
                for diff in adjacent_difficulties(config.difficulty)
                for item in bank_items(config.category, diff, config.kind)
                if item["key"] not in chosen
            ]
            if neighbours:
                picks.append(rng.choice(neighbours))

        questions = [_from_bank(item) for item in picks]
        missing = requested - len(questions)
        generated: List[ProvisionedQuestion] = []
        if missing > 0:
            generated = self._generate(config, missing)
            questions.extend(generated)

        for ordinal, question in enumerate(questions, start=1):
            question.ordinal = ordinal

        shortfall = requested - len(questions)
        logger.info(
            "Provisioned %d/%d questions (kind=%s, category=%s, difficulty=%s, generated=%d, seed=%s)",
            len(questions),
            requested,
            config.kind,
            config.category,
            config.difficulty,
            len(generated),
            seed,
        )
        return ProvisioningResult(
            questions=questions,
            requested=requested,
            shortfall=shortfall,
            generated=len(generated),
            seed=seed,
        )

    def _generation_prompt(self, config: SessionConfig, count: int) -> str:
        allowed = sorted(ALLOWED_TYPES.get(config.kind, ()))
        schema = {
            "prompt": "question text",
            "question_type": "|".join(allowed),
            "hints": ["short hint"],
            "sample_answer": "model answer",
            "entrypoint": "function name (coding only)",
            "test_cases": [{"input": "argument or object of keyword arguments", "expected": "return value", "description": "what it checks"}],
            "options": ["choice questions only"],
            "correct_answer": "option text, list of options, boolean or text depending on type",
            "keywords": ["short answer only"],
        }
        return (
            f"Generate {count} {config.difficulty} {config.category.replace('_', ' ')} questions "
            f"for a {config.kind.replace('_', ' ')}.\n"
            f"Target role: {config.role or 'Software Engineer'}\n"
            f"Company: {config.company or 'a technology company'}\n"
            f"Programming language for coding questions: {config.language}\n"
            f"Allowed question types: {', '.join(allowed)}\n"
            "Coding questions must ask for a single function and include at least three JSON test cases.\n"
            f"Each array item must follow this shape:\n{json.dumps(schema, indent=2)}"
        )

    def _generate(self, config: SessionConfig, count: int) -> List[ProvisionedQuestion]:
        if self.text_generator is None:
            return []
        try:
            raw = self.text_generator.generate(
                self._generation_prompt(config, count),
                system=GENERATION_SYSTEM_PROMPT,
                max_tokens=2000,
                temperature=0.7,
            )
        except Exception as exc:
            logger.warning("Question generation unavailable: %s", exc)
            return []

        items = parse_json_list(raw)
        if items is None:
            logger.warning("Question generation returned no JSON array; batch rejected")
            return []
        try:
            validated = [validate_generated_item(item, config.kind, config.difficulty) for item in items]
        except GeneratedBatchRejected as exc:
            logger.warning("Generated question batch rejected: %s", exc)
            return []
        return validated[:count]
