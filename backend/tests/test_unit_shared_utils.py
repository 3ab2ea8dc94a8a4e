import json
import logging
import threading
import time
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone

import pytest

from assessment_engine.components.scoring.code_runner import SubprocessCodeRunner
from assessment_engine.components.sessions.service import SessionOrchestrator
from assessment_engine.domains.integrations.adapters import build_session_orchestrator
from assessment_engine.platform.logging import JsonFormatter
from assessment_engine.platform.request_context import _session_id_ctx, set_session_id
from assessment_engine.shared.utils import KeyedLockRegistry, call_with_timeout, ensure_utc
from tests.conftest import FakeTextGenerator, make_settings


def test_ensure_utc_marks_naive_values():
    naive = datetime(2026, 5, 1, 9, 30)
    assert ensure_utc(naive).tzinfo == timezone.utc
    assert ensure_utc(None) is None


def test_call_with_timeout_returns_value_and_raises_on_deadline():
    assert call_with_timeout(lambda x: x * 2, 1.0, 21) == 42
    with pytest.raises(FutureTimeoutError):
        call_with_timeout(time.sleep, 0.05, 0.5)


def test_keyed_lock_registry_serializes_same_key_and_cleans_up():
    registry = KeyedLockRegistry()
    order = []
    entered = threading.Event()

    def worker():
        with registry.hold("s1"):
            order.append("worker")

    with registry.hold("s1"):
        thread = threading.Thread(target=lambda: (entered.set(), worker()))
        thread.start()
        entered.wait()
        time.sleep(0.05)
        order.append("main")
    thread.join()

    assert order == ["main", "worker"]
    assert len(registry) == 0


def test_build_session_orchestrator_wires_collaborators():
    generator = FakeTextGenerator()
    orchestrator = build_session_orchestrator(
        text_generator=generator,
        settings_obj=make_settings(CODE_EXECUTION_BACKEND="subprocess"),
    )
    assert isinstance(orchestrator, SessionOrchestrator)
    assert orchestrator.scorer.text_generator is generator
    assert orchestrator.provisioner.text_generator is generator
    assert isinstance(orchestrator.scorer.code_runner, SubprocessCodeRunner)


def test_json_formatter_tags_current_session():
    token = set_session_id("sess-123")
    try:
        record = logging.LogRecord("assessment_engine.sessions", logging.INFO, __file__, 1, "Session %s", ("ok",), None)
        payload = json.loads(JsonFormatter().format(record))
    finally:
        _session_id_ctx.reset(token)

    assert payload["message"] == "Session ok"
    assert payload["session_id"] == "sess-123"
    assert payload["logger"] == "assessment_engine.sessions"
