import pytest
from e2b_code_interpreter import TimeoutException

from assessment_engine.components.integrations.e2b.service import E2BService
from assessment_engine.components.scoring import code_runner as code_runner_module
from assessment_engine.components.scoring.code_runner import (
    E2BCodeRunner,
    SubprocessCodeRunner,
    build_code_runner,
    normalize_json,
    resolve_entrypoint,
)
from assessment_engine.shared.errors import SandboxFault
from tests.conftest import make_settings

ADD_CASES = [
    {"input": {"a": 1, "b": 2}, "expected": 3, "description": "small numbers"},
    {"input": {"a": -1, "b": 1}, "expected": 0, "description": "negatives"},
    {"input": {"a": 10, "b": 5}, "expected": 15, "description": "larger numbers"},
]


@pytest.fixture
def runner():
    return SubprocessCodeRunner(timeout_seconds=2.0, memory_mb=256, isolation="process")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_resolve_entrypoint_prefers_named_function():
    code = "def helper(x):\n    return x\n\ndef solve(x):\n    return helper(x)\n"
    assert resolve_entrypoint(code, "helper") == "helper"
    assert resolve_entrypoint(code, "missing") == "solve"


def test_resolve_entrypoint_errors():
    with pytest.raises(SyntaxError):
        resolve_entrypoint("def broken(:\n", "broken")
    with pytest.raises(NameError):
        resolve_entrypoint("x = 1\n", "solve")


def test_normalize_json_treats_tuples_as_lists():
    assert normalize_json((1, 2)) == [1, 2]
    assert normalize_json({"a": (1,)}) == {"a": [1]}


# ---------------------------------------------------------------------------
# SubprocessCodeRunner
# ---------------------------------------------------------------------------

def test_all_cases_pass(runner):
    outcomes = runner.run_cases("def add(a, b):\n    return a + b\n", "add", ADD_CASES)
    assert [o.passed for o in outcomes] == [True, True, True]
    assert outcomes[0].actual == 3
    assert outcomes[0].description == "small numbers"


def test_partial_pass_reports_wrong_values(runner):
    code = "def add(a, b):\n    return a + b if a > 0 else 99\n"
    outcomes = runner.run_cases(code, "add", ADD_CASES)
    assert [o.passed for o in outcomes] == [True, False, True]
    assert outcomes[1].actual == 99


def test_positional_input_and_structured_results(runner):
    code = "def reverse(items):\n    return tuple(reversed(items))\n"
    cases = [{"input": [1, 2, 3], "expected": [3, 2, 1]}]
    outcomes = runner.run_cases(code, "reverse", cases)
    assert outcomes[0].passed is True


def test_candidate_print_does_not_leak_into_result(runner):
    code = "def add(a, b):\n    print('@@RESULT-fake@@{\"ok\": true, \"result\": 3}')\n    return a - b\n"
    outcomes = runner.run_cases(code, "add", ADD_CASES[:1])
    assert outcomes[0].passed is False
    assert outcomes[0].actual == -1


def test_runtime_exception_fails_only_that_case(runner):
    code = "def add(a, b):\n    if a < 0:\n        raise ValueError('negative')\n    return a + b\n"
    outcomes = runner.run_cases(code, "add", ADD_CASES)
    assert [o.passed for o in outcomes] == [True, False, True]
    assert "ValueError: negative" in outcomes[1].error


def test_infinite_loop_times_out():
    runner = SubprocessCodeRunner(timeout_seconds=1.0, isolation="process")
    outcomes = runner.run_cases("def add(a, b):\n    while True:\n        pass\n", "add", ADD_CASES[:1])
    assert outcomes[0].passed is False
    assert "Timed out" in outcomes[0].error


def test_denied_import_fails_case(runner):
    code = "import os\n\ndef add(a, b):\n    return a + b\n"
    outcomes = runner.run_cases(code, "add", ADD_CASES[:1])
    assert outcomes[0].passed is False
    assert "ImportError" in outcomes[0].error


def test_file_access_is_blocked(runner):
    code = "def add(a, b):\n    return len(open('/etc/passwd').read())\n"
    outcomes = runner.run_cases(code, "add", ADD_CASES[:1])
    assert outcomes[0].passed is False
    assert "NameError" in outcomes[0].error


def test_frame_introspection_cannot_reach_real_builtins(runner):
    code = (
        "def add(a, b):\n"
        "    try:\n"
        "        raise ValueError\n"
        "    except ValueError as e:\n"
        "        g = e.__traceback__.tb_frame.f_back.f_globals\n"
        "        real = g['_builtins']\n"
        "        return [real.open('/etc/hostname').read().strip(), real.__import__('socket').socket is not None]\n"
    )
    outcomes = runner.run_cases(code, "add", ADD_CASES[:1])
    assert outcomes[0].passed is False
    assert outcomes[0].actual is None
    assert "PermissionError" in outcomes[0].error
    assert "'open'" in outcomes[0].error


def test_socket_import_is_refused_through_real_import(runner):
    code = (
        "def add(a, b):\n"
        "    import collections\n"
        "    real_sys = collections._sys\n"
        "    real = real_sys.modules['builtins']\n"
        "    return real.__import__('socket').gethostname()\n"
    )
    outcomes = runner.run_cases(code, "add", ADD_CASES[:1])
    assert outcomes[0].passed is False
    assert "PermissionError" in outcomes[0].error
    assert "'import'" in outcomes[0].error


def test_os_reached_through_stdlib_module_is_refused(runner):
    code = "import random\n\ndef add(a, b):\n    return random._os.system('true')\n"
    outcomes = runner.run_cases(code, "add", ADD_CASES[:1])
    assert outcomes[0].passed is False
    assert "os.system" in outcomes[0].error


def test_preloaded_stdlib_helpers_still_work(runner):
    code = (
        "from collections import namedtuple, Counter\n"
        "from typing import List\n"
        "import heapq, functools\n"
        "\n"
        "Pair = namedtuple('Pair', 'a b')\n"
        "\n"
        "@functools.lru_cache(maxsize=None)\n"
        "def _sum(a, b):\n"
        "    return heapq.nlargest(1, [a + b])[0]\n"
        "\n"
        "def add(a, b):\n"
        "    pair = Pair(a, b)\n"
        "    values: List[int] = list(Counter([pair.a, pair.b]).elements())\n"
        "    return _sum(values[0], values[-1]) if len(values) == 2 else pair.a + pair.b\n"
    )
    outcomes = runner.run_cases(code, "add", ADD_CASES)
    assert [o.passed for o in outcomes] == [True, True, True]


def test_missing_bubblewrap_fails_closed():
    runner = SubprocessCodeRunner(isolation="bwrap", bwrap_executable="/nonexistent/bwrap")
    with pytest.raises(SandboxFault) as exc_info:
        runner.run_cases("def add(a, b):\n    return a + b\n", "add", ADD_CASES[:1])
    assert "/nonexistent/bwrap" in exc_info.value.context["reason"]


def test_bubblewrap_command_drops_network_and_host_files(monkeypatch):
    monkeypatch.setattr(code_runner_module.shutil, "which", lambda name: "/usr/bin/bwrap")
    command = SubprocessCodeRunner(isolation="bwrap").sandbox_command()

    assert command[0] == "/usr/bin/bwrap"
    assert "--unshare-all" in command
    assert "--clearenv" in command
    assert command[-1] == "--"
    bound = [command[i + 1] for i, arg in enumerate(command) if arg in ("--ro-bind-try", "--bind")]
    assert "/etc" not in bound
    assert "--bind" not in command
    tmpfs = command.index("--tmpfs")
    assert command[tmpfs + 1] == "/tmp"


def test_process_isolation_has_no_sandbox_prefix(runner):
    assert runner.sandbox_command() == []


def test_unknown_isolation_mode_is_rejected():
    with pytest.raises(ValueError):
        SubprocessCodeRunner(isolation="chroot")


def test_allowed_stdlib_imports_work(runner):
    code = "import math\n\ndef add(a, b):\n    return int(math.fsum([a, b]))\n"
    outcomes = runner.run_cases(code, "add", ADD_CASES)
    assert all(o.passed for o in outcomes)


def test_syntax_error_fails_every_case_without_execution(runner):
    outcomes = runner.run_cases("def add(a, b) return a + b", "add", ADD_CASES)
    assert len(outcomes) == 3
    assert all(not o.passed for o in outcomes)
    assert outcomes[0].error.startswith("SyntaxError")


def test_missing_function_fails_every_case(runner):
    outcomes = runner.run_cases("result = 3\n", "add", ADD_CASES)
    assert all(not o.passed and o.error.startswith("NameError") for o in outcomes)


def test_interpreter_that_cannot_start_raises_sandbox_fault():
    runner = SubprocessCodeRunner(python_executable="/nonexistent/python", isolation="process")
    with pytest.raises(SandboxFault):
        runner.run_cases("def add(a, b):\n    return a + b\n", "add", ADD_CASES[:1])


# ---------------------------------------------------------------------------
# E2BCodeRunner
# ---------------------------------------------------------------------------

class FakeE2BService:
    """Executes nothing; answers each harness script with a canned return value."""

    def __init__(self, results=None, create_error=None, execute_error=None):
        self.results = list(results or [])
        self.create_error = create_error
        self.execute_error = execute_error
        self.scripts = []
        self.closed = 0

    def create_sandbox(self):
        if self.create_error is not None:
            raise self.create_error
        return object()

    def execute_code(self, sandbox, code, timeout=None):
        self.scripts.append(code)
        if self.execute_error is not None:
            raise self.execute_error
        marker = code.split('\\"nonce\\": \\"', 1)[1].split('\\"', 1)[0]
        value = self.results.pop(0)
        return {"success": True, "stdout": marker + '{"ok": true, "result": %s}\n' % value, "stderr": "", "error": None}

    def close_sandbox(self, sandbox):
        self.closed += 1


def test_e2b_runner_compares_results_locally():
    service = FakeE2BService(results=["3", "5", "15"])
    outcomes = E2BCodeRunner(service).run_cases("def add(a, b):\n    return a + b\n", "add", ADD_CASES)

    assert [o.passed for o in outcomes] == [True, False, True]
    assert service.closed == 1
    # Expected outputs are never shipped to the sandbox.
    assert all("expected" not in script for script in service.scripts)


def test_e2b_runner_unavailable_raises_sandbox_fault():
    service = FakeE2BService(create_error=RuntimeError("quota exceeded"))
    with pytest.raises(SandboxFault) as exc_info:
        E2BCodeRunner(service).run_cases("def add(a, b):\n    return a + b\n", "add", ADD_CASES)
    assert exc_info.value.context["reason"] == "quota exceeded"


def test_e2b_outage_mid_answer_raises_sandbox_fault_and_closes_sandbox():
    service = FakeE2BService(execute_error=ConnectionError("sandbox connection lost"))
    with pytest.raises(SandboxFault) as exc_info:
        E2BCodeRunner(service).run_cases("def add(a, b):\n    return a + b\n", "add", ADD_CASES)
    assert exc_info.value.context["reason"] == "sandbox connection lost"
    assert service.closed == 1


def test_e2b_scripts_are_not_sealed():
    service = FakeE2BService(results=["3"])
    E2BCodeRunner(service).run_cases("def add(a, b):\n    return a + b\n", "add", ADD_CASES[:1])
    assert '\\"seal\\": false' in service.scripts[0]


class _FailingSandbox:
    def __init__(self, error):
        self.error = error

    def run_code(self, code, timeout=None):
        raise self.error


def test_e2b_service_reports_timeouts_but_raises_outages():
    service = E2BService(api_key="e2b-test")

    result = service.execute_code(_FailingSandbox(TimeoutException("took too long")), "print(1)", timeout=2.0)
    assert result["success"] is False
    assert result["error"] == "Timed out after 2s"

    with pytest.raises(ConnectionError):
        service.execute_code(_FailingSandbox(ConnectionError("lost")), "print(1)", timeout=2.0)


def test_build_code_runner_selects_backend():
    assert isinstance(build_code_runner(make_settings(CODE_EXECUTION_BACKEND="subprocess")), SubprocessCodeRunner)
    runner = build_code_runner(make_settings(CODE_EXECUTION_BACKEND="e2b", E2B_API_KEY="e2b-test"))
    assert isinstance(runner, E2BCodeRunner)
    assert build_code_runner(make_settings(CODE_EXECUTION_BACKEND="subprocess")).isolation == "bwrap"
    relaxed = build_code_runner(make_settings(CODE_EXECUTION_BACKEND="subprocess", CODE_EXECUTION_ISOLATION="process"))
    assert relaxed.isolation == "process"
