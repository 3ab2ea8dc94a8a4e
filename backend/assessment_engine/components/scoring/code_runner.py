"""Isolated execution of candidate code against test cases.

Two backends implement :class:`CodeRunner`:

* ``SubprocessCodeRunner`` starts one throwaway interpreter per test case in
  isolated mode with resource limits, an empty environment and a scratch
  working directory.
* ``E2BCodeRunner`` runs the same harness inside a remote E2B sandbox.

Expected outputs never leave this process; the harness only reports what the
candidate function returned and the comparison happens here.
"""

from __future__ import annotations

import ast
import contextlib
import json
import logging
import os
import secrets
import shutil
import signal
import subprocess
import sys
import tempfile
import time
from dataclasses import asdict, dataclass
from typing import Any, List, Optional, Protocol, Sequence

from ...platform.config import settings as default_settings
from ...shared.errors import SandboxFault

try:
    import resource
except ImportError:  # non-POSIX hosts
    resource = None

logger = logging.getLogger("assessment_engine.scoring.code_runner")

DENIED_MODULES = (
    "os",
    "sys",
    "subprocess",
    "socket",
    "ssl",
    "http",
    "urllib",
    "shutil",
    "pathlib",
    "ctypes",
    "multiprocessing",
    "threading",
    "_thread",
    "signal",
    "importlib",
    "inspect",
    "gc",
    "io",
    "builtins",
    "posix",
    "pty",
    "select",
    "asyncio",
    "tempfile",
    "pickle",
    "marshal",
)

BLOCKED_BUILTINS = (
    "open",
    "exec",
    "eval",
    "compile",
    "input",
    "breakpoint",
    "help",
    "exit",
    "quit",
    "globals",
    "vars",
    "memoryview",
)

# Stdlib modules a candidate may import. Loaded before the audit hook is
# installed; every later import is refused by the hook.
PRELOADED_MODULES = (
    "array",
    "bisect",
    "cmath",
    "collections",
    "copy",
    "dataclasses",
    "datetime",
    "decimal",
    "enum",
    "fractions",
    "functools",
    "heapq",
    "itertools",
    "math",
    "operator",
    "random",
    "re",
    "statistics",
    "string",
    "textwrap",
    "typing",
    "unicodedata",
)

# Audit events refused once candidate code may run. The hook sees every path
# to these operations, including objects reached through frames or module
# attributes, not only the names exposed to the candidate.
BLOCKED_AUDIT_EVENTS = (
    "open",
    "import",
    "builtins.input",
    "code.__new__",
    "marshal.load",
    "marshal.loads",
    "pickle.find_class",
    "sys.addaudithook",
    "sys.settrace",
    "sys.setprofile",
    "sys._current_frames",
    "sys.remote_exec",
    "resource.setrlimit",
    "resource.prlimit",
)

BLOCKED_AUDIT_PREFIXES = (
    "os.",
    "subprocess.",
    "socket.",
    "shutil.",
    "ctypes.",
    "mmap.",
    "pty.",
    "fcntl.",
    "gc.",
    "glob.",
    "signal.",
    "_thread.",
    "tempfile.",
    "urllib.",
    "http.",
    "ftplib.",
    "smtplib.",
    "sqlite3.",
    "webbrowser.",
    "syslog.",
    "winreg.",
    "msvcrt.",
)

# Harness executed in the child interpreter. Defines ``_run(payload)`` which
# returns a single "<nonce><json>" line describing the call outcome.
HARNESS = r'''
import builtins as _builtins
import io as _io
import json as _json
import sys as _sys


def _seal(preload, events, prefixes):
    for name in preload:
        try:
            __import__(name)
        except ImportError:
            pass

    def hook(event, args, _events=frozenset(events), _prefixes=tuple(prefixes), _deny=PermissionError):
        if event in _events or event.startswith(_prefixes):
            raise _deny("operation %r is not allowed" % event)

    _sys.addaudithook(hook)


def _run(payload):
    denied = frozenset(payload["denied"])
    real_import = _builtins.__import__

    def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
        if level == 0 and name.split(".")[0] in denied:
            raise ImportError("import of %r is not allowed" % name)
        return real_import(name, globals, locals, fromlist, level)

    safe_builtins = {
        key: getattr(_builtins, key)
        for key in dir(_builtins)
        if key not in payload["blocked_builtins"] and not key.startswith("__")
    }
    safe_builtins["__import__"] = guarded_import
    safe_builtins["__build_class__"] = _builtins.__build_class__
    safe_builtins["__name__"] = "candidate"

    if payload.get("seal"):
        _seal(payload["preload"], payload["blocked_events"], payload["blocked_prefixes"])

    namespace = {"__builtins__": safe_builtins, "__name__": "candidate"}
    real_stdout = _sys.stdout
    _sys.stdout = _io.StringIO()
    try:
        code_obj = compile(payload["code"], "<candidate>", "exec")
        exec(code_obj, namespace)
        fn = namespace.get(payload["entrypoint"])
        if not callable(fn):
            raise NameError("function %r is not defined" % payload["entrypoint"])
        arg = payload["input"]
        if payload["kwargs"]:
            value = fn(**arg)
        else:
            value = fn(arg)
        try:
            body = {"ok": True, "result": _json.loads(_json.dumps(value))}
        except (TypeError, ValueError):
            body = {"ok": False, "error": "Return value is not JSON-serialisable: %s" % type(value).__name__}
    except BaseException as exc:
        body = {"ok": False, "error": "%s: %s" % (type(exc).__name__, exc)}
    finally:
        _sys.stdout = real_stdout
    return payload["nonce"] + _json.dumps(body)
'''

_SUBPROCESS_MAIN = HARNESS + "\nprint(_run(_json.loads(_sys.stdin.read())), flush=True)\n"


@dataclass
class CaseOutcome:
    index: int
    passed: bool
    description: str = ""
    actual: Any = None
    error: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class CodeRunner(Protocol):
    def run_cases(self, code: str, entrypoint: Optional[str], cases: Sequence[dict]) -> List[CaseOutcome]:
        ...


def normalize_json(value: Any) -> Any:
    """Round-trip through JSON so tuples, lists and int/float keys compare structurally."""
    return json.loads(json.dumps(value))


def resolve_entrypoint(code: str, entrypoint: Optional[str]) -> str:
    """Return the function to call: the named one if defined, else the last top-level def.

    Raises SyntaxError for unparsable code and NameError when no function exists.
    """
    tree = ast.parse(code)
    names = [node.name for node in tree.body if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef))]
    if entrypoint and entrypoint in names:
        return entrypoint
    if names:
        return names[-1]
    raise NameError("no top-level function is defined")


def _case_input(case: dict) -> tuple[Any, bool]:
    value = case.get("input")
    return value, isinstance(value, dict)


def _harness_payload(code: str, entrypoint: str, value: Any, as_kwargs: bool, nonce: str, seal: bool) -> dict:
    payload = {
        "code": code,
        "entrypoint": entrypoint,
        "input": value,
        "kwargs": as_kwargs,
        "nonce": nonce,
        "denied": list(DENIED_MODULES),
        "blocked_builtins": list(BLOCKED_BUILTINS),
        "seal": seal,
    }
    if seal:
        payload["preload"] = list(PRELOADED_MODULES)
        payload["blocked_events"] = list(BLOCKED_AUDIT_EVENTS)
        payload["blocked_prefixes"] = list(BLOCKED_AUDIT_PREFIXES)
    return payload


def _failed_all(cases: Sequence[dict], error: str) -> List[CaseOutcome]:
    return [
        CaseOutcome(index=i, passed=False, description=str(case.get("description") or ""), error=error)
        for i, case in enumerate(cases)
    ]


def _outcome_from_line(index: int, case: dict, line: Optional[str], nonce: str, duration_ms: int) -> CaseOutcome:
    description = str(case.get("description") or "")
    if line is None:
        return CaseOutcome(index, False, description, error="No result produced", duration_ms=duration_ms)
    try:
        body = json.loads(line[len(nonce):])
    except json.JSONDecodeError:
        return CaseOutcome(index, False, description, error="Malformed result", duration_ms=duration_ms)
    if not body.get("ok"):
        return CaseOutcome(index, False, description, error=str(body.get("error") or "error"), duration_ms=duration_ms)
    actual = body.get("result")
    passed = actual == normalize_json(case.get("expected"))
    return CaseOutcome(index, passed, description, actual=actual, duration_ms=duration_ms)


def _find_marker(stdout: str, nonce: str) -> Optional[str]:
    found = None
    for line in stdout.splitlines():
        if line.startswith(nonce):
            found = line
    return found


class SubprocessCodeRunner:
    """Runs each test case in a fresh, resource-limited child interpreter.

    With ``isolation="bwrap"`` the interpreter is started inside a bubblewrap
    sandbox with fresh namespaces (no network), an empty /tmp and read-only
    system directories. When bubblewrap is missing or cannot set up its
    namespaces the run raises :class:`SandboxFault` instead of falling back.
    ``isolation="process"`` skips the namespace layer and relies on the
    in-interpreter audit hook and resource limits only; it is meant for local
    development.
    """

    def __init__(
        self,
        timeout_seconds: float = 2.0,
        memory_mb: int = 256,
        max_output_bytes: int = 65536,
        python_executable: Optional[str] = None,
        isolation: str = "bwrap",
        bwrap_executable: str = "bwrap",
    ):
        self.timeout_seconds = float(timeout_seconds)
        self.memory_bytes = int(memory_mb) * 1024 * 1024
        self.max_output_bytes = int(max_output_bytes)
        self.python_executable = python_executable or sys.executable
        self.isolation = (isolation or "bwrap").strip().lower()
        if self.isolation not in ("bwrap", "process"):
            raise ValueError(f"Unknown code isolation mode: {isolation!r}")
        self.bwrap_executable = bwrap_executable
        if self.isolation == "process":
            logger.warning("Code runner started without namespace isolation (isolation=process)")

    def _limit_resources(self) -> None:
        if resource is None:
            return
        cpu = int(self.timeout_seconds) + 1
        limits = [
            (getattr(resource, "RLIMIT_AS", None), (self.memory_bytes, self.memory_bytes)),
            (getattr(resource, "RLIMIT_CPU", None), (cpu, cpu)),
            (getattr(resource, "RLIMIT_FSIZE", None), (0, 0)),
            (getattr(resource, "RLIMIT_NOFILE", None), (32, 32)),
            (getattr(resource, "RLIMIT_CORE", None), (0, 0)),
        ]
        # bubblewrap must clone into its namespaces; the pid namespace bounds it instead.
        if self.isolation != "bwrap":
            limits.append((getattr(resource, "RLIMIT_NPROC", None), (0, 0)))
        for limit, value in limits:
            if limit is None:
                continue
            # Some limits cannot be lowered inside restricted containers.
            with contextlib.suppress(ValueError, OSError):
                resource.setrlimit(limit, value)

    def _readonly_roots(self) -> List[str]:
        roots: List[str] = []
        candidates = ["/usr", "/bin", "/lib", "/lib64", sys.base_prefix, sys.prefix]
        candidates.append(os.path.dirname(os.path.realpath(self.python_executable)))
        for path in candidates:
            if path and path not in roots:
                roots.append(path)
        return roots

    def sandbox_command(self) -> List[str]:
        """Command prefix that starts the interpreter inside the configured sandbox."""
        if self.isolation != "bwrap":
            return []
        bwrap = shutil.which(self.bwrap_executable)
        if not bwrap:
            raise SandboxFault("Isolation sandbox unavailable", reason=f"{self.bwrap_executable} not found")
        command = [
            bwrap,
            "--unshare-all",
            "--die-with-parent",
            "--new-session",
            "--clearenv",
            "--cap-drop",
            "ALL",
        ]
        for path in self._readonly_roots():
            command += ["--ro-bind-try", path, path]
        command += ["--dev", "/dev", "--tmpfs", "/tmp", "--chdir", "/tmp", "--"]
        return command

    def _run_one(self, index: int, case: dict, code: str, entrypoint: str, workdir: str) -> CaseOutcome:
        nonce = "@@RESULT-" + secrets.token_hex(8) + "@@"
        value, as_kwargs = _case_input(case)
        payload = json.dumps(_harness_payload(code, entrypoint, value, as_kwargs, nonce, seal=True)).encode("utf-8")
        command = self.sandbox_command() + [self.python_executable, "-I", "-S", "-B", "-c", _SUBPROCESS_MAIN]

        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=workdir,
                env={},
                start_new_session=True,
                preexec_fn=self._limit_resources if os.name == "posix" else None,
            )
        except OSError as exc:
            raise SandboxFault("Could not start code runner", reason=str(exc)) from exc

        try:
            stdout, stderr = proc.communicate(payload, timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            with contextlib.suppress(ProcessLookupError, PermissionError):
                os.killpg(proc.pid, signal.SIGKILL)
            proc.communicate()
            duration_ms = int((time.monotonic() - started) * 1000)
            return CaseOutcome(
                index,
                False,
                str(case.get("description") or ""),
                error=f"Timed out after {self.timeout_seconds:g}s",
                duration_ms=duration_ms,
            )
        duration_ms = int((time.monotonic() - started) * 1000)

        if len(stdout) > self.max_output_bytes:
            return CaseOutcome(index, False, str(case.get("description") or ""), error="Output limit exceeded", duration_ms=duration_ms)

        line = _find_marker(stdout.decode("utf-8", errors="replace"), nonce)
        if line is None and proc.returncode and self.isolation == "bwrap" and (stderr or b"").startswith(b"bwrap:"):
            reason = stderr.decode("utf-8", errors="replace").strip()[:500]
            raise SandboxFault("Isolation sandbox failed to start", reason=reason)
        outcome = _outcome_from_line(index, case, line, nonce, duration_ms)
        if line is None and proc.returncode:
            outcome.error = f"Process exited with code {proc.returncode}"
        return outcome

    def run_cases(self, code: str, entrypoint: Optional[str], cases: Sequence[dict]) -> List[CaseOutcome]:
        try:
            resolved = resolve_entrypoint(code, entrypoint)
        except (SyntaxError, NameError) as exc:
            return _failed_all(cases, f"{type(exc).__name__}: {exc}")

        try:
            scratch = tempfile.TemporaryDirectory(prefix="assessment-run-")
        except OSError as exc:
            raise SandboxFault("Could not create scratch directory", reason=str(exc)) from exc
        with scratch as workdir:
            outcomes = [self._run_one(i, case, code, resolved, workdir) for i, case in enumerate(cases)]
        logger.info(
            "Executed %d test cases (passed=%d, entrypoint=%s)",
            len(outcomes),
            sum(1 for o in outcomes if o.passed),
            resolved,
        )
        return outcomes


class E2BCodeRunner:
    """Runs the harness in a remote E2B sandbox, one sandbox per answer."""

    def __init__(self, service: Any, timeout_seconds: float = 2.0):
        self.service = service
        self.timeout_seconds = float(timeout_seconds)

    def run_cases(self, code: str, entrypoint: Optional[str], cases: Sequence[dict]) -> List[CaseOutcome]:
        try:
            resolved = resolve_entrypoint(code, entrypoint)
        except (SyntaxError, NameError) as exc:
            return _failed_all(cases, f"{type(exc).__name__}: {exc}")

        try:
            sandbox = self.service.create_sandbox()
        except Exception as exc:
            raise SandboxFault("Remote sandbox unavailable", reason=str(exc)) from exc

        outcomes: List[CaseOutcome] = []
        try:
            for index, case in enumerate(cases):
                nonce = "@@RESULT-" + secrets.token_hex(8) + "@@"
                value, as_kwargs = _case_input(case)
                # The sandbox VM is the boundary; sealing would also cut off the kernel.
                payload = _harness_payload(code, resolved, value, as_kwargs, nonce, seal=False)
                script = HARNESS + f"\nprint(_run(_json.loads({json.dumps(json.dumps(payload))})))\n"
                started = time.monotonic()
                try:
                    result = self.service.execute_code(sandbox, script, timeout=self.timeout_seconds)
                except Exception as exc:
                    raise SandboxFault("Remote sandbox failed during execution", reason=str(exc)) from exc
                duration_ms = int((time.monotonic() - started) * 1000)
                line = _find_marker(result.get("stdout") or "", nonce)
                outcome = _outcome_from_line(index, case, line, nonce, duration_ms)
                if line is None and result.get("error"):
                    outcome.error = str(result["error"])
                outcomes.append(outcome)
        finally:
            self.service.close_sandbox(sandbox)
        return outcomes


def build_code_runner(settings_obj: Any = None) -> CodeRunner:
    cfg = settings_obj or default_settings
    backend = (cfg.CODE_EXECUTION_BACKEND or "subprocess").strip().lower()
    if backend == "e2b":
        from ..integrations.e2b.service import E2BService

        return E2BCodeRunner(
            E2BService(api_key=cfg.E2B_API_KEY, template=cfg.E2B_TEMPLATE),
            timeout_seconds=cfg.CODE_EXECUTION_TIMEOUT_SECONDS,
        )
    return SubprocessCodeRunner(
        timeout_seconds=cfg.CODE_EXECUTION_TIMEOUT_SECONDS,
        memory_mb=cfg.CODE_EXECUTION_MEMORY_MB,
        max_output_bytes=cfg.CODE_EXECUTION_MAX_OUTPUT_BYTES,
        isolation=cfg.CODE_EXECUTION_ISOLATION,
        bwrap_executable=cfg.BWRAP_EXECUTABLE,
    )
