"""
E2B Code Interpreter service for remote sandboxed code execution.

Used by the ``e2b`` code-execution backend: one sandbox is created per
scored answer, every test case runs inside it, and the sandbox is killed
afterwards.
"""

import logging

from e2b_code_interpreter import Sandbox, TimeoutException

logger = logging.getLogger("assessment_engine.integrations.e2b")


class E2BService:
    """Thin wrapper around the E2B SDK sandbox lifecycle."""

    def __init__(self, api_key: str, template: str | None = None):
        self.api_key = api_key
        self.template = template

    def get_sandbox_id(self, sandbox: Sandbox) -> str:
        """
        Resolve sandbox identifier across SDK versions.
        """
        for attr in ("id", "sandbox_id", "sandboxId"):
            value = getattr(sandbox, attr, None)
            if value:
                return str(value)
        raise AttributeError("Sandbox object has no id/sandbox_id attribute")

    def create_sandbox(self) -> Sandbox:
        """
        Create a new E2B sandbox instance.

        Raises:
            Exception: If sandbox creation fails.
        """
        try:
            logger.info("Creating new E2B sandbox")
            if self.template:
                sandbox = Sandbox(api_key=self.api_key, template=self.template)
            else:
                sandbox = Sandbox(api_key=self.api_key)
            logger.info("E2B sandbox created successfully (id=%s)", self.get_sandbox_id(sandbox))
            return sandbox
        except Exception as e:
            logger.error("Failed to create E2B sandbox: %s", str(e))
            raise

    def execute_code(self, sandbox: Sandbox, code: str, timeout: float | None = None) -> dict:
        """
        Execute a Python snippet inside an E2B sandbox.

        Returns:
            Dict with keys: success, stdout, stderr, error. A run that exceeds
            ``timeout`` is reported as an error result.

        Raises:
            Exception: If the sandbox itself fails (connection loss, killed VM).
        """
        try:
            logger.debug("Executing code in sandbox (length=%d chars)", len(code))
            if timeout is not None:
                execution = sandbox.run_code(code, timeout=timeout)
            else:
                execution = sandbox.run_code(code)

            # logs.stdout/stderr may be lists of strings
            raw_stdout = execution.logs.stdout if execution.logs.stdout else []
            raw_stderr = execution.logs.stderr if execution.logs.stderr else []
            stdout = "".join(raw_stdout) if isinstance(raw_stdout, list) else str(raw_stdout)
            stderr = "".join(raw_stderr) if isinstance(raw_stderr, list) else str(raw_stderr)

            error = None
            if execution.error:
                error = f"{execution.error.name}: {execution.error.value}"
                logger.warning("Sandbox execution produced an error: %s", error)

            return {
                "success": execution.error is None,
                "stdout": stdout,
                "stderr": stderr,
                "error": error,
            }
        except TimeoutException as e:
            logger.warning("Sandbox execution timed out: %s", str(e))
            return {
                "success": False,
                "stdout": "",
                "stderr": "",
                "error": f"Timed out after {timeout:g}s" if timeout is not None else "Timed out",
            }
        except Exception as e:
            logger.error("Failed to execute code in sandbox: %s", str(e))
            raise

    def close_sandbox(self, sandbox: Sandbox) -> None:
        """
        Safely close an E2B sandbox, releasing resources.
        """
        try:
            try:
                sandbox_id = self.get_sandbox_id(sandbox)
            except AttributeError:
                sandbox_id = "unknown"
            logger.info("Closing E2B sandbox (id=%s)", sandbox_id)
            sandbox.kill()
        except Exception as e:
            logger.error("Failed to close E2B sandbox: %s", str(e))
