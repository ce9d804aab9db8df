"""Exceptions for cli-integ."""

from typing import Any

# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class CliIntegError(Exception):
    """
    Base exception for all cli-integ errors.

    All exceptions raised by the harness inherit from this class,
    allowing callers to catch all harness-specific errors with a single
    except clause.
    """

    pass


class ValidationError(CliIntegError):
    """Raised when a name or argument fails validation."""

    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


# ---------------------------------------------------------------------------
# Fixture Exceptions
# ---------------------------------------------------------------------------


class ProvisioningError(CliIntegError):
    """
    Raised when a test fixture cannot be provisioned.

    Provisioning failures are fatal: the test body never runs.
    """

    def __init__(self, test_name: str, reason: str) -> None:
        self.test_name = test_name
        self.reason = reason
        super().__init__(f"Fixture provisioning for '{test_name}' failed: {reason}")


class TemplateNotFoundError(CliIntegError):
    """Raised when a synthesized template is not present in the cloud assembly."""

    def __init__(self, stack_name: str, path: str) -> None:
        self.stack_name = stack_name
        self.path = path
        super().__init__(f"No template for stack {stack_name} at {path}. Did you run cdk synth?")


# ---------------------------------------------------------------------------
# Command Exceptions
# ---------------------------------------------------------------------------


class CommandFailedError(CliIntegError):
    """
    Raised when a CLI subprocess exits with a non-zero status.

    Attributes:
        argv: The command line that was executed
        exit_code: Process exit status
        stdout: Captured standard output
        stderr: Captured standard error
    """

    def __init__(self, argv: list[str], exit_code: int, stdout: str = "", stderr: str = "") -> None:
        self.argv = argv
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = f"Command {' '.join(self.argv)!r} exited with code {self.exit_code}"
        tail = (self.stderr or self.stdout).strip().splitlines()[-10:]
        if tail:
            msg += ":\n" + "\n".join(tail)
        return msg


class CommandTimeoutError(CliIntegError):
    """Raised when a CLI subprocess does not finish within its timeout."""

    def __init__(self, argv: list[str], timeout: float) -> None:
        self.argv = argv
        self.timeout = timeout
        super().__init__(f"Command {' '.join(argv)!r} did not finish within {timeout:.0f}s")


# ---------------------------------------------------------------------------
# Wrapper Exceptions
# ---------------------------------------------------------------------------


class IntegTestTimeoutError(CliIntegError):
    """Raised when an integration test exceeds its wall-clock budget."""

    def __init__(self, test_name: str, timeout: float) -> None:
        self.test_name = test_name
        self.timeout = timeout
        super().__init__(f"Integration test '{test_name}' timed out after {timeout:.0f}s")


class LockTimeoutError(CliIntegError):
    """Raised when an exclusive lock cannot be acquired before the deadline."""

    def __init__(self, lock_name: str, timeout: float) -> None:
        self.lock_name = lock_name
        self.timeout = timeout
        super().__init__(f"Could not acquire lock '{lock_name}' within {timeout:.0f}s")


# ---------------------------------------------------------------------------
# Infrastructure Exceptions
# ---------------------------------------------------------------------------


class StackDeletionError(CliIntegError):
    """Raised when CloudFormation stack deletion fails."""

    def __init__(
        self, stack_name: str, reason: str, events: list[dict[str, Any]] | None = None
    ) -> None:
        self.stack_name = stack_name
        self.reason = reason
        self.events = events or []
        super().__init__(f"Stack {stack_name} deletion failed: {reason}")
