"""
Error taxonomy for the Remote Docker Builder.
"""

from typing import Any, Optional


class RemoteBuildError(Exception):
    """Base class for all workflow errors."""

    exit_code = 1


class PreconditionError(RemoteBuildError):
    """Raised before any remote or stateful action is taken."""

    exit_code = 2


class QueryError(RemoteBuildError):
    """Instance describe call failed."""

    def __init__(self, message: str, not_found: bool = False):
        super().__init__(message)
        self.not_found = not_found


class LifecycleError(RemoteBuildError):
    """Machine did not reach the required power state."""

    def __init__(
        self,
        message: str,
        last_state: Any = None,
        started_by_us: bool = False,
    ):
        super().__init__(message)
        self.last_state = last_state
        self.started_by_us = started_by_us


class UnexpectedStateError(LifecycleError):
    """Machine was found in a power state the workflow refuses to act on."""


class RemoteExecutionError(RemoteBuildError):
    """A remote command or transfer failed."""

    def __init__(
        self,
        message: str,
        command: str = "",
        returncode: Optional[int] = None,
        connection_failed: bool = False,
    ):
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.connection_failed = connection_failed


class PollTimeout(RemoteBuildError):
    """Readiness check did not report ready before the deadline."""

    def __init__(self, description: str, timeout: float, last_observed: Any = None):
        super().__init__(
            f"Timed out after {timeout:g}s waiting for {description} "
            f"(last observed: {last_observed})"
        )
        self.description = description
        self.timeout = timeout
        self.last_observed = last_observed


class PollAborted(RemoteBuildError):
    """Readiness check reported an unrecoverable condition."""

    def __init__(self, description: str, message: str, last_observed: Any = None):
        super().__init__(f"Gave up waiting for {description}: {message}")
        self.description = description
        self.last_observed = last_observed


class CleanupWarning(RemoteBuildError):
    """Teardown problem. Recorded and logged, never raised out of teardown."""


class WorkflowInterrupted(KeyboardInterrupt):
    """Raised from a signal handler so the workflow unwinds into teardown."""

    def __init__(self, signum: int):
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum

    @property
    def exit_code(self) -> int:
        return 128 + self.signum
