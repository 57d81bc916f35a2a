"""
Guaranteed cleanup for the remote build workflow.

Teardown runs once on every exit path, always in this order:

1. Remove the remote workspace (unless suppressed, and only if the VM is up).
2. Stop the VM, but only if this run started it.

Failures are recorded as CleanupWarning and never change the run's exit code.
"""

import logging
import shlex
import signal
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from errors import CleanupWarning, WorkflowInterrupted
from lifecycle import InstanceLifecycleManager
from models import PowerState, RunContext
from remote import RemoteExecutor

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGHUP")
    if hasattr(signal, name)
)

# No stop request is issued from these states
STOPPED_STATES = {
    PowerState.TERMINATED,
    PowerState.STOPPING,
    PowerState.SUSPENDING,
    PowerState.SUSPENDED,
}


@dataclass
class TeardownPlan:
    """What teardown will do, decided from the run's bookkeeping."""

    remove_workspace: bool
    stop_machine: bool
    reasons: List[str] = field(default_factory=list)


def plan_teardown(
    started_by_us: bool,
    workspace_created: bool,
    cleanup_suppressed: bool,
    current_state: PowerState,
) -> TeardownPlan:
    """Decide the teardown actions. Pure; performs no I/O."""
    reasons: List[str] = []

    if cleanup_suppressed:
        remove_workspace = False
        reasons.append("remote cleanup suppressed (--no-cleanup)")
    elif not workspace_created:
        remove_workspace = False
        reasons.append("no remote workspace was created")
    elif current_state != PowerState.RUNNING:
        remove_workspace = False
        reasons.append(
            f"VM is not running ({current_state.value}); skipping remote cleanup"
        )
    else:
        remove_workspace = True

    if not started_by_us:
        stop_machine = False
        reasons.append("VM was already running at start; leaving it running")
    elif current_state in STOPPED_STATES:
        stop_machine = False
        reasons.append(f"VM is already {current_state.value}; not stopping it")
    else:
        stop_machine = True

    return TeardownPlan(remove_workspace, stop_machine, reasons)


class InterruptGuard:
    """
    Signal handler that raises WorkflowInterrupted at most once.

    After the first interrupt, or once defer() has been called, further
    signals are only logged so the unwinding into teardown cannot itself be
    interrupted.
    """

    def __init__(self):
        self.deferred = False
        self.signum: Optional[int] = None

    def defer(self) -> None:
        self.deferred = True

    def __call__(self, signum, frame):
        if self.deferred:
            _log_deferred(signum, frame)
            return
        self.deferred = True
        self.signum = signum
        raise WorkflowInterrupted(signum)


def _log_deferred(signum, frame):
    logger.warning(f"Received signal {signum} during teardown; finishing cleanup first")


@contextmanager
def _signal_handlers(handler) -> Iterator[None]:
    previous = {}
    try:
        for sig in HANDLED_SIGNALS:
            previous[sig] = signal.signal(sig, handler)
    except ValueError:
        # signal handlers can only be installed from the main thread
        logger.debug("Not on the main thread; signal handlers not installed")
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


@contextmanager
def interrupt_guard() -> Iterator[InterruptGuard]:
    """
    Turn SIGINT/SIGTERM/SIGHUP into WorkflowInterrupted for the block.

    Call defer() on the yielded guard before teardown starts; the handlers
    stay installed until the block exits.
    """
    guard = InterruptGuard()
    with _signal_handlers(guard):
        yield guard


class TeardownController:
    """Reverses staging and restores the VM's power state."""

    def __init__(
        self,
        lifecycle: InstanceLifecycleManager,
        remote: RemoteExecutor,
        cleanup_suppressed: bool = False,
        stop_timeout: float = 300,
    ):
        self.lifecycle = lifecycle
        self.remote = remote
        self.cleanup_suppressed = cleanup_suppressed
        self.stop_timeout = stop_timeout
        self.warnings: List[CleanupWarning] = []
        self.plan: Optional[TeardownPlan] = None
        self._fired = False

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(CleanupWarning(message))

    def _current_state(self, ctx: RunContext) -> PowerState:
        try:
            return self.lifecycle.get_state(ctx.machine)
        except Exception as e:
            self._warn(f"Could not read VM state during teardown: {e}")
            return PowerState.UNKNOWN

    def run(self, ctx: RunContext) -> List[CleanupWarning]:
        """
        Execute teardown for a run. Never raises; fires at most once.

        Args:
            ctx: Run bookkeeping (started_by_us, workspace_created, job)

        Returns:
            Warnings recorded during teardown
        """
        if self._fired:
            logger.debug("Teardown already ran; ignoring second invocation")
            return self.warnings
        self._fired = True

        with _signal_handlers(_log_deferred):
            logger.info("-" * 40)
            logger.info("TEARDOWN")
            logger.info("-" * 40)

            self.plan = plan_teardown(
                started_by_us=ctx.started_by_us,
                workspace_created=ctx.workspace_created,
                cleanup_suppressed=self.cleanup_suppressed,
                current_state=self._current_state(ctx),
            )
            for reason in self.plan.reasons:
                logger.info(reason)

            if self.plan.remove_workspace:
                self._remove_workspace(ctx)

            if self.plan.stop_machine:
                self._stop_machine(ctx)

        return self.warnings

    def _remove_workspace(self, ctx: RunContext) -> None:
        workspace = ctx.job.remote_workspace if ctx.job else None
        if not workspace:
            return
        logger.info(f"Cleaning up remote build directory {workspace} on VM...")
        try:
            self.remote.execute(f"rm -rf {shlex.quote(workspace)}")
        except Exception as e:
            self._warn(
                f"Failed to clean up remote directory ({e}). "
                f"Manual cleanup might be required on VM: {workspace}"
            )

    def _stop_machine(self, ctx: RunContext) -> None:
        logger.info(f"Stopping VM '{ctx.machine.name}' (was started by this run)...")
        try:
            if not self.lifecycle.stop(ctx.machine, self.stop_timeout):
                self._warn(f"VM '{ctx.machine.name}' did not reach TERMINATED state.")
        except Exception as e:
            self._warn(f"Failed to stop VM '{ctx.machine.name}': {e}")
