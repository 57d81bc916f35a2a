"""
Power-state management for the build VM.

The manager only observes and toggles the power state of a VM that already
exists; it never creates or deletes instances.
"""

import logging
import socket
import time
from typing import Callable, Optional

from clients import ComputeRestClient
from errors import (
    LifecycleError,
    PollAborted,
    PollTimeout,
    QueryError,
    UnexpectedStateError,
)
from models import Machine, PollResult, PowerState
from poller import wait_until

logger = logging.getLogger(__name__)

# States from which the workflow will issue a start request
STARTABLE_STATES = {PowerState.TERMINATED, PowerState.UNKNOWN}


class InstanceLifecycleManager:
    """Queries, starts and stops the build VM."""

    def __init__(
        self,
        api: ComputeRestClient,
        poll_interval: float = 5.0,
        ssh_port: int = 22,
        strict_reachability: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            api: Compute Engine client
            poll_interval: Seconds between readiness checks
            ssh_port: Administrative port probed for reachability
            strict_reachability: Fail instead of warn when the VM has no external IP
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock (injectable for tests)
        """
        self.api = api
        self.poll_interval = poll_interval
        self.ssh_port = ssh_port
        self.strict_reachability = strict_reachability
        self._sleep = sleep
        self._clock = clock

    def get_state(self, machine: Machine) -> PowerState:
        """
        Point-in-time power state read.

        Raises:
            QueryError: If the instance cannot be described
        """
        data = self.api.get_instance(machine)
        return PowerState.from_api(data.get("status"))

    def get_external_ip(self, machine: Machine) -> Optional[str]:
        """Return the first NAT IP of the VM, or None if it has none."""
        data = self.api.get_instance(machine)
        try:
            return data["networkInterfaces"][0]["accessConfigs"][0]["natIP"] or None
        except (KeyError, IndexError):
            return None

    def _state_check(
        self, machine: Machine, target: PowerState, op_name: Optional[str] = None
    ) -> Callable[[], PollResult]:
        def check() -> PollResult:
            if op_name:
                try:
                    op = self.api.get_operation(machine, op_name)
                    if op.get("status") == "DONE" and op.get("error"):
                        return PollResult.failed(
                            message=f"operation {op_name} failed: {op['error']}"
                        )
                except Exception as e:
                    logger.debug(f"Could not read operation {op_name}: {e}")

            try:
                state = self.get_state(machine)
            except QueryError as e:
                if e.not_found:
                    return PollResult.failed(PowerState.UNKNOWN, str(e))
                return PollResult.not_ready(PowerState.UNKNOWN, str(e))

            if state == target:
                return PollResult.ready(state)
            return PollResult.not_ready(state)

        return check

    def wait_for_state(
        self,
        machine: Machine,
        target: PowerState,
        timeout: float,
        op_name: Optional[str] = None,
    ) -> PowerState:
        """
        Poll until the VM reports the target power state.

        Raises:
            PollTimeout: If the state was not reached in time
            PollAborted: If the instance disappeared or the operation failed
        """
        result = wait_until(
            self._state_check(machine, target, op_name),
            timeout=timeout,
            interval=self.poll_interval,
            description=f"VM '{machine.name}' to be {target.value}",
            sleep=self._sleep,
            clock=self._clock,
        )
        return result.observed

    def wait_for_port(self, host: str, port: int, timeout: float) -> None:
        """
        Poll until a TCP connection to host:port succeeds.

        Raises:
            PollTimeout: If the port did not open in time
        """

        def check() -> PollResult:
            try:
                with socket.create_connection((host, port), timeout=1):
                    return PollResult.ready(f"{host}:{port}")
            except OSError as e:
                return PollResult.not_ready(f"{host}:{port}", str(e))

        wait_until(
            check,
            timeout=timeout,
            interval=self.poll_interval,
            description=f"SSH port {port} on {host}",
            sleep=self._sleep,
            clock=self._clock,
        )

    def ensure_running(
        self,
        machine: Machine,
        timeout: float,
        ssh_timeout: float,
        on_start_requested: Optional[Callable[[], None]] = None,
    ) -> bool:
        """
        Make sure the VM is RUNNING and reachable.

        Args:
            machine: Target VM
            timeout: Deadline for the RUNNING transition (seconds)
            ssh_timeout: Deadline for the SSH port to open (seconds)
            on_start_requested: Called just before the start request is sent

        Returns:
            True if this call started the VM, False if it was already running

        Raises:
            UnexpectedStateError: VM is in a state other than RUNNING/TERMINATED/unknown
            LifecycleError: Start failed or did not converge; carries started_by_us
        """
        try:
            state = self.get_state(machine)
        except QueryError as e:
            logger.warning(f"Could not read state of VM '{machine.name}': {e}")
            state = PowerState.UNKNOWN

        if state == PowerState.RUNNING:
            logger.info(f"VM '{machine.name}' is already running. Proceeding with build.")
            return False

        if state not in STARTABLE_STATES:
            raise UnexpectedStateError(
                f"VM '{machine.name}' is in an unexpected state: {state.value}. Cannot proceed.",
                last_state=state,
            )

        logger.info(
            f"VM '{machine.name}' is not running (current status: {state.value}). Starting it now..."
        )
        if on_start_requested is not None:
            on_start_requested()
        try:
            op_name = self.api.start_instance(machine)
        except Exception as e:
            raise LifecycleError(
                f"Failed to start VM '{machine.name}': {e}", last_state=state
            ) from e
        logger.info(f"Start operation initiated for {machine.name} (op={op_name})")

        try:
            self.wait_for_state(machine, PowerState.RUNNING, timeout, op_name=op_name)
        except (PollTimeout, PollAborted) as e:
            raise LifecycleError(
                f"VM '{machine.name}' did not reach RUNNING: {e}",
                last_state=e.last_observed,
                started_by_us=True,
            ) from e

        self._wait_reachable(machine, ssh_timeout)
        return True

    def _wait_reachable(self, machine: Machine, ssh_timeout: float) -> None:
        try:
            ip = self.get_external_ip(machine)
        except QueryError as e:
            logger.warning(f"Could not read external IP of '{machine.name}': {e}")
            ip = None

        if not ip:
            if self.strict_reachability:
                raise LifecycleError(
                    f"VM '{machine.name}' has no external IP; cannot verify SSH readiness.",
                    last_state=PowerState.RUNNING,
                    started_by_us=True,
                )
            logger.warning(
                "Could not get VM external IP. SSH readiness check skipped; "
                "remote commands will fail if the VM is unreachable."
            )
            return

        try:
            self.wait_for_port(ip, self.ssh_port, ssh_timeout)
        except PollTimeout as e:
            raise LifecycleError(
                f"SSH not ready on {ip}: {e}",
                last_state=PowerState.RUNNING,
                started_by_us=True,
            ) from e

    def stop(self, machine: Machine, timeout: float) -> bool:
        """
        Stop the VM and wait for TERMINATED.

        Returns:
            True if the VM reached TERMINATED, False if it did not converge

        Raises:
            LifecycleError: If the stop request itself was rejected
        """
        logger.info(f"Stopping VM '{machine.name}'...")
        try:
            op_name = self.api.stop_instance(machine)
        except Exception as e:
            raise LifecycleError(f"Failed to stop VM '{machine.name}': {e}") from e
        logger.info(f"Stop operation initiated for {machine.name} (op={op_name})")

        try:
            self.wait_for_state(machine, PowerState.TERMINATED, timeout, op_name=op_name)
        except (PollTimeout, PollAborted) as e:
            logger.warning(f"VM '{machine.name}' did not reach TERMINATED: {e}")
            return False
        return True
