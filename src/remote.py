"""
Remote command execution and file transfer over `gcloud compute ssh/scp`.
"""

import logging
import subprocess
import time
from typing import List, Optional

from errors import RemoteExecutionError
from models import ExecutionRecord, ExecutionTrace, Machine

logger = logging.getLogger(__name__)

# ssh reports connection-level failures with this exit status
SSH_CONNECTION_FAILURE = 255


class RemoteExecutor:
    """Runs commands on and copies files to the build VM. No retries."""

    def __init__(
        self,
        machine: Machine,
        trace: Optional[ExecutionTrace] = None,
        gcloud_bin: str = "gcloud",
        command_timeout: Optional[float] = None,
    ):
        """
        Args:
            machine: Target VM
            trace: Execution trace to append every attempt to
            gcloud_bin: gcloud executable
            command_timeout: Optional per-command timeout (seconds)
        """
        self.machine = machine
        self.trace = trace if trace is not None else ExecutionTrace()
        self.gcloud_bin = gcloud_bin
        self.command_timeout = command_timeout

    def _target_args(self) -> List[str]:
        return [
            f"--zone={self.machine.zone}",
            f"--project={self.machine.project_id}",
            "--quiet",
        ]

    def ssh_args(self, command: str) -> List[str]:
        return [
            self.gcloud_bin,
            "compute",
            "ssh",
            self.machine.name,
            *self._target_args(),
            f"--command={command}",
        ]

    def scp_args(self, local_path: str, remote_path: str) -> List[str]:
        return [
            self.gcloud_bin,
            "compute",
            "scp",
            "--recurse",
            local_path,
            f"{self.machine.name}:{remote_path}",
            *self._target_args(),
        ]

    def _run(self, kind: str, args: List[str], display: str) -> ExecutionRecord:
        start = time.time()
        try:
            proc = subprocess.run(args, check=False, timeout=self.command_timeout)
        except FileNotFoundError as e:
            self._record(kind, display, None, start, str(e))
            raise RemoteExecutionError(
                f"{self.gcloud_bin} not found: {e}",
                command=display,
                connection_failed=True,
            ) from e
        except subprocess.TimeoutExpired as e:
            self._record(kind, display, None, start, f"timed out after {e.timeout}s")
            raise RemoteExecutionError(
                f"Remote {kind} timed out after {e.timeout}s: {display}",
                command=display,
            ) from e

        if proc.returncode != 0:
            connection_failed = kind == "ssh" and proc.returncode == SSH_CONNECTION_FAILURE
            reason = "connection failure" if connection_failed else "non-zero exit"
            self._record(kind, display, proc.returncode, start, reason)
            raise RemoteExecutionError(
                f"Remote {kind} failed ({reason}, exit {proc.returncode}): {display}",
                command=display,
                returncode=proc.returncode,
                connection_failed=connection_failed,
            )

        return self._record(kind, display, 0, start)

    def _record(
        self,
        kind: str,
        command: str,
        returncode: Optional[int],
        start: float,
        error: Optional[str] = None,
    ) -> ExecutionRecord:
        record = ExecutionRecord(
            kind=kind,
            command=command,
            returncode=returncode,
            duration_seconds=time.time() - start,
            ok=error is None,
            error_message=error,
        )
        self.trace.add(record)
        return record

    def execute(self, command: str) -> ExecutionRecord:
        """
        Run one command on the VM.

        Output is streamed to the local terminal.

        Raises:
            RemoteExecutionError: On non-zero exit or connection failure
        """
        logger.info(f"Executing remote command: {command}")
        return self._run("ssh", self.ssh_args(command), command)

    def upload(self, local_path: str, remote_path: str) -> ExecutionRecord:
        """
        Recursively copy a local tree to a path on the VM.

        Raises:
            RemoteExecutionError: If the transfer fails
        """
        logger.info(f"Uploading '{local_path}' to {self.machine.name}:'{remote_path}'...")
        return self._run(
            "scp",
            self.scp_args(local_path, remote_path),
            f"{local_path} -> {self.machine.name}:{remote_path}",
        )
