"""
Data models for the Remote Docker Builder.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional


class PowerState(Enum):
    """Compute Engine instance status."""

    PROVISIONING = "PROVISIONING"
    STAGING = "STAGING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    SUSPENDING = "SUSPENDING"
    SUSPENDED = "SUSPENDED"
    REPAIRING = "REPAIRING"
    TERMINATED = "TERMINATED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_api(cls, value: Optional[str]) -> "PowerState":
        """Map a raw API status string; empty or unrecognised values are UNKNOWN."""
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Machine:
    """Reference to the build VM."""

    name: str
    zone: str
    project_id: str

    @property
    def resource_path(self) -> str:
        return f"projects/{self.project_id}/zones/{self.zone}/instances/{self.name}"


@dataclass(frozen=True)
class BuildJob:
    """Inputs of a single build, resolved once at workflow start."""

    source_dir: str
    image_name: str
    tag: str
    tag_source: str  # "argument", "version_file", "default"
    dockerfile: str
    registry_host: str
    project_id: str
    repository: str
    remote_workspace: str  # parent directory removed on teardown
    remote_build_dir: str  # remote_workspace/<basename of source_dir>
    versioned_image: str
    latest_image: str


@dataclass
class ExecutionRecord:
    """One remote command or transfer attempt."""

    kind: str  # "ssh" or "scp"
    command: str
    returncode: Optional[int]
    duration_seconds: float
    ok: bool
    error_message: Optional[str] = None


@dataclass
class ExecutionTrace:
    """Ordered log of remote attempts, kept in memory for diagnostics."""

    records: List[ExecutionRecord] = field(default_factory=list)

    def add(self, record: ExecutionRecord) -> None:
        self.records.append(record)

    @property
    def failures(self) -> List[ExecutionRecord]:
        return [r for r in self.records if not r.ok]

    def __len__(self) -> int:
        return len(self.records)


class StepStatus(Enum):
    """Outcome of a workflow step."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    """Result of a single workflow step."""

    name: str
    status: StepStatus
    message: str = ""
    error: Optional[BaseException] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration_seconds: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.status != StepStatus.FAILED


@dataclass
class RunContext:
    """State shared between the lifecycle step and teardown."""

    machine: Machine
    started_by_us: bool = False
    workspace_created: bool = False
    job: Optional[BuildJob] = None


class PollOutcome(Enum):
    """Tri-state result of a readiness check."""

    READY = "ready"
    NOT_READY = "not_ready"
    FAILED = "failed"


@dataclass
class PollResult:
    """What a readiness check observed."""

    outcome: PollOutcome
    observed: Any = None
    message: str = ""

    @classmethod
    def ready(cls, observed: Any = None, message: str = "") -> "PollResult":
        return cls(PollOutcome.READY, observed, message)

    @classmethod
    def not_ready(cls, observed: Any = None, message: str = "") -> "PollResult":
        return cls(PollOutcome.NOT_READY, observed, message)

    @classmethod
    def failed(cls, observed: Any = None, message: str = "") -> "PollResult":
        return cls(PollOutcome.FAILED, observed, message)
