"""
On-Demand Remote Docker Builder.
"""

from clients import ComputeRestClient
from config import BuilderConfig
from lifecycle import InstanceLifecycleManager
from log_utils import setup_logging
from models import BuildJob, Machine, PowerState, StepResult
from remote import RemoteExecutor
from teardown import TeardownController
from workflow import RemoteBuildWorkflow

__all__ = [
    "ComputeRestClient",
    "BuilderConfig",
    "InstanceLifecycleManager",
    "setup_logging",
    "BuildJob",
    "Machine",
    "PowerState",
    "StepResult",
    "RemoteExecutor",
    "TeardownController",
    "RemoteBuildWorkflow",
]
