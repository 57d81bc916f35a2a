"""
Configuration management for the Remote Docker Builder.
"""

from dataclasses import dataclass
from typing import Optional

DEFAULT_VM_NAME = "docker-builder-vm"
DEFAULT_ZONE = "europe-west1-b"
DEFAULT_REGISTRY_LOCATION = "europe-west1"
DEFAULT_REPOSITORY = "docker-images"
DEFAULT_REMOTE_DIR = "/tmp/remote_docker_build_context"


@dataclass
class BuilderConfig:
    """Configuration for a remote build run."""

    source_dir: str
    image_name: str
    project_id: str
    tag: Optional[str] = None
    vm_name: str = DEFAULT_VM_NAME
    zone: str = DEFAULT_ZONE
    registry_location: str = DEFAULT_REGISTRY_LOCATION
    repository: str = DEFAULT_REPOSITORY
    remote_dir: str = DEFAULT_REMOTE_DIR
    no_cleanup: bool = False
    vm_timeout: int = 300
    ssh_timeout: int = 120
    command_timeout: Optional[int] = None
    poll_interval: int = 5
    ssh_port: int = 22
    strict_reachability: bool = False
    verbose: bool = False

    @classmethod
    def from_args(cls, args) -> "BuilderConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments

        Returns:
            BuilderConfig instance
        """
        return cls(
            source_dir=args.source_dir,
            image_name=args.image_name,
            project_id=args.project,
            tag=args.tag,
            vm_name=args.vm_name,
            zone=args.zone,
            registry_location=args.registry_location,
            repository=args.repository,
            remote_dir=args.remote_dir,
            no_cleanup=args.no_cleanup,
            vm_timeout=args.vm_timeout,
            ssh_timeout=args.ssh_timeout,
            command_timeout=args.command_timeout,
            poll_interval=args.poll_interval,
            ssh_port=args.ssh_port,
            strict_reachability=args.strict_reachability,
            verbose=args.verbose,
        )
