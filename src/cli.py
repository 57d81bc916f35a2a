"""Console entry point for the Remote Docker Builder CLI."""

from __future__ import annotations

import argparse
import os
from typing import List

from config import (
    DEFAULT_REGISTRY_LOCATION,
    DEFAULT_REMOTE_DIR,
    DEFAULT_REPOSITORY,
    DEFAULT_VM_NAME,
    DEFAULT_ZONE,
    BuilderConfig,
)
from log_utils import setup_logging
from workflow import RemoteBuildWorkflow


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description=(
            "Build and push a Docker image on an on-demand Compute Engine VM.\n\n"
            "Starts the build VM if needed, uploads the build context, builds, "
            "tags and pushes to Artifact Registry, then cleans up and restores "
            "the VM's power state."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  remote-docker-build ./gcs_downloader_project gcs-downloader v1.0.0\n"
            "  remote-docker-build ./gcs_downloader_project gcs-downloader\n"
            "  remote-docker-build --project my-other-project ./app app v1.0.0\n"
            "  remote-docker-build --no-cleanup ./app app v1.0.0\n"
        ),
    )
    parser.add_argument(
        "source_dir",
        help="Local directory containing the Dockerfile and build context",
    )
    parser.add_argument(
        "image_name",
        help="Base name for the Docker image (e.g. 'gcs-downloader')",
    )
    parser.add_argument(
        "tag",
        nargs="?",
        default=None,
        help=(
            "Image tag. Defaults to the contents of VERSION in the build "
            "context, or 'latest' if that file is missing or empty."
        ),
    )

    target = parser.add_argument_group("target")
    target.add_argument(
        "--project",
        default=os.environ.get("GCP_PROJECT_ID", ""),
        metavar="PROJECT_ID",
        help="GCP project ID (default: $GCP_PROJECT_ID)",
    )
    target.add_argument(
        "--vm-name",
        default=os.environ.get("BUILDER_VM_NAME", DEFAULT_VM_NAME),
        help=f"Build VM name (default: $BUILDER_VM_NAME or {DEFAULT_VM_NAME})",
    )
    target.add_argument(
        "--zone",
        default=os.environ.get("BUILDER_VM_ZONE", DEFAULT_ZONE),
        help=f"Build VM zone (default: $BUILDER_VM_ZONE or {DEFAULT_ZONE})",
    )
    target.add_argument(
        "--registry-location",
        default=os.environ.get("ARTIFACT_REGISTRY_LOCATION", DEFAULT_REGISTRY_LOCATION),
        help=f"Artifact Registry location (default: {DEFAULT_REGISTRY_LOCATION})",
    )
    target.add_argument(
        "--repository",
        default=os.environ.get("ARTIFACT_REGISTRY_REPO_ID", DEFAULT_REPOSITORY),
        help=f"Artifact Registry repository ID (default: {DEFAULT_REPOSITORY})",
    )
    target.add_argument(
        "--remote-dir",
        default=DEFAULT_REMOTE_DIR,
        help=f"Remote workspace directory on the VM (default: {DEFAULT_REMOTE_DIR})",
    )

    behaviour = parser.add_argument_group("behaviour")
    behaviour.add_argument(
        "--no-cleanup",
        action="store_true",
        help="Keep the remote build directory for debugging",
    )
    behaviour.add_argument(
        "--strict-reachability",
        action="store_true",
        help="Fail instead of warning when a started VM has no external IP",
    )

    timeouts = parser.add_argument_group("timeouts")
    timeouts.add_argument("--vm-timeout", type=int, default=300, metavar="SECONDS")
    timeouts.add_argument("--ssh-timeout", type=int, default=120, metavar="SECONDS")
    timeouts.add_argument(
        "--command-timeout",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Abort any single remote command or upload after this long (default: no limit)",
    )
    timeouts.add_argument("--poll-interval", type=int, default=5, metavar="SECONDS")
    timeouts.add_argument("--ssh-port", type=int, default=22)

    logging_group = parser.add_argument_group("logging and output")
    logging_group.add_argument("--log-file", default=None, help="Also write logs to this file")
    logging_group.add_argument("--verbose", action="store_true")
    return parser


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file=args.log_file)

    config = BuilderConfig.from_args(args)
    workflow = RemoteBuildWorkflow(config)
    return workflow.run()
