"""
Remote Docker build workflow.

Brings the build VM up, stages the local build context on it, builds, tags
and pushes the image, and always hands control to the teardown controller
on the way out, whatever the exit path.
"""

import logging
import os
import shlex
import shutil
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from clients import ComputeRestClient
from config import BuilderConfig
from errors import LifecycleError, PreconditionError, RemoteBuildError
from lifecycle import InstanceLifecycleManager
from models import (
    BuildJob,
    ExecutionTrace,
    Machine,
    RunContext,
    StepResult,
    StepStatus,
)
from remote import RemoteExecutor
from teardown import TeardownController, interrupt_guard

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

VERSION_FILE = "VERSION"
DEFAULT_TAG = "latest"
# Checked in order; the first one present in the build context wins
DOCKERFILE_CANDIDATES = ("Dockerfile.downloader", "Dockerfile")


def registry_host(location: str) -> str:
    """Artifact Registry Docker host for a location, e.g. europe-west1-docker.pkg.dev."""
    return f"{location}-docker.pkg.dev"


def image_reference(
    host: str, project_id: str, repository: str, image_name: str, tag: str
) -> str:
    """Fully-qualified image reference: host/project/repository/image:tag."""
    return f"{host}/{project_id}/{repository}/{image_name}:{tag}"


def resolve_tag(
    source_dir: str,
    explicit_tag: Optional[str] = None,
    version_file: str = VERSION_FILE,
    default: str = DEFAULT_TAG,
) -> Tuple[str, str]:
    """
    Resolve the image tag.

    An explicit tag wins. Otherwise the version marker file in the source
    directory is read with line terminators removed; a missing or empty file
    falls back to the default tag.

    Returns:
        Tuple of (tag, source) where source is "argument", "version_file" or "default"
    """
    if explicit_tag:
        logger.info(f"Using provided Docker image tag: {explicit_tag}")
        return explicit_tag, "argument"

    path = os.path.join(source_dir, version_file)
    if not os.path.isfile(path):
        logger.warning(
            f"No {version_file} file found at {path}. Defaulting Docker image tag to '{default}'."
        )
        return default, "default"

    with open(path, "r", encoding="utf-8") as f:
        tag = f.read().replace("\n", "").replace("\r", "")

    if not tag:
        logger.warning(
            f"{version_file} file is empty. Defaulting Docker image tag to '{default}'."
        )
        return default, "default"

    logger.info(f"Using Docker image tag from {path}: {tag}")
    return tag, "version_file"


def select_dockerfile(source_dir: str) -> str:
    """
    Pick the build descriptor from the build context.

    Raises:
        PreconditionError: If none of the candidate files exists
    """
    for name in DOCKERFILE_CANDIDATES:
        if os.path.isfile(os.path.join(source_dir, name)):
            logger.info(f"Using Dockerfile: {name} (locally detected)")
            return name
    raise PreconditionError(
        f"No {' or '.join(repr(n) for n in DOCKERFILE_CANDIDATES)} found in {source_dir}. "
        "A Dockerfile is required in the root of the build context directory."
    )


def resolve_inputs(config: BuilderConfig) -> BuildJob:
    """
    Build the immutable job description from configuration and the build context.

    Only touches the local filesystem.

    Raises:
        PreconditionError: Missing source directory, project or Dockerfile
    """
    source_dir = os.path.abspath(config.source_dir)
    if not os.path.isdir(source_dir):
        raise PreconditionError(f"Local build context directory not found: {config.source_dir}")
    if not config.project_id:
        raise PreconditionError(
            "No GCP project configured. Pass --project or set GCP_PROJECT_ID."
        )
    if not config.image_name:
        raise PreconditionError("Docker image name is required.")

    tag, tag_source = resolve_tag(source_dir, config.tag)
    dockerfile = select_dockerfile(source_dir)

    workspace = config.remote_dir.rstrip("/")
    if not workspace.startswith("/"):
        raise PreconditionError(
            f"Remote build directory must be an absolute path below /: {config.remote_dir!r}"
        )

    host = registry_host(config.registry_location)
    context_name = os.path.basename(source_dir)
    if not context_name:
        raise PreconditionError("The filesystem root cannot be used as a build context.")

    return BuildJob(
        source_dir=source_dir,
        image_name=config.image_name,
        tag=tag,
        tag_source=tag_source,
        dockerfile=dockerfile,
        registry_host=host,
        project_id=config.project_id,
        repository=config.repository,
        remote_workspace=workspace,
        remote_build_dir=f"{workspace}/{context_name}",
        versioned_image=image_reference(
            host, config.project_id, config.repository, config.image_name, tag
        ),
        latest_image=image_reference(
            host, config.project_id, config.repository, config.image_name, DEFAULT_TAG
        ),
    )


def sg_docker(command: str) -> str:
    """Run a command with docker group privileges on the VM."""
    return f"sg docker -c {shlex.quote(command)}"


@dataclass
class WorkflowStep:
    """A named workflow step."""

    name: str
    action: Callable[[RunContext], StepResult]


class RemoteBuildWorkflow:
    """Runs the remote build as an ordered list of named steps."""

    def __init__(
        self,
        config: BuilderConfig,
        api: Optional[ComputeRestClient] = None,
        lifecycle: Optional[InstanceLifecycleManager] = None,
        remote: Optional[RemoteExecutor] = None,
        teardown: Optional[TeardownController] = None,
    ):
        """
        Initialize the workflow.

        The Compute Engine client is created lazily by the first step so that
        missing credentials surface as a precondition failure.

        Args:
            config: Run configuration
            api: Compute Engine client (created on demand if omitted)
            lifecycle: Lifecycle manager (created on demand if omitted)
            remote: Remote executor (created from config if omitted)
            teardown: Teardown controller (created on demand if omitted)
        """
        self.config = config
        self.machine = Machine(
            name=config.vm_name, zone=config.zone, project_id=config.project_id or ""
        )
        self.trace = remote.trace if remote is not None else ExecutionTrace()
        self.remote = remote or RemoteExecutor(
            self.machine, trace=self.trace, command_timeout=config.command_timeout
        )
        self.api = api
        self.lifecycle = lifecycle
        self.teardown = teardown

        self.context: Optional[RunContext] = None
        self.results: List[StepResult] = []
        self.run_start_time: Optional[float] = None
        self.run_end_time: Optional[float] = None
        self._current_step: Optional[str] = None

    def _connect(self) -> None:
        if self.lifecycle is None:
            if self.api is None:
                self.api = ComputeRestClient()
            self.lifecycle = InstanceLifecycleManager(
                self.api,
                poll_interval=self.config.poll_interval,
                ssh_port=self.config.ssh_port,
                strict_reachability=self.config.strict_reachability,
            )
        if self.teardown is None:
            self.teardown = TeardownController(
                self.lifecycle,
                self.remote,
                cleanup_suppressed=self.config.no_cleanup,
                stop_timeout=self.config.vm_timeout,
            )

    def steps(self) -> List[WorkflowStep]:
        """Workflow steps in execution order."""
        return [
            WorkflowStep("resolve_inputs", self._resolve_inputs),
            WorkflowStep("ensure_machine_up", self._ensure_machine_up),
            WorkflowStep("create_remote_workspace", self._create_remote_workspace),
            WorkflowStep("upload_context", self._upload_context),
            WorkflowStep("authenticate_registry", self._authenticate_registry),
            WorkflowStep("remote_build", self._remote_build),
            WorkflowStep("tag_latest", self._tag_latest),
            WorkflowStep("push_versioned", self._push_versioned),
            WorkflowStep("push_latest", self._push_latest),
        ]

    # -- steps -------------------------------------------------------------

    def _resolve_inputs(self, ctx: RunContext) -> StepResult:
        job = resolve_inputs(self.config)
        if shutil.which(self.remote.gcloud_bin) is None:
            raise PreconditionError(
                f"'{self.remote.gcloud_bin}' CLI not found on PATH; it is required for SSH and SCP."
            )
        self._connect()
        ctx.job = job

        logger.info(f"Image (versioned): {job.versioned_image}")
        logger.info(f"Image (latest): {job.latest_image}")
        return StepResult(
            "resolve_inputs",
            StepStatus.SUCCESS,
            f"tag {job.tag} ({job.tag_source}), {job.dockerfile}",
        )

    def _ensure_machine_up(self, ctx: RunContext) -> StepResult:
        def mark_started() -> None:
            ctx.started_by_us = True

        try:
            started = self.lifecycle.ensure_running(
                ctx.machine,
                timeout=self.config.vm_timeout,
                ssh_timeout=self.config.ssh_timeout,
                on_start_requested=mark_started,
            )
        except LifecycleError as e:
            ctx.started_by_us = e.started_by_us
            raise

        ctx.started_by_us = started
        message = "started by this run" if started else "already running"
        return StepResult("ensure_machine_up", StepStatus.SUCCESS, f"VM {message}")

    def _create_remote_workspace(self, ctx: RunContext) -> StepResult:
        workspace = ctx.job.remote_workspace
        logger.info(f"Creating remote parent build directory {workspace} on VM...")
        ctx.workspace_created = True
        self.remote.execute(f"mkdir -p {shlex.quote(workspace)}")
        return StepResult("create_remote_workspace", StepStatus.SUCCESS, workspace)

    def _upload_context(self, ctx: RunContext) -> StepResult:
        job = ctx.job
        self.remote.upload(job.source_dir, f"{job.remote_workspace}/")
        logger.info(
            f"Build context uploaded successfully. It is now located at: {job.remote_build_dir}"
        )
        return StepResult("upload_context", StepStatus.SUCCESS, job.remote_build_dir)

    def _authenticate_registry(self, ctx: RunContext) -> StepResult:
        job = ctx.job
        logger.info(f"Authenticating Docker to Artifact Registry: {job.registry_host}...")
        self.remote.execute(
            sg_docker(
                f"gcloud auth configure-docker {job.registry_host} "
                f"--project={job.project_id} --quiet"
            )
        )
        return StepResult("authenticate_registry", StepStatus.SUCCESS, job.registry_host)

    def _remote_build(self, ctx: RunContext) -> StepResult:
        job = ctx.job
        logger.info("Initiating Docker build on VM. This might take a while...")
        build = (
            f"docker build -f {shlex.quote(job.dockerfile)} "
            f"-t {shlex.quote(job.versioned_image)} ."
        )
        self.remote.execute(
            f"cd {shlex.quote(job.remote_build_dir)} && "
            "echo '--- Remote directory contents before Docker build ---' && "
            "ls -l . && "
            "echo '--- Starting Docker build ---' && "
            f"{sg_docker(build)}"
        )
        return StepResult("remote_build", StepStatus.SUCCESS, job.versioned_image)

    def _tag_latest(self, ctx: RunContext) -> StepResult:
        job = ctx.job
        if job.versioned_image == job.latest_image:
            return StepResult("tag_latest", StepStatus.SKIPPED, "image is already tagged latest")
        logger.info(f"Adding 'latest' tag: {job.versioned_image} -> {job.latest_image}")
        tag = f"docker tag {shlex.quote(job.versioned_image)} {shlex.quote(job.latest_image)}"
        self.remote.execute(sg_docker(tag))
        return StepResult("tag_latest", StepStatus.SUCCESS, job.latest_image)

    def _push_versioned(self, ctx: RunContext) -> StepResult:
        job = ctx.job
        logger.info(f"Pushing Docker image (versioned): {job.versioned_image}...")
        self.remote.execute(sg_docker(f"docker push {shlex.quote(job.versioned_image)}"))
        return StepResult("push_versioned", StepStatus.SUCCESS, job.versioned_image)

    def _push_latest(self, ctx: RunContext) -> StepResult:
        job = ctx.job
        if job.versioned_image == job.latest_image:
            return StepResult("push_latest", StepStatus.SKIPPED, "pushed as versioned image")
        logger.info(f"Pushing Docker image (latest): {job.latest_image}...")
        self.remote.execute(sg_docker(f"docker push {shlex.quote(job.latest_image)}"))
        return StepResult("push_latest", StepStatus.SUCCESS, job.latest_image)

    # -- driver ------------------------------------------------------------

    def _run_step(self, step: WorkflowStep, ctx: RunContext) -> StepResult:
        self._current_step = step.name
        logger.info(f">>> {step.name}")
        start = time.time()
        try:
            result = step.action(ctx)
        except RemoteBuildError as e:
            logger.error(f"Step {step.name} FAILED: {e}")
            result = StepResult(step.name, StepStatus.FAILED, str(e), error=e)
        except Exception as e:
            logger.exception(f"Step {step.name} FAILED unexpectedly: {e}")
            result = StepResult(step.name, StepStatus.FAILED, str(e), error=e)

        end = time.time()
        result.start_time = start
        result.end_time = end
        result.duration_seconds = end - start
        self._current_step = None
        return result

    def run(self) -> int:
        """
        Execute the workflow, then teardown.

        Returns:
            Process exit code: 0 on success, the failing error's exit code
            otherwise. Teardown problems never change it.
        """
        self.run_start_time = time.time()
        self._print_banner()

        ctx = RunContext(machine=self.machine)
        self.context = ctx
        exit_code = EXIT_SUCCESS

        with interrupt_guard() as guard:
            try:
                for step in self.steps():
                    result = self._run_step(step, ctx)
                    self.results.append(result)
                    if not result.ok:
                        exit_code = getattr(result.error, "exit_code", EXIT_FAILURE)
                        break
                guard.defer()
            except KeyboardInterrupt as e:
                guard.defer()
                exit_code = getattr(e, "exit_code", EXIT_INTERRUPTED)
                logger.error(f"Workflow interrupted ({e or 'SIGINT'}); running teardown")
                if self._current_step:
                    self.results.append(
                        StepResult(self._current_step, StepStatus.FAILED, "interrupted", error=e)
                    )
            finally:
                guard.defer()
                if self.teardown is not None:
                    self.teardown.run(ctx)
                else:
                    logger.info("Nothing staged and VM untouched; no teardown needed")

        self.run_end_time = time.time()
        self._print_report(exit_code)
        return exit_code

    # -- reporting ---------------------------------------------------------

    def _print_banner(self) -> None:
        logger.info("=" * 70)
        logger.info("On-Demand Remote Docker Build")
        logger.info("=" * 70)
        logger.info(f"Project: {self.config.project_id}")
        logger.info(f"VM: {self.machine.name} ({self.machine.zone})")
        logger.info(f"Local build context: {self.config.source_dir}")
        logger.info(f"Image name: {self.config.image_name}")
        logger.info(f"Registry: {registry_host(self.config.registry_location)}/{self.config.repository}")
        logger.info(f"Remote cleanup: {'disabled' if self.config.no_cleanup else 'enabled'}")
        logger.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info("=" * 70)

    @staticmethod
    def _format_duration(seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            mins = int(seconds // 60)
            secs = seconds % 60
            return f"{mins}m {secs:.0f}s"
        else:
            hours = int(seconds // 3600)
            mins = int((seconds % 3600) // 60)
            secs = seconds % 60
            return f"{hours}h {mins}m {secs:.0f}s"

    def _print_report(self, exit_code: int) -> None:
        """Log timing, per-step results, the execution trace and teardown warnings."""
        total_duration = self.run_end_time - self.run_start_time

        logger.info("")
        logger.info("=" * 70)
        logger.info("BUILD REPORT")
        logger.info("=" * 70)
        logger.info(
            f"Start time:      {datetime.fromtimestamp(self.run_start_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        logger.info(
            f"End time:        {datetime.fromtimestamp(self.run_end_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        logger.info(f"Total duration:  {self._format_duration(total_duration)}")

        logger.info("")
        logger.info("STEPS")
        logger.info("-" * 40)
        logger.info(f"{'Step':<25} {'Status':<10} {'Duration':<12} {'Detail'}")
        logger.info("-" * 70)
        for r in self.results:
            duration_str = (
                self._format_duration(r.duration_seconds)
                if r.duration_seconds is not None
                else "N/A"
            )
            detail = (
                (r.message[:60] + "...") if len(r.message) > 60 else r.message
            )
            logger.info(f"{r.name:<25} {r.status.value:<10} {duration_str:<12} {detail}")

        if len(self.trace):
            logger.info("")
            logger.info("EXECUTION TRACE")
            logger.info("-" * 40)
            logger.info(
                f"{len(self.trace)} remote operations, {len(self.trace.failures)} failed"
            )
            for i, rec in enumerate(self.trace.records, 1):
                outcome = "ok" if rec.ok else f"FAILED ({rec.error_message})"
                command = (rec.command[:60] + "...") if len(rec.command) > 60 else rec.command
                logger.info(f"{i:>3}. [{rec.kind}] {command} -> {outcome}")

        warnings = self.teardown.warnings if self.teardown is not None else []
        if warnings:
            logger.info("")
            logger.info("TEARDOWN WARNINGS")
            logger.info("-" * 40)
            for w in warnings:
                logger.info(f"  {w}")

        logger.info("")
        job = self.context.job if self.context else None
        if exit_code == EXIT_SUCCESS and job is not None:
            logger.info("Docker images pushed successfully to Artifact Registry:")
            logger.info(f"  {job.versioned_image}")
            if job.latest_image != job.versioned_image:
                logger.info(f"  {job.latest_image}")
        else:
            logger.error(f"Remote build FAILED (exit code {exit_code})")
        logger.info("=" * 70)
