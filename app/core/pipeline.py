"""
Build Pipeline - turn one build request into a sequence of processes.

Stages, each a precondition for the next:
    clone -> checkout -> build steps -> artifact collection -> publish steps

The first failing stage halts the pipeline. Failures never raise past
BuildPipeline.run, and the workspace is released on every exit path.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from app.core.artifacts import ArtifactCollector
from app.core.metrics import metrics
from app.core.process_runner import CommandResult, StepRunner, SubprocessRunner, resolve_environment
from app.core.workspace import Workspace, WorkspaceError, WorkspaceManager
from app.schemas.build import ANONYMOUS_TOKEN, BuildRequest, BuildResponse, StepResult

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Pipeline stage a build can fail at."""
    CLONE = "clone"
    CHECKOUT = "checkout"
    BUILD = "build"
    ARTIFACTS = "artifacts"
    PUBLISH = "publish"


class PipelinePhase(str, Enum):
    """Pipeline state machine phases."""
    CLONING = "cloning"
    CHECKING_OUT = "checking_out"
    BUILDING = "building"
    COLLECTING_ARTIFACTS = "collecting_artifacts"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


class BuildPipelineError(Exception):
    """Unexpected error inside a stage."""
    pass


@dataclass
class PipelineState:
    """Current phase plus the result accumulated so far."""
    phase: PipelinePhase = PipelinePhase.CLONING
    step_index: Optional[int] = None
    failed_stage: Optional[Stage] = None
    result: BuildResponse = field(default_factory=BuildResponse)
    history: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.history.append(self.label)

    @property
    def label(self) -> str:
        if self.phase == PipelinePhase.FAILED:
            return f"failed:{self.failed_stage.value}"
        if self.step_index is not None:
            return f"{self.phase.value}:{self.step_index}"
        return self.phase.value

    @property
    def terminal(self) -> bool:
        return self.phase in (PipelinePhase.DONE, PipelinePhase.FAILED)

    def advance(self, phase: PipelinePhase, step_index: Optional[int] = None) -> None:
        if self.terminal:
            raise BuildPipelineError(f"Cannot leave terminal phase {self.label}")
        self.phase = phase
        self.step_index = step_index
        self.history.append(self.label)

    def fail(self, stage: Stage) -> None:
        self.failed_stage = stage
        self.advance(PipelinePhase.FAILED)


def clone_url(repository: str, access_token: str = "", git_host: str = "github.com") -> str:
    """
    Clone source for a repository.

    "-" selects anonymous HTTPS, any other token authenticated HTTPS,
    and no token the SSH identity of the host process.
    """
    if not access_token:
        return f"git@{git_host}:{repository}.git"
    if access_token == ANONYMOUS_TOKEN:
        return f"https://{git_host}/{repository}.git"
    return f"https://{access_token}:x-oauth-basic@{git_host}/{repository}.git"


class BuildPipeline:
    """Runs build requests; safe to share between concurrent requests."""

    def __init__(
        self,
        workspaces: WorkspaceManager,
        runner: Optional[StepRunner] = None,
        git_host: str = "github.com",
        legacy_checkout_reporting: bool = False,
    ):
        self.workspaces = workspaces
        self.runner = runner or SubprocessRunner()
        self.collector = ArtifactCollector(self.runner)
        self.git_host = git_host
        self.legacy_checkout_reporting = legacy_checkout_reporting

    def run(self, request: BuildRequest) -> PipelineState:
        """Run a build to a terminal state. Never raises for build failures."""
        state = PipelineState()
        log_extra = {"repo": request.repository}
        metrics.inc("builds_total")
        logger.info(
            f"build_started repo={request.repository} clone_mode={request.clone_mode} "
            f"build_steps={len(request.build_steps)} publish_steps={len(request.publish_steps)}",
            extra=log_extra,
        )

        try:
            with self.workspaces.workspace(request.repository) as workspace:
                self._drive(state, request, workspace)
        except (WorkspaceError, OSError) as e:
            # Only allocation reaches here; stage errors are handled in _drive
            logger.error(f"workspace_allocation_failed repo={request.repository} error={e}", extra=log_extra)
            state.result.steps.append(StepResult(stderr=str(e), error=f"workspace allocation failed: {e}"))
            state.fail(Stage.CLONE)

        if state.phase == PipelinePhase.DONE:
            metrics.inc("builds_succeeded_total")
            logger.info(f"build_completed repo={request.repository} steps={len(state.result.steps)}", extra=log_extra)
        else:
            metrics.inc("builds_failed_total")
            logger.info(
                f"build_failed repo={request.repository} stage={state.failed_stage.value} "
                f"steps={len(state.result.steps)}",
                extra={**log_extra, "stage": state.failed_stage.value},
            )
        return state

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _drive(self, state: PipelineState, request: BuildRequest, workspace: Workspace) -> None:
        stages = (
            (Stage.CLONE, self._clone),
            (Stage.CHECKOUT, self._checkout),
            (Stage.BUILD, self._build),
            (Stage.ARTIFACTS, self._collect_artifacts),
            (Stage.PUBLISH, self._publish),
        )

        for stage, handler in stages:
            try:
                handler(state, request, workspace)
            except Exception as e:
                logger.exception(
                    f"stage_error repo={request.repository} stage={stage.value}",
                    extra={"repo": request.repository, "stage": stage.value},
                )
                state.result.steps.append(StepResult(error=f"internal error: {type(e).__name__}"))
                if not state.terminal:
                    state.fail(stage)
            if state.terminal:
                return

        state.advance(PipelinePhase.DONE)

    def _execute(self, command, cwd, request: BuildRequest) -> CommandResult:
        # $WORKDIR in the overlay is the directory this command runs in
        env = resolve_environment(request.environment, cwd)
        metrics.inc("build_steps_total")
        return self.runner.run(command, cwd=cwd, env=env)

    def _clone(self, state, request, workspace) -> None:
        url = clone_url(request.repository, request.access_token, self.git_host)
        result = self._execute(["git", "clone", url, str(workspace.path)], workspace.parent, request)
        if not result.ok:
            logger.warning(f"clone_failed repo={request.repository} error={result.error!r}")
            state.result.steps.append(StepResult.from_command(result, internal=True))
            state.fail(Stage.CLONE)
            return
        logger.info(f"clone_done repo={request.repository}")

    def _checkout(self, state, request, workspace) -> None:
        state.advance(PipelinePhase.CHECKING_OUT)
        result = self._execute(["git", "checkout", request.commit], workspace.path, request)
        if not result.ok:
            if self.legacy_checkout_reporting:
                logger.warning(f"checkout_failed_unreported repo={request.repository} commit={request.commit}")
            else:
                logger.warning(f"checkout_failed repo={request.repository} commit={request.commit}")
                state.result.steps.append(StepResult.from_command(result, internal=True))
            state.fail(Stage.CHECKOUT)
            return
        logger.info(f"checkout_done repo={request.repository} commit={request.commit}")

    def _run_steps(self, state, request, workspace, phase: PipelinePhase, stage: Stage) -> None:
        steps = request.build_steps if stage == Stage.BUILD else request.publish_steps
        for index, command in enumerate(steps):
            state.advance(phase, index)
            result = self._execute(command, workspace.path, request)
            state.result.steps.append(StepResult.from_command(result))
            if not result.ok:
                logger.warning(
                    f"{stage.value}_step_failed repo={request.repository} step={index} "
                    f"cmd={command[0]} error={result.error!r}"
                )
                state.fail(stage)
                return
            logger.info(f"{stage.value}_step_done repo={request.repository} step={index}")

    def _build(self, state, request, workspace) -> None:
        if not request.build_steps:
            return
        self._run_steps(state, request, workspace, PipelinePhase.BUILDING, Stage.BUILD)

    def _collect_artifacts(self, state, request, workspace) -> None:
        if not request.artifact_pattern:
            return
        state.advance(PipelinePhase.COLLECTING_ARTIFACTS)
        env = resolve_environment(request.environment, workspace.path)
        collection = self.collector.collect(workspace.path, request.artifact_pattern, env=env)
        if not collection.ok:
            state.result.steps.append(StepResult.from_command(collection.search_failure, internal=True))
            state.fail(Stage.ARTIFACTS)
            return
        state.result.artifacts = collection.artifacts

    def _publish(self, state, request, workspace) -> None:
        if not request.publish_steps:
            return
        self._run_steps(state, request, workspace, PipelinePhase.PUBLISHING, Stage.PUBLISH)
