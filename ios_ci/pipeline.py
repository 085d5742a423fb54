"""Two-stage pipeline sequencer.

A run evaluates one trigger, plans at most one stage and executes that
stage's steps in a fixed order::

    idle -> test_stage -> passed -> done
                       -> failed -> done
    idle -> deploy_stage -> done | failed

Any step error aborts the run. Package errors are re-raised unchanged; other
exceptions are wrapped in :class:`~ios_ci.errors.StepFailure` naming the step.
Cancellation is checked between steps and simply abandons the remaining
sequence.
"""

from __future__ import annotations

import contextlib
import dataclasses
import enum
import logging
import threading
import typing as typ
from pathlib import Path

from .api_key import ApiKeyDescriptor, materialize_api_key
from .environment import RunContext, RunEnvironment, Stage, Trigger
from .errors import PipelineError, SigningResolutionFailure, StepFailure
from .secrets import deploy_secret_names, validate_secrets
from .toolchain import artifact_name

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .config import ProjectConfig, SigningCredential
    from .toolchain import Toolchain

__all__ = [
    "DEPLOY_STEPS",
    "TEST_STEPS",
    "Pipeline",
    "RunReport",
    "RunState",
    "plan_stages",
    "steps_for",
]

logger = logging.getLogger(__name__)

TEST_STEPS: tuple[str, ...] = ("run-tests",)
DEPLOY_STEPS: tuple[str, ...] = (
    "resolve-api-key",
    "acquire-signing-credential",
    "set-build-number",
    "apply-signing-identity",
    "build",
    "upload",
    "cleanup",
)


class RunState(enum.StrEnum):
    """Lifecycle states reported by :class:`Pipeline`."""

    IDLE = "idle"
    TEST_STAGE = "test_stage"
    DEPLOY_STAGE = "deploy_stage"
    PASSED = "passed"
    FAILED = "failed"
    DONE = "done"
    CANCELLED = "cancelled"


def steps_for(stage: Stage) -> tuple[str, ...]:
    """Return the ordered step names of ``stage``."""
    return DEPLOY_STEPS if stage is Stage.DEPLOY else TEST_STEPS


def plan_stages(context: RunContext, config: ProjectConfig) -> list[Stage]:
    """Return the stages ``context``'s trigger allows, in execution order.

    Examples
    --------
    >>> from ios_ci.config import ProjectConfig
    >>> config = ProjectConfig(bundle_id="com.acme.app", team_id="ABCDE12345")
    >>> plan_stages(RunContext(Trigger.PUSH, ref="refs/heads/main"), config)
    [<Stage.DEPLOY: 'deploy'>]
    """
    match context.trigger:
        case Trigger.PULL_REQUEST:
            targets_default = context.base_ref in {
                config.default_branch,
                config.default_ref,
            }
            return [Stage.TEST] if targets_default else []
        case Trigger.PUSH:
            return [Stage.DEPLOY] if context.ref == config.default_ref else []
        case Trigger.MANUAL_DISPATCH:
            return [context.dispatch_stage] if context.dispatch_stage else []
    return []  # pragma: no cover - exhaustive match


def _parse_build_number(raw: str) -> int:
    try:
        value = int(raw.strip())
    except ValueError:
        value = 0
    if value <= 0:
        msg = f"Run counter must be a positive integer, got {raw!r}"
        raise StepFailure("set-build-number", msg)
    return value


@dataclasses.dataclass(slots=True)
class _DeployState:
    """Values resolved by earlier deploy steps and consumed by later ones."""

    api_key: ApiKeyDescriptor | None = None
    api_key_path: Path | None = None
    credential: SigningCredential | None = None
    build_number: int | None = None
    artifact: Path | None = None
    artifact_removed: bool = False

    def require_signing_scope(self, step: str) -> tuple[Path, SigningCredential]:
        """Return the API key path and credential, or fail ``step``."""
        if self.api_key_path is None:
            msg = "API key has not been resolved"
            raise SigningResolutionFailure(step, msg)
        if self.credential is None:
            msg = "Signing credential has not been acquired"
            raise SigningResolutionFailure(step, msg)
        return self.api_key_path, self.credential


@dataclasses.dataclass(slots=True)
class RunReport:
    """Outcome of :meth:`Pipeline.run`.

    ``artifact`` is where the package was built; ``artifact_removed`` is set
    once the cleanup step has deleted it.
    """

    state: RunState
    stages: list[Stage]
    trace: list[str]
    build_number: int | None = None
    artifact: Path | None = None
    artifact_removed: bool = False


class Pipeline:
    """Execute the planned stages for one run.

    Parameters
    ----------
    config
        Project settings.
    context
        Run inputs captured once at start; nothing is read from the process
        environment afterwards.
    toolchain
        Collaborator performing the external work of each step.
    cancel
        Event set by the caller to abandon the run between steps.
    workspace
        Directory relative to which ``config.build_dir`` is resolved.
    """

    def __init__(
        self,
        config: ProjectConfig,
        context: RunContext,
        toolchain: Toolchain,
        *,
        cancel: threading.Event | None = None,
        workspace: Path | None = None,
    ) -> None:
        self.config = config
        self.context = context
        self.toolchain = toolchain
        self.cancel = cancel or threading.Event()
        self.workspace = workspace or Path.cwd()
        self.state = RunState.IDLE
        self.trace: list[str] = []
        self._deploy = _DeployState()

    def run(self) -> RunReport:
        """Run every planned stage and return a :class:`RunReport`.

        Raises
        ------
        PipelineError
            Any error raised by validation or a step, after the state has
            been set to :attr:`RunState.FAILED`. Exceptions that are not
            pipeline errors surface as :class:`StepFailure`.
        """
        if self.state is not RunState.IDLE:
            msg = "A pipeline instance can only run once"
            raise PipelineError(msg)

        stages = plan_stages(self.context, self.config)
        logger.info(
            "[%s] %s on %s: planned stages %s",
            self.context.run_id,
            self.context.trigger,
            self.context.ref or "(no ref)",
            [str(stage) for stage in stages] or "none",
        )
        with contextlib.ExitStack() as resources:
            for stage in stages:
                if not self._run_stage(stage, resources):
                    return self._report(stages)
        self.state = RunState.DONE
        logger.info("[%s] Pipeline finished", self.context.run_id)
        return self._report(stages)

    def _report(self, stages: list[Stage]) -> RunReport:
        return RunReport(
            state=self.state,
            stages=stages,
            trace=list(self.trace),
            build_number=self._deploy.build_number,
            artifact=self._deploy.artifact,
            artifact_removed=self._deploy.artifact_removed,
        )

    def _run_stage(self, stage: Stage, resources: contextlib.ExitStack) -> bool:
        """Run ``stage``; return ``False`` when the run was cancelled."""
        handlers = self._handlers(stage, resources)
        self.state = (
            RunState.DEPLOY_STAGE if stage is Stage.DEPLOY else RunState.TEST_STAGE
        )
        current = "validate-secrets"
        try:
            if stage is Stage.DEPLOY:
                validate_secrets(self._deploy_secret_names(), self.context.secrets)
            for name, handler in handlers:
                if self.cancel.is_set():
                    self.state = RunState.CANCELLED
                    logger.warning(
                        "[%s] Run cancelled before step '%s'", self.context.run_id, name
                    )
                    return False
                current = name
                logger.info("[%s] %s: %s", self.context.run_id, stage, name)
                handler()
                self.trace.append(name)
        except PipelineError as exc:
            self._fail(stage, current, exc)
            raise
        except Exception as exc:
            self._fail(stage, current, exc)
            raise StepFailure(current, str(exc)) from exc
        if stage is Stage.TEST:
            self.state = RunState.PASSED
        return True

    def _fail(self, stage: Stage, step: str, exc: Exception) -> None:
        self.state = RunState.FAILED
        logger.error(  # noqa: TRY400
            "[%s] Stage '%s' failed at '%s': %s",
            self.context.run_id,
            stage,
            step,
            exc,
        )

    def _deploy_secret_names(self) -> tuple[str, ...]:
        return deploy_secret_names(self.context.environment, self.config.extra_secrets)

    def _handlers(
        self, stage: Stage, resources: contextlib.ExitStack
    ) -> list[tuple[str, cabc.Callable[[], None]]]:
        if stage is Stage.TEST:
            return [("run-tests", lambda: self.toolchain.run_tests(self.config))]
        steps: dict[str, cabc.Callable[[], None]] = {
            "resolve-api-key": lambda: self._resolve_api_key(resources),
            "acquire-signing-credential": self._acquire_signing_credential,
            "set-build-number": self._set_build_number,
            "apply-signing-identity": self._apply_signing_identity,
            "build": self._build,
            "upload": self._upload,
            "cleanup": self._cleanup,
        }
        return [(name, steps[name]) for name in DEPLOY_STEPS]

    def _resolve_api_key(self, resources: contextlib.ExitStack) -> None:
        descriptor = ApiKeyDescriptor.from_context(
            self.context, in_house=self.config.in_house
        )
        self._deploy.api_key = descriptor
        self._deploy.api_key_path = resources.enter_context(
            materialize_api_key(descriptor)
        )

    def _acquire_signing_credential(self) -> None:
        api_key_path = self._deploy.api_key_path
        if api_key_path is None:
            msg = "API key has not been resolved"
            raise SigningResolutionFailure("acquire-signing-credential", msg)
        if self.context.environment is RunEnvironment.HOSTED:
            self.toolchain.prepare_keychain()
        self._deploy.credential = self.toolchain.fetch_signing_credential(
            self.config, api_key_path
        )

    def _set_build_number(self) -> None:
        build_number = _parse_build_number(self.context.run_number)
        self.toolchain.set_build_number(self.config, build_number)
        self._deploy.build_number = build_number

    def _apply_signing_identity(self) -> None:
        _, credential = self._deploy.require_signing_scope("apply-signing-identity")
        self.toolchain.apply_signing_identity(self.config, credential)

    def _build(self) -> None:
        self._deploy.require_signing_scope("build")
        build_number = typ.cast("int", self._deploy.build_number)
        output = (
            self.workspace
            / self.config.build_dir
            / artifact_name(self.config, build_number)
        )
        output.parent.mkdir(parents=True, exist_ok=True)
        self._deploy.artifact = self.toolchain.build(self.config, output)

    def _upload(self) -> None:
        api_key_path, _ = self._deploy.require_signing_scope("upload")
        artifact = typ.cast("Path", self._deploy.artifact)
        self.toolchain.upload(artifact, api_key_path)

    def _cleanup(self) -> None:
        artifact = self._deploy.artifact
        self.toolchain.clean(artifact)
        if artifact is not None:
            artifact.unlink(missing_ok=True)
            self._deploy.artifact_removed = True
