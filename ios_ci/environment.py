"""Run context captured from the process environment.

The pipeline never reads ``os.environ`` while it runs. Everything it needs is
captured once by :meth:`RunContext.from_environ` and passed in explicitly.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import enum
import os

import uuid_utils

from .errors import PipelineError

__all__ = [
    "RunContext",
    "RunEnvironment",
    "Stage",
    "Trigger",
    "coerce_bool",
    "new_run_id",
]

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


class Trigger(enum.StrEnum):
    """Events that can start a pipeline run."""

    PULL_REQUEST = "pull_request"
    PUSH = "push"
    MANUAL_DISPATCH = "workflow_dispatch"


class Stage(enum.StrEnum):
    """Named phases of the pipeline."""

    TEST = "test"
    DEPLOY = "deploy"

    @classmethod
    def parse(cls, value: str) -> Stage:
        """Return the stage for ``value``, accepting the ``beta`` lane alias."""
        normalised = value.strip().lower()
        if normalised == "beta":
            return cls.DEPLOY
        try:
            return cls(normalised)
        except ValueError as exc:
            msg = f"Unknown stage '{value}' (expected test, deploy or beta)"
            raise PipelineError(msg) from exc


class RunEnvironment(enum.StrEnum):
    """Where the pipeline is executing."""

    LOCAL = "local"
    HOSTED = "hosted"


def coerce_bool(value: object, *, default: bool) -> bool:
    """Coerce a value to bool, returning ``default`` for None/empty.

    Raises
    ------
    ValueError
        If the value is a string that cannot be interpreted as a boolean.

    Examples
    --------
    >>> coerce_bool("yes", default=False)
    True
    >>> coerce_bool("", default=True)
    True
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalised = value.strip().lower()
        if not normalised:
            return default
        if normalised in _TRUTHY:
            return True
        if normalised in _FALSY:
            return False
    msg = f"Cannot interpret {value!r} as boolean"
    raise ValueError(msg)


def new_run_id() -> str:
    """Return an RFC 9562 UUIDv7 hex string identifying one run."""
    return uuid_utils.uuid7().hex


@dataclasses.dataclass(frozen=True, slots=True)
class RunContext:
    """Immutable inputs for a single pipeline run."""

    trigger: Trigger
    ref: str = ""
    base_ref: str = ""
    dispatch_stage: Stage | None = None
    run_number: str = ""
    environment: RunEnvironment = RunEnvironment.LOCAL
    secrets: cabc.Mapping[str, str] = dataclasses.field(default_factory=dict)
    run_id: str = dataclasses.field(default_factory=new_run_id)

    @classmethod
    def from_environ(
        cls,
        secret_names: cabc.Iterable[str],
        environ: cabc.Mapping[str, str] | None = None,
    ) -> RunContext:
        """Capture a context from ``environ`` (``os.environ`` by default).

        Only the variables named in ``secret_names`` are copied into
        :attr:`secrets`; names that are unset are simply absent.

        Raises
        ------
        PipelineError
            Raised when ``GITHUB_EVENT_NAME`` is unset or not a supported
            trigger, or the dispatch stage is unknown.
        ValueError
            Raised when ``CI`` holds a value that is not a boolean spelling.
        """
        env = os.environ if environ is None else environ
        event_name = env.get("GITHUB_EVENT_NAME", "").strip()
        if not event_name:
            msg = "Environment variable 'GITHUB_EVENT_NAME' is not set."
            raise PipelineError(msg)
        try:
            trigger = Trigger(event_name)
        except ValueError as exc:
            msg = f"Unsupported event '{event_name}' for the iOS pipeline"
            raise PipelineError(msg) from exc

        stage_input = env.get("INPUT_STAGE", "").strip()
        hosted = coerce_bool(env.get("CI"), default=False)
        return cls(
            trigger=trigger,
            ref=env.get("GITHUB_REF", ""),
            base_ref=env.get("GITHUB_BASE_REF", ""),
            dispatch_stage=Stage.parse(stage_input) if stage_input else None,
            run_number=env.get("GITHUB_RUN_NUMBER", ""),
            environment=RunEnvironment.HOSTED if hosted else RunEnvironment.LOCAL,
            secrets={name: env[name] for name in secret_names if name in env},
        )

    def secret(self, name: str) -> str:
        """Return the stripped value of secret ``name`` or an empty string."""
        return self.secrets.get(name, "").strip()
