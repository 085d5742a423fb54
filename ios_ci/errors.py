"""Error types shared across the iOS pipeline package."""

from __future__ import annotations

import typing as typ

__all__ = [
    "BuildFailure",
    "ConfigError",
    "InvalidSecret",
    "MissingField",
    "MissingSecret",
    "PipelineError",
    "SigningResolutionFailure",
    "StepFailure",
    "UploadFailure",
]


class PipelineError(RuntimeError):
    """Raised when the pipeline cannot continue."""


class ConfigError(PipelineError):
    """Raised when the project configuration file is malformed."""


class MissingField(PipelineError):
    """Raised when template rendering lacks required project fields."""

    def __init__(self, fields: typ.Iterable[str]) -> None:
        self.fields = tuple(fields)
        joined = ", ".join(self.fields)
        super().__init__(f"Missing required project field(s): {joined}")


class MissingSecret(PipelineError):
    """Raised when one or more deploy secrets are absent or empty."""

    def __init__(self, names: typ.Iterable[str]) -> None:
        self.names = tuple(names)
        joined = ", ".join(self.names)
        super().__init__(f"Missing required secret(s): {joined}")


class InvalidSecret(PipelineError):
    """Raised when a secret is present but cannot be interpreted."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Secret '{name}' is invalid: {reason}")


class StepFailure(PipelineError):
    """Raised when a pipeline step fails.

    ``step`` names the failing step so operators can locate it in the log.
    """

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        super().__init__(f"[{step}] {message}")


class SigningResolutionFailure(StepFailure):
    """Raised when signing assets cannot be fetched or are not in scope."""


class BuildFailure(StepFailure):
    """Raised when compiling or packaging the app fails."""


class UploadFailure(StepFailure):
    """Raised when the distribution endpoint rejects or times out an upload."""
