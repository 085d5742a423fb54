"""Render and run a fastlane-based iOS CI/CD pipeline.

The package renders the fastlane and GitHub Actions configuration an iOS
project needs, checks that the deploy secrets are present, and sequences the
test and deploy stages against a pluggable toolchain.
"""

from __future__ import annotations

from .api_key import ApiKeyDescriptor, materialize_api_key
from .config import ProjectConfig, SigningCredential, load_config
from .environment import RunContext, RunEnvironment, Stage, Trigger
from .errors import (
    BuildFailure,
    ConfigError,
    InvalidSecret,
    MissingField,
    MissingSecret,
    PipelineError,
    SigningResolutionFailure,
    StepFailure,
    UploadFailure,
)
from .pipeline import (
    DEPLOY_STEPS,
    TEST_STEPS,
    Pipeline,
    RunReport,
    RunState,
    plan_stages,
)
from .render import render_all, render_template, write_rendered
from .secrets import REQUIRED_DEPLOY_SECRETS, missing_secrets, validate_secrets
from .toolchain import FastlaneToolchain, Toolchain

__all__ = [
    "DEPLOY_STEPS",
    "REQUIRED_DEPLOY_SECRETS",
    "TEST_STEPS",
    "ApiKeyDescriptor",
    "BuildFailure",
    "ConfigError",
    "FastlaneToolchain",
    "InvalidSecret",
    "MissingField",
    "MissingSecret",
    "Pipeline",
    "PipelineError",
    "ProjectConfig",
    "RunContext",
    "RunEnvironment",
    "RunReport",
    "RunState",
    "SigningCredential",
    "SigningResolutionFailure",
    "Stage",
    "StepFailure",
    "Toolchain",
    "Trigger",
    "UploadFailure",
    "load_config",
    "materialize_api_key",
    "missing_secrets",
    "plan_stages",
    "render_all",
    "render_template",
    "validate_secrets",
    "write_rendered",
]
