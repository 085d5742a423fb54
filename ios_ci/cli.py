"""Command-line entry point for the iOS pipeline helper.

Examples
--------
Render the fastlane and workflow files into the current project::

    ios-ci render --config-file ios-ci.toml

Preview what a push to ``main`` would run::

    GITHUB_EVENT_NAME=push GITHUB_REF=refs/heads/main ios-ci plan

Inside GitHub Actions every parameter can also be supplied as an
``INPUT_<NAME>`` environment variable.
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import sys
import threading
import typing as typ
from pathlib import Path

import cyclopts
from cyclopts import App, Parameter

from .api_key import ApiKeyDescriptor, materialize_api_key
from .config import DEFAULT_CONFIG_FILE, load_config
from .environment import RunContext, RunEnvironment, Trigger, coerce_bool
from .errors import PipelineError
from .output import prepare_output_data, write_github_output
from .pipeline import Pipeline, RunState, plan_stages, steps_for
from .render import render_all, write_rendered
from .secrets import (
    API_KEY_ID,
    API_KEY_ISSUER_ID,
    API_KEY_SECRET,
    MATCH_PASSWORD,
    deploy_secret_names,
    validate_secrets,
)
from .toolchain import FastlaneToolchain

if typ.TYPE_CHECKING:
    import collections.abc as cabc

__all__ = ["app", "main"]

app: App = App(
    name="ios-ci",
    help="Render and run a fastlane-based iOS CI/CD pipeline.",
    config=cyclopts.config.Env("INPUT_", command=False),
)

ConfigFile = typ.Annotated[Path, Parameter(help="Project TOML configuration file.")]


def _emit_error(title: str, exc: BaseException) -> None:
    print(f"::error title={title}::{exc}", file=sys.stderr)


def _configure_logging(*, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        stream=sys.stderr,
    )


def _detect_environment(environ: cabc.Mapping[str, str]) -> RunEnvironment:
    hosted = coerce_bool(environ.get("CI"), default=False)
    return RunEnvironment.HOSTED if hosted else RunEnvironment.LOCAL


@app.command(name="render")
def render_command(
    *,
    config_file: ConfigFile = Path(DEFAULT_CONFIG_FILE),
    output_dir: Path = Path(),
    force: bool = False,
) -> None:
    """Render the Gemfile, fastlane files and workflow into ``output_dir``.

    Parameters
    ----------
    config_file
        Project TOML configuration file.
    output_dir
        Root of the iOS project that receives the files.
    force
        Overwrite files that already exist.
    """
    try:
        config = load_config(config_file)
        written = write_rendered(render_all(config), output_dir, overwrite=force)
    except (OSError, PipelineError) as exc:
        _emit_error("Render Failure", exc)
        raise SystemExit(1) from exc
    print(f"Rendered {len(written)} file(s) into '{output_dir}'.", file=sys.stderr)


@app.command(name="check-secrets")
def check_secrets_command(
    *,
    config_file: ConfigFile = Path(DEFAULT_CONFIG_FILE),
    environment: RunEnvironment | None = None,
) -> None:
    """Confirm every deploy secret is present and non-empty.

    Parameters
    ----------
    config_file
        Project TOML configuration file; its ``extra_secrets`` are checked too.
    environment
        ``local`` or ``hosted``; detected from ``CI`` when omitted.
    """
    try:
        config = load_config(config_file)
        resolved = environment or _detect_environment(os.environ)
        names = deploy_secret_names(resolved, config.extra_secrets)
        validate_secrets(names, os.environ)
    except (FileNotFoundError, PipelineError, ValueError) as exc:
        _emit_error("Missing Secrets", exc)
        raise SystemExit(1) from exc
    print(f"All {len(names)} deploy secret(s) are present.", file=sys.stderr)


@app.command(name="plan")
def plan_command(
    *,
    config_file: ConfigFile = Path(DEFAULT_CONFIG_FILE),
    event: str | None = None,
    ref: str | None = None,
    base_ref: str | None = None,
    stage: str | None = None,
) -> None:
    """Print the stages and steps the current trigger would run.

    Parameters
    ----------
    config_file
        Project TOML configuration file.
    event
        Overrides ``GITHUB_EVENT_NAME``.
    ref
        Overrides ``GITHUB_REF``.
    base_ref
        Overrides ``GITHUB_BASE_REF``.
    stage
        Stage selected for a manual dispatch (``test`` or ``beta``).
    """
    overrides = {
        "GITHUB_EVENT_NAME": event,
        "GITHUB_REF": ref,
        "GITHUB_BASE_REF": base_ref,
        "INPUT_STAGE": stage,
    }
    environ = dict(os.environ) | {
        key: value for key, value in overrides.items() if value is not None
    }
    try:
        config = load_config(config_file)
        context = RunContext.from_environ((), environ)
    except (FileNotFoundError, PipelineError, ValueError) as exc:
        _emit_error("Plan Failure", exc)
        raise SystemExit(1) from exc

    stages = plan_stages(context, config)
    if not stages:
        print(f"No stages run for {context.trigger} on '{context.ref}'.")
        return
    for planned in stages:
        print(f"{planned}: {' -> '.join(steps_for(planned))}")


@contextlib.contextmanager
def _cancel_on_sigterm(cancel: threading.Event) -> cabc.Iterator[None]:
    """Set ``cancel`` when the runner delivers SIGTERM during the block."""
    previous = signal.signal(signal.SIGTERM, lambda *_: cancel.set())
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


@app.command(name="run")
def run_command(
    *,
    config_file: ConfigFile = Path(DEFAULT_CONFIG_FILE),
    use_bundler: bool = True,
    upload_timeout: float = 3600.0,
    verbose: bool = False,
) -> None:
    """Run the stages planned for the current GitHub event.

    Parameters
    ----------
    config_file
        Project TOML configuration file.
    use_bundler
        Invoke fastlane through ``bundle exec``.
    upload_timeout
        Seconds to wait for the upload before treating it as failed.
    verbose
        Enable debug logging.
    """
    _configure_logging(verbose=verbose)
    output_file = os.environ.get("GITHUB_OUTPUT")
    try:
        config = load_config(config_file)
        secret_names = deploy_secret_names(RunEnvironment.HOSTED, config.extra_secrets)
        context = RunContext.from_environ(secret_names)
        cancel = threading.Event()
        toolchain = FastlaneToolchain(
            use_bundler=use_bundler, upload_timeout=upload_timeout
        )
        with _cancel_on_sigterm(cancel):
            report = Pipeline(config, context, toolchain, cancel=cancel).run()
    except (OSError, PipelineError, ValueError) as exc:
        _emit_error("Pipeline Failure", exc)
        raise SystemExit(1) from exc

    if output_file:
        write_github_output(Path(output_file), prepare_output_data(report, context))
    if report.state is RunState.CANCELLED:
        print("::warning title=Pipeline Cancelled::Run abandoned", file=sys.stderr)
        raise SystemExit(1)
    print(
        f"Completed {len(report.trace)} step(s): {', '.join(report.trace) or 'none'}.",
        file=sys.stderr,
    )


@app.command(name="init-signing")
def init_signing_command(
    *,
    config_file: ConfigFile = Path(DEFAULT_CONFIG_FILE),
    use_bundler: bool = True,
    in_house: bool | None = None,
) -> None:
    """Create signing assets in the signing repository (read-write).

    Run this once, outside the pipeline, before the first deploy.

    Parameters
    ----------
    config_file
        Project TOML configuration file.
    use_bundler
        Invoke fastlane through ``bundle exec``.
    in_house
        The API key belongs to an enterprise (in-house) team; defaults to the
        project's ``in_house`` setting.
    """
    _configure_logging(verbose=False)
    names = (MATCH_PASSWORD, API_KEY_SECRET, API_KEY_ID, API_KEY_ISSUER_ID)
    try:
        config = load_config(config_file)
        validate_secrets(names, os.environ)
        context = RunContext(
            Trigger.MANUAL_DISPATCH,
            environment=_detect_environment(os.environ),
            secrets={name: os.environ[name] for name in names},
        )
        descriptor = ApiKeyDescriptor.from_context(
            context, in_house=config.in_house if in_house is None else in_house
        )
        with materialize_api_key(descriptor) as api_key_path:
            FastlaneToolchain(use_bundler=use_bundler).init_signing(
                config, api_key_path
            )
    except (OSError, PipelineError, ValueError) as exc:
        _emit_error("Signing Initialisation Failure", exc)
        raise SystemExit(1) from exc
    print(f"Signing assets ready for {config.bundle_id}.", file=sys.stderr)


def _normalize_input_env(prefix: str = "INPUT_") -> None:
    """Normalise dashed ``INPUT_`` keys (``INPUT_CONFIG-FILE``) to underscores."""
    for key in [key for key in os.environ if key.startswith(prefix) and "-" in key]:
        value = os.environ.pop(key)
        os.environ.setdefault(key.replace("-", "_"), value)


def main(argv: cabc.Sequence[str] | None = None) -> None:
    """Run the CLI with ``argv`` (``sys.argv[1:]`` by default)."""
    _normalize_input_env()
    app(list(sys.argv[1:] if argv is None else argv))
