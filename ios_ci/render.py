"""Render the project configuration files from a :class:`ProjectConfig`."""

from __future__ import annotations

import json
import logging
import typing as typ
from pathlib import Path

from jinja2 import Environment, StrictUndefined, TemplateError

from .errors import MissingField, PipelineError
from .secrets import API_KEY_ID, API_KEY_ISSUER_ID, API_KEY_SECRET, MATCH_PASSWORD
from .templates import TEMPLATES

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .config import ProjectConfig

__all__ = [
    "REQUIRED_FIELDS",
    "render_all",
    "render_template",
    "write_rendered",
]

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("bundle_id", "team_id")


def _github_expression(expression: str) -> str:
    return "${{ " + expression + " }}"


def _secret_expression(name: str) -> str:
    return _github_expression(f"secrets.{name}")


def _ruby_string(value: str) -> str:
    """Return ``value`` as a double-quoted Ruby literal without interpolation."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("#", "\\#")
        .replace("\n", "\\n")
    )
    return f'"{escaped}"'


def _yaml_string(value: str) -> str:
    # JSON strings are valid double-quoted YAML scalars.
    return json.dumps(value)


def _expression_literal(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


_env = Environment(
    autoescape=False,  # noqa: S701 - output is Ruby and YAML, not markup
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)
_env.globals.update(gh=_github_expression, secret=_secret_expression)
_env.filters.update(
    ruby=_ruby_string, yaml=_yaml_string, gh_literal=_expression_literal
)


def _ensure_required_fields(config: ProjectConfig) -> None:
    """Raise :class:`MissingField` listing every empty required field."""
    missing = [
        name for name in REQUIRED_FIELDS if not str(getattr(config, name)).strip()
    ]
    if missing:
        raise MissingField(missing)


def _template_context(config: ProjectConfig) -> dict[str, typ.Any]:
    deploy_env = [MATCH_PASSWORD, API_KEY_SECRET, API_KEY_ID, API_KEY_ISSUER_ID]
    deploy_env.extend(name for name in config.extra_secrets if name not in deploy_env)
    return config.as_template_context() | {
        "default_ref": config.default_ref,
        "deploy_env": deploy_env,
    }


def render_template(family: str, config: ProjectConfig) -> str:
    """Render the template registered under ``family`` for ``config``.

    Parameters
    ----------
    family
        Relative output path identifying the template, for example
        ``"fastlane/Fastfile"``.
    config
        Project settings substituted into the template.

    Returns
    -------
    str
        The rendered text.

    Raises
    ------
    MissingField
        Raised when ``bundle_id`` or ``team_id`` is empty.
    PipelineError
        Raised when ``family`` is unknown.
    """
    _ensure_required_fields(config)
    try:
        source = TEMPLATES[family]
    except KeyError as exc:
        known = ", ".join(sorted(TEMPLATES))
        msg = f"Unknown template '{family}' (expected one of: {known})"
        raise PipelineError(msg) from exc
    return _render(family, source, _template_context(config))


def render_all(config: ProjectConfig) -> dict[str, str]:
    """Render every template family, keyed by relative output path.

    Validation happens before anything is rendered, so a
    :class:`MissingField` error never leaves partial output behind.
    """
    _ensure_required_fields(config)
    context = _template_context(config)
    return {
        family: _render(family, source, context)
        for family, source in TEMPLATES.items()
    }


def _render(family: str, source: str, context: dict[str, typ.Any]) -> str:
    try:
        return _env.from_string(source).render(**context)
    except TemplateError as exc:
        msg = f"Failed to render {family}: {exc}"
        raise PipelineError(msg) from exc


def write_rendered(
    rendered: cabc.Mapping[str, str],
    destination: Path,
    *,
    overwrite: bool = False,
) -> list[Path]:
    """Write ``rendered`` files beneath ``destination`` and return their paths.

    Raises
    ------
    PipelineError
        Raised when a file exists and ``overwrite`` is false, or a relative
        path escapes ``destination``.
    """
    root = destination.resolve()
    targets: dict[Path, str] = {}
    for relative, text in rendered.items():
        target = (root / relative).resolve()
        if not target.is_relative_to(root):
            msg = f"Rendered path escapes destination directory: {relative}"
            raise PipelineError(msg)
        if target.exists() and not overwrite:
            msg = f"Refusing to overwrite existing file: {target}"
            raise PipelineError(msg)
        targets[target] = text

    written: list[Path] = []
    for target, text in targets.items():
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
        logger.info("Wrote %s", target.relative_to(root))
        written.append(target)
    return written
