"""Utilities for exporting run results as GitHub Actions step outputs."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from pathlib import Path

    from .environment import RunContext
    from .pipeline import RunReport

__all__ = ["prepare_output_data", "write_github_output"]


def prepare_output_data(
    report: RunReport, context: RunContext
) -> dict[str, str | list[str]]:
    """Assemble workflow outputs describing a finished run.

    Parameters
    ----------
    report
        Outcome returned by :meth:`ios_ci.pipeline.Pipeline.run`.
    context
        Context the run executed with; supplies the correlation id.

    Returns
    -------
    dict[str, str | list[str]]
        Mapping ready for :func:`write_github_output`. Values that a run did
        not produce (for example ``ipa_name`` after a test-only run) are
        exported as empty strings. ``ipa_path`` is only set while the
        package still exists, that is when the run stopped before cleanup.
    """
    artifact = report.artifact
    ipa_path = ""
    if artifact is not None and not report.artifact_removed:
        ipa_path = artifact.as_posix()
    return {
        "run_id": context.run_id,
        "state": str(report.state),
        "stages": [str(stage) for stage in report.stages],
        "steps": list(report.trace),
        "build_number": "" if report.build_number is None else str(report.build_number),
        "ipa_name": "" if artifact is None else artifact.name,
        "ipa_path": ipa_path,
    }


def _format_list_output(key: str, values: list[str]) -> str:
    """Format a list value for GitHub Actions output using heredoc syntax."""
    delimiter = f"gh_{key.upper()}"
    content = "\n".join(values)
    return f"{key}<<{delimiter}\n{content}\n{delimiter}\n"


def _format_scalar_output(key: str, value: str) -> str:
    """Format a scalar value for GitHub Actions output with escaping."""
    escaped = value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")
    return f"{key}={escaped}\n"


def write_github_output(file: Path, values: dict[str, str | list[str]]) -> None:
    """Append ``values`` to the GitHub Actions output ``file``."""
    file.parent.mkdir(parents=True, exist_ok=True)
    with file.open("a", encoding="utf-8") as handle:
        for key, value in sorted(values.items()):
            if isinstance(value, list):
                handle.write(_format_list_output(key, value))
            else:
                handle.write(_format_scalar_output(key, value))
