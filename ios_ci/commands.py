r"""Helpers for invoking fastlane actions through plumbum.

Every invocation is echoed before it runs so CI logs show exactly what was
executed. Parameters are passed as ``key:value`` tokens, the form
``fastlane run <action>`` accepts::

    >>> command = fastlane_command("increment_build_number", {"build_number": 42})
    >>> run_command(command)
    $ bundle exec fastlane run increment_build_number build_number:42
"""

from __future__ import annotations

import collections.abc as cabc
import typing as typ

import typer
from plumbum import local
from plumbum.commands.processes import ProcessExecutionError, ProcessTimedOut

if typ.TYPE_CHECKING:
    from plumbum.commands.base import BaseCommand

__all__ = [
    "CommandFailed",
    "RunResult",
    "fastlane_command",
    "format_parameter",
    "run_command",
]

ParameterValue = str | int | bool | None


class RunResult(typ.NamedTuple):
    """Structured representation of plumbum ``run`` results."""

    returncode: int
    stdout: str
    stderr: str


class CommandFailed(Exception):
    """Raised by :func:`run_command` when a command fails or times out."""

    def __init__(self, command: str, result: RunResult, *, timed_out: bool = False):
        self.command = command
        self.result = result
        self.timed_out = timed_out
        if timed_out:
            detail = "timed out"
        else:
            detail = f"exited with status {result.returncode}"
        tail = _last_line(result.stderr) or _last_line(result.stdout)
        message = f"`{command}` {detail}"
        super().__init__(f"{message}: {tail}" if tail else message)


def _last_line(text: str) -> str:
    lines = [line for line in text.splitlines() if line.strip()]
    return lines[-1].strip() if lines else ""


def _ensure_text(value: str | bytes | None) -> str:
    """Return ``value`` as a decoded ``str`` replacing undecodable bytes."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return value.decode("utf-8", errors="replace")


def format_parameter(name: str, value: ParameterValue) -> str:
    """Return the ``name:value`` token fastlane expects for one parameter."""
    if isinstance(value, bool):
        rendered = "true" if value else "false"
    else:
        rendered = "" if value is None else str(value)
    return f"{name}:{rendered}"


def fastlane_command(
    action: str,
    parameters: cabc.Mapping[str, ParameterValue] | None = None,
    *,
    use_bundler: bool = True,
) -> BaseCommand:
    """Return the plumbum command running fastlane ``action``.

    Parameters whose value is ``None`` are omitted.
    """
    tokens = [
        format_parameter(name, value)
        for name, value in (parameters or {}).items()
        if value is not None
    ]
    if use_bundler:
        return local["bundle"]["exec", "fastlane", "run", action, *tokens]
    return local["fastlane"]["run", action, *tokens]


def run_command(
    command: BaseCommand,
    *,
    timeout: float | None = None,
    env: cabc.Mapping[str, str] | None = None,
) -> RunResult:
    """Execute ``command`` after echoing it and return its output.

    Raises
    ------
    CommandFailed
        Raised when the command exits non-zero or exceeds ``timeout``.
    """
    typer.echo(f"$ {command}")
    prepared = command.with_env(**env) if env else command
    try:
        returncode, stdout, stderr = prepared.run(retcode=None, timeout=timeout)
    except ProcessTimedOut as exc:
        result = RunResult(
            -1,
            _ensure_text(getattr(exc, "stdout", "")),
            _ensure_text(getattr(exc, "stderr", "")),
        )
        raise CommandFailed(str(command), result, timed_out=True) from exc
    except ProcessExecutionError as exc:
        result = RunResult(
            int(exc.retcode), _ensure_text(exc.stdout), _ensure_text(exc.stderr)
        )
        raise CommandFailed(str(command), result) from exc

    result = RunResult(int(returncode), _ensure_text(stdout), _ensure_text(stderr))
    if result.returncode != 0:
        raise CommandFailed(str(command), result)
    return result
