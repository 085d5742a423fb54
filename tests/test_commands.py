"""Tests for :mod:`ios_ci.commands`."""

from __future__ import annotations

import sys

import pytest
from plumbum import local

from ios_ci import commands
from ios_ci.commands import (
    CommandFailed,
    fastlane_command,
    format_parameter,
    run_command,
)


class _FakeCommand:
    """Stand-in for a plumbum command that records bound arguments."""

    def __init__(self, name: str, args: tuple[str, ...] = ()) -> None:
        self.name = name
        self.args = args

    def __getitem__(self, args: str | tuple[str, ...]) -> _FakeCommand:
        extra = args if isinstance(args, tuple) else (args,)
        return _FakeCommand(self.name, self.args + extra)


class _FakeLocal:
    def __getitem__(self, name: str) -> _FakeCommand:
        return _FakeCommand(name)


class TestFormatParameter:
    """Tests for fastlane parameter tokens."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (True, "readonly:true"),
            (False, "readonly:false"),
            (42, "readonly:42"),
            ("appstore", "readonly:appstore"),
            (None, "readonly:"),
        ],
    )
    def test_renders_value(self, value: str | int | bool | None, expected: str) -> None:
        """Booleans are lower-cased and other values stringified."""
        assert format_parameter("readonly", value) == expected


class TestFastlaneCommand:
    """Tests for building fastlane invocations."""

    def test_uses_bundler_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Actions run through ``bundle exec`` and drop ``None`` parameters."""
        monkeypatch.setattr(commands, "local", _FakeLocal())

        command = fastlane_command(
            "match", {"type": "appstore", "git_url": None, "readonly": True}
        )

        assert command.name == "bundle"
        assert command.args == (
            "exec",
            "fastlane",
            "run",
            "match",
            "type:appstore",
            "readonly:true",
        )

    def test_without_bundler(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The bare ``fastlane`` binary is used when bundler is disabled."""
        monkeypatch.setattr(commands, "local", _FakeLocal())

        command = fastlane_command("clean_build_artifacts", use_bundler=False)

        assert command.name == "fastlane"
        assert command.args == ("run", "clean_build_artifacts")


class TestRunCommand:
    """Tests for run_command."""

    def test_returns_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Successful commands are echoed and their output returned."""
        command = local[sys.executable]["-c", "print('hello')"]

        result = run_command(command)

        assert result.returncode == 0
        assert result.stdout.strip() == "hello"
        assert capsys.readouterr().out.startswith("$ ")

    def test_non_zero_exit(self) -> None:
        """A failing command raises CommandFailed with its last stderr line."""
        script = "import sys; sys.stderr.write('no profile found\\n'); sys.exit(3)"
        command = local[sys.executable]["-c", script]

        with pytest.raises(CommandFailed) as excinfo:
            run_command(command)

        assert excinfo.value.result.returncode == 3
        assert not excinfo.value.timed_out
        assert str(excinfo.value).endswith("no profile found")

    def test_timeout(self) -> None:
        """Commands exceeding the timeout are reported as timed out."""
        command = local[sys.executable]["-c", "import time; time.sleep(5)"]

        with pytest.raises(CommandFailed, match="timed out") as excinfo:
            run_command(command, timeout=0.2)

        assert excinfo.value.timed_out

    def test_extra_environment(self) -> None:
        """Environment overrides reach the child process."""
        script = "import os; print(os.environ['MATCH_READONLY'])"
        command = local[sys.executable]["-c", script]

        result = run_command(command, env={"MATCH_READONLY": "true"})

        assert result.stdout.strip() == "true"
