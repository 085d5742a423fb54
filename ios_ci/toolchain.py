"""Toolchain interface and its fastlane-backed implementation.

The pipeline only talks to a :class:`Toolchain`; :class:`FastlaneToolchain`
is the production one and runs each step as a single ``fastlane run``
invocation.
"""

from __future__ import annotations

import collections.abc as cabc
import logging
import secrets
import typing as typ
from pathlib import Path

from plumbum import CommandNotFound

from .commands import CommandFailed, RunResult, fastlane_command, run_command
from .config import SigningCredential
from .errors import (
    BuildFailure,
    SigningResolutionFailure,
    StepFailure,
    UploadFailure,
)

if typ.TYPE_CHECKING:
    from .commands import ParameterValue
    from .config import ProjectConfig

__all__ = [
    "ActionRunner",
    "FastlaneToolchain",
    "Toolchain",
    "artifact_name",
    "build_leftovers",
]

logger = logging.getLogger(__name__)

ActionRunner = cabc.Callable[
    [
        str,
        cabc.Mapping[str, "ParameterValue"],
        float | None,
        cabc.Mapping[str, str] | None,
    ],
    RunResult,
]

CODE_SIGN_IDENTITY = "Apple Distribution"
KEYCHAIN_NAME = "ios-ci"
KEYCHAIN_TIMEOUT = 3600


def artifact_name(config: ProjectConfig, build_number: int) -> str:
    """Return the deterministic ``.ipa`` file name for a build."""
    return f"{config.scheme or 'App'}-{build_number}.ipa"


def build_leftovers(artifact: Path) -> list[Path]:
    """Return the files ``build_app`` writes next to ``artifact``."""
    return [artifact.with_name(f"{artifact.stem}.app.dSYM.zip")]


class Toolchain(typ.Protocol):
    """Operations the pipeline delegates to the external build tooling."""

    def run_tests(self, config: ProjectConfig) -> None:
        """Run the project's test suite."""
        ...

    def prepare_keychain(self) -> None:
        """Create the temporary keychain signing assets are imported into."""
        ...

    def fetch_signing_credential(
        self, config: ProjectConfig, api_key_path: Path
    ) -> SigningCredential:
        """Fetch signing assets read-only and return the credential reference."""
        ...

    def set_build_number(self, config: ProjectConfig, build_number: int) -> None:
        """Write ``build_number`` into the project settings."""
        ...

    def apply_signing_identity(
        self, config: ProjectConfig, credential: SigningCredential
    ) -> None:
        """Switch the project to manual signing with ``credential``."""
        ...

    def build(self, config: ProjectConfig, output: Path) -> Path:
        """Compile and package the app to ``output`` and return its path."""
        ...

    def upload(self, artifact: Path, api_key_path: Path) -> None:
        """Upload ``artifact`` to the distribution endpoint."""
        ...

    def clean(self, artifact: Path | None) -> None:
        """Remove by-products left next to ``artifact`` and the temporary keychain."""
        ...

    def init_signing(self, config: ProjectConfig, api_key_path: Path) -> None:
        """Create or renew signing assets in the signing repository."""
        ...


def _default_runner(use_bundler: bool) -> ActionRunner:  # noqa: FBT001
    def runner(
        action: str,
        parameters: cabc.Mapping[str, ParameterValue],
        timeout: float | None,
        env: cabc.Mapping[str, str] | None,
    ) -> RunResult:
        command = fastlane_command(action, parameters, use_bundler=use_bundler)
        return run_command(command, timeout=timeout, env=env)

    return runner


class FastlaneToolchain:
    """Run pipeline operations as individual fastlane actions.

    Every action runs in its own process, so state one action leaves behind
    (the temporary keychain, for instance) is passed to later actions
    explicitly.
    """

    def __init__(
        self,
        *,
        use_bundler: bool = True,
        upload_timeout: float | None = 3600.0,
        runner: ActionRunner | None = None,
    ) -> None:
        self.upload_timeout = upload_timeout
        self._runner = runner or _default_runner(use_bundler)
        self._keychain_password: str | None = None

    def _invoke(
        self,
        step: str,
        action: str,
        parameters: cabc.Mapping[str, ParameterValue],
        *,
        failure: type[StepFailure] = StepFailure,
        timeout: float | None = None,
        env: cabc.Mapping[str, str] | None = None,
    ) -> RunResult:
        try:
            return self._runner(action, parameters, timeout, env)
        except CommandFailed as exc:
            raise failure(step, str(exc)) from exc
        except CommandNotFound as exc:
            msg = f"Command not found: {exc.program}"
            raise failure(step, msg) from exc

    def run_tests(self, config: ProjectConfig) -> None:
        self._invoke(
            "run-tests",
            "run_tests",
            {
                "project": config.project or None,
                "scheme": config.scheme or None,
                "clean": True,
            },
        )

    def prepare_keychain(self) -> None:
        password = secrets.token_urlsafe(24)
        self._invoke(
            "acquire-signing-credential",
            "create_keychain",
            {
                "name": KEYCHAIN_NAME,
                "default_keychain": True,
                "unlock": True,
                "timeout": KEYCHAIN_TIMEOUT,
                "lock_when_sleeps": False,
            },
            failure=SigningResolutionFailure,
            env={"KEYCHAIN_PASSWORD": password},
        )
        self._keychain_password = password

    def fetch_signing_credential(
        self, config: ProjectConfig, api_key_path: Path
    ) -> SigningCredential:
        credential = SigningCredential.appstore(config.bundle_id)
        keychain_name: str | None = None
        keychain_env: dict[str, str] | None = None
        if self._keychain_password is not None:
            keychain_name = KEYCHAIN_NAME
            keychain_env = {"MATCH_KEYCHAIN_PASSWORD": self._keychain_password}
        self._invoke(
            "acquire-signing-credential",
            "match",
            {
                "type": credential.platform_type,
                "app_identifier": credential.bundle_id,
                "team_id": config.team_id,
                "git_url": config.signing_repo or None,
                "readonly": True,
                "api_key_path": str(api_key_path),
                "keychain_name": keychain_name,
            },
            failure=SigningResolutionFailure,
            env=keychain_env,
        )
        return credential

    def set_build_number(self, config: ProjectConfig, build_number: int) -> None:
        self._invoke(
            "set-build-number",
            "increment_build_number",
            {"build_number": build_number, "xcodeproj": config.project or None},
        )

    def apply_signing_identity(
        self, config: ProjectConfig, credential: SigningCredential
    ) -> None:
        self._invoke(
            "apply-signing-identity",
            "update_code_signing_settings",
            {
                "use_automatic_signing": False,
                "path": config.project or None,
                "team_id": config.team_id,
                "bundle_identifier": credential.bundle_id,
                "code_sign_identity": CODE_SIGN_IDENTITY,
                "profile_name": credential.profile_name,
            },
        )

    def build(self, config: ProjectConfig, output: Path) -> Path:
        self._invoke(
            "build",
            "build_app",
            {
                "project": config.project or None,
                "scheme": config.scheme or None,
                "export_method": "app-store",
                "output_directory": str(output.parent),
                "output_name": output.name,
            },
            failure=BuildFailure,
        )
        if not output.is_file():
            msg = f"Expected build artifact not found: {output}"
            raise BuildFailure("build", msg)
        return output

    def upload(self, artifact: Path, api_key_path: Path) -> None:
        self._invoke(
            "upload",
            "upload_to_testflight",
            {
                "ipa": str(artifact),
                "api_key_path": str(api_key_path),
                "skip_waiting_for_build_processing": True,
            },
            failure=UploadFailure,
            timeout=self.upload_timeout,
        )

    def clean(self, artifact: Path | None) -> None:
        if artifact is not None:
            for leftover in build_leftovers(artifact):
                leftover.unlink(missing_ok=True)
        if self._keychain_password is not None:
            self._invoke("cleanup", "delete_keychain", {"name": KEYCHAIN_NAME})
            self._keychain_password = None

    def init_signing(self, config: ProjectConfig, api_key_path: Path) -> None:
        credential = SigningCredential.appstore(config.bundle_id)
        logger.warning(
            "Running match in read-write mode for %s; this may create or "
            "revoke certificates in the signing repository",
            credential.bundle_id,
        )
        self._invoke(
            "init-signing",
            "match",
            {
                "type": credential.platform_type,
                "app_identifier": credential.bundle_id,
                "team_id": config.team_id,
                "git_url": config.signing_repo or None,
                "readonly": False,
                "api_key_path": str(api_key_path),
            },
            failure=SigningResolutionFailure,
        )
