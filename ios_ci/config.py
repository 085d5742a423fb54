"""Project configuration model and loader.

Project settings live in a TOML file with a single ``[project]`` table::

    [project]
    bundle_id = "com.acme.app"
    team_id = "ABCDE12345"
    apple_id = "release@acme.example"
    scheme = "Acme"
    project = "Acme.xcodeproj"
    signing_repo = "git@github.com:acme/certificates.git"

The values are opaque strings substituted into templates and passed to the
toolchain; they are read once and never mutated during a run.
"""

from __future__ import annotations

import dataclasses
import re
import tomllib
import typing as typ
from pathlib import Path

from .errors import ConfigError

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ProjectConfig",
    "SigningCredential",
    "load_config",
]

DEFAULT_CONFIG_FILE = "ios-ci.toml"

_SECRET_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_STRING_FIELDS = (
    "bundle_id",
    "team_id",
    "apple_id",
    "scheme",
    "project",
    "signing_repo",
    "default_branch",
    "workflow_name",
    "runner",
    "build_dir",
)


@dataclasses.dataclass(frozen=True, slots=True)
class ProjectConfig:
    """Identity and layout of the iOS project being released."""

    bundle_id: str
    team_id: str
    apple_id: str = ""
    scheme: str = ""
    project: str = ""
    signing_repo: str = ""
    default_branch: str = "main"
    workflow_name: str = "iOS CI"
    runner: str = "macos-14"
    build_dir: str = "build"
    in_house: bool = False
    extra_secrets: tuple[str, ...] = ()

    @property
    def default_ref(self) -> str:
        """Fully qualified ref of the branch whose pushes deploy."""
        return f"refs/heads/{self.default_branch}"

    def as_template_context(self) -> dict[str, typ.Any]:
        """Return a mapping suitable for rendering the project templates."""
        return dataclasses.asdict(self) | {
            "extra_secrets": list(self.extra_secrets),
            "profile_name": SigningCredential.appstore(self.bundle_id).profile_name,
        }


@dataclasses.dataclass(frozen=True, slots=True)
class SigningCredential:
    """Certificate and profile pair keyed by platform type and bundle id.

    The pair itself is owned by the signing repository; this record only
    names it.
    """

    platform_type: str
    bundle_id: str
    profile_name: str

    @classmethod
    def appstore(cls, bundle_id: str) -> SigningCredential:
        """Return the App Store credential reference for ``bundle_id``."""
        return cls("appstore", bundle_id, f"match AppStore {bundle_id}")


def load_config(config_file: Path) -> ProjectConfig:
    """Load the project configuration from ``config_file``.

    Parameters
    ----------
    config_file
        Path to the TOML file holding the ``[project]`` table.

    Returns
    -------
    ProjectConfig
        The parsed configuration. Emptiness of ``bundle_id`` and ``team_id``
        is checked by the renderer, not here.

    Raises
    ------
    FileNotFoundError
        Raised when the configuration file is absent at ``config_file``.
    ConfigError
        Raised when the file is not valid TOML, lacks the ``[project]`` table,
        or carries unknown keys or values of the wrong type.
    """
    config_file = Path(config_file)
    if not config_file.is_file():
        msg = f"Configuration file not found at {config_file}"
        raise FileNotFoundError(msg)

    section = _extract_project(_load_toml(config_file), config_file)
    _reject_unknown_keys(section, config_file)
    _require_keys(section, {"bundle_id", "team_id"}, config_file)

    values: dict[str, typ.Any] = {
        key: _validate_string(section[key], key, config_file)
        for key in _STRING_FIELDS
        if key in section
    }
    if "in_house" in section:
        values["in_house"] = _validate_bool(section["in_house"], config_file)
    if "extra_secrets" in section:
        values["extra_secrets"] = _validate_secret_names(
            section["extra_secrets"], config_file
        )
    return ProjectConfig(**values)


def _load_toml(path: Path) -> dict[str, typ.Any]:
    """Load and parse a TOML file."""
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise ConfigError(msg) from exc


def _extract_project(data: dict[str, typ.Any], config_path: Path) -> dict[str, typ.Any]:
    try:
        section = data["project"]
    except KeyError as exc:
        msg = f"Missing [project] section in {config_path}"
        raise ConfigError(msg) from exc
    if not isinstance(section, dict):
        msg = f"[project] in {config_path} must be a table"
        raise ConfigError(msg)
    return section


def _reject_unknown_keys(section: dict[str, typ.Any], config_path: Path) -> None:
    known = {field.name for field in dataclasses.fields(ProjectConfig)}
    if unknown := sorted(section.keys() - known):
        joined = ", ".join(unknown)
        msg = f"Unknown key(s) {joined} in [project] section of {config_path}"
        raise ConfigError(msg)


def _require_keys(
    section: dict[str, typ.Any], keys: set[str], config_path: Path
) -> None:
    """Ensure ``section`` defines all required ``keys``."""
    missing = sorted(key for key in keys if key not in section)
    if missing:
        joined = ", ".join(missing)
        msg = f"Missing required key(s) {joined} in [project] section of {config_path}"
        raise ConfigError(msg)


def _validate_string(value: object, field_name: str, config_path: Path) -> str:
    if not isinstance(value, str):
        msg = (
            f"Project '{field_name}' must be a string, "
            f"got {type(value).__name__} in {config_path}"
        )
        raise ConfigError(msg)
    return value.strip()


def _validate_bool(value: object, config_path: Path) -> bool:
    if not isinstance(value, bool):
        msg = (
            "Project 'in_house' must be a boolean, "
            f"got {type(value).__name__} in {config_path}"
        )
        raise ConfigError(msg)
    return value


def _validate_secret_names(value: object, config_path: Path) -> tuple[str, ...]:
    if not isinstance(value, list):
        msg = (
            "Project 'extra_secrets' must be a list, "
            f"got {type(value).__name__} in {config_path}"
        )
        raise ConfigError(msg)
    for index, name in enumerate(value):
        if not isinstance(name, str) or not _SECRET_NAME.fullmatch(name.strip()):
            msg = (
                f"Project extra_secrets[{index}] must be an environment "
                f"variable name in {config_path}"
            )
            raise ConfigError(msg)
    return tuple(name.strip() for name in value)
