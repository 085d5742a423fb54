"""Presence checks for the secrets the deploy stage consumes."""

from __future__ import annotations

import collections.abc as cabc

from .environment import RunEnvironment
from .errors import MissingSecret

__all__ = [
    "API_KEY_ID",
    "API_KEY_ISSUER_ID",
    "API_KEY_SECRET",
    "MATCH_DEPLOY_KEY",
    "MATCH_PASSWORD",
    "REQUIRED_DEPLOY_SECRETS",
    "deploy_secret_names",
    "missing_secrets",
    "validate_secrets",
]

MATCH_DEPLOY_KEY = "MATCH_DEPLOY_KEY"
MATCH_PASSWORD = "MATCH_PASSWORD"
API_KEY_SECRET = "APP_STORE_CONNECT_API_KEY"
API_KEY_ID = "APP_STORE_CONNECT_KEY_ID"
API_KEY_ISSUER_ID = "APP_STORE_CONNECT_ISSUER_ID"

REQUIRED_DEPLOY_SECRETS: tuple[str, ...] = (
    MATCH_DEPLOY_KEY,
    MATCH_PASSWORD,
    API_KEY_SECRET,
    API_KEY_ID,
    API_KEY_ISSUER_ID,
)


def deploy_secret_names(
    environment: RunEnvironment = RunEnvironment.HOSTED,
    extra: cabc.Iterable[str] = (),
) -> tuple[str, ...]:
    """Return the secret names the deploy stage needs in ``environment``.

    Local runs reach the signing repository through the operator's own SSH
    agent, so the deploy key is only demanded on hosted runners.
    """
    names = [
        name
        for name in REQUIRED_DEPLOY_SECRETS
        if environment is RunEnvironment.HOSTED or name != MATCH_DEPLOY_KEY
    ]
    for name in extra:
        if name not in names:
            names.append(name)
    return tuple(names)


def missing_secrets(
    names: cabc.Iterable[str], secrets: cabc.Mapping[str, str]
) -> list[str]:
    """Return the entries of ``names`` that are absent or blank in ``secrets``."""
    return [name for name in names if not (secrets.get(name) or "").strip()]


def validate_secrets(
    names: cabc.Iterable[str], secrets: cabc.Mapping[str, str]
) -> None:
    """Ensure every secret in ``names`` is present and non-empty.

    Raises
    ------
    MissingSecret
        Raised listing every missing name, in the order given.
    """
    if missing := missing_secrets(names, secrets):
        raise MissingSecret(missing)
