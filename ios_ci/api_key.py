"""App Store Connect API key descriptor and its temporary materialisation."""

from __future__ import annotations

import base64
import binascii
import contextlib
import dataclasses
import json
import logging
import os
import tempfile
import typing as typ
from pathlib import Path

from .errors import InvalidSecret
from .secrets import API_KEY_ID, API_KEY_ISSUER_ID, API_KEY_SECRET

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .environment import RunContext

__all__ = ["ApiKeyDescriptor", "materialize_api_key"]

logger = logging.getLogger(__name__)

_PEM_MARKER = "-----BEGIN"


@dataclasses.dataclass(frozen=True, slots=True)
class ApiKeyDescriptor:
    """App Store Connect API key in the shape fastlane's ``api_key_path`` reads."""

    key_id: str
    issuer_id: str
    key: str
    in_house: bool = False

    def __repr__(self) -> str:
        return (
            f"ApiKeyDescriptor(key_id={self.key_id!r}, "
            f"issuer_id={self.issuer_id!r}, key='***', in_house={self.in_house})"
        )

    @classmethod
    def from_context(
        cls, context: RunContext, *, in_house: bool = False
    ) -> ApiKeyDescriptor:
        """Build a descriptor from the secrets captured in ``context``.

        The key secret may hold the ``.p8`` PEM text directly or its base64
        encoding.

        Raises
        ------
        InvalidSecret
            Raised when the key secret is neither PEM text nor base64-encoded
            PEM text.
        """
        return cls(
            key_id=context.secret(API_KEY_ID),
            issuer_id=context.secret(API_KEY_ISSUER_ID),
            key=_decode_key(context.secret(API_KEY_SECRET)),
            in_house=in_house,
        )

    def as_json(self) -> dict[str, str | bool]:
        """Return the JSON document fastlane expects."""
        return dataclasses.asdict(self)


def _decode_key(blob: str) -> str:
    if blob.startswith(_PEM_MARKER):
        return blob
    try:
        decoded = base64.b64decode(blob, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        msg = "expected PEM text or base64-encoded PEM text"
        raise InvalidSecret(API_KEY_SECRET, msg) from exc
    if not decoded.lstrip().startswith(_PEM_MARKER):
        msg = "decoded value is not a PEM private key"
        raise InvalidSecret(API_KEY_SECRET, msg)
    return decoded.strip()


@contextlib.contextmanager
def materialize_api_key(
    descriptor: ApiKeyDescriptor, directory: Path | None = None
) -> cabc.Iterator[Path]:
    """Write ``descriptor`` to a private temporary file for the block's duration.

    The file is created with mode ``0600`` and removed on exit, whether the
    block succeeds or fails.
    """
    fd, raw_path = tempfile.mkstemp(
        prefix="asc-api-key-", suffix=".json", dir=directory
    )
    path = Path(raw_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(descriptor.as_json(), handle)
        path.chmod(0o600)
        logger.debug("Materialised API key %s at %s", descriptor.key_id, path)
        yield path
    finally:
        path.unlink(missing_ok=True)
        logger.debug("Discarded API key file %s", path)
