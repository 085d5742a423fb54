"""Tests for :mod:`ios_ci.api_key`."""

from __future__ import annotations

import base64
import json
import stat
from pathlib import Path

import pytest

from ios_ci.api_key import ApiKeyDescriptor, materialize_api_key
from ios_ci.environment import RunContext, Trigger
from ios_ci.errors import InvalidSecret


def _context(key_blob: str) -> RunContext:
    return RunContext(
        Trigger.PUSH,
        secrets={
            "APP_STORE_CONNECT_API_KEY": key_blob,
            "APP_STORE_CONNECT_KEY_ID": "KEY123",
            "APP_STORE_CONNECT_ISSUER_ID": "issuer-0001",
        },
    )


class TestApiKeyDescriptor:
    """Tests for ApiKeyDescriptor.from_context."""

    def test_accepts_raw_pem(self, pem_key: str) -> None:
        """PEM text is used as-is."""
        descriptor = ApiKeyDescriptor.from_context(_context(pem_key))

        assert descriptor.key == pem_key
        assert descriptor.key_id == "KEY123"
        assert descriptor.issuer_id == "issuer-0001"
        assert descriptor.in_house is False

    def test_decodes_base64_pem(self, pem_key: str) -> None:
        """Base64-encoded PEM text is decoded."""
        blob = base64.b64encode(pem_key.encode()).decode()

        assert ApiKeyDescriptor.from_context(_context(blob)).key == pem_key

    @pytest.mark.parametrize(
        "blob",
        ["not base64 at all!", base64.b64encode(b"plain text").decode()],
        ids=["undecodable", "not-pem"],
    )
    def test_rejects_invalid_key(self, blob: str) -> None:
        """Values that are not PEM keys raise InvalidSecret."""
        with pytest.raises(InvalidSecret, match="APP_STORE_CONNECT_API_KEY"):
            ApiKeyDescriptor.from_context(_context(blob))

    def test_repr_hides_key(self, pem_key: str) -> None:
        """The private key never appears in the repr."""
        descriptor = ApiKeyDescriptor("KEY123", "issuer", pem_key)

        assert "PRIVATE KEY" not in repr(descriptor)


class TestMaterializeApiKey:
    """Tests for the materialize_api_key context manager."""

    def test_writes_private_json_and_removes_it(
        self, tmp_path: Path, pem_key: str
    ) -> None:
        """The file exists only inside the block and is owner-only."""
        descriptor = ApiKeyDescriptor("KEY123", "issuer", pem_key, in_house=True)

        with materialize_api_key(descriptor, tmp_path) as path:
            document = json.loads(path.read_text(encoding="utf-8"))
            mode = stat.S_IMODE(path.stat().st_mode)

        assert document == {
            "key_id": "KEY123",
            "issuer_id": "issuer",
            "key": pem_key,
            "in_house": True,
        }
        assert mode == 0o600
        assert not path.exists()

    def test_removes_file_on_error(self, tmp_path: Path, pem_key: str) -> None:
        """The file is discarded even when the block raises."""
        descriptor = ApiKeyDescriptor("KEY123", "issuer", pem_key)
        seen: list[Path] = []

        with pytest.raises(RuntimeError), materialize_api_key(
            descriptor, tmp_path
        ) as path:
            seen.append(path)
            raise RuntimeError

        assert seen
        assert not seen[0].exists()
