"""Artifact identity and manifest entry models (all frozen)."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from artivault.models.platforms import Platform

_HEX40 = re.compile(r"^[0-9a-f]{40}$")
_HEX64 = re.compile(r"^[0-9a-f]{64}$")


class ArtifactHash(BaseModel):
    """A 20-byte git tree hash, carried as 40 lowercase hex characters.

    Accepts a bare hex string wherever a model is expected, so entries
    can be built with ``ArtifactEntry(hash="0a1b...")``.

    Examples
    --------
    >>> h = ArtifactHash.model_validate("4B825DC642CB6EB9A060E54BF8D69288FBEE4904")
    >>> str(h)
    '4b825dc642cb6eb9a060e54bf8d69288fbee4904'
    >>> len(h.digest)
    20
    """

    model_config = ConfigDict(frozen=True)

    hex: str

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"hex": data}
        if isinstance(data, (bytes, bytearray)):
            return {"hex": bytes(data).hex()}
        return data

    @field_validator("hex")
    @classmethod
    def _check_hex(cls, value: str) -> str:
        value = value.strip().lower()
        if not _HEX40.match(value):
            raise ValueError(f"not a 40-character hex tree hash: {value!r}")
        return value

    @classmethod
    def from_bytes(cls, digest: bytes) -> ArtifactHash:
        if len(digest) != 20:
            raise ValueError(f"tree hash must be 20 bytes, got {len(digest)}")
        return cls(hex=digest.hex())

    @property
    def digest(self) -> bytes:
        """The raw 20 hash bytes."""
        return bytes.fromhex(self.hex)

    def __str__(self) -> str:
        return self.hex


class DownloadSource(BaseModel):
    """One place a tarball reconstructing an artifact can be fetched from.

    ``sha256`` checksums the tarball itself, not the unpacked tree.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    sha256: str

    @field_validator("sha256")
    @classmethod
    def _check_sha256(cls, value: str) -> str:
        value = value.strip().lower()
        if not _HEX64.match(value):
            raise ValueError(f"not a 64-character sha256 hex digest: {value!r}")
        return value


class ArtifactEntry(BaseModel):
    """A single manifest binding of a name to an artifact.

    ``platform`` is None for the universal mapping.  ``override_path`` is
    set only at load time, when a package-scoped override redirects this
    name to a directory; it is never written back to a manifest.
    """

    model_config = ConfigDict(frozen=True)

    hash: ArtifactHash
    lazy: bool = False
    platform: Platform | None = None
    downloads: list[DownloadSource] = Field(default_factory=list)
    override_path: Path | None = Field(default=None, exclude=True)


class Redirect(BaseModel):
    """Where an override sends a hash or a name: a directory or another hash."""

    model_config = ConfigDict(frozen=True)

    path: Path | None = None
    hash: ArtifactHash | None = None

    @model_validator(mode="after")
    def _exactly_one(self) -> Redirect:
        if (self.path is None) == (self.hash is None):
            raise ValueError("a redirect needs exactly one of 'path' or 'hash'")
        return self
