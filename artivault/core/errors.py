"""Error kinds raised by the artifact store, manifest manager and installer.

Every failure the core can surface derives from ``ArtivaultError`` so that
callers can catch the whole family at one seam.  ``FetchCancelled`` is the
exception: it derives from ``BaseException`` so that ``except Exception``
clauses in the download fallback chain never demote a cancellation into an
ordinary failed attempt.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from artivault.models.artifacts import ArtifactHash
    from artivault.models.platforms import Platform


class ArtivaultError(RuntimeError):
    """Base class for all artivault failures."""


class AlreadyBoundError(ArtivaultError):
    """Raised when binding a name that already has a conflicting mapping."""


class ArtifactNotFoundError(ArtivaultError, LookupError):
    """Raised when a name or hash cannot be located."""


class OverriddenArtifactError(ArtivaultError):
    """Raised when an overridden artifact is used without honoring overrides."""


class ManifestFormatError(ArtivaultError, ValueError):
    """Raised when a manifest file cannot be decoded into typed entries."""


class NoDownloadSourceError(ArtivaultError):
    """Raised when an artifact is missing and nothing says where to get it."""


class TransportError(ArtivaultError):
    """Raised when fetching, checksumming or unpacking a tarball fails."""


class HashMismatchError(ArtivaultError):
    """Raised when unpacked content does not hash to the declared tree hash."""

    def __init__(self, expected: ArtifactHash, calculated: ArtifactHash) -> None:
        self.expected = expected
        self.calculated = calculated
        super().__init__(
            "Tree Hash Mismatch!\n"
            f"  Expected git-tree-sha1:   {expected}\n"
            f"  Calculated git-tree-sha1: {calculated}"
        )


class InstallationError(ArtivaultError):
    """Raised when every download source for an artifact has failed.

    ``failures`` holds one ``(url, reason)`` pair per attempted source, the
    mirror included, in the order they were tried.
    """

    def __init__(
        self,
        name: str,
        tree_hash: ArtifactHash,
        failures: list[tuple[str, str]],
        manifest_path: str = "",
        platform: Platform | None = None,
    ) -> None:
        self.name = name
        self.tree_hash = tree_hash
        self.failures = list(failures)
        self.platform = platform
        target = f" for {platform.triplet()}" if platform is not None else ""
        where = f" from '{manifest_path}'" if manifest_path else ""
        lines = [
            f"Unable to automatically install '{name}' ({tree_hash}){target}{where}:"
        ]
        for url, reason in self.failures:
            lines.append(f"  - {url}: {reason}")
        super().__init__("\n".join(lines))


class FetchCancelled(BaseException):
    """Raised by a fetch layer when the caller asked to abort the download."""
