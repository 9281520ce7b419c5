"""Artifact installer: turns a manifest name into a guaranteed local path.

Resolution runs through these states for each request::

    Resolving -> Present
              -> MirrorFetch -> Present
              -> DirectFetch(0..n) -> Present | Failed

An artifact already on disk (or overridden) is Present without any network
activity.  Otherwise the configured mirror is tried once, then every
``download`` source of the manifest entry in order.  Transport failures move
on to the next source; a tree hash mismatch stops the chain; cancellation
always propagates.
"""

from __future__ import annotations

import logging
from pathlib import Path

from artivault.config import VaultConfig
from artivault.core.artifact_store import ArtifactStore, remove_tree
from artivault.core.errors import (
    ArtifactNotFoundError,
    HashMismatchError,
    InstallationError,
    NoDownloadSourceError,
)
from artivault.core.fetch import Fetcher, HttpFetcher
from artivault.core.manifest import ManifestManager
from artivault.core.platforms import host_platform
from artivault.models.artifacts import ArtifactEntry, ArtifactHash
from artivault.models.platforms import Platform

logger = logging.getLogger(__name__)


class ArtifactInstaller:
    """Coordinates the store, manifests, and transport to install artifacts.

    Parameters
    ----------
    store:
        Artifact store the downloads land in.
    manifests:
        Manifest manager used to resolve names.
    fetcher:
        Download-verify-unpack callable.  Defaults to an ``HttpFetcher``.
    config:
        Runtime settings (mirror, hash escape hatch, verification mode).
    """

    def __init__(
        self,
        store: ArtifactStore,
        manifests: ManifestManager,
        *,
        fetcher: Fetcher | None = None,
        config: VaultConfig | None = None,
    ) -> None:
        self.store = store
        self.manifests = manifests
        self.config = config or VaultConfig()
        self._owns_fetcher = fetcher is None
        self.fetcher: Fetcher = fetcher or HttpFetcher(timeout=self.config.fetch_timeout)

    def close(self) -> None:
        """Release the default fetcher's HTTP client.  Injected fetchers are left open."""
        if self._owns_fetcher and isinstance(self.fetcher, HttpFetcher):
            self.fetcher.close()

    def __enter__(self) -> ArtifactInstaller:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Fetch-and-verify primitive
    # ------------------------------------------------------------------

    def download_artifact(
        self,
        tree_hash: ArtifactHash,
        url: str,
        tarball_sha256: str | None = None,
    ) -> bool:
        """Download, unpack, and verify one tarball into the store.

        Returns True when the artifact is installed afterwards and False on
        a transport failure.

        Raises
        ------
        HashMismatchError
            If the unpacked tree does not hash to ``tree_hash`` and the
            ``ARTIVAULT_IGNORE_HASHES=1`` escape hatch is not set.
        """
        if self.store.exists(tree_hash):
            return True
        try:
            self._fetch(tree_hash, url, tarball_sha256)
        except HashMismatchError:
            raise
        except Exception as exc:
            logger.debug("download_artifact %s from %s failed: %s", tree_hash, url, exc)
            return False
        return True

    def _fetch(self, tree_hash: ArtifactHash, url: str, tarball_sha256: str | None) -> Path:
        """Like ``download_artifact`` but raises the underlying failure."""
        if not self.config.should_verify_tree_hashes:
            return self._fetch_trusted(tree_hash, url, tarball_sha256)

        # Download into a fresh artifact so a corrupt or malicious tarball can
        # never clobber the directory of the hash we were promised.
        def _build(temp_dir: Path) -> None:
            self.fetcher(url, tarball_sha256, temp_dir)

        calculated, created = self.store.create_with_status(_build)
        if calculated == tree_hash:
            return self.store.path(tree_hash, honor_overrides=False)

        error = HashMismatchError(tree_hash, calculated)
        if self.config.hash_mismatch_override:
            logger.error(
                "%s\n$ARTIVAULT_IGNORE_HASHES is set to 1: ignoring error and "
                "moving artifact to the expected location",
                error,
            )
            return self.store.relocate(calculated, tree_hash, keep_source=not created)

        logger.error("%s", error)
        if created:
            self.store.remove(calculated)
        raise error

    def _fetch_trusted(
        self, tree_hash: ArtifactHash, url: str, tarball_sha256: str | None
    ) -> Path:
        # Filesystems without reliable executable bits cannot reproduce the
        # git tree hash, so the declared hash is trusted as-is.
        logger.warning(
            "Tree hash verification is disabled; trusting declared hash %s for %s",
            tree_hash,
            url,
        )
        dest = self.store.path(tree_hash, honor_overrides=False)
        dest.mkdir(parents=True, exist_ok=True)
        try:
            self.fetcher(url, tarball_sha256, dest)
        except BaseException:
            remove_tree(dest)
            raise
        return dest

    # ------------------------------------------------------------------
    # Ensure installed
    # ------------------------------------------------------------------

    def ensure_installed(
        self,
        name: str,
        manifest_path: Path,
        *,
        platform: Platform | None = None,
        pkg_context: str | None = None,
    ) -> Path:
        """Resolve ``name`` in a manifest and make sure it is installed.

        Raises
        ------
        ArtifactNotFoundError
            If the manifest has no entry for ``name`` on ``platform``.
        """
        platform = platform or host_platform()
        entry = self.manifests.meta(
            name, manifest_path, platform=platform, pkg_context=pkg_context
        )
        if entry is None:
            raise ArtifactNotFoundError(
                f"Cannot locate artifact '{name}' for {platform.triplet()} "
                f"in '{manifest_path}'"
            )
        return self.ensure_entry_installed(name, entry, manifest_path, platform=platform)

    def ensure_entry_installed(
        self,
        name: str,
        entry: ArtifactEntry,
        manifest_path: Path,
        *,
        platform: Platform | None = None,
    ) -> Path:
        """Make sure an already-resolved manifest entry is installed.

        Returns the artifact's path.  ``platform`` is only used in messages.
        """
        if entry.override_path is not None:
            return entry.override_path

        tree_hash = entry.hash
        if self.store.is_overridden(tree_hash) or self.store.exists(tree_hash):
            return self.store.path(tree_hash)

        label = f"'{name}' ({tree_hash})"
        if platform is not None:
            label += f" for {platform.triplet()}"

        failures: list[tuple[str, str]] = []
        if self.config.mirror_url:
            url = f"{self.config.mirror_url}/artifact/{tree_hash}"
            logger.info("Downloading artifact %s from mirror", label)
            try:
                self._fetch(tree_hash, url, None)
                return self.store.path(tree_hash)
            except Exception as exc:
                logger.warning("Mirror fetch of %s failed: %s", label, exc)
                failures.append((url, str(exc)))

        if not entry.downloads:
            message = (
                f"Cannot automatically install {label}; "
                f"no download section in '{manifest_path}'"
            )
            if failures:
                mirror_url, reason = failures[0]
                message += f" and mirror {mirror_url} failed: {reason}"
            raise NoDownloadSourceError(message)

        for source in entry.downloads:
            logger.info("Downloading artifact %s from %s", label, source.url)
            try:
                self._fetch(tree_hash, source.url, source.sha256)
            except HashMismatchError:
                raise
            except Exception as exc:
                logger.warning("Download of %s from %s failed: %s", label, source.url, exc)
                failures.append((source.url, str(exc)))
                continue
            logger.info("Installed artifact %s", label)
            return self.store.path(tree_hash)

        raise InstallationError(
            name, tree_hash, failures, str(manifest_path), platform=platform
        )

    def ensure_all_installed(
        self,
        manifest_path: Path,
        *,
        platform: Platform | None = None,
        include_lazy: bool = False,
        pkg_context: str | None = None,
    ) -> dict[str, Path]:
        """Install every downloadable artifact of a manifest."""
        platform = platform or host_platform()
        entries = self.manifests.select_downloadable(
            manifest_path,
            platform=platform,
            include_lazy=include_lazy,
            pkg_context=pkg_context,
        )
        return {
            name: self.ensure_entry_installed(name, entry, manifest_path, platform=platform)
            for name, entry in entries.items()
        }
