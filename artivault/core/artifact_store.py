"""Content-addressed, immutable directory store keyed by git tree hash.

Storage layout: {depot}/artifacts/{tree_hash_hex}/...

The first depot is the primary, writable one; later depots are searched
read-only.  Artifacts are built in a temporary directory beside their final
location, hashed, and renamed into place, so concurrent creators of the
same content converge on a single directory without locking.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tarfile
import tempfile
from collections.abc import Callable
from pathlib import Path

from artivault.core.errors import ArtifactNotFoundError, OverriddenArtifactError
from artivault.core.hasher import sha256_file, tree_hash
from artivault.core.overrides import OverrideResolver
from artivault.models.artifacts import ArtifactHash

logger = logging.getLogger(__name__)

_WRITE_BITS = stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH


def set_readonly(root: Path) -> None:
    """Strip write permission from a tree, best-effort."""
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        for name in filenames + dirnames:
            path = os.path.join(dirpath, name)
            if os.path.islink(path):
                continue
            try:
                mode = os.lstat(path).st_mode
                os.chmod(path, mode & ~_WRITE_BITS)
            except OSError as exc:
                logger.debug("Could not make %s read-only: %s", path, exc)
    try:
        os.chmod(root, os.stat(root).st_mode & ~_WRITE_BITS)
    except OSError as exc:
        logger.debug("Could not make %s read-only: %s", root, exc)


def _make_writable(root: Path) -> None:
    """Restore owner write permission on every directory of a tree."""
    for dirpath, dirnames, _ in os.walk(root):
        for path in [dirpath, *(os.path.join(dirpath, d) for d in dirnames)]:
            if os.path.islink(path):
                continue
            try:
                os.chmod(path, os.stat(path).st_mode | stat.S_IWUSR)
            except OSError as exc:
                logger.debug("Could not make %s writable: %s", path, exc)


def remove_tree(path: Path) -> None:
    """Delete a file or tree, restoring write bits first; errors are ignored."""
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
        return
    _make_writable(path)
    shutil.rmtree(path, ignore_errors=True)


class ArtifactStore:
    """Tree-hash keyed, immutable directory store spread across depots.

    Parameters
    ----------
    depots:
        Ordered depot roots.  The first is written to; all are searched.
    overrides:
        Optional override table consulted by ``path``, ``verify``,
        ``remove`` and ``archive``.
    hasher:
        Tree hash function, ``tree_hash`` unless a test swaps it.
    """

    def __init__(
        self,
        depots: list[Path],
        overrides: OverrideResolver | None = None,
        hasher: Callable[[Path], ArtifactHash] = tree_hash,
    ) -> None:
        if not depots:
            raise ValueError("ArtifactStore needs at least one depot")
        self._depots = [Path(d) for d in depots]
        self._overrides = overrides
        self._hasher = hasher

    @property
    def depots(self) -> list[Path]:
        return list(self._depots)

    @property
    def artifacts_dir(self) -> Path:
        """The primary depot's artifact root."""
        return self._depots[0] / "artifacts"

    @property
    def overrides(self) -> OverrideResolver | None:
        return self._overrides

    def is_overridden(self, artifact_hash: ArtifactHash) -> bool:
        return self._overrides is not None and self._overrides.lookup(artifact_hash) is not None

    # ------------------------------------------------------------------
    # Locate
    # ------------------------------------------------------------------

    def paths(self, artifact_hash: ArtifactHash) -> list[Path]:
        """Every depot location this artifact could live at, in depot order."""
        return [depot / "artifacts" / artifact_hash.hex for depot in self._depots]

    def exists(self, artifact_hash: ArtifactHash) -> bool:
        """Raw on-disk check across all depots; overrides are not consulted."""
        return any(p.is_dir() for p in self.paths(artifact_hash))

    def path(self, artifact_hash: ArtifactHash, honor_overrides: bool = True) -> Path:
        """Resolve where an artifact lives (or would live, if absent).

        A hash redirect is followed to the target hash, which may itself be
        overridden; chains are followed until they end or repeat.
        """
        seen: set[ArtifactHash] = set()
        current = artifact_hash
        while honor_overrides and self._overrides is not None and current not in seen:
            seen.add(current)
            redirect = self._overrides.lookup(current)
            if redirect is None:
                break
            if redirect.path is not None:
                return redirect.path
            current = redirect.hash

        candidates = self.paths(current)
        for candidate in candidates:
            if candidate.is_dir():
                return candidate
        return candidates[0]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, builder: Callable[[Path], object]) -> ArtifactHash:
        """Build a new artifact and move it into the store.

        ``builder`` receives an empty temporary directory to populate.  If
        the resulting tree hash is already stored, the new copy is simply
        discarded.  The temporary directory is removed on every path out.
        """
        artifact_hash, _ = self.create_with_status(builder)
        return artifact_hash

    def create_with_status(
        self, builder: Callable[[Path], object]
    ) -> tuple[ArtifactHash, bool]:
        """``create``, also reporting whether this call installed the directory."""
        root = self.artifacts_dir
        root.mkdir(parents=True, exist_ok=True)
        temp_dir = Path(tempfile.mkdtemp(prefix=".tmp-", dir=root))
        try:
            builder(temp_dir)
            artifact_hash = self._hasher(temp_dir)

            # Never drop content onto an overridden location by accident.
            new_path = self.path(artifact_hash, honor_overrides=False)
            created = False
            if not new_path.is_dir():
                created = self._move_into_place(temp_dir, new_path)
            return artifact_hash, created
        finally:
            if temp_dir.exists():
                remove_tree(temp_dir)

    def create_from_directory(self, source: Path) -> ArtifactHash:
        """Copy an existing directory tree into the store."""
        source = Path(source)
        if not source.is_dir():
            raise NotADirectoryError(f"Not a directory: {source}")

        def _copy(dest: Path) -> None:
            shutil.copytree(source, dest, symlinks=True, dirs_exist_ok=True)

        return self.create(_copy)

    def _move_into_place(self, temp_dir: Path, new_path: Path) -> bool:
        try:
            os.rename(temp_dir, new_path)
        except OSError:
            # Lost a race to an identical creator: same hash, same content.
            if new_path.is_dir():
                logger.debug("Artifact %s appeared concurrently; discarding copy", new_path.name)
                return False
            raise
        try:
            os.chmod(new_path, stat.S_IMODE(os.stat(new_path.parent).st_mode))
        except OSError as exc:
            logger.debug("Could not copy depot mode onto %s: %s", new_path, exc)
        set_readonly(new_path)
        logger.info("Created artifact %s", new_path.name)
        return True

    def relocate(
        self,
        source_hash: ArtifactHash,
        dest_hash: ArtifactHash,
        keep_source: bool = False,
    ) -> Path:
        """File a stored artifact's content under another hash.

        Any existing directory at the destination is replaced.  With
        ``keep_source`` the content is copied rather than moved.
        """
        src = self.path(source_hash, honor_overrides=False)
        if not src.is_dir():
            raise ArtifactNotFoundError(f"Unable to relocate artifact {source_hash}: does not exist!")
        dst = self.artifacts_dir / dest_hash.hex
        if dst.exists():
            remove_tree(dst)
        dst.parent.mkdir(parents=True, exist_ok=True)
        if keep_source:
            shutil.copytree(src, dst, symlinks=True)
        else:
            _make_writable(src)
            shutil.move(str(src), str(dst))
        set_readonly(dst)
        return dst

    # ------------------------------------------------------------------
    # Verify, remove, archive
    # ------------------------------------------------------------------

    def verify(self, artifact_hash: ArtifactHash, honor_overrides: bool = False) -> bool:
        """Re-hash a stored artifact and compare against its name.

        Overridden artifacts are reported as valid without touching disk
        unless ``honor_overrides`` asks for the real check.
        """
        if not honor_overrides and self.is_overridden(artifact_hash):
            return True
        if not self.exists(artifact_hash):
            return False
        return self._hasher(self.path(artifact_hash, honor_overrides=False)) == artifact_hash

    def remove(self, artifact_hash: ArtifactHash) -> None:
        """Delete an artifact from every depot.  Overridden artifacts are kept."""
        if self.is_overridden(artifact_hash):
            logger.debug("Not removing overridden artifact %s", artifact_hash)
            return
        for candidate in self.paths(artifact_hash):
            if candidate.is_dir():
                remove_tree(candidate)
                logger.info("Removed artifact %s", candidate)

    def archive(
        self,
        artifact_hash: ArtifactHash,
        tarball_path: Path,
        honor_overrides: bool = False,
    ) -> str:
        """Pack an artifact into a gzip tarball and return the tarball's sha256."""
        if not honor_overrides and self.is_overridden(artifact_hash):
            raise OverriddenArtifactError(
                f"Will not archive overridden artifact {artifact_hash} "
                "unless `honor_overrides` is set!"
            )
        source = self.path(artifact_hash, honor_overrides=honor_overrides)
        if not source.is_dir():
            raise ArtifactNotFoundError(
                f"Unable to archive artifact {artifact_hash}: does not exist!"
            )

        tarball_path = Path(tarball_path)
        tarball_path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(tarball_path, "w:gz") as tar:
            for child in sorted(source.iterdir()):
                tar.add(child, arcname=child.name)
        return sha256_file(tarball_path)
