"""Artifact manifest manager: binds names to tree hashes in ``Artifacts.toml``.

A manifest maps each name either to a single table (the universal binding)
or to an array of tables, each qualified by a platform::

    [dataset]
    git-tree-sha1 = "83a1a3d6b5c0e1e7f0f1a2b3c4d5e6f708192a3b"
    lazy = true

        [[dataset.download]]
        sha256 = "..."
        url = "https://example.com/dataset.tar.gz"

    [[libfoo]]
    arch = "x86_64"
    git-tree-sha1 = "..."
    os = "linux"

Files are rewritten whole with sorted keys; there is no locking, so
concurrent writers to the same manifest race and the last one wins.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Union

import tomli
import tomli_w
from pydantic import ValidationError

from artivault.core.errors import AlreadyBoundError, ManifestFormatError
from artivault.core.overrides import OverrideResolver
from artivault.core.platforms import decode_platform, encode_platform, host_platform
from artivault.models.artifacts import ArtifactEntry, ArtifactHash, DownloadSource
from artivault.models.platforms import Platform

logger = logging.getLogger(__name__)

MANIFEST_FILENAMES = ("Artifacts.toml", "artifacts.toml")
USAGE_LOG_FILENAME = "artifact_usage.toml"

Binding = Union[ArtifactEntry, list[ArtifactEntry]]


# ---------------------------------------------------------------------------
# Entry codec
# ---------------------------------------------------------------------------

def entry_to_toml(entry: ArtifactEntry) -> dict[str, Any]:
    """Serialize an entry into its manifest table."""
    table: dict[str, Any] = {"git-tree-sha1": entry.hash.hex}
    if entry.lazy:
        table["lazy"] = True
    if entry.downloads:
        table["download"] = [{"url": d.url, "sha256": d.sha256} for d in entry.downloads]
    if entry.platform is not None:
        encode_platform(table, entry.platform)
    return table


def entry_from_toml(table: Any, name: str = "", source: Path | str = "") -> ArtifactEntry:
    """Decode one manifest table into an ``ArtifactEntry``."""
    if not isinstance(table, dict):
        raise ManifestFormatError(
            f"Entry for '{name}' in {source} must be a table, got {type(table).__name__}"
        )
    if "git-tree-sha1" not in table:
        raise ManifestFormatError(f"Entry for '{name}' in {source} has no git-tree-sha1")
    try:
        return ArtifactEntry(
            hash=table["git-tree-sha1"],
            lazy=bool(table.get("lazy", False)),
            platform=decode_platform(table),
            downloads=[DownloadSource(**dl) for dl in table.get("download", [])],
        )
    except (ValidationError, TypeError) as exc:
        raise ManifestFormatError(f"Invalid entry for '{name}' in {source}: {exc}") from exc


def _check_platform_list(entries: list[ArtifactEntry], name: str, source: Path) -> None:
    """Every element of an array binding needs its own, distinct platform."""
    seen: list[Platform] = []
    for entry in entries:
        if entry.platform is None:
            raise ManifestFormatError(
                f"Array entry for '{name}' in {source} has no os/arch platform keys"
            )
        if entry.platform in seen:
            raise ManifestFormatError(
                f"Duplicate {entry.platform.triplet()} mapping for '{name}' in {source}"
            )
        seen.append(entry.platform)


def _sorted_table(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _sorted_table(value[key]) for key in sorted(value)}
    if isinstance(value, list):
        return [_sorted_table(item) for item in value]
    return value


def find_manifest(start: Path) -> Path | None:
    """Find the nearest ``Artifacts.toml`` in ``start`` or one of its parents."""
    start = Path(start).resolve()
    directory = start if start.is_dir() else start.parent
    for candidate_dir in [directory, *directory.parents]:
        for filename in MANIFEST_FILENAMES:
            candidate = candidate_dir / filename
            if candidate.is_file():
                return candidate
    return None


def record_usage(log_path: Path, manifest_path: Path) -> None:
    """Append a timestamped usage record for a manifest to the usage log."""
    log_path = Path(log_path)
    data: dict[str, Any] = {}
    if log_path.is_file():
        with open(log_path, "rb") as fh:
            data = tomli.load(fh)
    key = str(Path(manifest_path).resolve())
    data.setdefault(key, []).append({"time": datetime.now(timezone.utc)})
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "wb") as fh:
        tomli_w.dump(data, fh)


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class ManifestManager:
    """Reads, queries, and rewrites artifact manifests.

    Parameters
    ----------
    overrides:
        Override table used to apply package-scoped name redirects when a
        ``pkg_context`` is given to a query.
    usage_log:
        File that records every manifest ``bind`` touches.  Disabled when None.
    """

    def __init__(
        self,
        overrides: OverrideResolver | None = None,
        usage_log: Path | None = None,
    ) -> None:
        self._overrides = overrides
        self._usage_log = usage_log

    @property
    def overrides(self) -> OverrideResolver | None:
        return self._overrides

    # ------------------------------------------------------------------
    # Load / dump
    # ------------------------------------------------------------------

    def load(self, manifest_path: Path, pkg_context: str | None = None) -> dict[str, Binding]:
        """Parse a manifest into typed bindings; a missing file is empty."""
        manifest_path = Path(manifest_path)
        if not manifest_path.is_file():
            return {}
        try:
            with open(manifest_path, "rb") as fh:
                raw = tomli.load(fh)
        except tomli.TOMLDecodeError as exc:
            raise ManifestFormatError(f"Malformed manifest {manifest_path}: {exc}") from exc

        data: dict[str, Binding] = {}
        for name, value in raw.items():
            if isinstance(value, list):
                entries = [entry_from_toml(t, name, manifest_path) for t in value]
                _check_platform_list(entries, name, manifest_path)
                data[name] = entries
            else:
                data[name] = entry_from_toml(value, name, manifest_path)

        if pkg_context is not None and self._overrides is not None:
            data = {
                name: self._apply_name_override(pkg_context, name, binding)
                for name, binding in data.items()
            }
        return data

    def _apply_name_override(self, pkg_context: str, name: str, binding: Binding) -> Binding:
        redirect = self._overrides.lookup_name(pkg_context, name)
        if redirect is None:
            return binding

        def _redirected(entry: ArtifactEntry) -> ArtifactEntry:
            if redirect.hash is not None:
                return entry.model_copy(update={"hash": redirect.hash})
            return entry.model_copy(update={"override_path": redirect.path})

        logger.debug("Applying override for %s/%s", pkg_context, name)
        if isinstance(binding, list):
            return [_redirected(e) for e in binding]
        return _redirected(binding)

    def dump(self, manifest_path: Path, data: dict[str, Binding]) -> None:
        """Write typed bindings back to disk with deterministically sorted keys."""
        raw: dict[str, Any] = {}
        for name, binding in data.items():
            if isinstance(binding, list):
                raw[name] = [entry_to_toml(e) for e in binding]
            else:
                raw[name] = entry_to_toml(binding)
        manifest_path = Path(manifest_path)
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        with open(manifest_path, "wb") as fh:
            tomli_w.dump(_sorted_table(raw), fh)

    # ------------------------------------------------------------------
    # Bind / unbind
    # ------------------------------------------------------------------

    def bind(
        self,
        manifest_path: Path,
        name: str,
        artifact_hash: ArtifactHash,
        *,
        platform: Platform | None = None,
        downloads: Iterable[DownloadSource | tuple[str, str]] | None = None,
        lazy: bool = False,
        force: bool = False,
    ) -> ArtifactEntry:
        """Bind ``name`` to ``artifact_hash``, optionally for one platform.

        Without ``force``, any existing universal binding for ``name``
        blocks a new bind, as does an existing platform binding when the new
        one is universal or targets the same platform.

        Returns the entry that was written.

        Raises
        ------
        AlreadyBoundError
            If a conflicting mapping exists and ``force`` is False.
        """
        manifest_path = Path(manifest_path)
        data = self.load(manifest_path)
        existing = data.get(name)

        if existing is not None and not force:
            if not isinstance(existing, list):
                raise AlreadyBoundError(
                    f"Mapping for '{name}' within {manifest_path} already exists!"
                )
            if platform is None:
                raise AlreadyBoundError(
                    f"Platform-specific mappings for '{name}' within {manifest_path} "
                    "already exist!"
                )
            if any(e.platform == platform for e in existing):
                raise AlreadyBoundError(
                    f"Mapping for '{name}'/{platform.triplet()} within {manifest_path} "
                    "already exists!"
                )

        entry = ArtifactEntry(
            hash=artifact_hash,
            lazy=lazy,
            platform=platform,
            downloads=[
                d if isinstance(d, DownloadSource) else DownloadSource(url=d[0], sha256=d[1])
                for d in (downloads or [])
            ],
        )

        if platform is None:
            data[name] = entry
        elif isinstance(existing, list):
            data[name] = [e for e in existing if e.platform != platform] + [entry]
        else:
            data[name] = [entry]

        self.dump(manifest_path, data)
        logger.info("Bound '%s' -> %s in %s", name, artifact_hash, manifest_path)

        if self._usage_log is not None:
            record_usage(self._usage_log, manifest_path)
        return entry

    def unbind(
        self,
        manifest_path: Path,
        name: str,
        platform: Platform | None = None,
    ) -> None:
        """Remove ``name`` (or only its ``platform`` entry); absent names are ignored."""
        manifest_path = Path(manifest_path)
        data = self.load(manifest_path)
        if name not in data:
            return

        if platform is None:
            del data[name]
        else:
            binding = data[name]
            if isinstance(binding, list):
                remaining = [e for e in binding if e.platform != platform]
                if remaining:
                    data[name] = remaining
                else:
                    del data[name]
            elif binding.platform == platform:
                del data[name]

        self.dump(manifest_path, data)
        logger.info("Unbound '%s' in %s", name, manifest_path)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def select(binding: Binding | None, platform: Platform) -> ArtifactEntry | None:
        """Pick the entry of a binding that applies to ``platform``."""
        if binding is None:
            return None
        if not isinstance(binding, list):
            return binding
        for entry in binding:
            if entry.platform is not None and entry.platform.matches(platform):
                return entry
        return None

    def meta(
        self,
        name: str,
        manifest_path: Path,
        *,
        platform: Platform | None = None,
        pkg_context: str | None = None,
    ) -> ArtifactEntry | None:
        """Return the entry ``name`` resolves to on ``platform`` (default: host)."""
        data = self.load(manifest_path, pkg_context=pkg_context)
        return self.select(data.get(name), platform or host_platform())

    def artifact_hash(
        self,
        name: str,
        manifest_path: Path,
        *,
        platform: Platform | None = None,
        pkg_context: str | None = None,
    ) -> ArtifactHash | None:
        entry = self.meta(name, manifest_path, platform=platform, pkg_context=pkg_context)
        return entry.hash if entry is not None else None

    def select_downloadable(
        self,
        manifest_path: Path,
        *,
        platform: Platform | None = None,
        include_lazy: bool = False,
        pkg_context: str | None = None,
    ) -> dict[str, ArtifactEntry]:
        """All names that resolve on ``platform``, skipping lazy ones unless asked."""
        platform = platform or host_platform()
        data = self.load(manifest_path, pkg_context=pkg_context)
        selected: dict[str, ArtifactEntry] = {}
        for name in sorted(data):
            entry = self.select(data[name], platform)
            if entry is None:
                continue
            if entry.lazy and not include_lazy:
                continue
            selected[name] = entry
        return selected

    def extract_all_hashes(
        self,
        manifest_path: Path,
        *,
        platform: Platform | None = None,
        include_lazy: bool = False,
        pkg_context: str | None = None,
    ) -> list[ArtifactHash]:
        entries = self.select_downloadable(
            manifest_path,
            platform=platform,
            include_lazy=include_lazy,
            pkg_context=pkg_context,
        )
        return [entry.hash for entry in entries.values()]
