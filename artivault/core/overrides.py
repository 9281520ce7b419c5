"""Artifact override table: redirects hashes or names away from the store.

Overrides are loaded once per depot set from ``<depot>/artifacts/Overrides.toml``::

    # hash -> directory
    78f35e74ff113f02274ce60dab6e92b4546ef806 = "/opt/replacement"
    # hash -> another hash
    683942669b4639019be7631caa28c38f3e1d7fe5 = "7876af07990fd8b96ce6c9ff6ef3cab5e4e91a24"

    # package-scoped: name -> directory or hash
    [my-package]
    libfoo = "683942669b4639019be7631caa28c38f3e1d7fe5"

Depots earlier in the list take precedence over later ones.  The table is
handed to the store and the manifest manager explicitly rather than living
in module state.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol, runtime_checkable

import tomli

from artivault.core.errors import ManifestFormatError
from artivault.models.artifacts import ArtifactHash, Redirect

logger = logging.getLogger(__name__)

OVERRIDES_FILENAME = "Overrides.toml"

_HEX40 = re.compile(r"^[0-9a-fA-F]{40}$")


@runtime_checkable
class OverrideResolver(Protocol):
    """Read-only view of the override table consumed by the core."""

    def lookup(self, tree_hash: ArtifactHash) -> Redirect | None: ...

    def lookup_name(self, pkg_context: str, name: str) -> Redirect | None: ...


def _parse_target(value: object, base: Path, source: Path) -> Redirect:
    if not isinstance(value, str) or not value:
        raise ManifestFormatError(
            f"Override targets must be non-empty strings in {source}, got {value!r}"
        )
    if _HEX40.match(value):
        return Redirect(hash=ArtifactHash.model_validate(value))
    target = Path(value).expanduser()
    if not target.is_absolute():
        target = base / target
    return Redirect(path=target)


class OverrideTable:
    """In-memory override table implementing ``OverrideResolver``.

    Parameters
    ----------
    by_hash:
        Hash-level redirects.
    by_name:
        Package-scoped redirects, ``{pkg_context: {name: redirect}}``.
    """

    def __init__(
        self,
        by_hash: dict[ArtifactHash, Redirect] | None = None,
        by_name: dict[str, dict[str, Redirect]] | None = None,
    ) -> None:
        self._by_hash: dict[ArtifactHash, Redirect] = dict(by_hash or {})
        self._by_name: dict[str, dict[str, Redirect]] = {
            ctx: dict(names) for ctx, names in (by_name or {}).items()
        }

    @classmethod
    def from_depots(cls, depots: list[Path]) -> OverrideTable:
        """Load and merge ``Overrides.toml`` from every depot.

        Files are applied last-depot-first so that entries from earlier
        depots overwrite those from later ones.
        """
        table = cls()
        for depot in reversed(depots):
            path = Path(depot) / "artifacts" / OVERRIDES_FILENAME
            if path.is_file():
                table.merge_file(path)
        return table

    def merge_file(self, path: Path) -> None:
        """Merge one overrides file into the table, replacing existing keys."""
        try:
            with open(path, "rb") as fh:
                data = tomli.load(fh)
        except tomli.TOMLDecodeError as exc:
            raise ManifestFormatError(f"Malformed overrides file {path}: {exc}") from exc

        base = path.parent
        for key, value in data.items():
            if _HEX40.match(key):
                self._by_hash[ArtifactHash.model_validate(key)] = _parse_target(
                    value, base, path
                )
            elif isinstance(value, dict):
                names = self._by_name.setdefault(key, {})
                for name, target in value.items():
                    names[name] = _parse_target(target, base, path)
            else:
                raise ManifestFormatError(
                    f"Override key {key!r} in {path} is neither a tree hash "
                    "nor a package table"
                )
        logger.debug("Loaded artifact overrides from %s", path)

    def add(self, tree_hash: ArtifactHash, redirect: Redirect) -> None:
        """Register a hash-level redirect."""
        self._by_hash[tree_hash] = redirect

    def add_name(self, pkg_context: str, name: str, redirect: Redirect) -> None:
        """Register a package-scoped name redirect."""
        self._by_name.setdefault(pkg_context, {})[name] = redirect

    def lookup(self, tree_hash: ArtifactHash) -> Redirect | None:
        return self._by_hash.get(tree_hash)

    def lookup_name(self, pkg_context: str, name: str) -> Redirect | None:
        return self._by_name.get(pkg_context, {}).get(name)

    def __len__(self) -> int:
        return len(self._by_hash) + sum(len(v) for v in self._by_name.values())
