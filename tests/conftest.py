"""Shared test fixtures for artivault."""

from __future__ import annotations

import io
import tarfile
from collections.abc import Callable
from pathlib import Path

import pytest

from artivault.config import VaultConfig
from artivault.core.artifact_store import ArtifactStore
from artivault.core.errors import TransportError
from artivault.core.hasher import tree_hash
from artivault.core.installer import ArtifactInstaller
from artivault.core.manifest import ManifestManager
from artivault.core.overrides import OverrideTable
from artivault.models.artifacts import ArtifactHash
from artivault.models.platforms import Platform

LINUX = Platform(os="linux", arch="x86_64", libc="glibc")
MACOS = Platform(os="macos", arch="aarch64")
WINDOWS = Platform(os="windows", arch="x86_64")


def write_tree(root: Path, files: dict[str, str]) -> Path:
    """Populate ``root`` with ``{relative_path: text}``."""
    for rel, text in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text)
    return root


def hash_of(tmp_path: Path, files: dict[str, str]) -> ArtifactHash:
    """Tree hash that ``files`` would produce, computed outside any store."""
    scratch = tmp_path / "scratch"
    n = 0
    while (scratch / str(n)).exists():
        n += 1
    return tree_hash(write_tree(scratch / str(n), files))


def make_tarball(files: dict[str, str]) -> bytes:
    """Build an in-memory .tar.gz containing ``files``."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for rel, text in files.items():
            data = text.encode()
            info = tarfile.TarInfo(rel)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class FakeFetcher:
    """Fetcher double: each URL either raises or unpacks a fixed file set.

    Records every ``(url, sha256)`` call in order.
    """

    def __init__(self, routes: dict[str, dict[str, str] | BaseException]) -> None:
        self.routes = routes
        self.calls: list[tuple[str, str | None]] = []

    def __call__(self, url: str, sha256: str | None, dest: Path) -> None:
        self.calls.append((url, sha256))
        outcome = self.routes.get(url)
        if outcome is None:
            raise TransportError(f"no route for {url}")
        if isinstance(outcome, BaseException):
            raise outcome
        write_tree(dest, outcome)

    @property
    def urls(self) -> list[str]:
        return [url for url, _ in self.calls]


@pytest.fixture
def depot(tmp_path: Path) -> Path:
    """Provide an empty primary depot."""
    path = tmp_path / "depot"
    path.mkdir()
    return path


@pytest.fixture
def overrides() -> OverrideTable:
    """Provide an empty, mutable override table."""
    return OverrideTable()


@pytest.fixture
def store(depot: Path, overrides: OverrideTable) -> ArtifactStore:
    """Provide an ArtifactStore over the temp depot."""
    return ArtifactStore([depot], overrides=overrides)


@pytest.fixture
def manifests(overrides: OverrideTable) -> ManifestManager:
    """Provide a ManifestManager sharing the store's override table."""
    return ManifestManager(overrides=overrides)


@pytest.fixture
def manifest_path(tmp_path: Path) -> Path:
    return tmp_path / "project" / "Artifacts.toml"


@pytest.fixture
def vault_config(depot: Path) -> VaultConfig:
    """Config with no mirror and strict hash verification."""
    return VaultConfig(
        depot_path=[depot],
        mirror_url=None,
        ignore_hashes="",
        verify_tree_hashes=True,
        _env_file=None,
    )


@pytest.fixture
def make_installer(
    store: ArtifactStore, manifests: ManifestManager, vault_config: VaultConfig
) -> Callable[..., ArtifactInstaller]:
    """Factory fixture: installer over the shared store with a given fetcher."""

    def _factory(fetcher, **config_updates) -> ArtifactInstaller:
        config = vault_config.model_copy(update=config_updates)
        return ArtifactInstaller(store, manifests, fetcher=fetcher, config=config)

    return _factory

