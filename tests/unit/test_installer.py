"""Tests for ArtifactInstaller: presence, mirror, fallback chain, verification."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from artivault.core.artifact_store import ArtifactStore
from artivault.core.errors import (
    ArtifactNotFoundError,
    FetchCancelled,
    HashMismatchError,
    InstallationError,
    NoDownloadSourceError,
    TransportError,
)
from artivault.core.fetch import HttpFetcher
from artivault.core.installer import ArtifactInstaller
from artivault.core.manifest import ManifestManager
from artivault.core.overrides import OverrideTable
from artivault.models.artifacts import ArtifactEntry, ArtifactHash, DownloadSource, Redirect

from conftest import LINUX, MACOS, FakeFetcher, hash_of, write_tree

PAYLOAD = {"lib/libdata.so": "binary-ish\n", "README": "payload\n"}
OTHER = {"README": "something else entirely\n"}
SHA = "c" * 64

URL1 = "https://one.example/data.tar.gz"
URL2 = "https://two.example/data.tar.gz"
URL3 = "https://three.example/data.tar.gz"


@pytest.fixture
def payload_hash(tmp_path: Path) -> ArtifactHash:
    return hash_of(tmp_path, PAYLOAD)


def _leftovers(store: ArtifactStore) -> list[str]:
    if not store.artifacts_dir.exists():
        return []
    return sorted(p.name for p in store.artifacts_dir.iterdir())


class TestDownloadArtifact:
    def test_success(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        store: ArtifactStore,
        payload_hash: ArtifactHash,
    ):
        fetcher = FakeFetcher({URL1: PAYLOAD})
        installer = make_installer(fetcher)
        assert installer.download_artifact(payload_hash, URL1, SHA) is True
        assert store.verify(payload_hash)
        assert fetcher.calls == [(URL1, SHA)]

    def test_short_circuits_when_present(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        store: ArtifactStore,
        payload_hash: ArtifactHash,
    ):
        store.create(lambda d: write_tree(d, PAYLOAD))
        fetcher = FakeFetcher({})
        assert make_installer(fetcher).download_artifact(payload_hash, URL1) is True
        assert fetcher.calls == []

    def test_transport_error_returns_false(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        store: ArtifactStore,
        payload_hash: ArtifactHash,
    ):
        fetcher = FakeFetcher({URL1: TransportError("connection reset")})
        assert make_installer(fetcher).download_artifact(payload_hash, URL1) is False
        assert _leftovers(store) == []

    def test_mismatch_raises_and_leaves_nothing(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        store: ArtifactStore,
        payload_hash: ArtifactHash,
        tmp_path: Path,
    ):
        fetcher = FakeFetcher({URL1: OTHER})
        with pytest.raises(HashMismatchError) as excinfo:
            make_installer(fetcher).download_artifact(payload_hash, URL1)
        assert excinfo.value.expected == payload_hash
        assert excinfo.value.calculated == hash_of(tmp_path, OTHER)
        assert not store.exists(payload_hash)
        assert _leftovers(store) == []

    def test_mismatch_keeps_preexisting_artifact(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        store: ArtifactStore,
        payload_hash: ArtifactHash,
    ):
        other = store.create(lambda d: write_tree(d, OTHER))
        fetcher = FakeFetcher({URL1: OTHER})
        with pytest.raises(HashMismatchError):
            make_installer(fetcher).download_artifact(payload_hash, URL1)
        assert store.exists(other)

    def test_mismatch_escape_hatch(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        store: ArtifactStore,
        payload_hash: ArtifactHash,
    ):
        fetcher = FakeFetcher({URL1: OTHER})
        installer = make_installer(fetcher, ignore_hashes="1")
        assert installer.download_artifact(payload_hash, URL1) is True
        installed = store.path(payload_hash)
        assert installed == store.artifacts_dir / payload_hash.hex
        assert (installed / "README").read_text() == OTHER["README"]

    def test_escape_hatch_requires_literal_one(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        payload_hash: ArtifactHash,
    ):
        fetcher = FakeFetcher({URL1: OTHER})
        with pytest.raises(HashMismatchError):
            make_installer(fetcher, ignore_hashes="true").download_artifact(payload_hash, URL1)

    @pytest.mark.parametrize("signal", [KeyboardInterrupt(), FetchCancelled()])
    def test_cancellation_propagates(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        store: ArtifactStore,
        payload_hash: ArtifactHash,
        signal: BaseException,
    ):
        fetcher = FakeFetcher({URL1: signal})
        with pytest.raises(type(signal)):
            make_installer(fetcher).download_artifact(payload_hash, URL1)
        assert _leftovers(store) == []

    def test_trusted_mode_skips_verification(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        store: ArtifactStore,
        payload_hash: ArtifactHash,
    ):
        fetcher = FakeFetcher({URL1: OTHER})
        installer = make_installer(fetcher, verify_tree_hashes=False)
        assert installer.download_artifact(payload_hash, URL1) is True
        assert (store.path(payload_hash) / "README").read_text() == OTHER["README"]

    def test_trusted_mode_cleans_up_on_failure(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        store: ArtifactStore,
        payload_hash: ArtifactHash,
    ):
        fetcher = FakeFetcher({URL1: TransportError("boom")})
        installer = make_installer(fetcher, verify_tree_hashes=False)
        assert installer.download_artifact(payload_hash, URL1) is False
        assert not store.exists(payload_hash)


class TestEnsureInstalled:
    def test_fallback_order(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        manifests: ManifestManager,
        manifest_path: Path,
        store: ArtifactStore,
        payload_hash: ArtifactHash,
    ):
        manifests.bind(
            manifest_path,
            "data",
            payload_hash,
            downloads=[(URL1, SHA), (URL2, SHA), (URL3, SHA)],
        )
        fetcher = FakeFetcher(
            {
                URL1: TransportError("timeout"),
                URL2: TransportError("HTTP 503"),
                URL3: PAYLOAD,
            }
        )
        path = make_installer(fetcher).ensure_installed("data", manifest_path, platform=LINUX)
        assert fetcher.urls == [URL1, URL2, URL3]
        assert path == store.artifacts_dir / payload_hash.hex
        assert store.exists(payload_hash)

    def test_second_source_after_network_error(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        manifests: ManifestManager,
        manifest_path: Path,
        payload_hash: ArtifactHash,
    ):
        sha1, sha2 = "1" * 64, "2" * 64
        manifests.bind(manifest_path, "data", payload_hash, downloads=[(URL1, sha1), (URL2, sha2)])
        fetcher = FakeFetcher({URL1: TransportError("network unreachable"), URL2: PAYLOAD})
        path = make_installer(fetcher).ensure_installed("data", manifest_path)
        assert fetcher.calls == [(URL1, sha1), (URL2, sha2)]
        assert path.parts[-2:] == ("artifacts", payload_hash.hex)

    def test_present_means_no_network(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        manifests: ManifestManager,
        manifest_path: Path,
        store: ArtifactStore,
        payload_hash: ArtifactHash,
    ):
        store.create(lambda d: write_tree(d, PAYLOAD))
        manifests.bind(manifest_path, "data", payload_hash)
        fetcher = FakeFetcher({})
        path = make_installer(fetcher).ensure_installed("data", manifest_path, platform=LINUX)
        assert path == store.path(payload_hash)
        assert fetcher.calls == []

    def test_overridden_hash_is_present(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        manifests: ManifestManager,
        overrides: OverrideTable,
        manifest_path: Path,
        payload_hash: ArtifactHash,
        tmp_path: Path,
    ):
        manifests.bind(manifest_path, "data", payload_hash)
        overrides.add(payload_hash, Redirect(path=tmp_path / "vendored"))
        fetcher = FakeFetcher({})
        path = make_installer(fetcher).ensure_installed("data", manifest_path, platform=LINUX)
        assert path == tmp_path / "vendored"
        assert fetcher.calls == []

    def test_package_path_override(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        manifests: ManifestManager,
        overrides: OverrideTable,
        manifest_path: Path,
        payload_hash: ArtifactHash,
        tmp_path: Path,
    ):
        manifests.bind(manifest_path, "data", payload_hash)
        overrides.add_name("my-pkg", "data", Redirect(path=tmp_path / "dev-data"))
        path = make_installer(FakeFetcher({})).ensure_installed(
            "data", manifest_path, platform=LINUX, pkg_context="my-pkg"
        )
        assert path == tmp_path / "dev-data"

    def test_unknown_name(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        manifests: ManifestManager,
        manifest_path: Path,
        payload_hash: ArtifactHash,
    ):
        manifests.bind(manifest_path, "mac-data", payload_hash, platform=MACOS)
        installer = make_installer(FakeFetcher({}))
        with pytest.raises(ArtifactNotFoundError, match="x86_64-linux-glibc"):
            installer.ensure_installed("mac-data", manifest_path, platform=LINUX)
        with pytest.raises(ArtifactNotFoundError, match="nothing"):
            installer.ensure_installed("nothing", manifest_path, platform=LINUX)

    def test_no_download_section(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        manifests: ManifestManager,
        manifest_path: Path,
        payload_hash: ArtifactHash,
    ):
        manifests.bind(manifest_path, "data", payload_hash)
        with pytest.raises(NoDownloadSourceError, match="no download section"):
            make_installer(FakeFetcher({})).ensure_installed(
                "data", manifest_path, platform=LINUX
            )

    def test_exhaustion_lists_every_source(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        manifests: ManifestManager,
        manifest_path: Path,
        payload_hash: ArtifactHash,
    ):
        manifests.bind(manifest_path, "data", payload_hash, downloads=[(URL1, SHA), (URL2, SHA)])
        fetcher = FakeFetcher({URL1: TransportError("DNS failure"), URL2: TransportError("HTTP 404")})
        with pytest.raises(InstallationError) as excinfo:
            make_installer(fetcher).ensure_installed("data", manifest_path, platform=LINUX)

        err = excinfo.value
        assert err.name == "data"
        assert err.tree_hash == payload_hash
        assert [url for url, _ in err.failures] == [URL1, URL2]
        assert "DNS failure" in str(err)
        assert "HTTP 404" in str(err)

    def test_exhaustion_names_platform(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        payload_hash: ArtifactHash,
    ):
        entry = ArtifactEntry(
            hash=payload_hash, downloads=[DownloadSource(url=URL1, sha256=SHA)]
        )
        fetcher = FakeFetcher({URL1: TransportError("boom")})
        with pytest.raises(InstallationError) as excinfo:
            make_installer(fetcher).ensure_entry_installed(
                "data", entry, Path("Artifacts.toml"), platform=LINUX
            )
        assert excinfo.value.platform == LINUX
        assert LINUX.triplet() in str(excinfo.value)

    def test_mismatch_stops_the_chain(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        manifests: ManifestManager,
        manifest_path: Path,
        store: ArtifactStore,
        payload_hash: ArtifactHash,
    ):
        manifests.bind(manifest_path, "data", payload_hash, downloads=[(URL1, SHA), (URL2, SHA)])
        fetcher = FakeFetcher({URL1: OTHER, URL2: PAYLOAD})
        with pytest.raises(HashMismatchError):
            make_installer(fetcher).ensure_installed("data", manifest_path, platform=LINUX)
        assert fetcher.urls == [URL1]
        assert not store.exists(payload_hash)

    def test_cancellation_stops_the_chain(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        manifests: ManifestManager,
        manifest_path: Path,
        payload_hash: ArtifactHash,
    ):
        manifests.bind(manifest_path, "data", payload_hash, downloads=[(URL1, SHA), (URL2, SHA)])
        fetcher = FakeFetcher({URL1: KeyboardInterrupt(), URL2: PAYLOAD})
        with pytest.raises(KeyboardInterrupt):
            make_installer(fetcher).ensure_installed("data", manifest_path, platform=LINUX)
        assert fetcher.urls == [URL1]


class TestMirror:
    MIRROR = "https://mirror.example"

    def test_mirror_tried_first_without_checksum(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        store: ArtifactStore,
        payload_hash: ArtifactHash,
    ):
        mirror_url = f"{self.MIRROR}/artifact/{payload_hash}"
        fetcher = FakeFetcher({mirror_url: PAYLOAD})
        entry = ArtifactEntry(hash=payload_hash)
        installer = make_installer(fetcher, mirror_url=self.MIRROR)
        path = installer.ensure_entry_installed("data", entry, Path("Artifacts.toml"))
        assert fetcher.calls == [(mirror_url, None)]
        assert path == store.path(payload_hash)

    def test_mirror_failure_falls_back(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        payload_hash: ArtifactHash,
    ):
        mirror_url = f"{self.MIRROR}/artifact/{payload_hash}"
        fetcher = FakeFetcher({mirror_url: TransportError("mirror down"), URL1: PAYLOAD})
        entry = ArtifactEntry(
            hash=payload_hash, downloads=[DownloadSource(url=URL1, sha256=SHA)]
        )
        installer = make_installer(fetcher, mirror_url=self.MIRROR)
        installer.ensure_entry_installed("data", entry, Path("Artifacts.toml"))
        assert fetcher.urls == [mirror_url, URL1]


    def test_mirror_failure_reported_with_sources(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        payload_hash: ArtifactHash,
    ):
        mirror_url = f"{self.MIRROR}/artifact/{payload_hash}"
        fetcher = FakeFetcher(
            {mirror_url: TransportError("mirror 503"), URL1: TransportError("boom")}
        )
        entry = ArtifactEntry(
            hash=payload_hash, downloads=[DownloadSource(url=URL1, sha256=SHA)]
        )
        installer = make_installer(fetcher, mirror_url=self.MIRROR)
        with pytest.raises(InstallationError) as excinfo:
            installer.ensure_entry_installed("data", entry, Path("Artifacts.toml"))

        assert excinfo.value.failures == [(mirror_url, "mirror 503"), (URL1, "boom")]
        assert "mirror 503" in str(excinfo.value)

    def test_mirror_failure_without_downloads(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        payload_hash: ArtifactHash,
    ):
        mirror_url = f"{self.MIRROR}/artifact/{payload_hash}"
        fetcher = FakeFetcher({mirror_url: TransportError("mirror 503")})
        installer = make_installer(fetcher, mirror_url=self.MIRROR)
        with pytest.raises(NoDownloadSourceError) as excinfo:
            installer.ensure_entry_installed(
                "data", ArtifactEntry(hash=payload_hash), Path("Artifacts.toml")
            )
        message = str(excinfo.value)
        assert "no download section" in message
        assert mirror_url in message
        assert "mirror 503" in message


class TestClose:
    def test_closes_default_fetcher(
        self, store: ArtifactStore, manifests: ManifestManager, vault_config
    ):
        with ArtifactInstaller(store, manifests, config=vault_config) as installer:
            client = installer.fetcher._client
            assert not client.is_closed
        assert client.is_closed

    def test_leaves_injected_fetcher_open(
        self, store: ArtifactStore, manifests: ManifestManager, vault_config
    ):
        client = httpx.Client()
        fetcher = HttpFetcher(client=client)
        ArtifactInstaller(store, manifests, fetcher=fetcher, config=vault_config).close()
        assert not client.is_closed
        client.close()


class TestEnsureAllInstalled:
    def test_installs_non_lazy_for_platform(
        self,
        make_installer: Callable[..., ArtifactInstaller],
        manifests: ManifestManager,
        manifest_path: Path,
        store: ArtifactStore,
        tmp_path: Path,
    ):
        eager = hash_of(tmp_path, PAYLOAD)
        lazy = hash_of(tmp_path, OTHER)
        manifests.bind(manifest_path, "eager", eager, downloads=[(URL1, SHA)])
        manifests.bind(manifest_path, "lazy", lazy, downloads=[(URL2, SHA)], lazy=True)
        fetcher = FakeFetcher({URL1: PAYLOAD, URL2: OTHER})
        installer = make_installer(fetcher)

        paths = installer.ensure_all_installed(manifest_path, platform=LINUX)
        assert list(paths) == ["eager"]
        assert not store.exists(lazy)

        paths = installer.ensure_all_installed(manifest_path, platform=LINUX, include_lazy=True)
        assert sorted(paths) == ["eager", "lazy"]
        assert store.exists(lazy)
