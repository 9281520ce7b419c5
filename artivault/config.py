"""Runtime configuration: env-driven via pydantic-settings.

All settings can be overridden with ``ARTIVAULT_*`` environment variables
or a ``.env`` file in the working directory.

Examples
--------
Search a shared, read-only depot after the user depot::

    export ARTIVAULT_DEPOT_PATH=~/.artivault:/opt/shared/artivault

Try a mirror before any manifest download source::

    export ARTIVAULT_MIRROR_URL=https://artifacts.example.com

Accept tree hash mismatches (moves the content to the expected hash)::

    export ARTIVAULT_IGNORE_HASHES=1
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

if TYPE_CHECKING:
    from artivault.core.artifact_store import ArtifactStore
    from artivault.core.fetch import Fetcher
    from artivault.core.installer import ArtifactInstaller
    from artivault.core.manifest import ManifestManager
    from artivault.core.overrides import OverrideTable


class VaultConfig(BaseSettings):
    """Depot locations, download behavior, and logging settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ARTIVAULT_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ordered depots; the first is the writable primary.
    depot_path: Annotated[list[Path], NoDecode] = [Path("~/.artivault").expanduser()]

    # Base URL of a server answering GET <mirror_url>/artifact/<tree-hash>.
    mirror_url: str | None = None

    # Escape hatch: only the literal "1" enables it.
    ignore_hashes: str = ""

    # None means "verify everywhere except Windows".
    verify_tree_hashes: bool | None = None

    fetch_timeout: float = 60.0
    log_level: str = "INFO"

    @field_validator("depot_path", mode="before")
    @classmethod
    def _split_depots(cls, value: Any) -> Any:
        if isinstance(value, (str, Path)):
            value = [p for p in str(value).split(os.pathsep) if p]
        return [Path(p).expanduser() for p in value]

    @field_validator("mirror_url")
    @classmethod
    def _strip_mirror(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None

    @property
    def hash_mismatch_override(self) -> bool:
        """Whether tree hash mismatches are force-accepted."""
        return self.ignore_hashes == "1"

    @property
    def should_verify_tree_hashes(self) -> bool:
        if self.verify_tree_hashes is None:
            return not sys.platform.startswith("win")
        return self.verify_tree_hashes

    @property
    def usage_log_path(self) -> Path:
        return self.depot_path[0] / "logs" / "artifact_usage.toml"

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def load_overrides(self) -> OverrideTable:
        from artivault.core.overrides import OverrideTable

        return OverrideTable.from_depots(self.depot_path)

    def build_store(self, overrides: OverrideTable | None = None) -> ArtifactStore:
        from artivault.core.artifact_store import ArtifactStore

        if overrides is None:
            overrides = self.load_overrides()
        return ArtifactStore(self.depot_path, overrides=overrides)

    def build_manifests(self, overrides: OverrideTable | None = None) -> ManifestManager:
        from artivault.core.manifest import ManifestManager

        if overrides is None:
            overrides = self.load_overrides()
        return ManifestManager(overrides=overrides, usage_log=self.usage_log_path)

    def build_installer(self, fetcher: Fetcher | None = None) -> ArtifactInstaller:
        """Wire store, manifest manager, and installer over one override table."""
        from artivault.core.installer import ArtifactInstaller

        overrides = self.load_overrides()
        return ArtifactInstaller(
            self.build_store(overrides),
            self.build_manifests(overrides),
            fetcher=fetcher,
            config=self,
        )
