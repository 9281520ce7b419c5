"""artivault: content-addressed artifact store and installation manager.

Binds human-readable names (optionally per platform) to immutable,
git-tree-hash identified directories, and resolves those names back to
installed paths, downloading and verifying them on demand:

  - ArtifactStore: create / exists / path / verify / remove / archive
  - ManifestManager: bind / unbind / meta / select_downloadable over Artifacts.toml
  - ArtifactInstaller: override, mirror, then per-source download fallback
"""

__version__ = "0.1.0"

from artivault.config import VaultConfig
from artivault.core.artifact_store import ArtifactStore
from artivault.core.installer import ArtifactInstaller
from artivault.core.manifest import ManifestManager
from artivault.core.overrides import OverrideTable

__all__ = [
    "ArtifactInstaller",
    "ArtifactStore",
    "ManifestManager",
    "OverrideTable",
    "VaultConfig",
    "__version__",
]
