"""artivault data models: all Pydantic v2, all frozen (immutable)."""

from artivault.models.artifacts import ArtifactEntry, ArtifactHash, DownloadSource, Redirect
from artivault.models.platforms import Platform

__all__ = [
    "ArtifactEntry",
    "ArtifactHash",
    "DownloadSource",
    "Platform",
    "Redirect",
]
