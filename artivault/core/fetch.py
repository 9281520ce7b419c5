"""Tarball transport: download, checksum, and unpack into a directory.

``HttpFetcher`` is the default implementation of the ``Fetcher`` protocol
the installer depends on.  ``http(s)://`` URLs are streamed with httpx;
``file://`` URLs and plain filesystem paths are read directly, which lets
local mirrors and tests work without a network.

Every failure is reported as ``TransportError`` so the installer can move
on to the next source.  ``KeyboardInterrupt`` and ``FetchCancelled`` are
never wrapped.
"""

from __future__ import annotations

import hashlib
import logging
import tarfile
import tempfile
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse

import httpx

from artivault.core.errors import TransportError

logger = logging.getLogger(__name__)

_CHUNK = 1 << 20


class Fetcher(Protocol):
    """Fetch ``url``, check it against ``sha256`` if given, unpack into ``dest``."""

    def __call__(self, url: str, sha256: str | None, dest: Path) -> None: ...


def _local_path(url: str) -> Path | None:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme in ("http", "https"):
        return None
    # Bare paths, including Windows drive letters parsed as a scheme.
    if parsed.scheme == "" or len(parsed.scheme) == 1:
        return Path(url)
    raise TransportError(f"Unsupported URL scheme '{parsed.scheme}' in {url}")


def unpack(tarball: Path, dest: Path) -> None:
    """Extract a (possibly compressed) tarball into ``dest``."""
    try:
        with tarfile.open(tarball, "r:*") as tar:
            tar.extractall(dest, filter="tar")
    except (tarfile.TarError, OSError) as exc:
        raise TransportError(f"Unable to unpack {tarball.name}: {exc}") from exc


class HttpFetcher:
    """Download-verify-unpack over httpx, with local file fallback.

    Parameters
    ----------
    timeout:
        Per-request timeout in seconds.
    client:
        Optional ``httpx.Client`` to reuse.  A client passed in is not
        closed by ``close``; one created internally is.
    """

    def __init__(self, timeout: float = 60.0, client: httpx.Client | None = None) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __call__(self, url: str, sha256: str | None, dest: Path) -> None:
        dest = Path(dest)
        dest.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="artivault-dl-") as scratch:
            tarball = Path(scratch) / "download.tar"
            digest = self._download(url, tarball)
            if sha256 is not None and digest != sha256.lower():
                raise TransportError(
                    f"Checksum mismatch for {url}: expected sha256 {sha256}, got {digest}"
                )
            unpack(tarball, dest)
        logger.debug("Fetched and unpacked %s into %s", url, dest)

    def _download(self, url: str, target: Path) -> str:
        """Write ``url`` to ``target`` and return the sha256 of its bytes."""
        digest = hashlib.sha256()
        local = _local_path(url)
        try:
            if local is not None:
                with open(local, "rb") as src, open(target, "wb") as out:
                    for chunk in iter(lambda: src.read(_CHUNK), b""):
                        digest.update(chunk)
                        out.write(chunk)
                return digest.hexdigest()

            with self._client.stream("GET", url) as response:
                response.raise_for_status()
                with open(target, "wb") as out:
                    for chunk in response.iter_bytes(_CHUNK):
                        if not chunk:
                            continue
                        digest.update(chunk)
                        out.write(chunk)
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"GET {url} returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc
        except OSError as exc:
            raise TransportError(f"Unable to read {url}: {exc}") from exc
        return digest.hexdigest()
