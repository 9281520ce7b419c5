"""Content identity helpers: git-compatible tree hashes and file checksums.

``tree_hash`` reproduces the object id ``git write-tree`` would assign to a
directory, so artifact ids can be cross-checked with stock git tooling:

- regular files hash as ``blob <size>\\0<bytes>``
- symlinks hash their target string as a blob, mode ``120000``
- files with the owner execute bit get mode ``100755``, others ``100644``
- directories recurse with mode ``40000``; entries sort as git sorts them,
  i.e. a directory named ``foo`` sorts as ``foo/``
- empty directories and ``.git`` entries are skipped, as git would
"""

from __future__ import annotations

import hashlib
import os
import stat
from pathlib import Path

from artivault.models.artifacts import ArtifactHash

_CHUNK = 1 << 20

MODE_FILE = "100644"
MODE_EXECUTABLE = "100755"
MODE_SYMLINK = "120000"
MODE_DIR = "40000"

# Object id of a tree with no entries.
EMPTY_TREE_SHA1 = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file, streamed in 1 MiB chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _git_mode(path: Path) -> str:
    st = path.lstat()
    if stat.S_ISLNK(st.st_mode):
        return MODE_SYMLINK
    if stat.S_ISDIR(st.st_mode):
        return MODE_DIR
    if st.st_mode & stat.S_IXUSR:
        return MODE_EXECUTABLE
    return MODE_FILE


def blob_hash(path: Path) -> bytes:
    """SHA-1 of the git blob object for a file or symlink."""
    if path.is_symlink():
        data = os.fsencode(os.readlink(path))
        return hashlib.sha1(b"blob %d\0" % len(data) + data).digest()

    size = path.stat().st_size
    digest = hashlib.sha1(b"blob %d\0" % size)
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.digest()


def _tree_digest(root: Path) -> bytes:
    entries: list[tuple[str, str, bytes]] = []
    children = []
    for child in root.iterdir():
        if child.name == ".git":
            continue
        mode = _git_mode(child)
        sort_key = child.name + "/" if mode == MODE_DIR else child.name
        children.append((os.fsencode(sort_key), child, mode))

    for _, child, mode in sorted(children, key=lambda item: item[0]):
        if mode == MODE_DIR:
            digest = _tree_digest(child)
            if digest.hex() == EMPTY_TREE_SHA1:
                continue
        else:
            digest = blob_hash(child)
        entries.append((mode, child.name, digest))

    body = b"".join(
        mode.encode() + b" " + os.fsencode(name) + b"\0" + digest
        for mode, name, digest in entries
    )
    return hashlib.sha1(b"tree %d\0" % len(body) + body).digest()


def tree_hash(path: Path) -> ArtifactHash:
    """Compute the git tree hash of a directory."""
    root = Path(path)
    if not root.is_dir():
        raise NotADirectoryError(f"Cannot tree-hash a non-directory: {root}")
    return ArtifactHash.from_bytes(_tree_digest(root))
