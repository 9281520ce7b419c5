"""Platform tag encoding for manifest entries and host detection.

A platform-qualified entry carries its platform as plain string keys next
to ``git-tree-sha1``::

    [[libfoo]]
    arch = "x86_64"
    git-tree-sha1 = "..."
    libc = "glibc"
    os = "linux"
"""

from __future__ import annotations

import platform as _platform
import sys
from typing import Any

from artivault.models.platforms import Platform

# Keys that belong to the entry itself, never to its platform.
ENTRY_KEYS = frozenset({"git-tree-sha1", "lazy", "download"})

_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "armv8": "aarch64",
    "i386": "i686",
    "x86": "i686",
    "ppc64le": "powerpc64le",
}

_OS_ALIASES = {
    "win32": "windows",
    "cygwin": "windows",
    "darwin": "macos",
}


def normalize_arch(machine: str) -> str:
    machine = machine.lower()
    return _ARCH_ALIASES.get(machine, machine)


def normalize_os(name: str) -> str:
    name = name.lower()
    if name.startswith("linux"):
        return "linux"
    if name.startswith("freebsd"):
        return "freebsd"
    return _OS_ALIASES.get(name, name)


def host_platform() -> Platform:
    """Describe the running interpreter's platform."""
    os_name = normalize_os(sys.platform)
    libc = None
    if os_name == "linux":
        lib, _ = _platform.libc_ver()
        libc = "glibc" if lib == "glibc" else "musl"
    return Platform(os=os_name, arch=normalize_arch(_platform.machine()), libc=libc)


def encode_platform(meta: dict[str, Any], platform: Platform) -> dict[str, Any]:
    """Write ``platform``'s tags into a manifest table, in place."""
    for key, value in platform.all_tags().items():
        if key in ENTRY_KEYS:
            raise ValueError(f"platform tag {key!r} collides with an entry field")
        meta[key] = value
    return meta


def decode_platform(meta: dict[str, Any]) -> Platform | None:
    """Rebuild the platform a manifest table was qualified with, if any."""
    if "os" not in meta or "arch" not in meta:
        return None
    extra = {
        key: str(value)
        for key, value in meta.items()
        if key not in ENTRY_KEYS and key not in ("os", "arch", "libc", "call_abi")
    }
    return Platform(
        os=str(meta["os"]),
        arch=str(meta["arch"]),
        libc=meta.get("libc"),
        call_abi=meta.get("call_abi"),
        tags=extra,
    )


def parse_triplet(triplet: str) -> Platform:
    """Parse ``arch-os[-libc][-call_abi]``, the inverse of ``Platform.triplet``."""
    parts = triplet.strip().split("-")
    if len(parts) < 2 or not all(parts) or len(parts) > 4:
        raise ValueError(f"Not a platform triplet: {triplet!r}")
    arch, os_name, *rest = parts
    return Platform(
        os=normalize_os(os_name),
        arch=normalize_arch(arch),
        libc=rest[0] if len(rest) > 0 else None,
        call_abi=rest[1] if len(rest) > 1 else None,
    )
