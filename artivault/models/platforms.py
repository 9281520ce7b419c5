"""Target platform descriptor used to qualify manifest entries."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Platform(BaseModel):
    """A target platform: operating system, CPU architecture and extra tags.

    Equality is exact and is what binding uses to decide whether two
    entries collide.  ``matches`` is the looser test used at lookup time:
    ``os`` and ``arch`` must agree, and any other tag must agree only when
    both sides specify it.

    Examples
    --------
    >>> linux = Platform(os="linux", arch="x86_64", libc="glibc")
    >>> linux.matches(Platform(os="linux", arch="x86_64"))
    True
    >>> linux.matches(Platform(os="linux", arch="x86_64", libc="musl"))
    False
    >>> linux.triplet()
    'x86_64-linux-glibc'
    """

    model_config = ConfigDict(frozen=True)

    os: str
    arch: str
    libc: str | None = None
    call_abi: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)

    def all_tags(self) -> dict[str, str]:
        """Flatten every set attribute into one tag mapping."""
        tags = {"os": self.os, "arch": self.arch}
        if self.libc:
            tags["libc"] = self.libc
        if self.call_abi:
            tags["call_abi"] = self.call_abi
        tags.update(self.tags)
        return tags

    def matches(self, other: Platform) -> bool:
        mine = self.all_tags()
        theirs = other.all_tags()
        for key in mine.keys() & theirs.keys():
            if mine[key] != theirs[key]:
                return False
        return True

    def triplet(self) -> str:
        parts = [self.arch, self.os]
        if self.libc:
            parts.append(self.libc)
        if self.call_abi:
            parts.append(self.call_abi)
        return "-".join(parts)
