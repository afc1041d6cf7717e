"""Replies to kernel requests and their encoded payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from .attrs import Attr
from .flags import InitFlags, OpenResponseFlags
from .wire import (
    ATTR_OUT_HEAD,
    ENTRY_OUT_HEAD,
    INIT_OUT,
    KSTATFS,
    MAX_WRITE,
    OPEN_OUT,
    WRITE_OUT,
    PROTOCOL_MAX,
    Protocol,
)

_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF
_NS_PER_SEC = 10**9


def _split_duration(valid: timedelta) -> tuple[int, int]:
    """Split a duration into whole seconds and remaining nanoseconds."""
    total = (valid.days * 86400 + valid.seconds) * _NS_PER_SEC + valid.microseconds * 1000
    sign = -1 if total < 0 else 1
    sec = sign * (abs(total) // _NS_PER_SEC)
    nsec = total - sec * _NS_PER_SEC
    return sec & _U64, nsec & _U32


def _quote(data: bytes) -> str:
    """Double-quoted, escaped rendering of raw bytes."""
    out = ['"']
    for byte in bytes(data):
        ch = chr(byte)
        if ch in '"\\':
            out.append("\\" + ch)
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif 0x20 <= byte < 0x7F:
            out.append(ch)
        else:
            out.append(f"\\x{byte:02x}")
    out.append('"')
    return "".join(out)


@dataclass
class InitResponse:
    """Reply to the init request."""

    library: Protocol = PROTOCOL_MAX
    max_readahead: int = 0
    flags: InitFlags = InitFlags(0)
    max_write: int = 0

    def __str__(self) -> str:
        return (
            f"Init {self.library} ra={self.max_readahead} "
            f"fl={InitFlags(int(self.flags))} w={self.max_write}"
        )

    def pack(self) -> bytes:
        """Encode the reply; max_write is capped at what we can receive."""
        return INIT_OUT.pack(
            self.library.major & _U32,
            self.library.minor & _U32,
            self.max_readahead & _U32,
            int(self.flags) & _U32,
            0,
            min(self.max_write & _U32, MAX_WRITE),
        )


@dataclass
class StatfsResponse:
    """Reply describing the mounted file system."""

    blocks: int = 0
    bfree: int = 0
    bavail: int = 0
    files: int = 0
    ffree: int = 0
    bsize: int = 0
    namelen: int = 0
    frsize: int = 0

    def __str__(self) -> str:
        return (
            f"Statfs blocks={self.bavail}/{self.bfree}/{self.blocks} "
            f"files={self.ffree}/{self.files} bsize={self.bsize} "
            f"frsize={self.frsize} namelen={self.namelen}"
        )

    def pack(self) -> bytes:
        """Encode the statfs reply."""
        return KSTATFS.pack(
            self.blocks & _U64,
            self.bfree & _U64,
            self.bavail & _U64,
            self.files & _U64,
            self.ffree & _U64,
            self.bsize & _U32,
            self.namelen & _U32,
            self.frsize & _U32,
            0,
            *([0] * 6),
        )


def _pack_attr_out(attr: Attr, proto: Protocol) -> bytes:
    sec, nsec = _split_duration(attr.valid)
    return ATTR_OUT_HEAD.pack(sec, nsec, 0) + attr.pack(proto)


@dataclass
class GetattrResponse:
    """Reply carrying a node's attributes."""

    attr: Attr = field(default_factory=Attr)

    def __str__(self) -> str:
        return f"Getattr {self.attr}"

    def pack(self, proto: Protocol) -> bytes:
        """Encode the attribute reply for the negotiated protocol."""
        return _pack_attr_out(self.attr, proto)


@dataclass
class SetattrResponse:
    """Reply carrying the attributes after a change."""

    attr: Attr = field(default_factory=Attr)

    def __str__(self) -> str:
        return f"Setattr {self.attr}"

    def pack(self, proto: Protocol) -> bytes:
        """Encode the attribute reply for the negotiated protocol."""
        return _pack_attr_out(self.attr, proto)


@dataclass
class GetxattrResponse:
    """Reply carrying an extended attribute value."""

    xattr: bytes = b""

    def __str__(self) -> str:
        return f"Getxattr {_quote(self.xattr)}"


@dataclass
class ListxattrResponse:
    """Reply listing extended attribute names, each NUL-terminated."""

    xattr: bytes = b""

    def __str__(self) -> str:
        return f"Listxattr {_quote(self.xattr)}"

    def append(self, *names: str) -> None:
        """Add extended attribute names to the list."""
        parts = [bytes(self.xattr)]
        for name in names:
            parts.append(name.encode() + b"\x00")
        self.xattr = b"".join(parts)


@dataclass
class LookupResponse:
    """Reply describing a node found by name."""

    node: int = 0
    generation: int = 0
    entry_valid: timedelta = timedelta(0)
    attr: Attr = field(default_factory=Attr)

    def _body(self) -> str:
        return (
            f"{self.node:#x} gen={self.generation} "
            f"valid={self.entry_valid} attr={{{self.attr}}}"
        )

    def __str__(self) -> str:
        return f"Lookup {self._body()}"

    def pack(self, proto: Protocol) -> bytes:
        """Encode the entry reply for the negotiated protocol."""
        entry_sec, entry_nsec = _split_duration(self.entry_valid)
        attr_sec, attr_nsec = _split_duration(self.attr.valid)
        head = ENTRY_OUT_HEAD.pack(
            self.node & _U64,
            self.generation & _U64,
            entry_sec,
            attr_sec,
            entry_nsec,
            attr_nsec,
        )
        return head + self.attr.pack(proto)


@dataclass
class OpenResponse:
    """Reply to an open request."""

    handle: int = 0
    flags: OpenResponseFlags = OpenResponseFlags(0)

    def _body(self) -> str:
        return f"{self.handle:#x} fl={OpenResponseFlags(int(self.flags))}"

    def __str__(self) -> str:
        return f"Open {self._body()}"

    def pack(self) -> bytes:
        """Encode the open reply."""
        return OPEN_OUT.pack(self.handle & _U64, int(self.flags) & _U32, 0)


@dataclass
class CreateResponse(LookupResponse):
    """Reply describing a created node and its opened handle."""

    handle: int = 0
    flags: OpenResponseFlags = OpenResponseFlags(0)

    @property
    def open(self) -> OpenResponse:
        """The open half of this reply."""
        return OpenResponse(self.handle, self.flags)

    def __str__(self) -> str:
        return f"Create {{{self._body()}}} {{{self.open._body()}}}"

    def pack(self, proto: Protocol) -> bytes:
        """Encode the entry reply followed by the open reply."""
        return LookupResponse.pack(self, proto) + self.open.pack()


@dataclass
class MkdirResponse(LookupResponse):
    """Reply describing a created directory."""

    def __str__(self) -> str:
        return f"Mkdir {self._body()}"


@dataclass
class SymlinkResponse(LookupResponse):
    """Reply describing a created symlink."""

    def __str__(self) -> str:
        return f"Symlink {self._body()}"


@dataclass
class ReadResponse:
    """Reply carrying data read from a file or directory."""

    data: bytes = b""

    def __str__(self) -> str:
        return f"Read {len(self.data)}"


@dataclass
class WriteResponse:
    """Reply stating how many bytes were written."""

    size: int = 0

    def __str__(self) -> str:
        return f"Write {self.size}"

    def pack(self) -> bytes:
        """Encode the write reply."""
        return WRITE_OUT.pack(self.size & _U32, 0)