"""Requests received from the kernel and the replies they send back."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

from .attrs import FileMode
from .errors import to_errno
from .flags import (
    GetattrFlags,
    InitFlags,
    OpenFlags,
    ReadFlags,
    ReleaseFlags,
    SetattrValid,
    WriteFlags,
)
from .responses import (
    CreateResponse,
    GetattrResponse,
    GetxattrResponse,
    InitResponse,
    ListxattrResponse,
    LookupResponse,
    MkdirResponse,
    OpenResponse,
    ReadResponse,
    SetattrResponse,
    StatfsResponse,
    SymlinkResponse,
    WriteResponse,
)
from .wire import GETXATTR_OUT, OUT_HEADER_SIZE, PROTOCOL_MIN, Protocol, pack_out_header

_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_SIMPLE_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\n": "\\n",
    "\t": "\\t",
    "\r": "\\r",
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\v": "\\v",
}


def _quote(value: Union[str, bytes]) -> str:
    """Double-quoted, escaped rendering of a name or raw bytes."""
    if isinstance(value, (bytes, bytearray)):
        text = bytes(value).decode("utf-8", "surrogateescape")
    else:
        text = value
    out = ['"']
    for ch in text:
        code = ord(ch)
        if ch in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[ch])
        elif 0xDC80 <= code <= 0xDCFF:
            out.append(f"\\x{code - 0xDC00:02x}")
        elif ch.isprintable():
            out.append(ch)
        elif code < 0x80:
            out.append(f"\\x{code:02x}")
        elif code < 0x10000:
            out.append(f"\\u{code:04x}")
        else:
            out.append(f"\\U{code:08x}")
    out.append('"')
    return "".join(out)


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _hex(value: int) -> str:
    return f"{int(value):#x}"


@dataclass(kw_only=True)
class Header:
    """Information carried by every request.

    ``conn`` is the connection the request arrived on; it must offer a
    ``proto`` attribute holding the negotiated Protocol and a
    ``respond(msg)`` method that delivers a complete reply.
    """

    conn: Any = field(default=None, repr=False, compare=False)
    id: int = 0
    node: int = 0
    uid: int = 0
    gid: int = 0
    pid: int = 0

    def _header_str(self) -> str:
        return (
            f"ID={_hex(self.id)} Node={_hex(self.node)} "
            f"Uid={self.uid} Gid={self.gid} Pid={self.pid}"
        )

    def __str__(self) -> str:
        return self._header_str()

    def _proto(self) -> Protocol:
        proto = getattr(self.conn, "proto", None)
        return proto if proto is not None else PROTOCOL_MIN

    def _send(self, payload: bytes, error: int = 0) -> None:
        msg = pack_out_header(OUT_HEADER_SIZE + len(payload), error, self.id & _U64)
        self.conn.respond(msg + bytes(payload))

    def _no_response(self) -> None:
        """Some requests take no reply at all."""

    def respond_error(self, err: BaseException) -> None:
        """Reply with the errno that ``err`` maps to."""
        number = to_errno(err)
        self._send(b"", -int(number))


@dataclass(kw_only=True)
class InitRequest(Header):
    """The first request on a FUSE file system."""

    kernel: Protocol = PROTOCOL_MIN
    max_readahead: int = 0
    flags: InitFlags = InitFlags(0)

    def __str__(self) -> str:
        return (
            f"Init [{self._header_str()}] {self.kernel} "
            f"ra={self.max_readahead} fl={InitFlags(int(self.flags))}"
        )

    def respond(self, resp: InitResponse) -> None:
        """Reply with the negotiated parameters."""
        self._send(resp.pack())


@dataclass(kw_only=True)
class StatfsRequest(Header):
    """Asks for information about the mounted file system."""

    def __str__(self) -> str:
        return f"Statfs [{self._header_str()}]"

    def respond(self, resp: StatfsResponse) -> None:
        """Reply with the file system statistics."""
        self._send(resp.pack())


@dataclass(kw_only=True)
class AccessRequest(Header):
    """Asks whether the node can be accessed as the mask specifies."""

    mask: int = 0

    def __str__(self) -> str:
        return f"Access [{self._header_str()}] mask={_hex(self.mask)}"

    def respond(self) -> None:
        """Reply that access is allowed; deny with respond_error."""
        self._send(b"")


@dataclass(kw_only=True)
class GetattrRequest(Header):
    """Asks for the metadata of the node."""

    flags: GetattrFlags = GetattrFlags(0)
    handle: int = 0

    def __str__(self) -> str:
        return (
            f"Getattr [{self._header_str()}] {_hex(self.handle)} "
            f"fl={GetattrFlags(int(self.flags))}"
        )

    def respond(self, resp: GetattrResponse) -> None:
        """Reply with the node's attributes."""
        self._send(resp.pack(self._proto()))


def _xattr_payload(size: int, xattr: bytes) -> bytes:
    if size == 0:
        return GETXATTR_OUT.pack(len(xattr) & _U32, 0)
    return bytes(xattr)


@dataclass(kw_only=True)
class GetxattrRequest(Header):
    """Asks for an extended attribute of the node."""

    size: int = 0
    name: str = ""
    position: int = 0

    def __str__(self) -> str:
        return (
            f"Getxattr [{self._header_str()}] {_quote(self.name)} "
            f"{self.size} @{self.position}"
        )

    def respond(self, resp: GetxattrResponse) -> None:
        """Reply with the value, or only its length when size is 0."""
        self._send(_xattr_payload(self.size, resp.xattr))


@dataclass(kw_only=True)
class ListxattrRequest(Header):
    """Asks for the names of the node's extended attributes."""

    size: int = 0
    position: int = 0

    def __str__(self) -> str:
        return f"Listxattr [{self._header_str()}] {self.size} @{self.position}"

    def respond(self, resp: ListxattrResponse) -> None:
        """Reply with the list, or only its length when size is 0."""
        self._send(_xattr_payload(self.size, resp.xattr))


@dataclass(kw_only=True)
class RemovexattrRequest(Header):
    """Asks to remove an extended attribute of the node."""

    name: str = ""

    def __str__(self) -> str:
        return f"Removexattr [{self._header_str()}] {_quote(self.name)}"

    def respond(self) -> None:
        """Reply that the attribute was removed."""
        self._send(b"")


@dataclass(kw_only=True)
class SetxattrRequest(Header):
    """Asks to set an extended attribute of the node."""

    flags: int = 0
    position: int = 0
    name: str = ""
    xattr: bytes = b""

    def __str__(self) -> str:
        value = bytes(self.xattr)
        tail = ""
        if len(value) > 16:
            value, tail = value[:16], "..."
        return (
            f"Setxattr [{self._header_str()}] {_quote(self.name)} "
            f"{_quote(value)}{tail} fl={self.flags} @{_hex(self.position)}"
        )

    def respond(self) -> None:
        """Reply that the attribute was set."""
        self._send(b"")


@dataclass(kw_only=True)
class LookupRequest(Header):
    """Asks to look up a name in the directory node."""

    name: str = ""

    def __str__(self) -> str:
        return f"Lookup [{self._header_str()}] {_quote(self.name)}"

    def respond(self, resp: LookupResponse) -> None:
        """Reply with the entry found."""
        self._send(resp.pack(self._proto()))


@dataclass(kw_only=True)
class OpenRequest(Header):
    """Asks to open a file or directory."""

    dir: bool = False
    flags: OpenFlags = OpenFlags(0)

    def __str__(self) -> str:
        return (
            f"Open [{self._header_str()}] dir={_bool(self.dir)} "
            f"fl={OpenFlags(int(self.flags))}"
        )

    def respond(self, resp: OpenResponse) -> None:
        """Reply with the opened handle."""
        self._send(resp.pack())


@dataclass(kw_only=True)
class CreateRequest(Header):
    """Asks to create and open a file."""

    name: str = ""
    flags: OpenFlags = OpenFlags(0)
    mode: FileMode = FileMode(0)
    umask: FileMode = FileMode(0)

    def __str__(self) -> str:
        return (
            f"Create [{self._header_str()}] {_quote(self.name)} "
            f"fl={OpenFlags(int(self.flags))} mode={FileMode(int(self.mode))} "
            f"umask={FileMode(int(self.umask))}"
        )

    def respond(self, resp: CreateResponse) -> None:
        """Reply with the created entry and its opened handle."""
        self._send(resp.pack(self._proto()))


@dataclass(kw_only=True)
class MkdirRequest(Header):
    """Asks to create a directory."""

    name: str = ""
    mode: FileMode = FileMode(0)
    umask: FileMode = FileMode(0)

    def __str__(self) -> str:
        return (
            f"Mkdir [{self._header_str()}] {_quote(self.name)} "
            f"mode={FileMode(int(self.mode))} umask={FileMode(int(self.umask))}"
        )

    def respond(self, resp: MkdirResponse) -> None:
        """Reply with the created directory entry."""
        self._send(resp.pack(self._proto()))


@dataclass(kw_only=True)
class ReadRequest(Header):
    """Asks to read from an open file or directory."""

    dir: bool = False
    handle: int = 0
    offset: int = 0
    size: int = 0
    flags: ReadFlags = ReadFlags(0)
    lock_owner: int = 0
    file_flags: OpenFlags = OpenFlags(0)

    def __str__(self) -> str:
        return (
            f"Read [{self._header_str()}] {_hex(self.handle)} {self.size} "
            f"@{_hex(self.offset)} dir={_bool(self.dir)} "
            f"fl={ReadFlags(int(self.flags))} lock={self.lock_owner} "
            f"ffl={OpenFlags(int(self.file_flags))}"
        )

    def respond(self, resp: ReadResponse) -> None:
        """Reply with the data read."""
        self._send(bytes(resp.data))


@dataclass(kw_only=True)
class ReleaseRequest(Header):
    """Asks to release an open handle."""

    dir: bool = False
    handle: int = 0
    flags: OpenFlags = OpenFlags(0)
    release_flags: ReleaseFlags = ReleaseFlags(0)
    lock_owner: int = 0

    def __str__(self) -> str:
        return (
            f"Release [{self._header_str()}] {_hex(self.handle)} "
            f"fl={OpenFlags(int(self.flags))} "
            f"rfl={ReleaseFlags(int(self.release_flags))} "
            f"owner={_hex(self.lock_owner)}"
        )

    def respond(self) -> None:
        """Reply that the handle was released."""
        self._send(b"")


@dataclass(kw_only=True)
class DestroyRequest(Header):
    """Sent when the file system is unmounted."""

    def __str__(self) -> str:
        return f"Destroy [{self._header_str()}]"

    def respond(self) -> None:
        """Acknowledge the unmount."""
        self._send(b"")


@dataclass(kw_only=True)
class ForgetRequest(Header):
    """The kernel drops ``n`` lookups of the node."""

    n: int = 0

    def __str__(self) -> str:
        return f"Forget [{self._header_str()}] {self.n}"

    def respond(self) -> None:
        """Forget requests take no reply."""
        self._no_response()


@dataclass(kw_only=True)
class WriteRequest(Header):
    """Asks to write to an open file."""

    handle: int = 0
    offset: int = 0
    data: bytes = b""
    flags: WriteFlags = WriteFlags(0)
    lock_owner: int = 0
    file_flags: OpenFlags = OpenFlags(0)

    def __str__(self) -> str:
        return (
            f"Write [{self._header_str()}] {_hex(self.handle)} {len(self.data)} "
            f"@{self.offset} fl={WriteFlags(int(self.flags))} "
            f"lock={self.lock_owner} ffl={OpenFlags(int(self.file_flags))}"
        )

    def respond(self, resp: WriteResponse) -> None:
        """Reply with the number of bytes written."""
        self._send(resp.pack())


@dataclass(kw_only=True)
class SetattrRequest(Header):
    """Asks to change the attributes named by ``valid``."""

    valid: SetattrValid = SetattrValid(0)
    handle: int = 0
    size: int = 0
    atime: datetime = _EPOCH
    mtime: datetime = _EPOCH
    mode: FileMode = FileMode(0)
    uid: int = 0
    gid: int = 0
    bkuptime: datetime = _EPOCH
    chgtime: datetime = _EPOCH
    crtime: datetime = _EPOCH
    flags: int = 0

    def __str__(self) -> str:
        valid = int(self.valid)
        parts = [f"Setattr [{self._header_str()}]"]
        if valid & SetattrValid.MODE:
            parts.append(f" mode={FileMode(int(self.mode))}")
        if valid & SetattrValid.UID:
            parts.append(f" uid={self.uid}")
        if valid & SetattrValid.GID:
            parts.append(f" gid={self.gid}")
        if valid & SetattrValid.SIZE:
            parts.append(f" size={self.size}")
        if valid & SetattrValid.ATIME:
            parts.append(f" atime={self.atime}")
        if valid & SetattrValid.ATIME_NOW:
            parts.append(" atime=now")
        if valid & SetattrValid.MTIME:
            parts.append(f" mtime={self.mtime}")
        if valid & SetattrValid.MTIME_NOW:
            parts.append(" mtime=now")
        if valid & SetattrValid.HANDLE:
            parts.append(f" handle={_hex(self.handle)}")
        else:
            parts.append(f" handle=INVALID-{_hex(self.handle)}")
        if valid & SetattrValid.LOCK_OWNER:
            parts.append(" lockowner")
        if valid & SetattrValid.CRTIME:
            parts.append(f" crtime={self.crtime}")
        if valid & SetattrValid.CHGTIME:
            parts.append(f" chgtime={self.chgtime}")
        if valid & SetattrValid.BKUPTIME:
            parts.append(f" bkuptime={self.bkuptime}")
        if valid & SetattrValid.FLAGS:
            parts.append(f" flags={self.flags}")
        return "".join(parts)

    def respond(self, resp: SetattrResponse) -> None:
        """Reply with the updated attributes."""
        self._send(resp.pack(self._proto()))


@dataclass(kw_only=True)
class FlushRequest(Header):
    """Asks to flush the state of an open file."""

    handle: int = 0
    flags: int = 0
    lock_owner: int = 0

    def __str__(self) -> str:
        return (
            f"Flush [{self._header_str()}] {_hex(self.handle)} "
            f"fl={_hex(self.flags)} lk={_hex(self.lock_owner)}"
        )

    def respond(self) -> None:
        """Reply that the flush succeeded."""
        self._send(b"")


@dataclass(kw_only=True)
class RemoveRequest(Header):
    """Asks to remove an entry from the directory node."""

    name: str = ""
    dir: bool = False

    def __str__(self) -> str:
        return f"Remove [{self._header_str()}] {_quote(self.name)} dir={_bool(self.dir)}"

    def respond(self) -> None:
        """Reply that the entry was removed."""
        self._send(b"")


@dataclass(kw_only=True)
class SymlinkRequest(Header):
    """Asks to create a symlink ``new_name`` pointing at ``target``."""

    new_name: str = ""
    target: str = ""

    def __str__(self) -> str:
        return (
            f"Symlink [{self._header_str()}] from {_quote(self.new_name)} "
            f"to target {_quote(self.target)}"
        )

    def respond(self, resp: SymlinkResponse) -> None:
        """Reply with the created symlink entry."""
        self._send(resp.pack(self._proto()))


@dataclass(kw_only=True)
class ReadlinkRequest(Header):
    """Asks for the target of a symlink."""

    def __str__(self) -> str:
        return f"Readlink [{self._header_str()}]"

    def respond(self, target: Union[str, bytes]) -> None:
        """Reply with the symlink target."""
        self._send(os.fsencode(target))


@dataclass(kw_only=True)
class LinkRequest(Header):
    """Asks to create a hard link to ``old_node``."""

    old_node: int = 0
    new_name: str = ""

    def __str__(self) -> str:
        return f"Link [{self._header_str()}] node {self.old_node} to {_quote(self.new_name)}"

    def respond(self, resp: LookupResponse) -> None:
        """Reply with the linked entry."""
        self._send(resp.pack(self._proto()))


@dataclass(kw_only=True)
class RenameRequest(Header):
    """Asks to rename an entry, possibly into another directory."""

    new_dir: int = 0
    old_name: str = ""
    new_name: str = ""

    def __str__(self) -> str:
        return (
            f"Rename [{self._header_str()}] from {_quote(self.old_name)} "
            f"to dirnode {_hex(self.new_dir)} {_quote(self.new_name)}"
        )

    def respond(self) -> None:
        """Reply that the rename succeeded."""
        self._send(b"")


@dataclass(kw_only=True)
class MknodRequest(Header):
    """Asks to create a special file."""

    name: str = ""
    mode: FileMode = FileMode(0)
    rdev: int = 0
    umask: FileMode = FileMode(0)

    def __str__(self) -> str:
        return (
            f"Mknod [{self._header_str()}] Name {_quote(self.name)} "
            f"mode={FileMode(int(self.mode))} umask={FileMode(int(self.umask))} "
            f"rdev={self.rdev}"
        )

    def respond(self, resp: LookupResponse) -> None:
        """Reply with the created entry."""
        self._send(resp.pack(self._proto()))


@dataclass(kw_only=True)
class FsyncRequest(Header):
    """Asks to synchronise an open file or directory."""

    handle: int = 0
    flags: int = 0
    dir: bool = False

    def __str__(self) -> str:
        return f"Fsync [{self._header_str()}] Handle {_hex(self.handle)} Flags {self.flags}"

    def respond(self) -> None:
        """Reply that the sync succeeded."""
        self._send(b"")


@dataclass(kw_only=True)
class InterruptRequest(Header):
    """Asks to interrupt the pending request ``intr_id``."""

    intr_id: int = 0

    def __str__(self) -> str:
        return f"Interrupt [{self._header_str()}] ID {_hex(self.intr_id)}"

    def respond(self) -> None:
        """Interrupt requests take no reply."""
        self._no_response()


@dataclass(kw_only=True)
class ExchangeDataRequest(Header):
    """Asks to exchange the contents of two files."""

    old_dir: int = 0
    new_dir: int = 0
    old_name: str = ""
    new_name: str = ""

    def __str__(self) -> str:
        return (
            f"ExchangeData [{self._header_str()}] {_hex(self.old_dir)} "
            f"{_quote(self.old_name)} and {_hex(self.new_dir)} {_quote(self.new_name)}"
        )

    def respond(self) -> None:
        """Reply that the exchange succeeded."""
        self._send(b"")