"""Kernel message layouts and protocol versions (Linux)."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

PROTO_VERSION_MIN_MAJOR = 7
PROTO_VERSION_MIN_MINOR = 8
PROTO_VERSION_MAX_MAJOR = 7
PROTO_VERSION_MAX_MINOR = 12

ROOT_ID = 1

# Largest write we are prepared to receive from the kernel.
MAX_WRITE = 128 * 1024

NOTIFY_CODE_POLL = 1
NOTIFY_CODE_INVAL_INODE = 2
NOTIFY_CODE_INVAL_ENTRY = 3


@dataclass(frozen=True, order=True)
class Protocol:
    """A FUSE protocol version."""

    major: int
    minor: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"

    def lt(self, other: Protocol) -> bool:
        """True if this version is older than ``other``."""
        return (self.major, self.minor) < (other.major, other.minor)

    def ge(self, other: Protocol) -> bool:
        """True if this version is at least ``other``."""
        return not self.lt(other)


PROTOCOL_MIN = Protocol(PROTO_VERSION_MIN_MAJOR, PROTO_VERSION_MIN_MINOR)
PROTOCOL_MAX = Protocol(PROTO_VERSION_MAX_MAJOR, PROTO_VERSION_MAX_MINOR)
_PROTO_7_9 = Protocol(7, 9)
_PROTO_7_12 = Protocol(7, 12)


class Opcode(enum.IntEnum):
    """Operation codes of kernel requests."""

    LOOKUP = 1
    FORGET = 2
    GETATTR = 3
    SETATTR = 4
    READLINK = 5
    SYMLINK = 6
    MKNOD = 8
    MKDIR = 9
    UNLINK = 10
    RMDIR = 11
    RENAME = 12
    LINK = 13
    OPEN = 14
    READ = 15
    WRITE = 16
    STATFS = 17
    RELEASE = 18
    FSYNC = 20
    SETXATTR = 21
    GETXATTR = 22
    LISTXATTR = 23
    REMOVEXATTR = 24
    FLUSH = 25
    INIT = 26
    OPENDIR = 27
    READDIR = 28
    RELEASEDIR = 29
    FSYNCDIR = 30
    GETLK = 31
    SETLK = 32
    SETLKW = 33
    ACCESS = 34
    CREATE = 35
    INTERRUPT = 36
    BMAP = 37
    DESTROY = 38
    IOCTL = 39
    POLL = 40
    SETVOLNAME = 61
    GETXTIMES = 62
    EXCHANGE = 63


# Fixed layouts, in host byte order with no implicit padding.
IN_HEADER = struct.Struct("=IIQQIIII")
OUT_HEADER = struct.Struct("=IiQ")
KSTATFS = struct.Struct("=QQQQQIIII6I")
ATTR = struct.Struct("=QQQQQQIIIIIIIIII")
ATTR_BLKSIZE_OFFSET = 6 * 8 + 8 * 4
ENTRY_OUT_HEAD = struct.Struct("=QQQQII")
ATTR_OUT_HEAD = struct.Struct("=QII")
FORGET_IN = struct.Struct("=Q")
GETATTR_IN = struct.Struct("=IIQ")
SETATTR_IN = struct.Struct("=IIQQQQQQIIIIIIII")
MKNOD_IN = struct.Struct("=IIII")
MKDIR_IN = struct.Struct("=II")
RENAME_IN = struct.Struct("=Q")
EXCHANGE_IN = struct.Struct("=QQQ")
LINK_IN = struct.Struct("=Q")
OPEN_IN = struct.Struct("=II")
OPEN_OUT = struct.Struct("=QII")
CREATE_IN = struct.Struct("=IIII")
RELEASE_IN = struct.Struct("=QIII4x")
FLUSH_IN = struct.Struct("=QIIQ")
READ_IN = struct.Struct("=QQIIQII")
WRITE_IN = struct.Struct("=QQIIQII")
WRITE_OUT = struct.Struct("=II")
FSYNC_IN = struct.Struct("=QII")
SETXATTR_IN = struct.Struct("=II")
GETXATTR_IN = struct.Struct("=II")
GETXATTR_OUT = struct.Struct("=II")
ACCESS_IN = struct.Struct("=II")
INIT_IN = struct.Struct("=IIII")
INIT_OUT = struct.Struct("=IIIIII")
INTERRUPT_IN = struct.Struct("=Q")
DIRENT_HEAD = struct.Struct("=QQII")
NOTIFY_INVAL_INODE_OUT = struct.Struct("=Qqq")
NOTIFY_INVAL_ENTRY_OUT = struct.Struct("=QII")

IN_HEADER_SIZE = IN_HEADER.size
OUT_HEADER_SIZE = OUT_HEADER.size
INIT_IN_SIZE = INIT_IN.size
DIRENT_SIZE = DIRENT_HEAD.size


@dataclass(frozen=True)
class InHeader:
    """The header that starts every request from the kernel."""

    length: int
    opcode: int
    unique: int
    nodeid: int
    uid: int
    gid: int
    pid: int

    @classmethod
    def unpack(cls, data: bytes) -> InHeader:
        """Decode the header from the start of ``data``."""
        if len(data) < IN_HEADER.size:
            raise ValueError("fuse: message too short")
        length, opcode, unique, nodeid, uid, gid, pid, _ = IN_HEADER.unpack_from(data)
        return cls(length, opcode, unique, nodeid, uid, gid, pid)


def pack_out_header(length: int, error: int, unique: int) -> bytes:
    """Encode the header that starts every reply to the kernel."""
    return OUT_HEADER.pack(length, error, unique)


def entry_out_size(proto: Protocol) -> int:
    """Size of an entry reply for the negotiated protocol."""
    if proto.lt(_PROTO_7_9):
        return ENTRY_OUT_HEAD.size + ATTR_BLKSIZE_OFFSET
    return ENTRY_OUT_HEAD.size + ATTR.size


def attr_out_size(proto: Protocol) -> int:
    """Size of an attribute reply for the negotiated protocol."""
    if proto.lt(_PROTO_7_9):
        return ATTR_OUT_HEAD.size + ATTR_BLKSIZE_OFFSET
    return ATTR_OUT_HEAD.size + ATTR.size


def mknod_in_size(proto: Protocol) -> int:
    """Size of the fixed part of a mknod request."""
    if proto.lt(_PROTO_7_12):
        return 8
    return MKNOD_IN.size


def mkdir_in_size(proto: Protocol) -> int:
    """Size of the fixed part of a mkdir request."""
    if proto.lt(_PROTO_7_12):
        return 4 + 4
    return MKDIR_IN.size


def create_in_size(proto: Protocol) -> int:
    """Size of the fixed part of a create request."""
    if proto.lt(_PROTO_7_12):
        return 8
    return CREATE_IN.size


def read_in_size(proto: Protocol) -> int:
    """Size of the fixed part of a read request."""
    if proto.lt(_PROTO_7_9):
        return 20 + 4
    return READ_IN.size


def write_in_size(proto: Protocol) -> int:
    """Size of the fixed part of a write request."""
    if proto.lt(_PROTO_7_9):
        return 24
    return WRITE_IN.size