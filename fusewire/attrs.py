"""File modes, attributes and directory entries in kernel form."""

from __future__ import annotations

import enum
import logging
import os
import stat
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from .wire import ATTR, ATTR_BLKSIZE_OFFSET, DIRENT_HEAD, DIRENT_SIZE, Protocol

logger = logging.getLogger(__name__)

_PROTO_7_9 = Protocol(7, 9)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF

MODE_PERM = 0o777


class FileMode(enum.IntFlag):
    """File type and permission bits in the portable encoding."""

    DIR = 1 << 31
    APPEND = 1 << 30
    EXCLUSIVE = 1 << 29
    TEMPORARY = 1 << 28
    SYMLINK = 1 << 27
    DEVICE = 1 << 26
    NAMED_PIPE = 1 << 25
    SOCKET = 1 << 24
    SETUID = 1 << 23
    SETGID = 1 << 22
    CHAR_DEVICE = 1 << 21
    STICKY = 1 << 20
    IRREGULAR = 1 << 19

    def __str__(self) -> str:
        value = int(self)
        type_chars = "dalTLDpSugct?"
        out = [c for i, c in enumerate(type_chars) if value & (1 << (31 - i))]
        if not out:
            out.append("-")
        rwx = "rwxrwxrwx"
        out.extend(c if value & (1 << (8 - i)) else "-" for i, c in enumerate(rwx))
        return "".join(out)

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)

    @property
    def perm(self) -> int:
        """The permission bits alone."""
        return int(self) & MODE_PERM


def file_mode(unix_mode: int) -> FileMode:
    """Convert a Unix st_mode value to a FileMode."""
    unix_mode = int(unix_mode)
    mode = unix_mode & MODE_PERM
    kind = stat.S_IFMT(unix_mode)
    if kind == stat.S_IFREG:
        pass
    elif kind == stat.S_IFDIR:
        mode |= FileMode.DIR
    elif kind == stat.S_IFCHR:
        mode |= FileMode.CHAR_DEVICE | FileMode.DEVICE
    elif kind == stat.S_IFBLK:
        mode |= FileMode.DEVICE
    elif kind == stat.S_IFIFO:
        mode |= FileMode.NAMED_PIPE
    elif kind == stat.S_IFLNK:
        mode |= FileMode.SYMLINK
    elif kind == stat.S_IFSOCK:
        mode |= FileMode.SOCKET
    elif kind == 0:
        # Requests often carry no file type at all.
        mode |= FileMode.IRREGULAR
    else:
        logger.debug("unrecognized file mode type: %04o", unix_mode)
        mode |= FileMode.IRREGULAR
    if unix_mode & stat.S_ISUID:
        mode |= FileMode.SETUID
    if unix_mode & stat.S_ISGID:
        mode |= FileMode.SETGID
    return FileMode(int(mode))


def unix_mode(mode: int) -> int:
    """Convert a FileMode to a Unix st_mode value."""
    mode = int(mode)
    out = mode & MODE_PERM
    if mode & FileMode.DIR:
        out |= stat.S_IFDIR
    elif mode & FileMode.DEVICE:
        out |= stat.S_IFCHR if mode & FileMode.CHAR_DEVICE else stat.S_IFBLK
    elif mode & FileMode.NAMED_PIPE:
        out |= stat.S_IFIFO
    elif mode & FileMode.SYMLINK:
        out |= stat.S_IFLNK
    elif mode & FileMode.SOCKET:
        out |= stat.S_IFSOCK
    else:
        out |= stat.S_IFREG
    if mode & FileMode.SETUID:
        out |= stat.S_ISUID
    if mode & FileMode.SETGID:
        out |= stat.S_ISGID
    return out


def _unix_time(t: datetime) -> tuple[int, int]:
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    nano = (t - _EPOCH) // timedelta(microseconds=1) * 1000
    sec = nano // 10**9 if nano >= 0 else -((-nano) // 10**9)
    nsec = nano - sec * 10**9
    return sec & _U64, nsec & _U32


@dataclass
class Attr:
    """Metadata of a single file or directory."""

    valid: timedelta = timedelta(0)
    inode: int = 0
    size: int = 0
    blocks: int = 0
    atime: datetime = field(default=_EPOCH)
    mtime: datetime = field(default=_EPOCH)
    ctime: datetime = field(default=_EPOCH)
    crtime: datetime = field(default=_EPOCH)
    mode: FileMode = FileMode(0)
    nlink: int = 0
    uid: int = 0
    gid: int = 0
    rdev: int = 0
    flags: int = 0
    block_size: int = 0

    def __str__(self) -> str:
        return f"valid={self.valid} ino={self.inode} size={self.size} mode={FileMode(int(self.mode))}"

    def pack(self, proto: Protocol) -> bytes:
        """Encode in kernel form, cut short before blksize for protocols below 7.9.

        Creation time and chflags flags have no place in the Linux layout.
        """
        atime, atime_ns = _unix_time(self.atime)
        mtime, mtime_ns = _unix_time(self.mtime)
        ctime, ctime_ns = _unix_time(self.ctime)
        data = ATTR.pack(
            self.inode & _U64,
            self.size & _U64,
            self.blocks & _U64,
            atime,
            mtime,
            ctime,
            atime_ns,
            mtime_ns,
            ctime_ns,
            unix_mode(self.mode) & _U32,
            self.nlink & _U32,
            self.uid & _U32,
            self.gid & _U32,
            self.rdev & _U32,
            self.block_size & _U32 if proto.ge(_PROTO_7_9) else 0,
            0,
        )
        if proto.lt(_PROTO_7_9):
            return data[:ATTR_BLKSIZE_OFFSET]
        return data


class DirentType(enum.IntEnum):
    """Type of an entry in a directory listing."""

    UNKNOWN = 0
    SOCKET = stat.S_IFSOCK >> 12
    LINK = stat.S_IFLNK >> 12
    FILE = stat.S_IFREG >> 12
    BLOCK = stat.S_IFBLK >> 12
    DIR = stat.S_IFDIR >> 12
    CHAR = stat.S_IFCHR >> 12
    FIFO = stat.S_IFIFO >> 12

    def __str__(self) -> str:
        return _DIRENT_TYPE_NAMES[self]

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)


_DIRENT_TYPE_NAMES = {
    DirentType.UNKNOWN: "unknown",
    DirentType.SOCKET: "socket",
    DirentType.LINK: "link",
    DirentType.FILE: "file",
    DirentType.BLOCK: "block",
    DirentType.DIR: "dir",
    DirentType.CHAR: "char",
    DirentType.FIFO: "fifo",
}


@dataclass(frozen=True)
class Dirent:
    """A single directory entry."""

    inode: int
    name: str
    type: DirentType = DirentType.UNKNOWN


def append_dirent(data: bytes, dirent: Dirent) -> bytes:
    """Return ``data`` followed by the encoded directory entry."""
    name = os.fsencode(dirent.name)
    padded = (len(name) + 7) & ~7
    offset = len(data) + DIRENT_SIZE + padded
    head = DIRENT_HEAD.pack(
        dirent.inode & _U64, offset & _U64, len(name) & _U32, int(dirent.type) & _U32
    )
    entry = head + name
    remainder = len(entry) % 8
    if remainder:
        entry += b"\x00" * (8 - remainder)
    return bytes(data) + entry