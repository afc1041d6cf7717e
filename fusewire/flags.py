"""Bit flags exchanged with the kernel and their textual forms."""

from __future__ import annotations

import enum
from typing import Iterable, Sequence, Tuple

FlagNames = Sequence[Tuple[int, str]]

# Linux bit that 64-bit kernels always set on opens; of no interest here.
_O_LARGEFILE = 0x8000


def flag_string(value: int, names: Iterable[tuple[int, str]]) -> str:
    """Render ``value`` as '+'-joined flag names, leftover bits in hex."""
    value = int(value)
    if value == 0:
        return "0"
    parts: list[str] = []
    for bit, name in names:
        bit = int(bit)
        if value & bit:
            parts.append(name)
            value &= ~bit
    if value:
        parts.append(f"{value:#x}")
    return "+".join(parts)


class _NamedFlags(enum.IntFlag):
    """Integer flags whose string form lists the known flag names."""

    def __str__(self) -> str:
        return flag_string(int(self), _FLAG_NAMES[type(self)])

    __format__ = object.__format__

    def __format__(self, spec: str) -> str:  # noqa: F811
        return format(str(self), spec)


class GetattrFlags(_NamedFlags):
    """Flags seen in a getattr request."""

    FH = 1 << 0


class SetattrValid(_NamedFlags):
    """Which fields of a setattr request carry a change."""

    MODE = 1 << 0
    UID = 1 << 1
    GID = 1 << 2
    SIZE = 1 << 3
    ATIME = 1 << 4
    MTIME = 1 << 5
    HANDLE = 1 << 6
    ATIME_NOW = 1 << 7
    MTIME_NOW = 1 << 8
    LOCK_OWNER = 1 << 9
    CRTIME = 1 << 28
    CHGTIME = 1 << 29
    BKUPTIME = 1 << 30
    FLAGS = 1 << 31


class OpenFlags(_NamedFlags):
    """The O_* flags passed to open and create calls (Linux values)."""

    READ_ONLY = 0o0
    WRITE_ONLY = 0o1
    READ_WRITE = 0o2
    APPEND = 0o2000
    CREATE = 0o100
    DIRECTORY = 0o200000
    EXCLUSIVE = 0o200
    NONBLOCK = 0o4000
    SYNC = 0o4010000
    TRUNCATE = 0o1000

    def __str__(self) -> str:
        value = int(self)
        text = _ACCESS_MODE_NAMES.get(value & OPEN_ACCESS_MODE_MASK, "")
        rest = value & ~OPEN_ACCESS_MODE_MASK
        if rest:
            text = text + "+" + flag_string(rest, _FLAG_NAMES[OpenFlags])
        return text

    def _access_mode(self) -> int:
        return int(self) & OPEN_ACCESS_MODE_MASK

    def is_read_only(self) -> bool:
        """True if the access mode is read-only."""
        return self._access_mode() == OpenFlags.READ_ONLY

    def is_write_only(self) -> bool:
        """True if the access mode is write-only."""
        return self._access_mode() == OpenFlags.WRITE_ONLY

    def is_read_write(self) -> bool:
        """True if the access mode is read-write."""
        return self._access_mode() == OpenFlags.READ_WRITE


OPEN_ACCESS_MODE_MASK = 0o3

_ACCESS_MODE_NAMES = {
    int(OpenFlags.READ_ONLY): "OpenReadOnly",
    int(OpenFlags.WRITE_ONLY): "OpenWriteOnly",
    int(OpenFlags.READ_WRITE): "OpenReadWrite",
}


class OpenResponseFlags(_NamedFlags):
    """Flags returned in an open response."""

    DIRECT_IO = 1 << 0
    KEEP_CACHE = 1 << 1
    NON_SEEKABLE = 1 << 2
    PURGE_ATTR = 1 << 30
    PURGE_UBC = 1 << 31


class InitFlags(_NamedFlags):
    """Flags used in the init exchange."""

    ASYNC_READ = 1 << 0
    POSIX_LOCKS = 1 << 1
    FILE_OPS = 1 << 2
    ATOMIC_TRUNC = 1 << 3
    EXPORT_SUPPORT = 1 << 4
    BIG_WRITES = 1 << 5
    DONT_MASK = 1 << 6
    SPLICE_WRITE = 1 << 7
    SPLICE_MOVE = 1 << 8
    SPLICE_READ = 1 << 9
    FLOCK_LOCKS = 1 << 10
    HAS_IOCTL_DIR = 1 << 11
    AUTO_INVAL_DATA = 1 << 12
    DO_READDIRPLUS = 1 << 13
    READDIRPLUS_AUTO = 1 << 14
    ASYNC_DIO = 1 << 15
    WRITEBACK_CACHE = 1 << 16
    NO_OPEN_SUPPORT = 1 << 17
    CASE_SENSITIVE = 1 << 29
    VOL_RENAME = 1 << 30
    XTIMES = 1 << 31


class ReleaseFlags(_NamedFlags):
    """Flags used in the release exchange."""

    FLUSH = 1 << 0


class ReadFlags(_NamedFlags):
    """Flags passed in a read request."""

    LOCK_OWNER = 1 << 1


class WriteFlags(_NamedFlags):
    """Flags passed in a write request."""

    CACHE = 1 << 0
    LOCK_OWNER = 1 << 1


_FLAG_NAMES: dict[type, list[tuple[int, str]]] = {
    GetattrFlags: [(GetattrFlags.FH, "GetattrFh")],
    SetattrValid: [
        (SetattrValid.MODE, "SetattrMode"),
        (SetattrValid.UID, "SetattrUid"),
        (SetattrValid.GID, "SetattrGid"),
        (SetattrValid.SIZE, "SetattrSize"),
        (SetattrValid.ATIME, "SetattrAtime"),
        (SetattrValid.MTIME, "SetattrMtime"),
        (SetattrValid.HANDLE, "SetattrHandle"),
        (SetattrValid.ATIME_NOW, "SetattrAtimeNow"),
        (SetattrValid.MTIME_NOW, "SetattrMtimeNow"),
        (SetattrValid.LOCK_OWNER, "SetattrLockOwner"),
        (SetattrValid.CRTIME, "SetattrCrtime"),
        (SetattrValid.CHGTIME, "SetattrChgtime"),
        (SetattrValid.BKUPTIME, "SetattrBkuptime"),
        (SetattrValid.FLAGS, "SetattrFlags"),
    ],
    OpenFlags: [
        (OpenFlags.APPEND, "OpenAppend"),
        (OpenFlags.CREATE, "OpenCreate"),
        (OpenFlags.DIRECTORY, "OpenDirectory"),
        (OpenFlags.EXCLUSIVE, "OpenExclusive"),
        (OpenFlags.NONBLOCK, "OpenNonblock"),
        (OpenFlags.SYNC, "OpenSync"),
        (OpenFlags.TRUNCATE, "OpenTruncate"),
    ],
    OpenResponseFlags: [
        (OpenResponseFlags.DIRECT_IO, "OpenDirectIO"),
        (OpenResponseFlags.KEEP_CACHE, "OpenKeepCache"),
        (OpenResponseFlags.NON_SEEKABLE, "OpenNonSeekable"),
        (OpenResponseFlags.PURGE_ATTR, "OpenPurgeAttr"),
        (OpenResponseFlags.PURGE_UBC, "OpenPurgeUBC"),
    ],
    InitFlags: [
        (InitFlags.ASYNC_READ, "InitAsyncRead"),
        (InitFlags.POSIX_LOCKS, "InitPosixLocks"),
        (InitFlags.FILE_OPS, "InitFileOps"),
        (InitFlags.ATOMIC_TRUNC, "InitAtomicTrunc"),
        (InitFlags.EXPORT_SUPPORT, "InitExportSupport"),
        (InitFlags.BIG_WRITES, "InitBigWrites"),
        (InitFlags.DONT_MASK, "InitDontMask"),
        (InitFlags.SPLICE_WRITE, "InitSpliceWrite"),
        (InitFlags.SPLICE_MOVE, "InitSpliceMove"),
        (InitFlags.SPLICE_READ, "InitSpliceRead"),
        (InitFlags.FLOCK_LOCKS, "InitFlockLocks"),
        (InitFlags.HAS_IOCTL_DIR, "InitHasIoctlDir"),
        (InitFlags.AUTO_INVAL_DATA, "InitAutoInvalData"),
        (InitFlags.DO_READDIRPLUS, "InitDoReaddirplus"),
        (InitFlags.READDIRPLUS_AUTO, "InitReaddirplusAuto"),
        (InitFlags.ASYNC_DIO, "InitAsyncDIO"),
        (InitFlags.WRITEBACK_CACHE, "InitWritebackCache"),
        (InitFlags.NO_OPEN_SUPPORT, "InitNoOpenSupport"),
        (InitFlags.CASE_SENSITIVE, "InitCaseSensitive"),
        (InitFlags.VOL_RENAME, "InitVolRename"),
        (InitFlags.XTIMES, "InitXtimes"),
    ],
    ReleaseFlags: [(ReleaseFlags.FLUSH, "ReleaseFlush")],
    ReadFlags: [(ReadFlags.LOCK_OWNER, "ReadLockOwner")],
    WriteFlags: [
        (WriteFlags.CACHE, "WriteCache"),
        (WriteFlags.LOCK_OWNER, "WriteLockOwner"),
    ],
}


def open_flags(flags: int) -> OpenFlags:
    """Convert raw kernel open flags, dropping the O_LARGEFILE bit."""
    return OpenFlags(int(flags) & ~_O_LARGEFILE)