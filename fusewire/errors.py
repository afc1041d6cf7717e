"""Errors and the errno values sent back to the kernel."""

from __future__ import annotations

import errno as _errno
import os
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .wire import Protocol


class Errno(OSError):
    """An error that carries a specific POSIX error number.

    Any exception with a ``fuse_errno`` attribute holding an Errno
    controls the errno returned to the kernel; Errno provides it itself.
    """

    def __init__(self, number: int) -> None:
        number = int(number)
        super().__init__(number, os.strerror(number))

    @property
    def fuse_errno(self) -> Errno:
        return self

    def __int__(self) -> int:
        return int(self.errno)

    def __str__(self) -> str:
        return os.strerror(self.errno)

    def __repr__(self) -> str:
        return f"Errno({self.errno_name()})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Errno):
            return self.errno == other.errno
        return NotImplemented

    def __hash__(self) -> int:
        return hash(("Errno", self.errno))

    def errno_name(self) -> str:
        """Short symbolic name such as "EIO", or the message if unknown."""
        name = _ERRNO_NAMES.get(self.errno)
        if name is None:
            return str(self)
        return name


ENOSYS = Errno(_errno.ENOSYS)
ESTALE = Errno(_errno.ESTALE)
ENOENT = Errno(_errno.ENOENT)
EIO = Errno(_errno.EIO)
EPERM = Errno(_errno.EPERM)
EINTR = Errno(_errno.EINTR)
ERANGE = Errno(_errno.ERANGE)
ENOTSUP = Errno(_errno.ENOTSUP)
EEXIST = Errno(_errno.EEXIST)
EPROTO = Errno(_errno.EPROTO)
ENAMETOOLONG = Errno(_errno.ENAMETOOLONG)

# Errno used when an error carries no errno of its own.
DEFAULT_ERRNO = EIO

_ERRNO_NAMES = {
    _errno.ENOSYS: "ENOSYS",
    _errno.ESTALE: "ESTALE",
    _errno.ENOENT: "ENOENT",
    _errno.EIO: "EIO",
    _errno.EPERM: "EPERM",
    _errno.EINTR: "EINTR",
    _errno.EEXIST: "EEXIST",
    _errno.ENAMETOOLONG: "ENAMETOOLONG",
}


def to_errno(err: Optional[BaseException]) -> Errno:
    """Convert an arbitrary exception to an Errno.

    A bare OSError (one without a file name) is used directly; an
    OSError that names a path is not, so that unrelated errnos do not
    leak. Otherwise the exception and its explicit causes are searched
    for a ``fuse_errno``. Failing that, DEFAULT_ERRNO is returned.
    """
    if isinstance(err, Errno):
        return err
    if (
        isinstance(err, OSError)
        and err.errno is not None
        and err.filename is None
        and err.filename2 is None
    ):
        return Errno(err.errno)
    seen: set[int] = set()
    current = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        number = getattr(current, "fuse_errno", None)
        if isinstance(number, Errno):
            return number
        current = current.__cause__
    return DEFAULT_ERRNO


class MountpointDoesNotExistError(Exception):
    """The mountpoint directory does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        self.path = path

    def __str__(self) -> str:
        return f"mountpoint does not exist: {self.path}"


class OldVersionError(Exception):
    """The kernel speaks a protocol older than the oldest supported."""

    def __init__(self, kernel: Protocol, library_min: Protocol) -> None:
        super().__init__(kernel, library_min)
        self.kernel = kernel
        self.library_min = library_min

    def __str__(self) -> str:
        return f"kernel FUSE version is too old: {self.kernel} < {self.library_min}"


class ClosedWithoutInitError(EOFError):
    """The connection closed before the init exchange."""

    def __init__(self) -> None:
        super().__init__("fuse connection closed without init")


class NotCachedError(Exception):
    """The kernel is not caching the node being invalidated."""

    fuse_errno = ENOENT

    def __init__(self) -> None:
        super().__init__("node not cached")


class MalformedMessageError(ValueError):
    """A message from the kernel could not be decoded."""

    def __init__(self, message: str = "fuse: malformed message") -> None:
        super().__init__(message)