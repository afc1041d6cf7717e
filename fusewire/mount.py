"""Mounting a FUSE file system through the fusermount helper."""

from __future__ import annotations

import array
import contextlib
import io
import logging
import os
import socket
import subprocess
import threading
from typing import IO, Callable, Mapping, Optional, Union

from .conn import Conn, init_mount
from .errors import ClosedWithoutInitError, MountpointDoesNotExistError

logger = logging.getLogger(__name__)

# Name of the setuid helper that performs the actual mount.
FUSERMOUNT = "fusermount"

_CONF_DENIED = "fusermount: failed to open /etc/fuse.conf: Permission denied"
_NO_MOUNTPOINT_PREFIX = "fusermount: failed to access mountpoint "
_NO_MOUNTPOINT_SUFFIX = ": No such file or directory"

Options = Optional[Mapping[str, str]]


def _format_options(options: Options) -> str:
    """Render mount options as the comma separated list fusermount takes."""
    if not options:
        return ""
    return ",".join(key if value == "" else f"{key}={value}" for key, value in options.items())


def _never_ignore(line: str) -> bool:
    return False


class _StderrWatcher:
    """Picks the first missing-mountpoint error out of the helper's stderr."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.error: Optional[BaseException] = None

    def __call__(self, line: str) -> bool:
        if line == _CONF_DENIED:
            # Common and irrelevant to whether the mount succeeds.
            return True
        if (
            line.startswith(_NO_MOUNTPOINT_PREFIX)
            and line.endswith(_NO_MOUNTPOINT_SUFFIX)
            and len(line) >= len(_NO_MOUNTPOINT_PREFIX) + len(_NO_MOUNTPOINT_SUFFIX)
        ):
            path = line[len(_NO_MOUNTPOINT_PREFIX) : len(line) - len(_NO_MOUNTPOINT_SUFFIX)]
            with self._lock:
                if self.error is None:
                    self.error = MountpointDoesNotExistError(path)
                    return True
            # Not the first error: let it be logged.
        return False


def _line_logger(prefix: str, ignore: Callable[[str], bool], stream: IO[bytes]) -> None:
    try:
        for raw in stream:
            line = raw.decode("utf-8", "replace").rstrip("\n")
            if line.endswith("\r"):
                line = line[:-1]
            if ignore(line):
                continue
            logger.info("%s: %s", prefix, line)
    except (OSError, ValueError) as err:
        logger.info("%s, error reading: %s", prefix, err)
    finally:
        stream.close()


def _exit_description(code: int) -> str:
    if code < 0:
        return f"signal: {-code}"
    return f"exit status {code}"


def _receive_fd(sock: socket.socket) -> int:
    _, ancdata, _, _ = sock.recvmsg(32, 32)
    if len(ancdata) != 1:
        raise RuntimeError(f"expected 1 SocketControlMessage; got scms = {ancdata!r}")
    level, kind, data = ancdata[0]
    if level != socket.SOL_SOCKET or kind != socket.SCM_RIGHTS:
        raise RuntimeError(f"ParseUnixRights: unexpected control message {level}/{kind}")
    fds = array.array("i")
    fds.frombytes(data[: len(data) - len(data) % fds.itemsize])
    if len(fds) != 1:
        for fd in fds:
            with contextlib.suppress(OSError):
                os.close(fd)
        raise RuntimeError(f"wanted 1 fd; got {list(fds)!r}")
    return fds[0]


def fusermount(directory: Union[str, os.PathLike], options: Options = None) -> int:
    """Run the mount helper for ``directory`` and return the FUSE device fd.

    Raises MountpointDoesNotExistError when the helper reports a missing
    mountpoint, and RuntimeError for other helper failures.
    """
    parent_sock, child_sock = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
    with parent_sock:
        with child_sock:
            child_fd = child_sock.fileno()
            env = dict(os.environ, _FUSE_COMMFD=str(child_fd))
            argv = [FUSERMOUNT, "-o", _format_options(options), "--", os.fspath(directory)]
            try:
                proc = subprocess.Popen(
                    argv,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    env=env,
                    pass_fds=(child_fd,),
                )
            except OSError as err:
                raise RuntimeError(f"fusermount: {err}") from err

        watcher = _StderrWatcher()
        loggers = [
            threading.Thread(
                target=_line_logger,
                args=("mount helper output", _never_ignore, proc.stdout),
                daemon=True,
            ),
            threading.Thread(
                target=_line_logger,
                args=("mount helper error", watcher, proc.stderr),
                daemon=True,
            ),
        ]
        for thread in loggers:
            thread.start()
        for thread in loggers:
            thread.join()
        code = proc.wait()
        if code != 0:
            if watcher.error is not None:
                if code != 1:
                    logger.info("mount helper failed: %s", _exit_description(code))
                raise watcher.error
            raise RuntimeError(f"fusermount: {_exit_description(code)}")

        return _receive_fd(parent_sock)


def mount(
    directory: Union[str, os.PathLike],
    options: Options = None,
    max_readahead: int = 0,
    init_flags: int = 0,
) -> Conn:
    """Mount a FUSE file system on ``directory`` and complete the init exchange.

    The returned connection must be closed by the caller; requests on it
    must be served for the mount to make progress.
    """
    fd = fusermount(directory, options)
    conn = Conn(io.FileIO(fd, "r+"))
    # The helper finishes the mount before returning.
    conn.ready.set()
    try:
        init_mount(conn, max_readahead, init_flags)
    except ClosedWithoutInitError:
        with contextlib.suppress(OSError):
            conn.close()
        conn.ready.wait()
        if conn.mount_error is not None:
            raise conn.mount_error
        raise
    except BaseException:
        with contextlib.suppress(OSError):
            conn.close()
        raise
    return conn