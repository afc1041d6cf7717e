"""A connection to a mounted FUSE file system and request decoding."""

from __future__ import annotations

import errno as _errno
import logging
import mmap
import os
import stat
import struct
import threading
import traceback
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

from .attrs import MODE_PERM, FileMode, file_mode
from .errors import (
    ENAMETOOLONG,
    EPROTO,
    ClosedWithoutInitError,
    MalformedMessageError,
    NotCachedError,
    OldVersionError,
)
from .flags import (
    GetattrFlags,
    InitFlags,
    ReadFlags,
    ReleaseFlags,
    SetattrValid,
    WriteFlags,
    open_flags,
)
from .requests import (
    AccessRequest,
    CreateRequest,
    DestroyRequest,
    ExchangeDataRequest,
    FlushRequest,
    ForgetRequest,
    FsyncRequest,
    GetattrRequest,
    GetxattrRequest,
    Header,
    InitRequest,
    InterruptRequest,
    LinkRequest,
    ListxattrRequest,
    LookupRequest,
    MkdirRequest,
    MknodRequest,
    OpenRequest,
    ReadlinkRequest,
    ReadRequest,
    ReleaseRequest,
    RemoveRequest,
    RemovexattrRequest,
    RenameRequest,
    SetattrRequest,
    SetxattrRequest,
    StatfsRequest,
    SymlinkRequest,
    WriteRequest,
)
from .responses import InitResponse
from .wire import (
    ACCESS_IN,
    EXCHANGE_IN,
    FLUSH_IN,
    FORGET_IN,
    FSYNC_IN,
    GETATTR_IN,
    GETXATTR_IN,
    IN_HEADER_SIZE,
    INIT_IN,
    INIT_IN_SIZE,
    INTERRUPT_IN,
    LINK_IN,
    MAX_WRITE,
    NOTIFY_CODE_INVAL_ENTRY,
    NOTIFY_CODE_INVAL_INODE,
    NOTIFY_INVAL_ENTRY_OUT,
    NOTIFY_INVAL_INODE_OUT,
    OPEN_IN,
    PROTOCOL_MAX,
    PROTOCOL_MIN,
    READ_IN,
    RELEASE_IN,
    RENAME_IN,
    SETATTR_IN,
    SETXATTR_IN,
    WRITE_IN,
    InHeader,
    Opcode,
    Protocol,
    create_in_size,
    mkdir_in_size,
    mknod_in_size,
    pack_out_header,
    read_in_size,
    write_in_size,
)

logger = logging.getLogger(__name__)

# Every request without data fits in a page; writes add up to MAX_WRITE.
MAX_REQUEST_SIZE = mmap.PAGESIZE
BUF_SIZE = MAX_REQUEST_SIZE + MAX_WRITE

_PROTO_7_9 = Protocol(7, 9)
_PROTO_7_12 = Protocol(7, 12)
_NO_PROTOCOL = Protocol(0, 0)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_U32_MAX = 0xFFFFFFFF
_READ_HEAD = struct.Struct("=QQI")
_WRITE_HEAD = struct.Struct("=QQII")
_TAIL_LOCK_FLAGS = struct.Struct("=QI")
_U32 = struct.Struct("=I")

Dev = Union[int, Any]


class Conn:
    """A connection to a mounted FUSE file system.

    ``dev`` is either a file descriptor or an object with ``fileno()``
    (and optionally ``close()``) through which kernel messages flow.
    """

    def __init__(self, dev: Dev) -> None:
        self._dev = dev
        self._close_lock = threading.Lock()
        self.proto: Protocol = _NO_PROTOCOL
        self.ready = threading.Event()
        self.mount_error: Optional[BaseException] = None

    def __enter__(self) -> Conn:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _fd(self) -> int:
        if isinstance(self._dev, int):
            return self._dev
        return self._dev.fileno()

    def close(self) -> None:
        """Close the connection to the kernel."""
        with self._close_lock:
            if isinstance(self._dev, int):
                os.close(self._dev)
            else:
                self._dev.close()

    def read_request(self) -> Header:
        """Read and decode the next request from the kernel.

        Raises EOFError when the kernel side has gone away.
        """
        while True:
            try:
                data = os.read(self._fd(), BUF_SIZE)
            except InterruptedError:
                continue
            except OSError as err:
                if err.errno == _errno.ENODEV:
                    raise EOFError("fuse device gone") from err
                raise
            break
        if not data:
            raise EOFError("fuse connection closed")
        return parse_request(self, data)

    def _write_to_kernel(self, msg: bytes) -> None:
        buf = bytearray(msg)
        _U32.pack_into(buf, 0, len(buf) & _U32_MAX)
        written = os.write(self._fd(), buf)
        if written != len(buf):
            logger.debug(
                "short kernel write: written=%d/%d error=%r stack=\n%s",
                written,
                len(buf),
                "",
                "".join(traceback.format_stack()),
            )

    def respond(self, msg: bytes) -> None:
        """Send a complete reply; write failures are logged, not raised."""
        try:
            self._write_to_kernel(msg)
        except OSError as err:
            logger.debug(
                "kernel write error: error=%r stack=\n%s",
                str(err),
                "".join(traceback.format_stack()),
            )

    def _send_invalidate(self, msg: bytes) -> None:
        try:
            self._write_to_kernel(msg)
        except OSError as err:
            if err.errno == _errno.ENOENT:
                raise NotCachedError() from err
            raise

    def invalidate_node(self, node_id: int, off: int, size: int) -> None:
        """Invalidate cached attributes and a data range of a node.

        Offset 0 and size -1 mean all data; offset 0 and size 0 mean
        the attributes only. Raises NotCachedError if the kernel does
        not cache the node.
        """
        body = NOTIFY_INVAL_INODE_OUT.pack(int(node_id), int(off), int(size))
        header = pack_out_header(0, NOTIFY_CODE_INVAL_INODE, 0)
        self._send_invalidate(header + body)

    def invalidate_entry(self, parent: int, name: Union[str, bytes]) -> None:
        """Invalidate the cached directory entry ``name`` under ``parent``.

        Raises NotCachedError if the kernel does not cache the entry.
        """
        raw = os.fsencode(name)
        if len(raw) > _U32_MAX:
            raise ENAMETOOLONG
        body = NOTIFY_INVAL_ENTRY_OUT.pack(int(parent), len(raw), 0)
        header = pack_out_header(0, NOTIFY_CODE_INVAL_ENTRY, 0)
        self._send_invalidate(header + body + raw + b"\x00")


def _corrupt() -> MalformedMessageError:
    logger.debug("malformed message")
    return MalformedMessageError()


def _require(body: bytes, size: int) -> None:
    if len(body) < size:
        raise _corrupt()


def _name(raw: bytes) -> str:
    return os.fsdecode(bytes(raw))


def _nul_terminated(body: bytes) -> str:
    if not body or body[-1] != 0:
        raise _corrupt()
    return _name(body[:-1])


def _until_nul(buf: bytes) -> int:
    i = buf.find(b"\x00")
    if i < 0:
        raise _corrupt()
    return i


def _name_pair(buf: bytes, minimum: int) -> tuple[str, str]:
    """Split "first\\0second\\0" into its two names."""
    if len(buf) < minimum or buf[-1] != 0:
        raise _corrupt()
    i = _until_nul(buf)
    return _name(buf[:i]), _name(buf[i + 1 : -1])


def _time(sec: int, nsec: int) -> datetime:
    if sec >= 1 << 63:
        sec -= 1 << 64
    try:
        return _EPOCH + timedelta(seconds=sec, microseconds=nsec // 1000)
    except OverflowError:
        raise _corrupt() from None


def _umask(raw: int) -> FileMode:
    return FileMode(int(file_mode(raw)) & MODE_PERM)


def _proto(conn: Any) -> Protocol:
    proto = getattr(conn, "proto", None)
    return proto if proto is not None else _NO_PROTOCOL


_Parser = Callable[[Any, int, dict, bytes], Header]


def _parse_lookup(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    return LookupRequest(**hdr, name=_nul_terminated(body))


def _parse_forget(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, FORGET_IN.size)
    (n,) = FORGET_IN.unpack_from(body)
    return ForgetRequest(**hdr, n=n)


def _parse_getattr(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    if _proto(conn).lt(_PROTO_7_9):
        return GetattrRequest(**hdr)
    _require(body, GETATTR_IN.size)
    flags, _, fh = GETATTR_IN.unpack_from(body)
    return GetattrRequest(**hdr, flags=GetattrFlags(flags), handle=fh)


def _parse_setattr(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, SETATTR_IN.size)
    (
        valid, _, fh, size, _lock_owner, atime, mtime, _,
        atime_nsec, mtime_nsec, _, mode, _, uid, gid, _,
    ) = SETATTR_IN.unpack_from(body)
    return SetattrRequest(
        **hdr,
        valid=SetattrValid(valid),
        handle=fh,
        size=size,
        atime=_time(atime, atime_nsec),
        mtime=_time(mtime, mtime_nsec),
        mode=file_mode(mode),
        uid=uid,
        gid=gid,
        flags=0,
    )


def _parse_readlink(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    if body:
        raise _corrupt()
    return ReadlinkRequest(**hdr)


def _parse_symlink(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    new_name, target = _name_pair(body, 1)
    return SymlinkRequest(**hdr, new_name=new_name, target=target)


def _parse_link(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, LINK_IN.size)
    (old_node,) = LINK_IN.unpack_from(body)
    new_name = body[LINK_IN.size :]
    if len(new_name) < 2 or new_name[-1] != 0:
        raise _corrupt()
    return LinkRequest(**hdr, old_node=old_node, new_name=_name(new_name[:-1]))


def _parse_mknod(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    proto = _proto(conn)
    size = mknod_in_size(proto)
    _require(body, size)
    mode, rdev = struct.unpack_from("=II", body)
    name = body[size:]
    if len(name) < 2 or name[-1] != 0:
        raise _corrupt()
    req = MknodRequest(**hdr, mode=file_mode(mode), rdev=rdev, name=_name(name[:-1]))
    if proto.ge(_PROTO_7_12):
        (umask,) = _U32.unpack_from(body, 8)
        req.umask = _umask(umask)
    return req


def _parse_mkdir(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    proto = _proto(conn)
    size = mkdir_in_size(proto)
    _require(body, size)
    mode, umask = struct.unpack_from("=II", body)
    name = body[size:]
    i = _until_nul(name)
    # The kernel omits the file type here; force it to directory.
    req = MkdirRequest(
        **hdr,
        name=_name(name[:i]),
        mode=file_mode((mode & ~stat.S_IFMT(0o170000)) | stat.S_IFDIR),
    )
    if proto.ge(_PROTO_7_12):
        req.umask = _umask(umask)
    return req


def _parse_remove(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    return RemoveRequest(**hdr, name=_nul_terminated(body), dir=op == Opcode.RMDIR)


def _parse_rename(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, RENAME_IN.size)
    (new_dir,) = RENAME_IN.unpack_from(body)
    old_name, new_name = _name_pair(body[RENAME_IN.size :], 4)
    return RenameRequest(**hdr, new_dir=new_dir, old_name=old_name, new_name=new_name)


def _parse_open(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, OPEN_IN.size)
    flags, _ = OPEN_IN.unpack_from(body)
    return OpenRequest(**hdr, dir=op == Opcode.OPENDIR, flags=open_flags(flags))


def _parse_read(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    proto = _proto(conn)
    _require(body, read_in_size(proto))
    fh, offset, size = _READ_HEAD.unpack_from(body)
    if offset >= 1 << 63:
        offset -= 1 << 64
    req = ReadRequest(
        **hdr, dir=op == Opcode.READDIR, handle=fh, offset=offset, size=size
    )
    if proto.ge(_PROTO_7_9):
        _, _, _, read_flags, lock_owner, flags, _ = READ_IN.unpack_from(body)
        req.flags = ReadFlags(read_flags)
        req.lock_owner = lock_owner
        req.file_flags = open_flags(flags)
    return req


def _parse_write(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    proto = _proto(conn)
    size = write_in_size(proto)
    _require(body, size)
    fh, offset, data_size, write_flags = _WRITE_HEAD.unpack_from(body)
    if offset >= 1 << 63:
        offset -= 1 << 64
    req = WriteRequest(**hdr, handle=fh, offset=offset, flags=WriteFlags(write_flags))
    if proto.ge(_PROTO_7_9):
        lock_owner, flags = _TAIL_LOCK_FLAGS.unpack_from(body, _WRITE_HEAD.size)
        req.lock_owner = lock_owner
        req.file_flags = open_flags(flags)
    data = body[size:]
    if len(data) < data_size:
        raise _corrupt()
    req.data = bytes(data)
    return req


def _parse_statfs(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    return StatfsRequest(**hdr)


def _parse_release(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, RELEASE_IN.size)
    fh, flags, release_flags, lock_owner = RELEASE_IN.unpack_from(body)
    return ReleaseRequest(
        **hdr,
        dir=op == Opcode.RELEASEDIR,
        handle=fh,
        flags=open_flags(flags),
        release_flags=ReleaseFlags(release_flags),
        lock_owner=lock_owner,
    )


def _parse_fsync(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, FSYNC_IN.size)
    fh, flags, _ = FSYNC_IN.unpack_from(body)
    return FsyncRequest(**hdr, dir=op == Opcode.FSYNCDIR, handle=fh, flags=flags)


def _parse_setxattr(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, SETXATTR_IN.size)
    size, flags = SETXATTR_IN.unpack_from(body)
    rest = body[SETXATTR_IN.size :]
    i = _until_nul(rest)
    xattr = rest[i + 1 :]
    if len(xattr) < size:
        raise _corrupt()
    return SetxattrRequest(
        **hdr, flags=flags, position=0, name=_name(rest[:i]), xattr=bytes(xattr[:size])
    )


def _parse_getxattr(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, GETXATTR_IN.size)
    size, _ = GETXATTR_IN.unpack_from(body)
    name = body[GETXATTR_IN.size :]
    i = _until_nul(name)
    return GetxattrRequest(**hdr, name=_name(name[:i]), size=size, position=0)


def _parse_listxattr(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, GETXATTR_IN.size)
    size, _ = GETXATTR_IN.unpack_from(body)
    return ListxattrRequest(**hdr, size=size, position=0)


def _parse_removexattr(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    return RemovexattrRequest(**hdr, name=_nul_terminated(body))


def _parse_flush(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, FLUSH_IN.size)
    fh, flags, _, lock_owner = FLUSH_IN.unpack_from(body)
    return FlushRequest(**hdr, handle=fh, flags=flags, lock_owner=lock_owner)


def _parse_init(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, INIT_IN.size)
    major, minor, max_readahead, flags = INIT_IN.unpack_from(body)
    return InitRequest(
        **hdr,
        kernel=Protocol(major, minor),
        max_readahead=max_readahead,
        flags=InitFlags(flags),
    )


def _parse_access(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, ACCESS_IN.size)
    mask, _ = ACCESS_IN.unpack_from(body)
    return AccessRequest(**hdr, mask=mask)


def _parse_create(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    proto = _proto(conn)
    size = create_in_size(proto)
    _require(body, size)
    flags, mode = struct.unpack_from("=II", body)
    name = body[size:]
    i = _until_nul(name)
    req = CreateRequest(
        **hdr, flags=open_flags(flags), mode=file_mode(mode), name=_name(name[:i])
    )
    if proto.ge(_PROTO_7_12):
        (umask,) = _U32.unpack_from(body, 8)
        req.umask = _umask(umask)
    return req


def _parse_interrupt(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, INTERRUPT_IN.size)
    (unique,) = INTERRUPT_IN.unpack_from(body)
    return InterruptRequest(**hdr, intr_id=unique)


def _parse_destroy(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    return DestroyRequest(**hdr)


def _parse_exchange(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    _require(body, EXCHANGE_IN.size)
    old_dir, new_dir, _options = EXCHANGE_IN.unpack_from(body)
    old_name, new_name = _name_pair(body[EXCHANGE_IN.size :], 4)
    return ExchangeDataRequest(
        **hdr, old_dir=old_dir, new_dir=new_dir, old_name=old_name, new_name=new_name
    )


def _parse_unsupported(conn: Any, op: int, hdr: dict, body: bytes) -> Header:
    raise RuntimeError(f"fuse: unhandled opcode {Opcode(op).name}")


_PARSERS: dict[int, _Parser] = {
    Opcode.LOOKUP: _parse_lookup,
    Opcode.FORGET: _parse_forget,
    Opcode.GETATTR: _parse_getattr,
    Opcode.SETATTR: _parse_setattr,
    Opcode.READLINK: _parse_readlink,
    Opcode.SYMLINK: _parse_symlink,
    Opcode.LINK: _parse_link,
    Opcode.MKNOD: _parse_mknod,
    Opcode.MKDIR: _parse_mkdir,
    Opcode.UNLINK: _parse_remove,
    Opcode.RMDIR: _parse_remove,
    Opcode.RENAME: _parse_rename,
    Opcode.OPEN: _parse_open,
    Opcode.OPENDIR: _parse_open,
    Opcode.READ: _parse_read,
    Opcode.READDIR: _parse_read,
    Opcode.WRITE: _parse_write,
    Opcode.STATFS: _parse_statfs,
    Opcode.RELEASE: _parse_release,
    Opcode.RELEASEDIR: _parse_release,
    Opcode.FSYNC: _parse_fsync,
    Opcode.FSYNCDIR: _parse_fsync,
    Opcode.SETXATTR: _parse_setxattr,
    Opcode.GETXATTR: _parse_getxattr,
    Opcode.LISTXATTR: _parse_listxattr,
    Opcode.REMOVEXATTR: _parse_removexattr,
    Opcode.FLUSH: _parse_flush,
    Opcode.INIT: _parse_init,
    Opcode.GETLK: _parse_unsupported,
    Opcode.SETLK: _parse_unsupported,
    Opcode.SETLKW: _parse_unsupported,
    Opcode.ACCESS: _parse_access,
    Opcode.CREATE: _parse_create,
    Opcode.INTERRUPT: _parse_interrupt,
    Opcode.DESTROY: _parse_destroy,
    Opcode.SETVOLNAME: _parse_unsupported,
    Opcode.GETXTIMES: _parse_unsupported,
    Opcode.EXCHANGE: _parse_exchange,
}


def parse_request(conn: Any, data: bytes) -> Header:
    """Decode one complete kernel message into a request.

    An opcode that is not understood yields a plain Header, so that the
    caller can answer it with an error. Malformed messages raise
    MalformedMessageError.
    """
    n = len(data)
    if n < IN_HEADER_SIZE:
        raise MalformedMessageError("fuse: message too short")
    head = InHeader.unpack(data)
    length = head.length
    # Some kernels send a short length for init even though the read is right.
    if n == IN_HEADER_SIZE + INIT_IN_SIZE and head.opcode == Opcode.INIT and length < n:
        length = n
    # Some kernels send a wrong length in write messages.
    if length < n and length >= WRITE_IN.size and head.opcode == Opcode.WRITE:
        length = n
    if length != n:
        raise MalformedMessageError(
            f"fuse: read {n} opcode {head.opcode} but expected {length}"
        )

    hdr = {
        "conn": conn,
        "id": head.unique,
        "node": head.nodeid,
        "uid": head.uid,
        "gid": head.gid,
        "pid": head.pid,
    }
    parser = _PARSERS.get(head.opcode)
    if parser is None:
        # Unknown opcodes and bmap: let the caller answer with an error.
        if head.opcode != Opcode.BMAP:
            logger.debug("No opcode %d", head.opcode)
        return Header(**hdr)
    return parser(conn, head.opcode, hdr, bytes(data[IN_HEADER_SIZE:]))


def init_mount(conn: Conn, max_readahead: int, init_flags: int) -> Protocol:
    """Perform the init exchange on a fresh connection.

    Returns the negotiated protocol, which is also stored on ``conn``.
    """
    try:
        req = conn.read_request()
    except EOFError as err:
        raise ClosedWithoutInitError() from err
    if not isinstance(req, InitRequest):
        raise MalformedMessageError(f"missing init, got: {type(req).__name__}")

    if req.kernel.lt(PROTOCOL_MIN):
        req.respond_error(EPROTO)
        conn.close()
        raise OldVersionError(req.kernel, PROTOCOL_MIN)

    proto = PROTOCOL_MAX
    if req.kernel.lt(proto):
        proto = req.kernel
    conn.proto = proto

    req.respond(
        InitResponse(
            library=proto,
            max_readahead=max_readahead,
            max_write=MAX_WRITE,
            flags=InitFlags.BIG_WRITES | InitFlags(int(init_flags)),
        )
    )
    return proto