import errno

import pytest

from fusewire.attrs import Attr
from fusewire.errors import ENOENT, NotCachedError
from fusewire.flags import OpenFlags, SetattrValid
from fusewire.requests import (
    AccessRequest,
    CreateRequest,
    ForgetRequest,
    GetattrRequest,
    GetxattrRequest,
    Header,
    InitRequest,
    InterruptRequest,
    ListxattrRequest,
    LookupRequest,
    MkdirRequest,
    OpenRequest,
    ReadlinkRequest,
    ReadRequest,
    SetattrRequest,
    SetxattrRequest,
    StatfsRequest,
    WriteRequest,
)
from fusewire.responses import (
    CreateResponse,
    GetattrResponse,
    GetxattrResponse,
    InitResponse,
    ListxattrResponse,
    LookupResponse,
    MkdirResponse,
    OpenResponse,
    ReadResponse,
    StatfsResponse,
    WriteResponse,
)
from fusewire.wire import (
    GETXATTR_OUT,
    INIT_OUT,
    MAX_WRITE,
    OUT_HEADER,
    OUT_HEADER_SIZE,
    Protocol,
    attr_out_size,
    entry_out_size,
)


class FakeConn:
    def __init__(self, proto=Protocol(7, 12)):
        self.proto = proto
        self.sent = []

    def respond(self, msg):
        self.sent.append(msg)


def split(msg):
    length, error, unique = OUT_HEADER.unpack_from(msg)
    return length, error, unique, msg[OUT_HEADER_SIZE:]


def test_respond_error_uses_errno():
    conn = FakeConn()
    req = LookupRequest(conn=conn, id=7, name="x")
    req.respond_error(ENOENT)
    length, error, unique, payload = split(conn.sent[0])
    assert (length, error, unique, payload) == (OUT_HEADER_SIZE, -errno.ENOENT, 7, b"")


def test_respond_error_default_is_eio():
    conn = FakeConn()
    Header(conn=conn, id=3).respond_error(RuntimeError("boom"))
    assert split(conn.sent[0])[1] == -errno.EIO


def test_respond_error_not_cached_is_enoent():
    conn = FakeConn()
    Header(conn=conn, id=3).respond_error(NotCachedError())
    assert split(conn.sent[0])[1] == -errno.ENOENT


def test_empty_reply():
    conn = FakeConn()
    AccessRequest(conn=conn, id=9, mask=4).respond()
    assert split(conn.sent[0]) == (OUT_HEADER_SIZE, 0, 9, b"")


@pytest.mark.parametrize("cls", [ForgetRequest, InterruptRequest])
def test_no_reply(cls):
    conn = FakeConn()
    cls(conn=conn, id=1).respond()
    assert conn.sent == []


def test_getxattr_size_zero_reports_length():
    conn = FakeConn()
    GetxattrRequest(conn=conn, id=2, size=0, name="user.a").respond(
        GetxattrResponse(xattr=b"hello")
    )
    payload = split(conn.sent[0])[3]
    assert GETXATTR_OUT.unpack(payload) == (5, 0)


def test_getxattr_returns_value():
    conn = FakeConn()
    GetxattrRequest(conn=conn, id=2, size=100, name="user.a").respond(
        GetxattrResponse(xattr=b"hello")
    )
    length, _, _, payload = split(conn.sent[0])
    assert payload == b"hello"
    assert length == OUT_HEADER_SIZE + 5


def test_listxattr_names():
    resp = ListxattrResponse()
    resp.append("user.a", "user.b")
    conn = FakeConn()
    ListxattrRequest(conn=conn, id=4, size=64).respond(resp)
    assert split(conn.sent[0])[3] == b"user.a\x00user.b\x00"
    conn2 = FakeConn()
    ListxattrRequest(conn=conn2, id=4, size=0).respond(resp)
    assert GETXATTR_OUT.unpack(split(conn2.sent[0])[3])[0] == len(resp.xattr)


@pytest.mark.parametrize("proto", [Protocol(7, 8), Protocol(7, 12)])
def test_lookup_reply_size_follows_protocol(proto):
    conn = FakeConn(proto)
    resp = LookupResponse(node=5, generation=1, attr=Attr(inode=5, size=10))
    LookupRequest(conn=conn, id=11, name="f").respond(resp)
    length, error, unique, payload = split(conn.sent[0])
    assert payload == resp.pack(proto)
    assert len(payload) == entry_out_size(proto)
    assert length == len(conn.sent[0])
    assert unique == 11


def test_mkdir_and_create_payloads():
    conn = FakeConn()
    mk = MkdirResponse(node=8)
    MkdirRequest(conn=conn, id=1, name="d").respond(mk)
    cr = CreateResponse(node=9, handle=3)
    CreateRequest(conn=conn, id=2, name="f").respond(cr)
    assert split(conn.sent[0])[3] == mk.pack(conn.proto)
    assert split(conn.sent[1])[3] == cr.pack(conn.proto)


def test_getattr_reply_size():
    conn = FakeConn(Protocol(7, 8))
    GetattrRequest(conn=conn, id=1).respond(GetattrResponse(attr=Attr(size=3)))
    assert len(split(conn.sent[0])[3]) == attr_out_size(Protocol(7, 8))


def test_init_reply_caps_max_write():
    conn = FakeConn()
    InitRequest(conn=conn, id=1, kernel=Protocol(7, 12)).respond(
        InitResponse(library=Protocol(7, 12), max_write=MAX_WRITE * 4)
    )
    fields = INIT_OUT.unpack(split(conn.sent[0])[3])
    assert fields[0:2] == (7, 12)
    assert fields[5] == MAX_WRITE


def test_statfs_open_write_read_payloads():
    conn = FakeConn()
    st = StatfsResponse(blocks=10, bsize=4096)
    StatfsRequest(conn=conn, id=1).respond(st)
    op = OpenResponse(handle=42)
    OpenRequest(conn=conn, id=2).respond(op)
    WriteRequest(conn=conn, id=3, data=b"abc").respond(WriteResponse(size=3))
    ReadRequest(conn=conn, id=4, size=10).respond(ReadResponse(data=b"xyz"))
    payloads = [split(m)[3] for m in conn.sent]
    assert payloads[0] == st.pack()
    assert payloads[1] == op.pack()
    assert payloads[2] == WriteResponse(size=3).pack()
    assert payloads[3] == b"xyz"


def test_readlink_string_target():
    conn = FakeConn()
    ReadlinkRequest(conn=conn, id=1).respond("target/path")
    assert split(conn.sent[0])[3] == b"target/path"


def test_lookup_string():
    req = LookupRequest(id=5, node=1, uid=1, gid=2, pid=3, name="foo")
    assert str(req) == 'Lookup [ID=0x5 Node=0x1 Uid=1 Gid=2 Pid=3] "foo"'


def test_open_string_flags_and_dir():
    req = OpenRequest(dir=True, flags=OpenFlags.READ_WRITE | OpenFlags.APPEND)
    text = str(req)
    assert "dir=true" in text
    assert text.endswith("fl=OpenReadWrite+OpenAppend")


def test_setattr_string_invalid_handle():
    req = SetattrRequest(valid=SetattrValid.SIZE, size=12)
    text = str(req)
    assert " size=12" in text
    assert "handle=INVALID-0x0" in text
    assert "mode=" not in text


def test_setxattr_string_truncates():
    req = SetxattrRequest(name="user.x", xattr=b"a" * 20)
    text = str(req)
    assert '"' + "a" * 16 + '"...' in text
    assert "a" * 17 not in text