from datetime import timedelta

import pytest

from fusewire.attrs import Attr, FileMode
from fusewire.flags import InitFlags, OpenResponseFlags
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
    SetattrResponse,
    StatfsResponse,
    SymlinkResponse,
    WriteResponse,
)
from fusewire.wire import (
    ATTR,
    ATTR_OUT_HEAD,
    ENTRY_OUT_HEAD,
    INIT_OUT,
    KSTATFS,
    MAX_WRITE,
    OPEN_OUT,
    WRITE_OUT,
    Protocol,
    attr_out_size,
    entry_out_size,
)

OLD = Protocol(7, 8)
NEW = Protocol(7, 12)


def test_init_pack_round_trip():
    resp = InitResponse(Protocol(7, 12), 4096, InitFlags.BIG_WRITES, 4096)
    major, minor, ra, flags, unused, max_write = INIT_OUT.unpack(resp.pack())
    assert (major, minor, ra, max_write) == (7, 12, 4096, 4096)
    assert flags == int(InitFlags.BIG_WRITES)
    assert unused == 0


def test_init_max_write_capped():
    resp = InitResponse(Protocol(7, 12), 0, InitFlags(0), MAX_WRITE * 4)
    assert INIT_OUT.unpack(resp.pack())[5] == 128 * 1024


def test_init_str_mentions_flags():
    resp = InitResponse(Protocol(7, 12), 1, InitFlags.BIG_WRITES, 2)
    assert "InitBigWrites" in str(resp)
    assert str(resp).startswith("Init 7.12")


def test_statfs_round_trip():
    resp = StatfsResponse(10, 9, 8, 7, 6, 4096, 255, 512)
    fields = KSTATFS.unpack(resp.pack())
    assert fields[:8] == (10, 9, 8, 7, 6, 4096, 255, 512)
    assert all(v == 0 for v in fields[8:])


@pytest.mark.parametrize("proto", [OLD, NEW])
@pytest.mark.parametrize("cls", [GetattrResponse, SetattrResponse])
def test_attr_out_size(cls, proto):
    resp = cls(Attr(inode=3, size=99, mode=FileMode(0o644)))
    assert len(resp.pack(proto)) == attr_out_size(proto)


def test_attr_out_valid_split():
    attr = Attr(valid=timedelta(seconds=2, microseconds=500), inode=42)
    data = GetattrResponse(attr).pack(NEW)
    sec, nsec, _ = ATTR_OUT_HEAD.unpack_from(data)
    assert sec == 2
    assert nsec == 500000
    assert ATTR.unpack_from(data, ATTR_OUT_HEAD.size)[0] == 42


@pytest.mark.parametrize("proto", [OLD, NEW])
@pytest.mark.parametrize("cls", [LookupResponse, MkdirResponse, SymlinkResponse])
def test_entry_out_size(cls, proto):
    resp = cls(node=5, generation=1, attr=Attr(inode=5))
    assert len(resp.pack(proto)) == entry_out_size(proto)


def test_lookup_fields():
    resp = LookupResponse(
        node=7,
        generation=3,
        entry_valid=timedelta(seconds=5),
        attr=Attr(valid=timedelta(seconds=1), inode=7),
    )
    node, gen, entry_sec, attr_sec, entry_ns, attr_ns = ENTRY_OUT_HEAD.unpack_from(
        resp.pack(NEW)
    )
    assert (node, gen, entry_sec, attr_sec, entry_ns, attr_ns) == (7, 3, 5, 1, 0, 0)


def test_open_round_trip():
    resp = OpenResponse(handle=9, flags=OpenResponseFlags.KEEP_CACHE)
    fh, flags, pad = OPEN_OUT.unpack(resp.pack())
    assert fh == 9
    assert flags == int(OpenResponseFlags.KEEP_CACHE)
    assert pad == 0
    assert "OpenKeepCache" in str(resp)


@pytest.mark.parametrize("proto", [OLD, NEW])
def test_create_is_entry_then_open(proto):
    resp = CreateResponse(node=4, attr=Attr(inode=4), handle=11)
    data = resp.pack(proto)
    size = entry_out_size(proto)
    assert len(data) == size + OPEN_OUT.size
    assert data[:size] == LookupResponse(node=4, attr=Attr(inode=4)).pack(proto)
    assert OPEN_OUT.unpack(data[size:])[0] == 11


def test_create_str_has_both_parts():
    text = str(CreateResponse(node=4, handle=11))
    assert text.startswith("Create {")
    assert "0xb" in text


def test_listxattr_append():
    resp = ListxattrResponse()
    resp.append("user.a", "user.b")
    resp.append("user.c")
    assert resp.xattr == b"user.a\x00user.b\x00user.c\x00"


def test_write_response_round_trip():
    assert WRITE_OUT.unpack(WriteResponse(17).pack()) == (17, 0)


def test_read_response_str_counts_bytes():
    data = b"hello"
    assert str(ReadResponse(data)) == f"Read {len(data)}"


def test_getxattr_str_quotes():
    assert str(GetxattrResponse(b'a"b')) == 'Getxattr "a\\"b"'


def test_mkdir_and_symlink_str_prefix():
    assert str(MkdirResponse(node=2)).startswith("Mkdir 0x2")
    assert str(SymlinkResponse(node=2)).startswith("Symlink 0x2")