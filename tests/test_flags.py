import pytest

from fusewire.flags import (
    OPEN_ACCESS_MODE_MASK,
    GetattrFlags,
    InitFlags,
    OpenFlags,
    OpenResponseFlags,
    ReadFlags,
    ReleaseFlags,
    SetattrValid,
    WriteFlags,
    flag_string,
    open_flags,
)


def test_open_flags_accmode_mask_read_write():
    f = OpenFlags(OpenFlags.READ_WRITE | OpenFlags.SYNC)
    assert int(f) & OPEN_ACCESS_MODE_MASK == OpenFlags.READ_WRITE
    assert not f.is_read_only()
    assert not f.is_write_only()
    assert f.is_read_write()


def test_open_flags_accmode_mask_read_only():
    f = OpenFlags(OpenFlags.READ_ONLY | OpenFlags.SYNC)
    assert int(f) & OPEN_ACCESS_MODE_MASK == OpenFlags.READ_ONLY
    assert f.is_read_only()
    assert not f.is_write_only()
    assert not f.is_read_write()


def test_open_flags_accmode_mask_write_only():
    f = OpenFlags(OpenFlags.WRITE_ONLY | OpenFlags.SYNC)
    assert int(f) & OPEN_ACCESS_MODE_MASK == OpenFlags.WRITE_ONLY
    assert not f.is_read_only()
    assert f.is_write_only()
    assert not f.is_read_write()


def test_open_flags_string():
    f = OpenFlags(OpenFlags.READ_WRITE | OpenFlags.SYNC | OpenFlags.APPEND)
    assert str(f) == "OpenReadWrite+OpenAppend+OpenSync"


def test_open_flags_string_read_only_alone():
    assert str(OpenFlags(0)) == "OpenReadOnly"


def test_open_flags_string_invalid_access_mode():
    assert str(OpenFlags(OPEN_ACCESS_MODE_MASK | OpenFlags.APPEND)) == "+OpenAppend"


def test_flag_string_zero():
    assert flag_string(0, []) == "0"


def test_flag_string_leftover_only():
    assert flag_string(0x8000, []) == "0x8000"


def test_flag_string_known_and_leftover():
    assert str(GetattrFlags(3)) == "GetattrFh+0x2"


def test_init_flags_string_in_table_order():
    flags = InitFlags(InitFlags.BIG_WRITES | InitFlags.ASYNC_READ)
    assert str(flags) == "InitAsyncRead+InitBigWrites"


def test_init_flags_high_bit():
    assert str(InitFlags(1 << 31)) == "InitXtimes"


@pytest.mark.parametrize(
    "flag, expected",
    [
        (SetattrValid.MODE | SetattrValid.SIZE, "SetattrMode+SetattrSize"),
        (SetattrValid.FLAGS, "SetattrFlags"),
        (OpenResponseFlags.DIRECT_IO | OpenResponseFlags.KEEP_CACHE, "OpenDirectIO+OpenKeepCache"),
        (ReleaseFlags.FLUSH, "ReleaseFlush"),
        (ReadFlags.LOCK_OWNER, "ReadLockOwner"),
        (WriteFlags.CACHE | WriteFlags.LOCK_OWNER, "WriteCache+WriteLockOwner"),
    ],
)
def test_named_flag_strings(flag, expected):
    assert str(flag) == expected


def test_zero_flags_render_as_zero():
    assert str(WriteFlags(0)) == "0"


def test_open_flags_strips_largefile():
    f = open_flags(0x8000 | int(OpenFlags.READ_WRITE))
    assert int(f) == int(OpenFlags.READ_WRITE)
    assert f.is_read_write()


def test_open_flags_keeps_other_bits():
    raw = int(OpenFlags.WRITE_ONLY | OpenFlags.TRUNCATE | OpenFlags.CREATE)
    assert int(open_flags(raw)) == raw