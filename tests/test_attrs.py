import stat
from datetime import datetime, timedelta, timezone

import pytest

from fusewire.attrs import (
    Attr,
    Dirent,
    DirentType,
    FileMode,
    append_dirent,
    file_mode,
    unix_mode,
)
from fusewire.wire import ATTR, ATTR_BLKSIZE_OFFSET, DIRENT_HEAD, DIRENT_SIZE, Protocol


def test_file_mode_directory():
    mode = file_mode(stat.S_IFDIR | 0o755)
    assert mode & FileMode.DIR
    assert mode.perm == 0o755


def test_file_mode_regular_has_no_type_bits():
    assert file_mode(stat.S_IFREG | 0o644) == FileMode(0o644)


def test_file_mode_missing_type_is_irregular():
    mode = file_mode(0o644)
    assert mode & FileMode.IRREGULAR
    assert mode.perm == 0o644


def test_file_mode_char_device():
    mode = file_mode(stat.S_IFCHR | 0o600)
    assert mode == FileMode.CHAR_DEVICE | FileMode.DEVICE | 0o600


def test_file_mode_setuid_setgid():
    mode = file_mode(stat.S_IFREG | stat.S_ISUID | stat.S_ISGID | 0o755)
    assert mode == FileMode.SETUID | FileMode.SETGID | 0o755


@pytest.mark.parametrize(
    "kind",
    [stat.S_IFREG, stat.S_IFDIR, stat.S_IFCHR, stat.S_IFBLK, stat.S_IFIFO, stat.S_IFLNK, stat.S_IFSOCK],
)
def test_unix_mode_round_trip(kind):
    raw = kind | 0o640 | stat.S_ISUID
    assert unix_mode(file_mode(raw)) == raw


def test_unix_mode_irregular_becomes_regular():
    assert unix_mode(FileMode.IRREGULAR | 0o644) == stat.S_IFREG | 0o644


def test_file_mode_str():
    assert str(file_mode(stat.S_IFDIR | 0o755)) == "drwxr-xr-x"
    assert str(FileMode(0o644))[0] == "-"


def test_attr_pack_full():
    attr = Attr(
        inode=5,
        size=100,
        blocks=1,
        mtime=datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=3, milliseconds=500),
        mode=FileMode.DIR | 0o755,
        nlink=2,
        uid=1000,
        gid=1000,
        block_size=4096,
    )
    data = attr.pack(Protocol(7, 12))
    assert len(data) == ATTR.size
    fields = ATTR.unpack(data)
    assert fields[0] == 5
    assert fields[1] == 100
    assert fields[4] == 3
    assert fields[7] == 500_000_000
    assert fields[9] == stat.S_IFDIR | 0o755
    assert fields[10] == 2
    assert fields[14] == 4096


def test_attr_pack_old_protocol_truncated():
    attr = Attr(inode=9, block_size=4096)
    data = attr.pack(Protocol(7, 8))
    assert len(data) == ATTR_BLKSIZE_OFFSET
    assert data == attr.pack(Protocol(7, 12))[:ATTR_BLKSIZE_OFFSET]


def test_attr_str_mentions_inode_and_size():
    text = str(Attr(inode=7, size=42))
    assert "ino=7" in text
    assert "size=42" in text


def test_dirent_type_values_and_names():
    assert DirentType(stat.S_IFDIR >> 12) is DirentType.DIR
    assert str(DirentType(stat.S_IFIFO >> 12)) == "fifo"
    assert str(DirentType(0)) == "unknown"


def test_append_dirent_layout():
    data = append_dirent(b"", Dirent(inode=3, name="hello", type=DirentType.FILE))
    assert len(data) % 8 == 0
    ino, off, namelen, kind = DIRENT_HEAD.unpack_from(data)
    assert ino == 3
    assert off == len(data)
    assert namelen == len("hello")
    assert kind == DirentType.FILE
    assert data[DIRENT_SIZE:DIRENT_SIZE + namelen] == b"hello"


def test_append_dirent_chains_offsets():
    first = append_dirent(b"", Dirent(inode=1, name="a"))
    both = append_dirent(first, Dirent(inode=2, name="longer-name", type=DirentType.DIR))
    assert both.startswith(first)
    _, off, _, _ = DIRENT_HEAD.unpack_from(both, len(first))
    assert off == len(both)
    assert len(both) % 8 == 0


def test_append_dirent_name_multiple_of_eight_has_no_padding():
    data = append_dirent(b"", Dirent(inode=1, name="abcdefgh"))
    assert len(data) == DIRENT_SIZE + len("abcdefgh")