import errno
import os

import pytest

from fusewire.errors import (
    DEFAULT_ERRNO,
    EIO,
    ENOENT,
    EPERM,
    ClosedWithoutInitError,
    Errno,
    MalformedMessageError,
    MountpointDoesNotExistError,
    NotCachedError,
    OldVersionError,
    to_errno,
)
from fusewire.wire import PROTOCOL_MIN, Protocol


def test_known_errno_names():
    assert Errno(errno.ENOENT).errno_name() == "ENOENT"
    assert Errno(errno.EIO).errno_name() == "EIO"
    assert Errno(errno.ENAMETOOLONG).errno_name() == "ENAMETOOLONG"


def test_unknown_errno_name_falls_back_to_message():
    e = Errno(errno.ENOSPC)
    assert e.errno_name() == os.strerror(errno.ENOSPC)
    assert str(e) == os.strerror(errno.ENOSPC)


def test_errno_equality_and_int():
    assert Errno(errno.EPERM) == EPERM
    assert hash(Errno(errno.EPERM)) == hash(EPERM)
    assert int(ENOENT) == errno.ENOENT


def test_errno_can_be_raised():
    with pytest.raises(Errno) as info:
        raise Errno(errno.EEXIST)
    assert info.value.errno == errno.EEXIST


def test_to_errno_uses_errno_directly():
    assert to_errno(ENOENT) == ENOENT


def test_to_errno_bare_oserror():
    assert to_errno(OSError(errno.EPERM, "denied")) == EPERM


def test_to_errno_does_not_unwrap_path_errors():
    err = FileNotFoundError(errno.ENOENT, "missing", "/some/path")
    assert to_errno(err) == DEFAULT_ERRNO


def test_to_errno_default():
    assert to_errno(ValueError("boom")) == EIO
    assert DEFAULT_ERRNO == EIO


def test_to_errno_error_number_attribute():
    assert to_errno(NotCachedError()) == ENOENT


def test_to_errno_follows_cause_chain():
    try:
        try:
            raise NotCachedError()
        except NotCachedError as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as outer:
        assert to_errno(outer) == ENOENT


def test_mountpoint_error_message():
    err = MountpointDoesNotExistError("/mnt/x")
    assert err.path == "/mnt/x"
    assert str(err) == "mountpoint does not exist: /mnt/x"


def test_old_version_error_message():
    err = OldVersionError(Protocol(7, 5), PROTOCOL_MIN)
    assert err.kernel == Protocol(7, 5)
    assert str(err) == "kernel FUSE version is too old: 7.5 < 7.8"


def test_closed_without_init_message():
    assert str(ClosedWithoutInitError()) == "fuse connection closed without init"


def test_not_cached_message():
    assert str(NotCachedError()) == "node not cached"


def test_malformed_message():
    err = MalformedMessageError()
    assert isinstance(err, ValueError)
    assert str(err) == "fuse: malformed message"