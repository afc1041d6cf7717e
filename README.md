# fusewire

`fusewire` speaks the FUSE kernel message protocol from Python on Linux. It
mounts a directory through the `fusermount` helper, reads each message the
kernel sends, decodes it into a typed request object, and encodes your reply
back into the binary layout the kernel expects.

It works one message at a time. You read a request, decide what to do with
it, and call `respond` or `respond_error` on it.

## Installation

```
pip install fusewire
```

Mounting needs Linux with `fusermount` on the `PATH`. Decoding and encoding
messages needs only the standard library.

## Serving requests

```python
import errno

from fusewire.attrs import Attr, FileMode
from fusewire.errors import Errno
from fusewire.mount import mount
from fusewire.requests import DestroyRequest, GetattrRequest, LookupRequest, StatfsRequest
from fusewire.responses import GetattrResponse, StatfsResponse

with mount("/mnt/demo", {"fsname": "demo"}) as conn:
    while True:
        try:
            req = conn.read_request()
        except EOFError:
            break
        if isinstance(req, GetattrRequest):
            req.respond(GetattrResponse(Attr(inode=1, mode=FileMode.DIR | 0o755, nlink=1)))
        elif isinstance(req, StatfsRequest):
            req.respond(StatfsResponse())
        elif isinstance(req, LookupRequest):
            req.respond_error(Errno(errno.ENOENT))
        elif isinstance(req, DestroyRequest):
            req.respond()
            break
        else:
            req.respond_error(Errno(errno.ENOSYS))
```

`mount(directory, options=None, max_readahead=0, init_flags=0)` runs
`fusermount`, receives the FUSE device from it, and completes the init
exchange before returning a `Conn`. Options are passed to `fusermount` as
`key=value` (or just `key` when the value is empty), joined with commas. It
raises:

- `MountpointDoesNotExistError` when the helper reports a missing mount point;
- `RuntimeError` for any other helper failure;
- `OldVersionError` when the kernel's protocol is older than 7.8;
- `ClosedWithoutInitError` when the device closes before the init request.

The negotiated protocol (at most 7.12) is kept in `Conn.proto`. `Conn` is a
context manager; `close()` closes the device.

## Reading requests

`Conn.read_request()` returns one of the request classes in
`fusewire.requests` (`LookupRequest`, `ReadRequest`, `WriteRequest`,
`SetattrRequest`, `CreateRequest` and so on). It raises `EOFError` when the
kernel side goes away and `MalformedMessageError` for a message that cannot
be decoded. An opcode that is not understood comes back as a plain `Header`,
so that you can answer it with `respond_error`. Lock requests (getlk, setlk,
setlkw), setvolname and getxtimes raise `RuntimeError`.

`fusewire.conn.parse_request(conn, data)` decodes a single message from bytes
without a kernel, which is useful for testing. `conn` only needs a `proto`
attribute and a `respond(msg)` method.

Forget and interrupt requests take no reply; their `respond()` does nothing.

## Errors

`respond_error(err)` accepts any exception and sends the errno chosen by
`fusewire.errors.to_errno`:

- an `Errno` is sent as it is;
- an `OSError` that names no file is sent with its own errno;
- otherwise the exception and its `__cause__` chain are searched for a
  `fuse_errno` attribute holding an `Errno`;
- anything else becomes `EIO`.

`Errno.errno_name()` gives the short name (such as `"EIO"`) for common values.

## Cache invalidation

`Conn.invalidate_node(node_id, off, size)` drops the kernel's cached
attributes and a range of data (offset 0 and size -1 for all data, offset 0
and size 0 for attributes only). `Conn.invalidate_entry(parent, name)` drops
a cached directory entry. Both raise `NotCachedError` when the kernel had
nothing cached.

## Helpers

- `fusewire.fuseutil.handle_read(request, data)` returns a `ReadResponse`
  holding at most `request.size` bytes of `data` from `request.offset`, as
  if `data` were the whole file.
- `fusewire.attrs.append_dirent(data, Dirent(inode, name, DirentType.FILE))`
  returns `data` with one encoded directory entry appended; build a readdir
  reply entry by entry and send it with `ReadRequest.respond`.
- `fusewire.attrs.file_mode` and `unix_mode` convert between Unix `st_mode`
  values and `FileMode`.
- `fusewire.flags.OpenFlags` decodes open flags, with `is_read_only`,
  `is_write_only` and `is_read_write`; all flag classes print as
  `+`-joined names, e.g. `OpenReadWrite+OpenAppend+OpenSync`.

## What it does not do

- It keeps no tree of nodes or handles and has no file system framework
  built on top of the messages; serving each request is up to you.
- It mounts only on Linux through `fusermount`, and message layouts follow
  the Linux kernel.
- It has no command-line program.