"""Mount FUSE file systems on Linux and decode and answer kernel messages."""

__version__ = "0.1.0"

__all__ = [
    "attrs",
    "conn",
    "errors",
    "flags",
    "fuseutil",
    "mount",
    "requests",
    "responses",
    "wire",
]