"""Helpers for serving common requests."""

from __future__ import annotations

from .requests import ReadRequest
from .responses import ReadResponse


def handle_read(request: ReadRequest, data: bytes) -> ReadResponse:
    """Answer a read as if ``data`` were the whole file content.

    The reply holds at most ``request.size`` bytes starting at
    ``request.offset``; reading past the end yields no data.
    """
    if request.offset < 0:
        raise ValueError(f"negative read offset: {request.offset}")
    if request.size < 0:
        raise ValueError(f"negative read size: {request.size}")
    if request.offset >= len(data):
        return ReadResponse(data=b"")
    start = request.offset
    return ReadResponse(data=bytes(data[start : start + request.size]))