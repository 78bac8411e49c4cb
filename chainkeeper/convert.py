"""Conversions of request values."""

from __future__ import annotations


class InvalidArgumentError(ValueError):
    """A request carried an argument of the wrong shape."""


def bytes_to_hash32(data: bytes | bytearray | memoryview) -> bytes:
    """Check that data is a 32-byte hash and return it as bytes."""
    value = bytes(data)
    if len(value) != 32:
        raise InvalidArgumentError("invalid hash value, needs to be 32-bytes long")
    return value