"""Lossless conversion between byte strings and text."""

from __future__ import annotations

from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]


def string_to_bytes(s: str) -> bytes:
    """Encode text as UTF-8, restoring any bytes kept as surrogates."""
    return s.encode("utf-8", "surrogateescape")


def bytes_to_string(b: BytesLike) -> str:
    """Decode UTF-8, keeping undecodable bytes so the result round-trips."""
    return bytes(b).decode("utf-8", "surrogateescape")