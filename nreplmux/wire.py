"""Bencode framing for nREPL messages over asyncio streams."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

_MAX_STRING = 64 * 1024 * 1024


class BencodeError(ValueError):
    """Raised when a frame on the wire is not valid bencode."""


def encode(value: Any) -> bytes:
    """Encode a message (dicts, lists, strings, ints) as bencode."""

    chunks: list[bytes] = []
    _encode_into(value, chunks)
    return b"".join(chunks)


def _encode_into(value: Any, chunks: list[bytes]) -> None:
    if isinstance(value, bool):
        value = int(value)
    if isinstance(value, int):
        chunks.append(b"i%de" % value)
    elif isinstance(value, str):
        raw = value.encode("utf-8")
        chunks.append(b"%d:" % len(raw))
        chunks.append(raw)
    elif isinstance(value, (bytes, bytearray)):
        chunks.append(b"%d:" % len(value))
        chunks.append(bytes(value))
    elif isinstance(value, (list, tuple)):
        chunks.append(b"l")
        for item in value:
            _encode_into(item, chunks)
        chunks.append(b"e")
    elif isinstance(value, Mapping):
        chunks.append(b"d")
        for key in sorted(value, key=lambda k: str(k).encode("utf-8")):
            _encode_into(str(key), chunks)
            _encode_into(value[key], chunks)
        chunks.append(b"e")
    else:
        raise BencodeError(f"Cannot bencode value of type {type(value).__name__}")


async def read_message(reader: asyncio.StreamReader) -> Any:
    """Read one complete bencoded value from the stream.

    Byte strings are decoded as UTF-8. Raises ``asyncio.IncompleteReadError``
    when the peer closes the stream mid-frame or before a new frame starts.
    """

    token = await reader.readexactly(1)
    return await _read_value(reader, token)


async def _read_value(reader: asyncio.StreamReader, token: bytes) -> Any:
    if token == b"i":
        raw = await reader.readuntil(b"e")
        try:
            return int(raw[:-1])
        except ValueError as exc:
            raise BencodeError(f"Invalid integer {raw!r}") from exc
    if token.isdigit():
        raw = await reader.readuntil(b":")
        try:
            length = int(token + raw[:-1])
        except ValueError as exc:
            raise BencodeError(f"Invalid string length {token + raw!r}") from exc
        if length > _MAX_STRING:
            raise BencodeError(f"String of {length} bytes exceeds frame limit")
        data = await reader.readexactly(length)
        return data.decode("utf-8", errors="replace")
    if token == b"l":
        items: list[Any] = []
        while True:
            token = await reader.readexactly(1)
            if token == b"e":
                return items
            items.append(await _read_value(reader, token))
    if token == b"d":
        result: dict[str, Any] = {}
        while True:
            token = await reader.readexactly(1)
            if token == b"e":
                return result
            key = await _read_value(reader, token)
            if not isinstance(key, str):
                raise BencodeError("Dictionary keys must be strings")
            result[key] = await _read_value(reader, await reader.readexactly(1))
    raise BencodeError(f"Unexpected token {token!r}")


__all__ = ["BencodeError", "encode", "read_message"]
