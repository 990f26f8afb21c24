"""Streaming decompression of response bodies."""

from __future__ import annotations

import logging
import zlib
from collections.abc import AsyncIterator
from typing import Any, Optional

# Brotli support is optional (pip install courier[brotli])
try:
    import brotli

    BROTLI_AVAILABLE = True
except ImportError:
    BROTLI_AVAILABLE = False

logger = logging.getLogger(__name__)


class DecompressionError(Exception):
    """The body could not be decoded with its declared content-encoding."""


def accept_encoding() -> str:
    """Value for the ``accept-encoding`` request header."""
    if BROTLI_AVAILABLE:
        return "gzip, deflate, br"
    return "gzip, deflate"


def supported_encodings() -> frozenset[str]:
    encodings = {"gzip", "x-gzip", "deflate"}
    if BROTLI_AVAILABLE:
        encodings.add("br")
    return frozenset(encodings)


def is_supported(content_encoding: Optional[str]) -> bool:
    if not content_encoding:
        return False
    return content_encoding.strip().lower() in supported_encodings()


class _ZlibDecoder:
    """gzip/deflate decoder; ``deflate`` falls back to raw streams without a zlib header."""

    def __init__(self, encoding: str) -> None:
        self._raw_fallback = encoding == "deflate"
        # 32 + MAX_WBITS autodetects the gzip or zlib header
        self._decoder = zlib.decompressobj(32 + zlib.MAX_WBITS)
        self._started = False

    def decompress(self, chunk: bytes) -> bytes:
        try:
            data = self._decoder.decompress(chunk)
        except zlib.error:
            if self._raw_fallback and not self._started:
                self._decoder = zlib.decompressobj(-zlib.MAX_WBITS)
                self._raw_fallback = False
                data = self._decoder.decompress(chunk)
            else:
                raise
        self._started = True
        return data

    def flush(self) -> bytes:
        data = self._decoder.flush()
        if not self._decoder.eof:
            raise zlib.error("incomplete or truncated stream")
        return data


class _BrotliDecoder:
    def __init__(self) -> None:
        self._decoder = brotli.Decompressor()

    def decompress(self, chunk: bytes) -> bytes:
        return self._decoder.process(chunk)

    def flush(self) -> bytes:
        if hasattr(self._decoder, "is_finished") and not self._decoder.is_finished():
            raise brotli.error("incomplete or truncated stream")
        return b""


def _decoder_for(encoding: str) -> Any:
    if encoding in ("gzip", "x-gzip", "deflate"):
        return _ZlibDecoder(encoding)
    if encoding == "br" and BROTLI_AVAILABLE:
        return _BrotliDecoder()
    raise DecompressionError(f"Unsupported content-encoding: {encoding}")


async def decompress(chunks: AsyncIterator[bytes], content_encoding: str) -> AsyncIterator[bytes]:
    """
    Decode an encoded byte stream.

    An empty body decodes to nothing rather than failing.

    Args:
        chunks: Raw body chunks
        content_encoding: Value of the ``content-encoding`` header

    Yields:
        Decoded chunks

    Raises:
        DecompressionError: On corrupt or truncated input
    """
    decoder = _decoder_for(content_encoding.strip().lower())
    errors: tuple[type[BaseException], ...] = (zlib.error,)
    if BROTLI_AVAILABLE:
        errors += (brotli.error,)

    received = False
    try:
        async for chunk in chunks:
            if not chunk:
                continue
            received = True
            data = decoder.decompress(chunk)
            if data:
                yield data
        if received:
            tail = decoder.flush()
            if tail:
                yield tail
    except errors as e:
        logger.debug(f"Failed to decode {content_encoding} body: {e}")
        raise DecompressionError(f"Failed to decode {content_encoding} body: {e}") from e
