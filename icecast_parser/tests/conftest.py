"""Pytest configuration and fixtures for icecast_parser tests."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from icecast_parser.config import ParserConfig


class FakeContent:
    """Stand-in for ``aiohttp.StreamReader`` yielding predefined chunks."""

    def __init__(self, response, chunks, error=None, block=False):
        self._response = response
        self._chunks = list(chunks)
        self._error = error
        self._block = block

    async def iter_any(self):
        for chunk in self._chunks:
            # A closed connection stops delivering data
            if self._response.closed:
                return
            yield chunk
        if self._error is not None:
            raise self._error
        # Live stream: wait until the connection is closed
        while self._block and not self._response.closed:
            await asyncio.sleep(0.001)


class FakeResponse:
    """Stand-in for ``aiohttp.ClientResponse``."""

    def __init__(self, headers=None, chunks=(), status=200, error=None, block=False):
        self.headers = {key.lower(): value for key, value in (headers or {}).items()}
        self.status = status
        self.closed = False
        self.content = FakeContent(self, chunks, error, block)

    def close(self):
        self.closed = True


def encode_stream(meta_interval, cycles):
    """Build an ICY byte stream.

    Args:
        meta_interval: Audio bytes per cycle
        cycles: List of (audio bytes, metadata text or None) tuples
    """
    stream = bytearray()
    for audio, text in cycles:
        assert len(audio) == meta_interval
        stream += audio
        if not text:
            stream.append(0)
            continue
        raw = text.encode("utf-8") if isinstance(text, str) else text
        blocks = -(-len(raw) // 16)
        stream.append(blocks)
        stream += raw.ljust(blocks * 16, b"\x00")
    return bytes(stream)


@pytest.fixture
def make_stream():
    """Factory building ICY byte streams."""
    return encode_stream


@pytest.fixture
def make_response():
    """Factory building fake HTTP responses."""
    return FakeResponse


@pytest.fixture
def config():
    """Create test configuration."""
    return ParserConfig(url="http://radio.test/stream")


@pytest.fixture
def session():
    """Create mock HTTP session."""
    session = MagicMock()
    session.get = AsyncMock()
    session.close = AsyncMock()
    return session
