"""ICY stream demultiplexer.

Splits an Icecast/SHOUTcast byte stream into audio data and metadata blocks.
The server sends ``icy-metaint`` bytes of audio, then one length byte ``L``,
then ``L * 16`` bytes of metadata text, and repeats.

Example:
    >>> reader = StreamReader(16000)
    >>> reader.set_audio_callback(player.write)
    >>> reader.set_metadata_callback(lambda meta: print(meta["StreamTitle"]))
    >>> async for chunk in response.content.iter_any():
    ...     reader.feed(chunk)
    >>> reader.close()
"""

import logging
import re
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

METADATA_BLOCK_SIZE = 16

# key='value'; the value runs until its closing quote is followed by ';' or
# the end of the text, so apostrophes inside titles are kept.
_METADATA_PAIR = re.compile(r"""(\w+)=(['"])(.*?)\2(?:;|$)""", re.DOTALL)


class ReaderState(str, Enum):
    """Demultiplexer states."""

    AUDIO = "audio"
    METADATA = "metadata"


def parse_metadata(raw: bytes) -> Dict[str, str]:
    """Decode one ICY metadata segment into a dictionary.

    Args:
        raw: Segment bytes, including any trailing NUL padding

    Returns:
        Mapping of metadata keys to values. Fragments that are not
        ``key='value'`` pairs are skipped, so the result may be empty.
    """
    raw = raw.rstrip(b"\x00")
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        text = raw.decode("latin-1")

    metadata: Dict[str, str] = {}
    for match in _METADATA_PAIR.finditer(text):
        key, quote, value = match.groups()
        metadata[key] = value.replace("\\" + quote, quote)

    return metadata


class StreamReader:
    """Demultiplexes audio bytes and ICY metadata from a chunked byte stream.

    Chunk boundaries may fall anywhere, including inside the length byte
    position or a metadata segment. All state is carried across ``feed``
    calls, so the output does not depend on how the stream was split.
    """

    def __init__(self, meta_interval: int):
        """Initialize reader.

        Args:
            meta_interval: Audio bytes between metadata segments (``icy-metaint``)

        Raises:
            ValueError: If meta_interval is not a positive integer
        """
        if isinstance(meta_interval, bool) or not isinstance(meta_interval, int):
            raise ValueError(f"Invalid metadata interval: {meta_interval!r}")
        if meta_interval <= 0:
            raise ValueError(f"Metadata interval must be positive, got {meta_interval}")

        self._meta_interval = meta_interval
        self._state = ReaderState.AUDIO
        self._bytes_until_marker = meta_interval
        self._pending_metadata_length: Optional[int] = None
        self._metadata_buffer = bytearray()
        self._closed = False

        self._audio_bytes = 0
        self._metadata_count = 0

        self._audio_callback: Optional[Callable[[bytes], None]] = None
        self._metadata_callback: Optional[Callable[[Dict[str, str]], None]] = None

        logger.debug(f"Stream reader created (metaint: {meta_interval})")

    @property
    def meta_interval(self) -> int:
        return self._meta_interval

    @property
    def state(self) -> ReaderState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def audio_bytes(self) -> int:
        """Total audio bytes forwarded so far."""
        return self._audio_bytes

    @property
    def metadata_count(self) -> int:
        """Number of metadata blocks emitted so far."""
        return self._metadata_count

    def set_audio_callback(self, callback: Optional[Callable[[bytes], None]]) -> None:
        """Set callback receiving audio data.

        Args:
            callback: Function called with each run of audio bytes, in stream order
        """
        self._audio_callback = callback

    def set_metadata_callback(
        self, callback: Optional[Callable[[Dict[str, str]], None]]
    ) -> None:
        """Set callback receiving decoded metadata.

        Args:
            callback: Function called with each non-empty metadata block
        """
        self._metadata_callback = callback

    def feed(self, data: bytes) -> None:
        """Process one chunk of the stream.

        Args:
            data: Bytes as received from the network
        """
        position = 0
        length = len(data)

        while position < length and not self._closed:
            if self._state is ReaderState.AUDIO:
                if self._bytes_until_marker == 0:
                    self._start_segment(data[position])
                    position += 1
                    continue

                end = min(length, position + self._bytes_until_marker)
                self._bytes_until_marker -= end - position
                self._emit_audio(data[position:end])
                position = end
            else:
                end = min(length, position + self._pending_metadata_length)
                self._metadata_buffer += data[position:end]
                self._pending_metadata_length -= end - position
                position = end

                if self._pending_metadata_length == 0:
                    self._finish_segment()

    def close(self) -> None:
        """Mark end of stream and drop any incomplete metadata segment."""
        if self._closed:
            return

        if self._state is ReaderState.METADATA:
            logger.debug(
                f"Stream ended inside metadata segment, discarding "
                f"{len(self._metadata_buffer)} bytes"
            )

        self._closed = True
        self._state = ReaderState.AUDIO
        self._pending_metadata_length = None
        self._metadata_buffer.clear()

    def _start_segment(self, length_byte: int) -> None:
        self._state = ReaderState.METADATA
        self._pending_metadata_length = length_byte * METADATA_BLOCK_SIZE
        self._bytes_until_marker = self._meta_interval

        # L = 0: no metadata this cycle
        if self._pending_metadata_length == 0:
            self._finish_segment()

    def _finish_segment(self) -> None:
        raw = bytes(self._metadata_buffer)
        self._metadata_buffer.clear()
        self._pending_metadata_length = None
        self._state = ReaderState.AUDIO

        if not raw.rstrip(b"\x00"):
            return

        metadata = parse_metadata(raw)
        if not metadata:
            logger.warning(f"Unparseable metadata segment: {raw!r}")

        self._metadata_count += 1
        self._emit_metadata(metadata)

    def _emit_audio(self, data: bytes) -> None:
        self._audio_bytes += len(data)
        if self._audio_callback:
            try:
                self._audio_callback(data)
            except Exception as e:
                logger.error(f"Audio callback failed: {e}", exc_info=True)

    def _emit_metadata(self, metadata: Dict[str, str]) -> None:
        logger.debug(f"Metadata decoded: {metadata}")
        if self._metadata_callback:
            try:
                self._metadata_callback(metadata)
            except Exception as e:
                logger.error(f"Metadata callback failed: {e}", exc_info=True)
