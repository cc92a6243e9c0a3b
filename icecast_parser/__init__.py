"""ICY metadata parser for Icecast/SHOUTcast radio streams.

Polls an internet radio stream, separates the interleaved ICY metadata from
the audio bytes and notifies listeners about "now playing" changes.

Main Components:
    - Parser: Polling client with retry scheduling and change detection
    - StreamReader: Audio/metadata demultiplexer for one HTTP response
    - ParserConfig: Configuration management
    - ParserMetrics: Prometheus metrics

Example:
    >>> from icecast_parser import Parser, ParserConfig
    >>> parser = Parser(ParserConfig(url="https://radio.example.com/stream"))
    >>> parser.on("metadata", lambda metadata: print(metadata["StreamTitle"]))
    >>> parser.start()
"""

from .config import ParserConfig, configure_logging, get_config
from .metrics import ParserMetrics
from .parser import Parser, ParserEvent
from .stream_reader import ReaderState, StreamReader, parse_metadata

__version__ = "1.0.0"
__all__ = [
    "Parser",
    "ParserEvent",
    "ParserConfig",
    "ParserMetrics",
    "StreamReader",
    "ReaderState",
    "parse_metadata",
    "configure_logging",
    "get_config",
]
