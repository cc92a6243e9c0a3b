"""Polling client for Icecast/SHOUTcast stream metadata.

Repeatedly requests a stream with ``Icy-MetaData: 1``, attaches a
``StreamReader`` when the server answers with an ``icy-metaint`` header and
turns every outcome into a notification for registered listeners.
"""

import asyncio
import dataclasses
import inspect
import logging
from contextlib import suppress
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Union

import aiohttp

from .config import ParserConfig
from .metrics import ParserMetrics
from .stream_reader import StreamReader

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


class ParserEvent(str, Enum):
    """Notifications emitted by the parser."""

    STREAM = "stream"  # StreamReader attached to a live response
    METADATA = "metadata"  # decoded metadata dictionary
    EMPTY = "empty"  # server sent no icy-metaint header
    ERROR = "error"  # transport error
    END = "end"  # stream closed by the server in keep-listen mode


class Parser:
    """Polls a radio stream and notifies listeners about metadata changes.

    Only one request is active at a time and at most one retry timer is
    pending. Failures never propagate to the caller: each one becomes an
    ``error`` notification and a rescheduled request.

    Example:
        >>> config = ParserConfig(url="https://radio.example.com/stream")
        >>> parser = Parser(config)
        >>> parser.on("metadata", lambda meta: print(meta.get("StreamTitle")))
        >>> parser.start()
    """

    def __init__(
        self,
        config: Optional[ParserConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        metrics: Optional[ParserMetrics] = None,
    ):
        """Initialize parser.

        Args:
            config: Parser configuration (default: loaded from environment)
            session: Shared HTTP session; one is created on first request if omitted
            metrics: Optional Prometheus metrics to record into

        Raises:
            ValueError: If configuration is invalid
        """
        if config is None:
            from .config import get_config

            config = get_config()
        else:
            config.validate()

        self.config = config
        self.metrics = metrics

        self._session = session
        self._owns_session = session is None

        # Polling state
        self._previous_metadata: Dict[str, str] = {}
        self._request_handle: Optional[asyncio.TimerHandle] = None
        self._request_task: Optional[asyncio.Task] = None
        self._response: Optional[aiohttp.ClientResponse] = None
        self._reader: Optional[StreamReader] = None

        # Listeners
        self._listeners: Dict[ParserEvent, List[Callable[..., Any]]] = {
            event: [] for event in ParserEvent
        }
        self._listener_tasks: Set[asyncio.Task] = set()

        logger.info(f"Parser initialized for {self.config.url}")

    async def __aenter__(self) -> "Parser":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def previous_metadata(self) -> Dict[str, str]:
        """Last metadata delivered with change detection enabled."""
        return dict(self._previous_metadata)

    @property
    def is_listening(self) -> bool:
        return self._response is not None

    def on(self, event: Union[ParserEvent, str], callback: Callable[..., Any]) -> None:
        """Register a listener.

        Args:
            event: Event name ("stream", "metadata", "empty", "error", "end")
            callback: Function or coroutine function called with the event payload
        """
        self._listeners[ParserEvent(event)].append(callback)

    def off(self, event: Union[ParserEvent, str], callback: Callable[..., Any]) -> None:
        """Unregister a listener previously added with ``on``."""
        with suppress(ValueError):
            self._listeners[ParserEvent(event)].remove(callback)

    def set_config(self, **changes: Any) -> None:
        """Update configuration fields.

        Raises:
            ValueError: If the resulting configuration is invalid
        """
        config = dataclasses.replace(self.config, **changes)
        config.validate()
        self.config = config
        logger.info(f"Configuration updated: {', '.join(changes)}")

    def get_config(self, key: str) -> Any:
        """Get a single configuration value.

        Raises:
            KeyError: If the key is not a configuration field
        """
        if key not in {field.name for field in dataclasses.fields(self.config)}:
            raise KeyError(key)
        return getattr(self.config, key)

    def start(self) -> None:
        """Queue the first request immediately. Requires a running event loop."""
        self.queue_request()

    async def stop(self) -> None:
        """Cancel pending work, release the live response and close owned resources."""
        self.clear_queue()

        task = self._request_task
        self._abort_request()
        if task is not None and not task.done() and task is not asyncio.current_task():
            with suppress(asyncio.CancelledError):
                await task

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

        logger.info("Parser stopped")

    def queue_request(self, timeout: float = 0) -> None:
        """Schedule a request, replacing any pending one.

        Args:
            timeout: Delay in seconds
        """
        self.clear_queue()
        loop = asyncio.get_running_loop()
        self._request_handle = loop.call_later(timeout, self._start_request)
        logger.debug(f"Next request scheduled in {timeout}s")

    def clear_queue(self) -> None:
        """Cancel the pending request, if any."""
        if self._request_handle is not None:
            self._request_handle.cancel()
        self._request_handle = None

    async def make_request(self) -> None:
        """Run one request cycle: connect, inspect headers and read the stream.

        A request already in flight is cancelled and its response released
        first, so only one request is active at a time.
        """
        current = asyncio.current_task()
        if self._request_task is not current:
            self._abort_request()
            self._request_task = current

        try:
            await self._request()
        finally:
            if self._request_task is current:
                self._request_task = None

    async def _request(self) -> None:
        logger.info(f"Requesting {self.config.url}")

        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        headers = {
            "Icy-MetaData": "1",
            "User-Agent": self.config.user_agent,
        }
        timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=self.config.connect_timeout,
            sock_read=self.config.read_timeout,
        )

        try:
            response = await self._session.get(self.config.url, headers=headers, timeout=timeout)
        except TRANSPORT_ERRORS as e:
            self._on_request_error(e)
            return
        except Exception as e:
            logger.error(f"Unexpected error requesting {self.config.url}: {e}", exc_info=True)
            self._on_request_error(e)
            return

        await self._on_response(response)

    def _start_request(self) -> None:
        self._request_handle = None
        self._abort_request()
        self._request_task = asyncio.get_running_loop().create_task(self.make_request())

    def _abort_request(self) -> None:
        """Release the live response and cancel the request in flight."""
        if self._response is not None:
            self._close_response(self._response)

        task = self._request_task
        self._request_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            logger.debug("Cancelling previous request still in flight")
            task.cancel()

    async def _on_response(self, response: aiohttp.ClientResponse) -> None:
        self._response = response
        meta_int = response.headers.get("icy-metaint")

        if meta_int is None:
            logger.info(f"No icy-metaint header from {self.config.url} (HTTP {response.status})")
            self._record_request("empty")
            self._destroy_response(response)
            self._queue_next_request(self.config.empty_interval)
            self._emit(ParserEvent.EMPTY)

            if self.config.keep_listen:
                await self._listen(response, None)
            return

        try:
            reader = StreamReader(int(meta_int))
        except ValueError as e:
            logger.error(f"Invalid icy-metaint header {meta_int!r}: {e}")
            self._close_response(response)
            self._on_request_error(e)
            return

        reader.set_metadata_callback(lambda metadata: self._on_metadata(response, metadata))
        self._reader = reader

        logger.info(f"Stream attached (metaint: {reader.meta_interval})")
        self._record_request("stream")
        if self.metrics:
            self.metrics.update_listening(True)

        self._emit(ParserEvent.STREAM, reader)
        await self._listen(response, reader)

    async def _listen(
        self, response: aiohttp.ClientResponse, reader: Optional[StreamReader]
    ) -> None:
        """Pipe response bytes into the reader until released or closed."""
        try:
            async for chunk in response.content.iter_any():
                if reader is not None:
                    before = reader.audio_bytes
                    reader.feed(chunk)
                    received = reader.audio_bytes - before
                else:
                    received = len(chunk)

                if self.metrics:
                    self.metrics.record_audio_bytes(received)

                if self._response is not response:
                    return
        except TRANSPORT_ERRORS as e:
            if self._response is response:
                self._close_response(response)
                self._on_request_error(e)
            return
        except asyncio.CancelledError:
            if self._response is response:
                self._close_response(response)
            raise
        finally:
            if reader is not None:
                reader.close()

        if self._response is response:
            self._close_response(response)
            self._on_socket_end()

    def _on_metadata(self, response: aiohttp.ClientResponse, metadata: Dict[str, str]) -> None:
        self._destroy_response(response)
        self._queue_next_request(self.config.metadata_interval)

        if self.config.notify_on_change_only:
            if not self._is_metadata_changed(metadata):
                logger.debug("Metadata unchanged, skipping notification")
                return
            self._previous_metadata = dict(metadata)

        logger.info(f"Metadata update: {metadata.get('StreamTitle', metadata)}")
        if self.metrics:
            self.metrics.record_metadata_update()
        self._emit(ParserEvent.METADATA, metadata)

    def _on_request_error(self, error: BaseException) -> None:
        logger.error(f"Request to {self.config.url} failed: {error}")
        self._record_request("error")
        self._queue_next_request(self.config.error_interval)
        self._emit(ParserEvent.ERROR, error)

    def _on_socket_end(self) -> None:
        if self.config.keep_listen:
            logger.info("Stream closed by server")
            self._emit(ParserEvent.END)
        else:
            # Ended before any metadata arrived
            logger.info("Stream ended without metadata")
            self._queue_next_request(self.config.empty_interval)

    def _destroy_response(self, response: aiohttp.ClientResponse) -> None:
        if not self.config.keep_listen:
            self._close_response(response)

    def _close_response(self, response: aiohttp.ClientResponse) -> None:
        if self._response is response:
            self._response = None
            if self._reader is not None:
                self._reader.close()
                self._reader = None
            if self.metrics:
                self.metrics.update_listening(False)
        response.close()

    def _queue_next_request(self, timeout: float) -> None:
        if self.config.auto_update and not self.config.keep_listen:
            self.queue_request(timeout)
        else:
            logger.debug("Automatic update disabled, not scheduling next request")

    def _is_metadata_changed(self, metadata: Dict[str, str]) -> bool:
        for key, value in metadata.items():
            if self._previous_metadata.get(key) != value:
                return True

        return False

    def _record_request(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_request(outcome)

    def _emit(self, event: ParserEvent, *args: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                result = listener(*args)
            except Exception as e:
                logger.error(f"Listener for '{event.value}' failed: {e}", exc_info=True)
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async listener failed: {task.exception()}")
