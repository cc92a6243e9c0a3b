"""Prometheus metrics for ICY metadata polling."""

import logging
from typing import Dict, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, generate_latest

logger = logging.getLogger(__name__)


class ParserMetrics:
    """Prometheus metrics exporter for a stream parser.

    Tracks request outcomes, metadata updates and audio throughput.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize Prometheus metrics.

        Args:
            registry: Registry to register collectors in (default: global registry)
        """
        self.registry = registry if registry is not None else REGISTRY

        # Counters
        self.requests_total = Counter(
            "icecast_requests_total",
            "Total number of stream requests by outcome",
            ["outcome"],  # stream, empty, error
            registry=self.registry,
        )

        self.metadata_updates_total = Counter(
            "icecast_metadata_updates_total",
            "Total number of metadata notifications emitted",
            registry=self.registry,
        )

        self.audio_bytes_total = Counter(
            "icecast_audio_bytes_total",
            "Total number of audio bytes received",
            registry=self.registry,
        )

        # Gauges
        self.listening = Gauge(
            "icecast_listening",
            "Stream connection status (1=listening, 0=idle)",
            registry=self.registry,
        )

        logger.info("Prometheus metrics initialized")

    def record_request(self, outcome: str) -> None:
        """Record a finished request.

        Args:
            outcome: Request outcome ("stream", "empty" or "error")
        """
        self.requests_total.labels(outcome=outcome).inc()
        logger.debug(f"Request recorded with outcome: {outcome}")

    def record_metadata_update(self) -> None:
        """Increment metadata updates counter."""
        self.metadata_updates_total.inc()

    def record_audio_bytes(self, count: int) -> None:
        self.audio_bytes_total.inc(count)

    def update_listening(self, listening: bool) -> None:
        """Update stream connection gauge.

        Args:
            listening: True while a response is attached
        """
        self.listening.set(1 if listening else 0)

    def get_metrics(self) -> bytes:
        """Generate Prometheus metrics output.

        Returns:
            Prometheus metrics in text format
        """
        return generate_latest(self.registry)

    def get_metrics_summary(self) -> Dict:
        """Get current metrics summary as dictionary.

        Returns:
            Dictionary with current metric values
        """
        return {
            "requests": {
                outcome: self.requests_total.labels(outcome=outcome)._value.get()
                for outcome in ("stream", "empty", "error")
            },
            "metadata_updates": self.metadata_updates_total._value.get(),
            "audio_bytes": self.audio_bytes_total._value.get(),
            "listening": bool(self.listening._value.get()),
        }
