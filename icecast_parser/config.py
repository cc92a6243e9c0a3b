"""Configuration for the ICY metadata parser.

Loads configuration from environment variables with validation and defaults.
"""

import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional


@dataclass
class ParserConfig:
    """Configuration for polling an Icecast/SHOUTcast stream."""

    # Stream
    url: str = ""
    user_agent: str = "icecast-parser"

    # Scheduling
    auto_update: bool = True
    keep_listen: bool = False
    notify_on_change_only: bool = False
    metadata_interval: float = 5  # seconds
    empty_interval: float = 5 * 60  # seconds
    error_interval: float = 10 * 60  # seconds

    # Transport
    connect_timeout: float = 10.0  # seconds
    read_timeout: float = 30.0  # seconds

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ParserConfig":
        """Create configuration from environment variables.

        Returns:
            ParserConfig instance
        """
        return cls(
            url=os.getenv("ICECAST_URL", ""),
            user_agent=os.getenv("ICECAST_USER_AGENT", "icecast-parser"),
            auto_update=os.getenv("ICECAST_AUTO_UPDATE", "true").lower() == "true",
            keep_listen=os.getenv("ICECAST_KEEP_LISTEN", "false").lower() == "true",
            notify_on_change_only=(
                os.getenv("ICECAST_NOTIFY_ON_CHANGE_ONLY", "false").lower() == "true"
            ),
            metadata_interval=float(os.getenv("ICECAST_METADATA_INTERVAL", "5")),
            empty_interval=float(os.getenv("ICECAST_EMPTY_INTERVAL", "300")),
            error_interval=float(os.getenv("ICECAST_ERROR_INTERVAL", "600")),
            connect_timeout=float(os.getenv("ICECAST_CONNECT_TIMEOUT", "10.0")),
            read_timeout=float(os.getenv("ICECAST_READ_TIMEOUT", "30.0")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if not self.url:
            raise ValueError("url cannot be empty")

        if not self.url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid url (expected http or https): {self.url}")

        for name in ("metadata_interval", "empty_interval", "error_interval"):
            if getattr(self, name) < 0:
                raise ValueError(f"Invalid {name}: {getattr(self, name)}")

        if "\r" in self.user_agent or "\n" in self.user_agent:
            raise ValueError("user_agent cannot contain line breaks")

        if self.connect_timeout <= 0:
            raise ValueError(f"Invalid connect_timeout: {self.connect_timeout}")

        if self.read_timeout <= 0:
            raise ValueError(f"Invalid read_timeout: {self.read_timeout}")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_log_levels:
            raise ValueError(
                f"Invalid log_level: {self.log_level}. Must be one of {valid_log_levels}"
            )


def get_config() -> ParserConfig:
    """Get parser configuration from environment.

    Returns:
        ParserConfig instance
    """
    config = ParserConfig.from_env()
    config.validate()
    return config


def configure_logging(config: Optional[ParserConfig] = None) -> None:
    """Install a stdout handler on the root logger.

    Args:
        config: Configuration providing the log level (default: INFO)
    """
    level = config.log_level if config is not None else "INFO"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )
