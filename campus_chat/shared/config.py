"""
Configuration Management

Provides configuration classes and environment-based configuration loading.
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

from .constants import (
    CHAT_STREAM_WS_PATH,
    CHAT_WS_PATH,
    CONNECT_SETTLE_DELAY,
    DEFAULT_API_URL,
    DEFAULT_OPEN_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TOKEN_FILE,
    HEARTBEAT_INTERVAL,
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_BASE_DELAY,
    RECONNECT_MAX_DELAY,
)
from .exceptions import ConfigurationError, InvalidConfigurationError, MissingConfigurationError


@dataclass
class ClientConfig:
    """Chat client configuration settings."""

    api_url: str = DEFAULT_API_URL
    streaming: bool = False
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    reconnect_base_delay: float = RECONNECT_BASE_DELAY
    reconnect_max_delay: float = RECONNECT_MAX_DELAY
    heartbeat_interval: float = HEARTBEAT_INTERVAL
    connect_settle_delay: float = CONNECT_SETTLE_DELAY
    open_timeout: float = DEFAULT_OPEN_TIMEOUT
    pong_timeout: float = 0.0  # 0 disables the missed-pong watchdog
    stream_deltas: bool = False
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    token_file: str = DEFAULT_TOKEN_FILE

    @property
    def websocket_url(self) -> str:
        """Websocket endpoint selected by the ``streaming`` flag."""
        return build_websocket_url(self.api_url, self.streaming)

    def reconnect_delay(self, attempt: int) -> float:
        """
        Delay before the given automatic reconnect attempt.

        Args:
            attempt: 1-based attempt number.

        Returns:
            Delay in seconds, growing linearly and capped at ``reconnect_max_delay``.
        """
        return min(self.reconnect_base_delay * attempt, self.reconnect_max_delay)

    def validate(self) -> None:
        """Validate configuration values."""
        errors: List[str] = []

        parsed = urlparse(self.api_url) if isinstance(self.api_url, str) else None
        if parsed is None or parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append("api_url must be an http(s) URL with a host")

        if not isinstance(self.streaming, bool):
            errors.append("streaming must be a boolean")

        if not isinstance(self.max_reconnect_attempts, int) or self.max_reconnect_attempts < 0:
            errors.append("max_reconnect_attempts must be a non-negative integer")

        if not isinstance(self.reconnect_base_delay, (int, float)) or self.reconnect_base_delay < 0:
            errors.append("reconnect_base_delay must be a non-negative number")

        if not isinstance(self.reconnect_max_delay, (int, float)) or self.reconnect_max_delay < 0:
            errors.append("reconnect_max_delay must be a non-negative number")
        elif isinstance(self.reconnect_base_delay, (int, float)) and self.reconnect_max_delay < self.reconnect_base_delay:
            errors.append("reconnect_max_delay cannot be smaller than reconnect_base_delay")

        if not isinstance(self.heartbeat_interval, (int, float)) or self.heartbeat_interval <= 0:
            errors.append("heartbeat_interval must be a positive number")

        if not isinstance(self.connect_settle_delay, (int, float)) or self.connect_settle_delay < 0:
            errors.append("connect_settle_delay must be a non-negative number")

        if not isinstance(self.open_timeout, (int, float)) or self.open_timeout <= 0:
            errors.append("open_timeout must be a positive number")

        if not isinstance(self.pong_timeout, (int, float)) or self.pong_timeout < 0:
            errors.append("pong_timeout must be a non-negative number")

        if not isinstance(self.request_timeout, (int, float)) or self.request_timeout <= 0:
            errors.append("request_timeout must be a positive number")

        if not isinstance(self.token_file, str) or not self.token_file.strip():
            errors.append("token_file must be a non-empty string")

        if errors:
            raise InvalidConfigurationError(f"Client configuration validation failed: {'; '.join(errors)}")

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Load configuration from environment variables."""
        try:
            config = cls(
                api_url=os.getenv("CAMPUS_CHAT_API_URL", cls.api_url),
                streaming=os.getenv("CAMPUS_CHAT_STREAMING", "false").lower() == "true",
                max_reconnect_attempts=int(
                    os.getenv("CAMPUS_CHAT_MAX_RECONNECT_ATTEMPTS", str(cls.max_reconnect_attempts))
                ),
                reconnect_base_delay=float(
                    os.getenv("CAMPUS_CHAT_RECONNECT_BASE_DELAY", str(cls.reconnect_base_delay))
                ),
                reconnect_max_delay=float(
                    os.getenv("CAMPUS_CHAT_RECONNECT_MAX_DELAY", str(cls.reconnect_max_delay))
                ),
                heartbeat_interval=float(
                    os.getenv("CAMPUS_CHAT_HEARTBEAT_INTERVAL", str(cls.heartbeat_interval))
                ),
                connect_settle_delay=float(
                    os.getenv("CAMPUS_CHAT_CONNECT_SETTLE_DELAY", str(cls.connect_settle_delay))
                ),
                open_timeout=float(
                    os.getenv("CAMPUS_CHAT_OPEN_TIMEOUT", str(cls.open_timeout))
                ),
                pong_timeout=float(
                    os.getenv("CAMPUS_CHAT_PONG_TIMEOUT", str(cls.pong_timeout))
                ),
                stream_deltas=os.getenv("CAMPUS_CHAT_STREAM_DELTAS", "false").lower() == "true",
                request_timeout=float(
                    os.getenv("CAMPUS_CHAT_REQUEST_TIMEOUT", str(cls.request_timeout))
                ),
                token_file=os.getenv("CAMPUS_CHAT_TOKEN_FILE", cls.token_file),
            )
            config.validate()
            return config
        except ValueError as e:
            raise ConfigurationError(f"Failed to load client configuration from environment: {e}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Create configuration from dictionary."""
        try:
            # Filter only known fields
            field_names = {f.name for f in fields(cls)}
            filtered_data = {k: v for k, v in data.items() if k in field_names}
            config = cls(**filtered_data)
            config.validate()
            return config
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Failed to create client configuration from dictionary: {e}")


def build_websocket_url(api_url: str, streaming: bool = False) -> str:
    """
    Derive the chat websocket URL from the REST API base URL.

    Only the host and port of ``api_url`` are kept; ``https`` maps to ``wss``
    and anything else to ``ws``.

    Args:
        api_url: REST API base URL, e.g. ``http://localhost:8000``.
        streaming: Select the streaming chat endpoint.

    Returns:
        Websocket URL.

    Raises:
        ConfigurationError: If ``api_url`` has no host.
    """
    parsed = urlparse(api_url)
    if not parsed.netloc:
        raise ConfigurationError(f"Cannot derive websocket URL from {api_url!r}")

    scheme = "wss" if parsed.scheme == "https" else "ws"
    path = CHAT_STREAM_WS_PATH if streaming else CHAT_WS_PATH
    return f"{scheme}://{parsed.netloc}{path}"


class ConfigurationLoader:
    """Configuration loader with support for multiple sources."""

    DEFAULT_CONFIG_PATHS = [
        "campus_chat.json",
        ".campus_chat.json",
        "campus_chat.yaml",
        ".campus_chat.yaml",
        "campus_chat.yml",
        ".campus_chat.yml",
    ]

    @staticmethod
    def load_from_file(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
        """
        Load configuration from a JSON or YAML file.

        Args:
            config_path: Path to configuration file. If None, looks for default locations.

        Returns:
            Dictionary containing configuration values.

        Raises:
            ConfigurationError: If file cannot be loaded or parsed.
        """
        if config_path is None:
            for path in ConfigurationLoader.DEFAULT_CONFIG_PATHS:
                if os.path.exists(path):
                    config_path = path
                    break

        if config_path is None:
            return {}

        config_path = Path(config_path)

        if not config_path.exists():
            raise MissingConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if config_path.suffix == '.json':
                    data = json.load(f)
                elif config_path.suffix in ('.yml', '.yaml'):
                    try:
                        import yaml
                    except ImportError:
                        raise ConfigurationError("PyYAML is required for YAML configuration files. Install with: pip install PyYAML")
                    data = yaml.safe_load(f) or {}
                else:
                    raise ConfigurationError(f"Unsupported configuration file format: {config_path.suffix}")
        except ConfigurationError:
            raise
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in configuration file {config_path}: {e}")
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration from {config_path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
        return data

    @staticmethod
    def load_client_config(
        config_path: Optional[Union[str, Path]] = None,
        use_env: bool = True
    ) -> ClientConfig:
        """
        Load client configuration from file and/or environment.

        Values are read from the ``client`` section of the file; environment
        variables that differ from the defaults override them.

        Args:
            config_path: Path to configuration file.
            use_env: Whether to load from environment variables.

        Returns:
            ClientConfig instance.
        """
        config_data: Dict[str, Any] = {}

        if config_path or any(os.path.exists(p) for p in ConfigurationLoader.DEFAULT_CONFIG_PATHS):
            file_config = ConfigurationLoader.load_from_file(config_path)
            config_data.update(file_config.get('client', {}))

        if config_data:
            config = ClientConfig.from_dict(config_data)
        else:
            config = ClientConfig()

        if use_env:
            env_config = ClientConfig.from_env()
            # Only override non-default values from environment
            default_config = ClientConfig()
            for field in fields(ClientConfig):
                env_value = getattr(env_config, field.name)
                default_value = getattr(default_config, field.name)
                if env_value != default_value:
                    setattr(config, field.name, env_value)

        config.validate()
        return config
