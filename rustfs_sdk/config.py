"""Client configuration for an S3-compatible endpoint.

Configuration is built in code with build_config() or read from a JSON
file with load_from_json(). Credentials are never part of it; they come
from a credentials provider.

JSON format:
    {
        "endpoint_url": "http://localhost:9000",
        "region_name": "us-east-1",
        "addressing_style": "path",
        "timeout": 30,
        "max_attempts": 3,
        "payload_mode": "unsigned",
        "streaming": true
    }
"""

import json
from pathlib import Path
from typing import Any, Optional
from urllib.parse import SplitResult, urlsplit

from rustfs_sdk.models import ClientConfig, PayloadMode


class ConfigError(Exception):
    """Raised when configuration loading fails."""

    pass


ADDRESSING_STYLES = ("path", "virtual")

OPTIONAL_FIELDS = (
    "region_name",
    "addressing_style",
    "timeout",
    "max_attempts",
    "retry_delays",
    "payload_mode",
    "streaming",
)


def parse_endpoint(endpoint_url: str) -> SplitResult:
    """Validate an endpoint URL.

    Raises:
        ConfigError: If the scheme is not http/https or the host is missing.
    """
    try:
        parts = urlsplit(endpoint_url)
        parts.port
    except ValueError as e:
        raise ConfigError(f"Invalid endpoint URL {endpoint_url!r}: {e}") from e

    if parts.scheme not in ("http", "https"):
        raise ConfigError(
            f"Endpoint URL must use http or https, got {endpoint_url!r}"
        )
    if not parts.hostname:
        raise ConfigError(f"Endpoint URL has no host: {endpoint_url!r}")
    if parts.path not in ("", "/"):
        raise ConfigError(f"Endpoint URL must not have a path: {endpoint_url!r}")

    return parts


def build_config(
    endpoint_url: str,
    region_name: Optional[str] = "us-east-1",
    addressing_style: str = "path",
    timeout: float = 30.0,
    max_attempts: int = 3,
    retry_delays: Optional[list[float]] = None,
    payload_mode: Any = PayloadMode.UNSIGNED,
    streaming: bool = True,
) -> ClientConfig:
    """Build a validated ClientConfig.

    Raises:
        ConfigError: If any value is out of range.
    """
    parts = parse_endpoint(endpoint_url)

    if addressing_style not in ADDRESSING_STYLES:
        raise ConfigError(
            f"addressing_style must be one of {ADDRESSING_STYLES}, got {addressing_style!r}"
        )
    if not region_name:
        raise ConfigError("region_name is required")
    if timeout <= 0:
        raise ConfigError(f"timeout must be positive, got {timeout}")
    if max_attempts < 1:
        raise ConfigError(f"max_attempts must be at least 1, got {max_attempts}")

    if not isinstance(payload_mode, PayloadMode):
        try:
            payload_mode = PayloadMode(payload_mode)
        except ValueError as e:
            raise ConfigError(f"Unknown payload_mode: {payload_mode!r}") from e

    config = ClientConfig(
        endpoint_url=f"{parts.scheme}://{parts.netloc}",
        region_name=region_name,
        addressing_style=addressing_style,
        timeout=float(timeout),
        max_attempts=max_attempts,
        payload_mode=payload_mode,
        streaming=streaming,
    )
    if retry_delays is not None:
        if not retry_delays:
            raise ConfigError("retry_delays must not be empty")
        config.retry_delays = tuple(float(d) for d in retry_delays)
    return config


def load_from_json(config_path: str) -> ClientConfig:
    """Load a client configuration from a JSON file.

    Args:
        config_path: Path to the JSON file.

    Returns:
        The validated ClientConfig.

    Raises:
        ConfigError: If the file doesn't exist, contains invalid JSON,
                    lacks endpoint_url, or holds invalid values.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object")
    if "endpoint_url" not in data:
        raise ConfigError("Missing required field 'endpoint_url'")

    kwargs = {key: data[key] for key in OPTIONAL_FIELDS if key in data}
    return build_config(data["endpoint_url"], **kwargs)
