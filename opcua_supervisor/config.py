"""
Client configuration loader.

Configuration is a JSON document with a mandatory "connection" section and
optional "cache", "subscription", "sampling" and "log_level" entries.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .logging import get_logger
from .types.models import SamplingPolicy, SubscriptionQoS


_log = get_logger("config")


@dataclass
class ConnectionConfig:
    """Endpoint, identity and connection strategy."""
    endpoint_url: str
    username: Optional[str] = None
    password: Optional[str] = None
    timeout_s: float = 4.0
    initial_delay_ms: int = 1000
    max_retry: int = 1
    keepalive_interval_s: float = 5.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConnectionConfig':
        """Creates a ConnectionConfig instance from a dictionary."""
        try:
            endpoint_url = data["endpoint_url"]
        except KeyError as e:
            raise ValueError(f"Missing required field in connection config: {e}")

        if not str(endpoint_url).startswith("opc.tcp://"):
            raise ValueError(f"Invalid endpoint_url: {endpoint_url}")

        return cls(
            endpoint_url=endpoint_url,
            username=data.get("username"),
            password=data.get("password"),
            timeout_s=float(data.get("timeout_s", 4.0)),
            initial_delay_ms=int(data.get("initial_delay_ms", 1000)),
            max_retry=int(data.get("max_retry", 1)),
            keepalive_interval_s=float(data.get("keepalive_interval_s", 5.0)),
        )


@dataclass
class CacheConfig:
    """Location of the discovered items cache file."""
    directory: str = "./cache"
    filename: str = "items.json"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheConfig':
        """Creates a CacheConfig instance from a dictionary."""
        return cls(
            directory=data.get("directory", "./cache"),
            filename=data.get("filename", "items.json"),
        )


def _subscription_from_dict(data: Dict[str, Any]) -> SubscriptionQoS:
    return SubscriptionQoS(
        publishing_interval_ms=float(data.get("publishing_interval_ms", 1000)),
        lifetime_count=int(data.get("lifetime_count", 100)),
        max_keepalive_count=int(data.get("max_keepalive_count", 30)),
        max_notifications_per_publish=int(data.get("max_notifications_per_publish", 10)),
        publishing_enabled=bool(data.get("publishing_enabled", True)),
        priority=int(data.get("priority", 10)),
    )


def _sampling_from_dict(data: Dict[str, Any]) -> SamplingPolicy:
    queue_size = int(data.get("queue_size", 10))
    if queue_size < 1:
        raise ValueError(f"sampling.queue_size must be positive, got {queue_size}")
    return SamplingPolicy(
        sampling_interval_ms=float(data.get("sampling_interval_ms", 100)),
        queue_size=queue_size,
        discard_oldest=bool(data.get("discard_oldest", True)),
    )


@dataclass
class ClientConfig:
    """Complete client configuration."""
    connection: ConnectionConfig
    cache: CacheConfig = field(default_factory=CacheConfig)
    subscription: SubscriptionQoS = field(default_factory=SubscriptionQoS)
    sampling: SamplingPolicy = field(default_factory=SamplingPolicy)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClientConfig':
        """
        Creates a ClientConfig instance from a dictionary.

        Raises:
            ValueError: If a required section or field is missing or invalid
        """
        if not isinstance(data, dict):
            raise ValueError("Configuration must be a JSON object")
        if "connection" not in data:
            raise ValueError("Missing required configuration section: connection")

        return cls(
            connection=ConnectionConfig.from_dict(data["connection"]),
            cache=CacheConfig.from_dict(data.get("cache", {})),
            subscription=_subscription_from_dict(data.get("subscription", {})),
            sampling=_sampling_from_dict(data.get("sampling", {})),
            log_level=data.get("log_level", "INFO"),
        )


def load_config(config_path: str) -> Optional[ClientConfig]:
    """
    Load client configuration from a JSON file.

    Args:
        config_path: Path to configuration file

    Returns:
        ClientConfig or None if loading fails
    """
    try:
        path = Path(config_path)
        if not path.exists():
            _log.error(f"Configuration file not found: {config_path}")
            return None

        with open(path, 'r', encoding='utf-8') as f:
            raw_config = json.load(f)

        config = ClientConfig.from_dict(raw_config)
        _log.info(f"Configuration loaded from {config_path}")
        return config

    except json.JSONDecodeError as e:
        _log.error(f"Invalid JSON in configuration file: {e}")
        return None
    except ValueError as e:
        _log.error(f"Invalid configuration: {e}")
        return None
    except OSError as e:
        _log.error(f"Failed to load configuration: {e}")
        return None


def get_default_config() -> dict:
    """
    Get default configuration for development/testing.

    Returns:
        Default configuration dictionary
    """
    return {
        "connection": {
            "endpoint_url": "opc.tcp://192.168.1.17:4840",
            "username": None,
            "password": None,
            "timeout_s": 4.0,
            "initial_delay_ms": 1000,
            "max_retry": 1,
            "keepalive_interval_s": 5.0
        },
        "cache": {
            "directory": "./cache",
            "filename": "items.json"
        },
        "subscription": {
            "publishing_interval_ms": 1000,
            "lifetime_count": 100,
            "max_keepalive_count": 30,
            "max_notifications_per_publish": 10,
            "publishing_enabled": True,
            "priority": 10
        },
        "sampling": {
            "sampling_interval_ms": 100,
            "queue_size": 10,
            "discard_oldest": True
        },
        "log_level": "INFO"
    }
