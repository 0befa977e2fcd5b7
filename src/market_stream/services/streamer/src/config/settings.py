"""Configuration settings for the market streamer service."""

import os
import yaml
from dataclasses import dataclass, field
from typing import List, Dict, Any

from ..errors import ConfigError


ASSET_CLASSES = ("crypto", "stock")
FAILURE_POLICIES = ("fail_fast", "isolate")


@dataclass
class FinnhubConfig:
    """Finnhub WebSocket configuration."""
    api_key: str
    ws_url: str = "wss://ws.finnhub.io"
    ping_interval_seconds: float = 20.0
    ping_timeout_seconds: float = 10.0
    open_timeout_seconds: float = 10.0
    close_timeout_seconds: float = 5.0
    read_timeout_seconds: float = 5.0

    def __post_init__(self):
        if not self.api_key:
            raise ConfigError("finnhub.api_key is required (set FINNHUB_API_KEY)")
        if self.read_timeout_seconds <= 0:
            raise ConfigError("finnhub.read_timeout_seconds must be positive")


@dataclass
class MarketConfig:
    """One asset-class stream."""
    name: str
    asset_class: str
    symbols: List[str]
    check_session: bool = False
    account: str = "finnhub"  # credential selector

    def __post_init__(self):
        if self.asset_class not in ASSET_CLASSES:
            raise ConfigError(
                f"Market '{self.name}': asset_class must be one of {ASSET_CLASSES}, got '{self.asset_class}'"
            )
        if not isinstance(self.symbols, (list, tuple)):
            raise ConfigError(
                f"Market '{self.name}': symbols must be a list, got {type(self.symbols).__name__}"
            )
        if not self.symbols:
            raise ConfigError(f"Market '{self.name}': symbols must not be empty")
        if not all(isinstance(symbol, str) and symbol for symbol in self.symbols):
            raise ConfigError(f"Market '{self.name}': symbols must be non-empty strings")


@dataclass
class ReconnectConfig:
    """Steady-state reconnect backoff."""
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    backoff_multiplier: float = 2.0


@dataclass
class RetryConfig:
    """Startup retry configuration."""
    max_attempts: int = 3
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: bool = False


@dataclass
class CoordinatorConfig:
    """Multi-market coordinator configuration."""
    failure_policy: str = "fail_fast"

    def __post_init__(self):
        if self.failure_policy not in FAILURE_POLICIES:
            raise ConfigError(
                f"coordinator.failure_policy must be one of {FAILURE_POLICIES}, got '{self.failure_policy}'"
            )


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "text"
    output: str = "stdout"


@dataclass
class HealthConfig:
    """Health check configuration."""
    enabled: bool = False
    port: int = 8080
    host: str = "0.0.0.0"


@dataclass
class StreamerConfig:
    """Main configuration for the streamer service."""
    finnhub: FinnhubConfig
    markets: List[MarketConfig]
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    health: HealthConfig = field(default_factory=HealthConfig)

    def __post_init__(self):
        if not self.markets:
            raise ConfigError("At least one market must be configured")
        names = [market.name for market in self.markets]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate market names: {duplicates}")


def load_config(config_file: str) -> StreamerConfig:
    """Load configuration from YAML file."""

    # Load YAML file
    with open(config_file, 'r') as f:
        config_data = yaml.safe_load(f) or {}

    # Environment variable substitution
    config_data = _substitute_env_vars(config_data)

    return build_config(config_data)


def build_config(config_data: Dict[str, Any]) -> StreamerConfig:
    """Create configuration objects from a plain mapping."""
    if 'finnhub' not in config_data:
        raise ConfigError("Missing 'finnhub' section")

    try:
        return StreamerConfig(
            finnhub=FinnhubConfig(**config_data['finnhub']),
            markets=[MarketConfig(**market) for market in config_data.get('markets') or []],
            reconnect=ReconnectConfig(**(config_data.get('reconnect') or {})),
            retry=RetryConfig(**(config_data.get('retry') or {})),
            coordinator=CoordinatorConfig(**(config_data.get('coordinator') or {})),
            logging=LoggingConfig(**(config_data.get('logging') or {})),
            health=HealthConfig(**(config_data.get('health') or {})),
        )
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def _substitute_env_vars(data):
    """Recursively substitute environment variables in configuration."""
    if isinstance(data, dict):
        return {key: _substitute_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    elif isinstance(data, str) and data.startswith('${') and data.endswith('}'):
        # Extract environment variable name and default value
        env_spec = data[2:-1]  # Remove ${ and }

        if ':' in env_spec:
            env_name, default_value = env_spec.split(':', 1)
        else:
            env_name, default_value = env_spec, None

        return os.getenv(env_name, default_value)
    else:
        return data
