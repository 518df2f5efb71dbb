"""
TitrateConfig - Unified configuration for the fulfillment engine.

Wires together:
- Storage backend (prescriptions, subscriptions, fulfillment ledger)
- External call timeout applied to catalog and order collaborators
- Housekeeping thresholds
- Observability (metrics, log level, JSON logs)

Example:
    >>> from titrate.core.config import TitrateConfig, configure
    >>> from titrate.storage import SQLiteFulfillmentStorage
    >>>
    >>> config = TitrateConfig(
    ...     storage=SQLiteFulfillmentStorage("./titrate.db"),
    ...     external_call_timeout=5.0,
    ... )
    >>> configure(config)

Environment variables (TitrateConfig.from_env):
    TITRATE_STORAGE_URL               memory:// | sqlite:///path.db
    TITRATE_EXTERNAL_TIMEOUT          seconds, default 10
    TITRATE_PENDING_PAYMENT_TTL_DAYS  default 30
    TITRATE_METRICS                   true/false
    TITRATE_LOG_LEVEL                 DEBUG, INFO, ...
    TITRATE_JSON_LOGS                 true/false
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from titrate.core.env import expand, get_env, parse_bool
from titrate.monitoring.logging import configure_logging

if TYPE_CHECKING:
    from titrate.storage.interfaces import FulfillmentStorage

logger = logging.getLogger(__name__)


@dataclass
class TitrateConfig:
    """
    Configuration for the fulfillment engine.

    Attributes:
        storage: Storage backend (defaults to in-memory)
        external_call_timeout: Seconds before a collaborator call is abandoned
        pending_payment_ttl_days: Age after which unpaid prescriptions are cancelled
        metrics: Enable Prometheus metrics
        log_level: Level for the 'titrate' logger
        json_logs: Emit JSON log lines
    """

    storage: FulfillmentStorage | None = None
    external_call_timeout: float = 10.0
    pending_payment_ttl_days: int = 30
    metrics: bool = True
    log_level: str = "INFO"
    json_logs: bool = False

    def __post_init__(self) -> None:
        if self.external_call_timeout <= 0:
            msg = f"external_call_timeout must be positive, got {self.external_call_timeout}"
            raise ValueError(msg)
        if self.pending_payment_ttl_days < 1:
            msg = f"pending_payment_ttl_days must be >= 1, got {self.pending_payment_ttl_days}"
            raise ValueError(msg)

        if self.storage is None:
            from titrate.storage.backends.memory import InMemoryFulfillmentStorage

            self.storage = InMemoryFulfillmentStorage()
            logger.debug("Using default InMemoryFulfillmentStorage")

    @classmethod
    def from_env(cls, load_dotenv: bool = True) -> TitrateConfig:
        """
        Create configuration from environment variables.

        Args:
            load_dotenv: If True, loads .env file before reading variables
        """
        from titrate.storage.factory import create_storage

        env = get_env()
        if load_dotenv:
            env.load()

        return cls(
            storage=create_storage(env.get("TITRATE_STORAGE_URL", "memory://")),
            external_call_timeout=env.get_float("TITRATE_EXTERNAL_TIMEOUT", 10.0),
            pending_payment_ttl_days=env.get_int("TITRATE_PENDING_PAYMENT_TTL_DAYS", 30),
            metrics=env.get_bool("TITRATE_METRICS", True),
            log_level=env.get("TITRATE_LOG_LEVEL", "INFO"),
            json_logs=env.get_bool("TITRATE_JSON_LOGS", False),
        )

    @classmethod
    def from_file(cls, file_path: str | Path, substitute_env: bool = True) -> TitrateConfig:
        """
        Load configuration from a YAML file.

        Supports ${VAR} / ${VAR:-default} substitution.

        Example:
            # titrate.yaml
            # storage:
            #   url: sqlite:///${TITRATE_DB:-./titrate.db}
            # fulfillment:
            #   external_call_timeout: 5
            #   pending_payment_ttl_days: 30
            # observability:
            #   metrics: true
            #   log_level: INFO
            #   json_logs: false
        """
        from titrate.storage.factory import create_storage

        path = Path(file_path)
        if not path.exists():
            msg = f"Configuration file not found: {file_path}"
            raise FileNotFoundError(msg)

        with path.open() as f:
            data = yaml.safe_load(f)

        if not data:
            return cls()

        if substitute_env:
            get_env().load()
            data = expand(data)

        storage_data = data.get("storage", {})
        fulfillment_data = data.get("fulfillment", {})
        obs_data = data.get("observability", {})

        return cls(
            storage=create_storage(storage_data.get("url", "memory://")),
            external_call_timeout=float(fulfillment_data.get("external_call_timeout", 10.0)),
            pending_payment_ttl_days=int(fulfillment_data.get("pending_payment_ttl_days", 30)),
            metrics=parse_bool(obs_data.get("metrics"), True),
            log_level=str(obs_data.get("log_level", "INFO")),
            json_logs=parse_bool(obs_data.get("json_logs"), False),
        )


# Global configuration singleton
_global_config: TitrateConfig | None = None


def get_config() -> TitrateConfig:
    """Get the global configuration."""
    global _global_config
    if _global_config is None:
        _global_config = TitrateConfig()
    return _global_config


def configure(config: TitrateConfig) -> None:
    """Set the global configuration and apply its logging settings."""
    global _global_config
    _global_config = config
    configure_logging(level=config.log_level.upper(), json_format=config.json_logs)
    logger.info(f"Titrate configured: storage={type(config.storage).__name__}")
