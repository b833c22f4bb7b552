"""Configuration and error-mapping tables."""

from menu_catalog.config.settings import (
    AppConfig,
    DatabaseConfig,
    EventsConfig,
    OrderingConfig,
    ServerConfig,
    load_config,
)

__all__ = ["AppConfig", "DatabaseConfig", "EventsConfig", "OrderingConfig", "ServerConfig", "load_config"]
