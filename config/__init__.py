# Configuration module for the rural bus backend
from .settings import (
    Settings,
    Environment,
    StoreBackend,
    ConfigurationError,
    get_settings,
    clear_settings_cache,
    validate_startup,
)

__all__ = [
    "Settings",
    "Environment",
    "StoreBackend",
    "ConfigurationError",
    "get_settings",
    "clear_settings_cache",
    "validate_startup",
]
