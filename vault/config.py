"""Configuration management for the demo wallet.

Centralises environment variable loading and validation logic while keeping the
public API intentionally simple.
"""

from __future__ import annotations

import os
from typing import Any, Mapping, Optional, TypedDict

_TRUTHY_VALUES = {"1", "true", "yes", "on"}


class AppConfig(TypedDict, total=False):
    """Typed representation of the application's configuration."""

    FLASK_SECRET_KEY: Optional[str]
    FLASK_ENV: str
    FLASK_DEBUG: bool
    LN_BACKEND: str
    LNBITS_ENDPOINT: str
    LNBITS_API_KEY: Optional[str]
    LNBITS_ADMIN_KEY: Optional[str]
    LNBITS_TIMEOUT: int
    FAUCET_ENABLED: bool
    RATE_LIMIT_ENABLED: bool
    RATE_LIMIT_DEFAULT: str
    RATELIMIT_STORAGE_URI: str
    FORCE_HTTPS: bool
    LOG_LEVEL: str
    APP_NAME: str
    APP_VERSION: str
    APP_HOST: str
    APP_PORT: int


def _get_env_bool(name: str, default: bool) -> bool:
    """Return an environment variable as a boolean."""

    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUTHY_VALUES


def _get_env_int(name: str, default: int) -> int:
    """Return an environment variable as an integer, raising on invalid input."""

    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer (got {raw_value!r})") from exc


def get_config() -> AppConfig:
    """Load application configuration from environment variables."""

    flask_env = os.getenv("FLASK_ENV", "development")

    return {
        # Flask Configuration
        "FLASK_SECRET_KEY": os.getenv("FLASK_SECRET_KEY"),
        "FLASK_ENV": flask_env,
        "FLASK_DEBUG": _get_env_bool("FLASK_DEBUG", False),
        # Lightning provider
        "LN_BACKEND": os.getenv("LN_BACKEND", "stub").lower(),
        "LNBITS_ENDPOINT": os.getenv("LNBITS_ENDPOINT", "https://legend.lnbits.com"),
        "LNBITS_API_KEY": os.getenv("LNBITS_API_KEY"),
        "LNBITS_ADMIN_KEY": os.getenv("LNBITS_ADMIN_KEY"),
        "LNBITS_TIMEOUT": _get_env_int("LNBITS_TIMEOUT", 10),
        # Test-coin faucet for funding the demo wallet
        "FAUCET_ENABLED": _get_env_bool("FAUCET_ENABLED", flask_env.lower() != "production"),
        # Rate Limiting
        "RATE_LIMIT_ENABLED": _get_env_bool("RATE_LIMIT_ENABLED", True),
        "RATE_LIMIT_DEFAULT": os.getenv("RATE_LIMIT_DEFAULT", "100/hour"),
        "RATELIMIT_STORAGE_URI": os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        "FORCE_HTTPS": _get_env_bool("FORCE_HTTPS", flask_env.lower() == "production"),
        # Logging
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        # Application Settings
        "APP_NAME": os.getenv("APP_NAME", "BitcoinVault"),
        "APP_VERSION": os.getenv("APP_VERSION", "1.0.0"),
        "APP_HOST": os.getenv("APP_HOST", "0.0.0.0"),
        "APP_PORT": _get_env_int("APP_PORT", 5000),
    }


def validate_config(config: Mapping[str, Any]) -> bool:
    """Validate critical configuration values.

    Args:
        config: Configuration mapping to validate.

    Returns:
        True if configuration is valid, raises ValueError otherwise.
    """

    if str(config.get("LN_BACKEND") or "stub").lower() == "lnbits":
        if not config.get("LNBITS_API_KEY") or not config.get("LNBITS_ADMIN_KEY"):
            raise ValueError("⚠️  LNBITS_API_KEY and LNBITS_ADMIN_KEY must be set when LN_BACKEND=lnbits!")

    if config.get("FLASK_ENV") == "production":
        if not config.get("FLASK_SECRET_KEY"):
            raise ValueError("⚠️  FLASK_SECRET_KEY must be set for production!")

        if config.get("FAUCET_ENABLED"):
            raise ValueError("⚠️  FAUCET_ENABLED must be off for production!")

        if str(config.get("LN_BACKEND") or "stub").lower() == "stub":
            import warnings

            warnings.warn("⚠️  LN_BACKEND=stub in production - Lightning payments are simulated!", stacklevel=2)

    return True
