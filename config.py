"""
Configuration Module
====================
Centralized environment variable loading, validation, and access.
Validates configuration at first use to fail fast.

NO BUSINESS LOGIC - Pure configuration management only.
"""

import os
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any
from pathlib import Path

import structlog
from dotenv import load_dotenv


# ============================================================================
# LOGGING
# ============================================================================

logger = logging.getLogger(__name__)


# ============================================================================
# ENVIRONMENT LOADING
# ============================================================================

def load_environment():
    """
    Load environment variables from .env file if present.
    Safe to call multiple times.
    """
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment from .env file")
    else:
        logger.info("No .env file found, using system environment variables")


load_environment()


# ============================================================================
# CONFIGURATION EXCEPTION
# ============================================================================

class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def _get_required_env(key: str, description: str = None) -> str:
    """
    Get required environment variable.

    Raises:
        ConfigurationError: If variable is missing or empty
    """
    value = os.getenv(key)

    if not value or value.strip() == "":
        desc = f" ({description})" if description else ""
        raise ConfigurationError(
            f"Missing required environment variable: {key}{desc}"
        )

    return value.strip()


def _get_optional_env(key: str, default: str = None) -> Optional[str]:
    """Get optional environment variable."""
    value = os.getenv(key, default)
    return value.strip() if value else default


def _get_bool_env(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on", "enabled")


def _get_int_env(key: str, default: int = None) -> Optional[int]:
    """
    Get integer environment variable.

    Raises:
        ConfigurationError: If value is not a valid integer
    """
    value = os.getenv(key)

    if not value:
        return default

    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(
            f"Invalid integer value for {key}: {value}"
        )


def _get_decimal_env(key: str, default: str) -> Decimal:
    """
    Get decimal environment variable (money and rates).

    Raises:
        ConfigurationError: If value is not a valid decimal
    """
    value = os.getenv(key) or default

    try:
        return Decimal(value.strip())
    except InvalidOperation:
        raise ConfigurationError(
            f"Invalid decimal value for {key}: {value}"
        )


# ============================================================================
# ORDERING CONFIGURATION
# ============================================================================

class OrderingConfig:
    """Pricing and order assembly policy."""

    def __init__(self):
        self.tax_rate = _get_decimal_env("TAX_RATE", "0.08")

        if not Decimal("0") <= self.tax_rate < Decimal("1"):
            raise ConfigurationError(
                f"TAX_RATE must be between 0 and 1: {self.tax_rate}"
            )

        self.max_extra_depth = _get_int_env("MAX_EXTRA_DEPTH", 10)

        if self.max_extra_depth < 1:
            raise ConfigurationError(
                f"MAX_EXTRA_DEPTH must be at least 1: {self.max_extra_depth}"
            )

        self.enforce_max_selectable = _get_bool_env("ENFORCE_MAX_SELECTABLE", True)

        self.order_number_prefix = _get_optional_env("ORDER_NUMBER_PREFIX", "ORD")
        self.order_number_retries = _get_int_env("ORDER_NUMBER_RETRIES", 3)

        if self.order_number_retries < 0:
            raise ConfigurationError(
                f"ORDER_NUMBER_RETRIES must not be negative: "
                f"{self.order_number_retries}"
            )

        # Bound on each catalog/customer fetch and the order write
        self.provider_timeout = float(
            _get_optional_env("PROVIDER_TIMEOUT_SECONDS", "5.0")
        )

        self.menu_cache_ttl = _get_int_env("MENU_CACHE_TTL", 300)
        self.menu_cache_max_size = _get_int_env("MENU_CACHE_MAX_SIZE", 100)


# ============================================================================
# SUPABASE CONFIGURATION
# ============================================================================

class SupabaseConfig:
    """
    Supabase database configuration.

    URL and key are only required once storage is actually used
    (see require()).
    """

    def __init__(self):
        self.url = _get_optional_env("SUPABASE_URL")
        self.key = _get_optional_env("SUPABASE_KEY")

        if self.url and not self.url.startswith("https://"):
            raise ConfigurationError(
                f"SUPABASE_URL must start with https://: {self.url}"
            )

        self.menus_table = _get_optional_env("SUPABASE_MENUS_TABLE", "menus")
        self.customers_table = _get_optional_env(
            "SUPABASE_CUSTOMERS_TABLE",
            "customers"
        )
        self.orders_table = _get_optional_env("SUPABASE_ORDERS_TABLE", "orders")

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.key)

    def require(self):
        """
        Raises:
            ConfigurationError: If URL or key is missing
        """
        _get_required_env("SUPABASE_URL", "Supabase project URL")
        _get_required_env("SUPABASE_KEY", "Supabase anon or service role key")


# ============================================================================
# SERVER CONFIGURATION
# ============================================================================

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class ServerConfig:
    """Process-level settings."""

    def __init__(self):
        self.log_level = _get_optional_env("LOG_LEVEL", "INFO").upper()

        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"Invalid LOG_LEVEL: {self.log_level}"
            )

        self.log_json = _get_bool_env("LOG_JSON", False)


# ============================================================================
# MAIN CONFIGURATION CLASS
# ============================================================================

class Config:
    """
    Main configuration container.
    Loads and validates all configuration on initialization.
    """

    def __init__(self):
        """
        Raises:
            ConfigurationError: If any configuration is invalid
        """
        try:
            self.ordering = OrderingConfig()
            self.supabase = SupabaseConfig()
            self.server = ServerConfig()

            logger.info("Configuration loaded and validated successfully")

        except ConfigurationError as e:
            logger.error(f"Configuration error: {str(e)}")
            raise
        except Exception as e:
            logger.error(f"Unexpected error loading configuration: {str(e)}")
            raise ConfigurationError(f"Configuration initialization failed: {str(e)}")

    def get_safe_summary(self) -> Dict[str, Any]:
        """Configuration summary without secrets."""
        return {
            "ordering": {
                "tax_rate": str(self.ordering.tax_rate),
                "max_extra_depth": self.ordering.max_extra_depth,
                "enforce_max_selectable": self.ordering.enforce_max_selectable,
                "order_number_prefix": self.ordering.order_number_prefix,
                "order_number_retries": self.ordering.order_number_retries,
                "provider_timeout": self.ordering.provider_timeout,
            },
            "storage": {
                "configured": self.supabase.is_configured,
                "orders_table": self.supabase.orders_table,
            },
            "log_level": self.server.log_level,
        }


# ============================================================================
# SINGLETON INSTANCE
# ============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get global configuration instance.
    Initializes on first call.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    global _config

    if _config is None:
        _config = Config()

    return _config


def reload_config():
    """
    Reload configuration from environment.
    Useful for testing or dynamic reconfiguration.
    """
    global _config
    load_environment()
    _config = Config()
    logger.info("Configuration reloaded")


# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging(level: Optional[str] = None, json_output: Optional[bool] = None):
    """
    Wire stdlib logging and structlog to one level and renderer.

    Args:
        level: Log level name (defaults to LOG_LEVEL)
        json_output: Render JSON lines instead of console output

    Raises:
        ConfigurationError: If level is not a known log level
    """
    server = get_config().server
    level = (level or server.log_level).upper()

    if level not in LOG_LEVELS:
        raise ConfigurationError(f"Invalid log level: {level}")
    json_output = server.log_json if json_output is None else json_output

    logging.basicConfig(
        level=getattr(logging, level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def validate_configuration():
    """
    Validate configuration and log a summary.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    summary = get_config().get_safe_summary()

    logger.info("Configuration Summary:")
    for key, value in summary["ordering"].items():
        logger.info(f"  {key}: {value}")
    logger.info(f"  Storage configured: {summary['storage']['configured']}")
    logger.info(f"  Log Level: {summary['log_level']}")

    if not summary["storage"]["configured"]:
        logger.warning("SUPABASE_URL/SUPABASE_KEY not set; storage disabled")
