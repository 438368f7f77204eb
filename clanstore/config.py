"""
Configuration Module - Environment variable management for the clan store.

Provides centralized configuration loading with:
- JSON structured logging of validation decisions
- Range validation with optional auto-clamping
- Secrets kept out of the returned mapping and out of logs
- Immutable, lazily cached configuration with typed getters
"""

import os
import re
from typing import Optional, Any, Mapping
from types import MappingProxyType

from dotenv import load_dotenv
from .core.logger import ComponentLogger

_logger = ComponentLogger("config")

class ConfigError(Exception):
    """Custom exception for configuration-related errors."""
    pass

env_path = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(env_path)

# #################################################################################### #
#                            Validation Ranges and Parsing
# #################################################################################### #
def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse boolean value from string with consistent normalization.

    Args:
        value: String value to parse
        default: Default value if empty or None

    Returns:
        Parsed boolean value
    """
    if not value:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on", "y")

VALIDATION_RANGES = {
    "DB_PORT": (1, 65535),
    "DB_POOL_SIZE": (1, 50),
    "DB_POOL_MIN_IDLE": (0, 50),
    "DB_TIMEOUT": (1, 60),
    "DB_IDLE_TIMEOUT": (30, 86400),
    "DB_MAX_LIFETIME": (60, 86400),
    "DB_CIRCUIT_BREAKER_THRESHOLD": (3, 20),
    "CACHE_TTL_SECONDS": (5, 86400),
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

def validate_env_var(var_name: str, value: Optional[str], required: bool = True) -> str:
    """
    Validate and return environment variable value.

    Args:
        var_name: Name of the environment variable
        value: Raw value from environment (can be None)
        required: Whether the variable is required

    Returns:
        Validated environment variable value

    Raises:
        ConfigError: If required variable is missing
    """
    if not value:
        if required:
            raise ConfigError(f"Missing required environment variable: {var_name}")
        return ""
    return value

def validate_int_env_var(
    var_name: str,
    value: Optional[str],
    default: Optional[int] = None,
    auto_clamp: bool = False,
) -> int:
    """
    Validate and return integer environment variable value.

    Args:
        var_name: Name of the environment variable
        value: Raw value from environment (can be None)
        default: Default value if not provided
        auto_clamp: Whether to automatically clamp values to valid ranges

    Returns:
        Validated integer value

    Raises:
        ConfigError: If value is invalid or missing without default
    """
    if not value:
        if default is None:
            raise ConfigError(
                f"Missing required integer environment variable: {var_name}"
            )
        return default
    try:
        parsed_value = int(value)
    except ValueError:
        raise ConfigError(f"Invalid integer value for {var_name}: {value}")

    if auto_clamp and var_name in VALIDATION_RANGES:
        min_val, max_val = VALIDATION_RANGES[var_name]
        if parsed_value < min_val:
            _logger.warning("config_value_clamped",
                variable=var_name,
                original=parsed_value,
                clamped=min_val,
                reason="below_minimum",
            )
            return min_val
        elif parsed_value > max_val:
            _logger.warning("config_value_clamped",
                variable=var_name,
                original=parsed_value,
                clamped=max_val,
                reason="above_maximum",
            )
            return max_val

    return parsed_value

def validate_ranges(var_name: str, value: int) -> None:
    """Validate value against defined ranges and log warnings."""
    if var_name in VALIDATION_RANGES:
        min_val, max_val = VALIDATION_RANGES[var_name]
        if not (min_val <= value <= max_val):
            _logger.warning("config_value_out_of_range",
                variable=var_name,
                value=value,
                min_recommended=min_val,
                max_recommended=max_val,
            )

def _int_setting(config: dict, name: str, default: int, auto_clamp: bool) -> None:
    config[name] = validate_int_env_var(
        name, os.getenv(name), default=default, auto_clamp=auto_clamp
    )
    validate_ranges(name, config[name])

# #################################################################################### #
#                            Configuration Loading Function
# #################################################################################### #
def load_config() -> Mapping[str, Any]:
    """
    Load and validate all configuration from environment variables.

    Returns:
        Read-only mapping containing all validated configuration values

    Raises:
        ConfigError: If critical configuration is invalid or missing
    """
    config: dict = {}
    auto_clamp = parse_bool(os.getenv("CONFIG_AUTO_CLAMP", "False"))

    try:
        # #################################################################################### #
        #                            Debug and Logging Configuration
        # #################################################################################### #
        config["DEBUG"] = parse_bool(os.getenv("DEBUG", "False"))
        config["PRODUCTION"] = parse_bool(os.getenv("PRODUCTION", "False"))

        log_level = os.getenv("LOG_LEVEL", "DEBUG" if config["DEBUG"] else "INFO").upper()
        if log_level not in LOG_LEVELS:
            _logger.warning("log_level_fallback", requested=log_level, fallback="INFO")
            log_level = "INFO"
        config["LOG_LEVEL"] = log_level
        config["LOG_FILE"] = os.getenv("LOG_FILE") or None

        # #################################################################################### #
        #                            Database Configuration
        # #################################################################################### #
        config["DB_USER"] = validate_env_var("DB_USER", os.getenv("DB_USER"))
        db_password = validate_env_var(
            "DB_PASSWORD", os.getenv("DB_PASSWORD") or os.getenv("DB_PASS")
        )

        db_host = os.getenv("DB_HOST", "localhost")
        if db_host == "localhost" and not os.getenv("DB_HOST"):
            _logger.info("db_host_fallback",
                fallback_value="localhost",
                reason="env_var_not_set",
            )
        config["DB_HOST"] = db_host

        _int_setting(config, "DB_PORT", 3306, auto_clamp)

        config["DB_NAME"] = validate_env_var("DB_NAME", os.getenv("DB_NAME"))
        if len(config["DB_NAME"]) > 64:
            raise ConfigError(
                f"DB_NAME too long: {len(config['DB_NAME'])} characters (max 64)"
            )
        if not re.match(r"^[A-Za-z0-9_]+$", config["DB_NAME"]):
            raise ConfigError(
                f"DB_NAME contains invalid characters. Only alphanumeric and underscore allowed: {config['DB_NAME']}"
            )

        # #################################################################################### #
        #                            Connection Pool Limits
        # #################################################################################### #
        _int_setting(config, "DB_POOL_SIZE", 10, auto_clamp)
        _int_setting(config, "DB_POOL_MIN_IDLE", 2, auto_clamp)
        if config["DB_POOL_MIN_IDLE"] > config["DB_POOL_SIZE"]:
            _logger.warning("config_value_clamped",
                variable="DB_POOL_MIN_IDLE",
                original=config["DB_POOL_MIN_IDLE"],
                clamped=config["DB_POOL_SIZE"],
                reason="above_pool_size",
            )
            config["DB_POOL_MIN_IDLE"] = config["DB_POOL_SIZE"]

        _int_setting(config, "DB_TIMEOUT", 10, auto_clamp)
        _int_setting(config, "DB_IDLE_TIMEOUT", 600, auto_clamp)
        _int_setting(config, "DB_MAX_LIFETIME", 1800, auto_clamp)
        _int_setting(config, "DB_CIRCUIT_BREAKER_THRESHOLD", 5, auto_clamp)

        # #################################################################################### #
        #                            Cache and Legacy Data
        # #################################################################################### #
        _int_setting(config, "CACHE_TTL_SECONDS", 300, auto_clamp)

        legacy_file = validate_env_var(
            "LEGACY_DATA_FILE", os.getenv("LEGACY_DATA_FILE"), required=False
        )
        config["LEGACY_DATA_FILE"] = os.path.abspath(legacy_file) if legacy_file else None

        _logger.info("config_loaded_successfully",
            total_vars=len(config),
            auto_clamp_enabled=auto_clamp,
            legacy_migration=config["LEGACY_DATA_FILE"] is not None,
        )

        config["get_db_password"] = lambda: db_password

        return MappingProxyType(config)

    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(f"Unexpected error during configuration loading: {e}")

# #################################################################################### #
#                            Lazily Cached Configuration
# #################################################################################### #
_config_cache: Optional[Mapping[str, Any]] = None

def _get_config() -> Mapping[str, Any]:
    """Get configuration, loading it on first use."""
    global _config_cache
    if _config_cache is None:
        _config_cache = load_config()
    return _config_cache

def reset_config_cache() -> None:
    """Forget the cached configuration so the next getter reloads it."""
    global _config_cache
    _config_cache = None

def get_debug() -> bool:
    """Get debug mode flag."""
    return _get_config()["DEBUG"]

def get_production() -> bool:
    """Get production mode flag."""
    return _get_config()["PRODUCTION"]

def get_log_level() -> str:
    """Get root log level name."""
    return _get_config()["LOG_LEVEL"]

def get_log_file() -> Optional[str]:
    """Get optional log file path."""
    return _get_config()["LOG_FILE"]

def get_db_user() -> str:
    """Get database user."""
    return _get_config()["DB_USER"]

def get_db_host() -> str:
    """Get database host."""
    return _get_config()["DB_HOST"]

def get_db_port() -> int:
    """Get database port."""
    return _get_config()["DB_PORT"]

def get_db_name() -> str:
    """Get database name."""
    return _get_config()["DB_NAME"]

def get_db_password() -> str:
    """Securely get database password without storing it globally."""
    return _get_config()["get_db_password"]()

def get_db_pool_size() -> int:
    """Get maximum number of pooled connections."""
    return _get_config()["DB_POOL_SIZE"]

def get_db_pool_min_idle() -> int:
    """Get number of idle connections the pool keeps open."""
    return _get_config()["DB_POOL_MIN_IDLE"]

def get_db_timeout() -> int:
    """Get connection acquire timeout in seconds."""
    return _get_config()["DB_TIMEOUT"]

def get_db_idle_timeout() -> int:
    """Get idle connection retirement timeout in seconds."""
    return _get_config()["DB_IDLE_TIMEOUT"]

def get_db_max_lifetime() -> int:
    """Get maximum connection lifetime in seconds."""
    return _get_config()["DB_MAX_LIFETIME"]

def get_db_circuit_breaker_threshold() -> int:
    """Get database circuit breaker threshold."""
    return _get_config()["DB_CIRCUIT_BREAKER_THRESHOLD"]

def get_cache_ttl() -> int:
    """Get directory cache staleness threshold in seconds."""
    return _get_config()["CACHE_TTL_SECONDS"]

def get_legacy_data_file() -> Optional[str]:
    """Get legacy YAML data file path, or None when migration is disabled."""
    return _get_config()["LEGACY_DATA_FILE"]

__all__ = [
    "load_config",
    "reset_config_cache",
    "ConfigError",
    "parse_bool",
    "validate_env_var",
    "validate_int_env_var",
    "validate_ranges",
    "get_debug",
    "get_production",
    "get_log_level",
    "get_log_file",
    "get_db_user",
    "get_db_host",
    "get_db_port",
    "get_db_name",
    "get_db_password",
    "get_db_pool_size",
    "get_db_pool_min_idle",
    "get_db_timeout",
    "get_db_idle_timeout",
    "get_db_max_lifetime",
    "get_db_circuit_breaker_threshold",
    "get_cache_ttl",
    "get_legacy_data_file",
]
