"""Environment variable validation and management."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    # Everything has a usable default; the table stays so a deployment can
    # promote a variable to required.
    required_vars: Dict[str, str] = {}

    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "LLM_URL": "OpenAI-compatible chat completions endpoint for the tutor",
        "LLM_API_KEY": "Bearer token for the tutor endpoint",
        "MODEL_ID": "Model name sent to the tutor endpoint",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    url_vars = {"LLM_URL"}
    for var in url_vars:
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    for var in ("TUTOR_RATE_LIMIT", "TUTOR_RATE_WINDOW_SECONDS", "TUTOR_RATE_CAPACITY", "LLM_TIMEOUT"):
        value = os.getenv(var)
        if value is None:
            continue
        try:
            parsed = int(value)
        except ValueError:
            raise EnvironmentError(f"{var} must be an integer, got '{value}'")
        if parsed < 1:
            raise EnvironmentError(f"{var} must be positive, got {parsed}")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}

def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable, falling back on bad input."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid integer for %s: '%s'; using %s", name, value, default)
        return default
