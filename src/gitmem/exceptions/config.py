"""Configuration exceptions: settings files, environment, credentials."""

from typing import Any

from .base import GitmemError


class ConfigurationError(GitmemError):
    """Base class for configuration-related errors."""

    code = "CONFIG_ERROR"
    exit_code = 3


class InvalidConfigError(ConfigurationError):
    """Raised when configuration values are invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            f"Invalid configuration for {key}: {value}",
            details={"key": key, "value": str(value), "reason": reason},
        )
        self.key = key
        self.value = value
        self.reason = reason


class MissingCredentialsError(ConfigurationError):
    """Raised when the classification service has no API key to use."""

    code = "API_KEY_ERROR"
    exit_code = 5

    def __init__(self, env_var: str):
        super().__init__(
            f"{env_var} is not set",
            details={"env_var": env_var},
            hint=f"Export {env_var}, or disable AI enrichment with `ai = false` in .gitmem/config.toml",
        )
        self.env_var = env_var
