"""Process configuration loaded from the environment."""

import os
from dataclasses import dataclass

from .errors import ConfigError

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _parse_bool(value):
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_int(name, value, default):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{value}'")


@dataclass(frozen=True)
class Config:
    """Immutable operator configuration, passed to every component that needs it."""

    default_target_namespace: str
    kubeconfig_namespace: str = "fleet-default"
    testing_mode: bool = False
    log_level: str = "INFO"
    metrics_port: int = 8000
    workers: int = 4

    @classmethod
    def from_env(cls, environ=None):
        """
        Build a Config from environment variables.

        DEFAULT_TARGET_NAMESPACE is required; everything else has a default.
        Raises ConfigError listing the missing or malformed variables.
        """
        env = os.environ if environ is None else environ

        required_env_vars = {
            "DEFAULT_TARGET_NAMESPACE": env.get("DEFAULT_TARGET_NAMESPACE"),
        }
        missing_vars = [key for key, value in required_env_vars.items() if not value]
        if missing_vars:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing_vars)}")

        log_level = env.get("LOG_LEVEL", "INFO").upper()
        if log_level not in VALID_LOG_LEVELS:
            log_level = "INFO"

        workers = _parse_int("WORKERS", env.get("WORKERS"), 4)
        if workers < 1:
            raise ConfigError(f"WORKERS must be at least 1, got {workers}")

        return cls(
            default_target_namespace=required_env_vars["DEFAULT_TARGET_NAMESPACE"],
            kubeconfig_namespace=env.get("KUBECONFIG_NAMESPACE") or "fleet-default",
            testing_mode=_parse_bool(env.get("TESTING_MODE", "false")),
            log_level=log_level,
            metrics_port=_parse_int("METRICS_PORT", env.get("METRICS_PORT"), 8000),
            workers=workers,
        )
