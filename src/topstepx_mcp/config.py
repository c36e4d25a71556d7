"""
Configuration
=============
Environment-driven settings for the TopstepX MCP server.

Values are read from the process environment after an optional ``.env``
file has been loaded with python-dotenv.
"""

import logging
import os
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigurationError

logger = logging.getLogger("topstepx-mcp.config")

# ==========================================
# Constants
# ==========================================

SERVER_NAME = "topstepx-mcp-server"
RESOURCE_SCHEME = "topstepx"

LOGIN_TIMEOUT = 10.0  # seconds
REQUEST_TIMEOUT = 30.0  # seconds
TOKEN_LIFETIME_HOURS = 24
DEFAULT_REFRESH_INTERVAL = 300  # seconds

# Micro futures loaded eagerly at startup and on every refresh
COMMON_SYMBOLS: Tuple[str, ...] = ("MES", "MNQ", "MYM", "M2K", "MGC", "MCL", "MBT", "MET")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class Environment(str, Enum):
    """Supported API deployments."""
    DEMO = "demo"
    LIVE = "live"


API_URLS: Dict[Environment, str] = {
    Environment.DEMO: "https://api.topstepx.com/api",
    Environment.LIVE: "https://gateway-api.s2f.projectx.com/api",
}

_ENVIRONMENT_ALIASES = {"topstepx": Environment.DEMO}


def parse_environment(value: Optional[str]) -> Environment:
    """Map an environment flag to a supported deployment, rejecting anything else."""
    if not value:
        return Environment.DEMO
    key = value.strip().lower()
    if key in _ENVIRONMENT_ALIASES:
        return _ENVIRONMENT_ALIASES[key]
    try:
        return Environment(key)
    except ValueError:
        supported = ", ".join(e.value for e in Environment)
        raise ConfigurationError(
            f"Unsupported TOPSTEPX_ENVIRONMENT '{value}'. Must be one of: {supported}"
        ) from None


def _first_set(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = (env.get(name) or "").strip()
        if value:
            return value
    return None


# ==========================================
# Settings
# ==========================================

class Settings(BaseModel):
    """Runtime settings for the server."""
    model_config = ConfigDict(frozen=True)

    environment: Environment = Field(
        default=Environment.DEMO,
        description="API deployment to talk to"
    )
    api_url: str = Field(
        default=API_URLS[Environment.DEMO],
        description="Base URL of the REST API"
    )
    username: Optional[str] = Field(default=None, description="Account user name")
    api_key: Optional[str] = Field(default=None, description="API key for /Auth/loginKey")
    refresh_interval: float = Field(
        default=DEFAULT_REFRESH_INTERVAL,
        description="Seconds between reference data refreshes",
        gt=0
    )
    common_symbols: Tuple[str, ...] = Field(
        default=COMMON_SYMBOLS,
        description="Symbols loaded eagerly into the contract cache"
    )
    log_level: str = Field(default="INFO", description="Root log level")
    login_timeout: float = Field(default=LOGIN_TIMEOUT, gt=0)
    request_timeout: float = Field(default=REQUEST_TIMEOUT, gt=0)

    @field_validator("common_symbols")
    @classmethod
    def normalize_symbols(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        symbols: List[str] = []
        for symbol in v:
            symbol = symbol.strip().upper()
            if symbol and symbol not in symbols:
                symbols.append(symbol)
        return tuple(symbols)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level == "WARN":
            level = "WARNING"
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.api_key)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None,
                 dotenv: bool = True) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read instead of ``os.environ`` (used by tests)
            dotenv: Load a ``.env`` file into ``os.environ`` first

        Raises:
            ConfigurationError: On an unsupported environment or malformed value
        """
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ

        environment = parse_environment(env.get("TOPSTEPX_ENVIRONMENT"))
        values = {
            "environment": environment,
            "api_url": (_first_set(env, "TOPSTEPX_API_URL") or API_URLS[environment]).rstrip("/"),
            "username": _first_set(env, "TOPSTEPX_USERNAME", "PROJECTX_USERNAME"),
            "api_key": _first_set(env, "TOPSTEPX_API_KEY", "PROJECTX_API_KEY"),
            "log_level": env.get("LOG_LEVEL") or "INFO",
        }

        interval = _first_set(env, "TOPSTEPX_REFRESH_INTERVAL")
        if interval:
            values["refresh_interval"] = interval

        symbols = _first_set(env, "TOPSTEPX_COMMON_SYMBOLS")
        if symbols:
            values["common_symbols"] = tuple(symbols.split(","))

        try:
            return cls(**values)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
