"""
Configuration for the JMAP MCP server.

Credentials come from environment variables (optionally via a .env file)
and fall back to a JSON config file when the environment is incomplete.
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "jmap-config.json"
DEFAULT_TIMEOUT = 30.0


class JmapConfig(BaseModel):
    """Credentials and connection settings for one JMAP account."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    base_url: str = Field(..., alias="baseUrl", description="Base URL of the JMAP server")
    username: str = Field(..., min_length=1, description="Login name or email address")
    password: str = Field(..., min_length=1, description="Password or app token")
    account_id: Optional[str] = Field(None, alias="accountId", description="Explicit account ID override")
    identity_id: Optional[str] = Field(None, alias="identityId", description="Identity used for EmailSubmission")
    timeout: float = Field(DEFAULT_TIMEOUT, gt=0, description="HTTP timeout in seconds")

    @field_validator("base_url")
    @classmethod
    def base_url_must_be_http(cls, v):
        """Require an http(s) URL and drop any trailing slash."""
        v = v.strip().rstrip("/")
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"baseUrl must be an http(s) URL, got {v!r}")
        return v

    @field_validator("account_id", "identity_id")
    @classmethod
    def blank_is_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v

    @property
    def hostname(self) -> str:
        return urlparse(self.base_url).hostname or ""

    @property
    def sender_address(self) -> str:
        """
        Address used as From and envelope mailFrom.

        A bare username gets the base URL's hostname as its domain, with a
        leading ``mail.`` removed.
        """
        if "@" in self.username:
            return self.username
        domain = self.hostname
        if domain.startswith("mail."):
            domain = domain[len("mail."):]
        return f"{self.username}@{domain}"


def config_from_env(env: Optional[Mapping[str, str]] = None) -> Optional[JmapConfig]:
    """Build a config from JMAP_* environment variables, or None if incomplete."""
    env = os.environ if env is None else env

    base_url = env.get("JMAP_BASE_URL")
    username = env.get("JMAP_USERNAME")
    password = env.get("JMAP_PASSWORD")
    if not base_url or not username or not password:
        return None

    data = {
        "base_url": base_url,
        "username": username,
        "password": password,
        "account_id": env.get("JMAP_ACCOUNT_ID"),
        "identity_id": env.get("JMAP_IDENTITY_ID"),
    }
    if env.get("JMAP_TIMEOUT"):
        data["timeout"] = env["JMAP_TIMEOUT"]
    return JmapConfig(**data)


def candidate_config_paths(env: Optional[Mapping[str, str]] = None) -> List[Path]:
    """Config file locations in lookup order."""
    env = os.environ if env is None else env
    paths = []
    if env.get("JMAP_CONFIG_PATH"):
        paths.append(Path(env["JMAP_CONFIG_PATH"]).expanduser())
    paths.append(Path.cwd() / DEFAULT_CONFIG_FILENAME)
    paths.append(Path.home() / f".{DEFAULT_CONFIG_FILENAME}")
    return paths


def config_from_file(path: Path) -> JmapConfig:
    """Parse and validate a JSON config file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return JmapConfig.model_validate(data)


def load_config(env: Optional[Mapping[str, str]] = None) -> Optional[JmapConfig]:
    """
    Resolve credentials for auto-connect at startup.

    Environment variables win. Otherwise the first config file that exists
    and validates is used; unreadable or invalid files are logged and skipped.

    Args:
        env: Environment mapping (defaults to os.environ after loading .env)

    Returns:
        JmapConfig, or None if nothing usable was found
    """
    if env is None:
        load_dotenv()
    source = os.environ if env is None else env

    logger.info(
        "JMAP environment: "
        + ", ".join(
            f"{name}={'SET' if source.get(name) else 'NOT SET'}"
            for name in ("JMAP_BASE_URL", "JMAP_USERNAME", "JMAP_PASSWORD", "JMAP_ACCOUNT_ID")
        )
    )

    try:
        config = config_from_env(env)
    except ValidationError as e:
        logger.error(f"Invalid JMAP environment configuration: {e}")
        config = None

    if config:
        logger.info(f"Using environment configuration for {config.base_url} as {config.username}")
        return config

    for path in candidate_config_paths(env):
        if not path.exists():
            continue
        try:
            config = config_from_file(path)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Failed to read config from {path}: {e}")
            continue
        logger.info(f"Loaded config from {path}")
        return config

    logger.warning("No valid JMAP configuration found")
    return None
