#!/usr/bin/env python3
"""
Centralized configuration.

Sources, strongest first:
    1. keyword arguments (CLI flags, tests)
    2. YAML file (config/config.yaml), sections flattened into fields
    3. environment variables / .env
    4. defaults below
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from twitchapi.auth_manager import DEFAULT_SCOPES as AUTH_SCOPES, scope_to_str

LOGGER = logging.getLogger(__name__)

DEFAULT_SCOPES = " ".join(scope_to_str(scope) for scope in AUTH_SCOPES)

# YAML section -> {key: settings field}
YAML_SECTIONS = {
    "twitch": {
        "client_id": "twitch_client_id",
        "client_secret": "twitch_client_secret",
        "broadcaster_id": "twitch_broadcaster_id",
        "reward_id": "twitch_reward_id",
        "scopes": "twitch_scopes",
        "redirect_uri": "twitch_redirect_uri",
        "validate_interval": "validate_interval",
        "refresh_margin": "refresh_margin",
    },
    "server": {
        "host": "host",
        "port": "port",
        "base_url": "server_base_url",
        "frontend_url": "frontend_url",
        "shutdown_grace": "shutdown_grace",
        "debug": "debug",
    },
    "eventsub": {
        "url": "eventsub_url",
        "reconnect_delay": "reconnect_delay",
        "reconnect_delay_max": "reconnect_delay_max",
        "keepalive_grace": "keepalive_grace",
    },
    "race": {
        "register_command": "register_command",
    },
    "storage": {
        "token_file": "token_file",
        "encryption_key_file": "encryption_key_file",
    },
    "logging": {
        "level": "log_level",
        "dir": "log_dir",
    },
}


def flatten_yaml(raw: dict) -> dict:
    """{"twitch": {"client_id": "x"}} -> {"twitch_client_id": "x"}"""
    values: dict[str, Any] = {}
    for section, content in (raw or {}).items():
        mapping = YAML_SECTIONS.get(section)
        if mapping is None or not isinstance(content, dict):
            LOGGER.warning(f"⚠️ Unknown config section ignored: {section}")
            continue
        for key, value in content.items():
            field_name = mapping.get(key)
            if field_name is None:
                LOGGER.warning(f"⚠️ Unknown config key ignored: {section}.{key}")
                continue
            if field_name == "twitch_scopes" and isinstance(value, (list, tuple)):
                value = " ".join(str(v) for v in value)
            if value is not None:
                values[field_name] = value
    return values


class Settings(BaseSettings):
    """Configuration via environment variables, .env or YAML."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)

    # Twitch
    twitch_client_id: str = ""
    twitch_client_secret: str = ""
    twitch_broadcaster_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("twitch_broadcaster_id", "YOUR_TWITCH_USER_ID"),
    )
    twitch_reward_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("twitch_reward_id", "TWITCH_CHANNEL_POINT_REWARD_ID"),
    )
    twitch_scopes: str = DEFAULT_SCOPES
    twitch_redirect_uri: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    server_base_url: str = ""
    frontend_url: str = "http://localhost:5174"
    shutdown_grace: float = 10.0
    debug: bool = False

    # Storage
    token_file: str = "tokens.json"
    encryption_key_file: str = ".deskrat.key"

    # EventSub
    eventsub_url: str = "wss://eventsub.wss.twitch.tv/ws"
    reconnect_delay: float = 5.0
    reconnect_delay_max: float = 60.0
    keepalive_grace: float = 5.0

    # Credential lifecycle
    validate_interval: float = 3600.0
    refresh_margin: float = 300.0

    # Race
    register_command: str = "!register"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    @model_validator(mode="after")
    def _derive_urls(self) -> "Settings":
        if not self.server_base_url:
            self.server_base_url = f"http://localhost:{self.port}"
        self.server_base_url = self.server_base_url.rstrip("/")
        if not self.twitch_redirect_uri:
            self.twitch_redirect_uri = f"{self.server_base_url}/auth/callback"
        # Empty env values mean "not configured"
        if not self.twitch_broadcaster_id:
            self.twitch_broadcaster_id = None
        if not self.twitch_reward_id:
            self.twitch_reward_id = None
        return self

    @property
    def scope_list(self) -> list[str]:
        return self.twitch_scopes.split()

    def missing_required(self) -> list[str]:
        """Fatal gaps: the server cannot talk to Twitch at all without these."""
        missing = []
        if not self.twitch_client_id:
            missing.append("TWITCH_CLIENT_ID")
        if not self.twitch_client_secret:
            missing.append("TWITCH_CLIENT_SECRET")
        return missing

    def warn_optional(self) -> None:
        if not self.twitch_broadcaster_id:
            LOGGER.warning("⚠️ YOUR_TWITCH_USER_ID not set: EventSub subscriptions and subscriber list disabled")
        if not self.twitch_reward_id:
            LOGGER.warning("⚠️ TWITCH_CHANNEL_POINT_REWARD_ID not set: betting disabled")

    @classmethod
    def from_yaml(cls, path: Optional[str] = None, **overrides: Any) -> "Settings":
        """Load YAML (if given/present), then apply non-None overrides."""
        values: dict[str, Any] = {}
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")
            with open(config_path, "r", encoding="utf-8") as f:
                values.update(flatten_yaml(yaml.safe_load(f) or {}))
            LOGGER.info(f"📄 Config loaded from {config_path}")
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
