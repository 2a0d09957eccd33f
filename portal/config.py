"""Configuration management for the portal service.

Loads from YAML config file with environment variable overrides.
Pattern: CONFIG__{SECTION}__{KEY} overrides nested YAML keys.
Example: CONFIG__NOTIFICATION__CHANNELS__WBIZTOOL__ENABLED=true
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


# --- Channel Configs ---


class MetaWhatsAppConfig(BaseModel):
    enabled: bool = True
    api_version: str = "v21.0"
    phone_id: str = ""
    access_token: str = ""  # from env: META_ACCESS_TOKEN


class WbizToolConfig(BaseModel):
    enabled: bool = True
    client_id: str = ""
    api_key: str = ""  # from env: WBIZTOOL_API_KEY
    whatsapp_client_id: str = ""


class EmailConfig(BaseModel):
    enabled: bool = True
    api_key: str = ""  # from env: EMAILIT_API_KEY
    from_address: str = "Portal <notifications@portal.local>"


class ChannelsConfig(BaseModel):
    meta: MetaWhatsAppConfig = MetaWhatsAppConfig()
    wbiztool: WbizToolConfig = WbizToolConfig()
    email: EmailConfig = EmailConfig()


# --- Preferences ---


class QuietHours(BaseModel):
    enabled: bool = False
    start: str = "22:00"
    end: str = "07:00"
    timezone: str = "Asia/Jakarta"


class Preferences(BaseModel):
    batch_limit: int = Field(default=10, ge=1, le=100, description="Rows popped per run")
    chat_bundle_minutes: int = Field(default=5, ge=0)
    billing_reminder_days: list[int] = [7, 3, 1, 0]
    quiet_hours: QuietHours = QuietHours()


class NotificationConfig(BaseModel):
    channels: ChannelsConfig = ChannelsConfig()
    preferences: Preferences = Preferences()


# --- AI Writer ---


class AIConfig(BaseModel):
    enabled: bool = True
    api_key: str = ""  # from env: ANTHROPIC_API_KEY
    model: str = "claude-3-haiku-20240307"
    max_tokens: int = 200


# --- Chat ---


class ChatConfig(BaseModel):
    typing_timeout_s: float = 1.5
    search_debounce_s: float = 0.3
    search_limit: int = 50


# --- Database ---


class DatabaseConfig(BaseModel):
    url: str = "sqlite+aiosqlite:///data/portal.db"  # env DATABASE_URL wins
    echo: bool = False
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)


# --- Auth ---


class AuthConfig(BaseModel):
    jwt_secret: str = "change-me"  # from env: JWT_SECRET_KEY
    algorithm: str = "HS256"
    cron_secret: str = ""  # from env: CRON_SECRET


# --- Service Config ---


class PortalConfig(BaseModel):
    site_url: str = "http://localhost:5173"
    auth: AuthConfig = AuthConfig()
    notification: NotificationConfig = NotificationConfig()
    ai: AIConfig = AIConfig()
    chat: ChatConfig = ChatConfig()
    database: DatabaseConfig = DatabaseConfig()
    storage_dir: str = "data/preferences"


# env var -> (section path, key)
_SECRET_ENV = {
    "META_ACCESS_TOKEN": (("notification", "channels", "meta"), "access_token"),
    "META_PHONE_ID": (("notification", "channels", "meta"), "phone_id"),
    "WBIZTOOL_API_KEY": (("notification", "channels", "wbiztool"), "api_key"),
    "WBIZTOOL_CLIENT_ID": (("notification", "channels", "wbiztool"), "client_id"),
    "WBIZTOOL_WHATSAPP_CLIENT_ID": (("notification", "channels", "wbiztool"), "whatsapp_client_id"),
    "EMAILIT_API_KEY": (("notification", "channels", "email"), "api_key"),
    "ANTHROPIC_API_KEY": (("ai",), "api_key"),
    "JWT_SECRET_KEY": (("auth",), "jwt_secret"),
    "CRON_SECRET": (("auth",), "cron_secret"),
    "SITE_URL": ((), "site_url"),
}


def _apply_env_overrides(config_dict: dict, prefix: str = "CONFIG") -> dict:
    """Apply environment variable overrides to config dict.

    Pattern: CONFIG__SECTION__KEY=value maps to config[section][key] = value
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}__"):
            continue
        parts = key[len(prefix) + 2 :].lower().split("__")
        target = config_dict
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        # Type coercion for common cases
        if value.lower() in ("true", "false"):
            value = value.lower() == "true"
        elif value.isdigit():
            value = int(value)
        target[parts[-1]] = value
    return config_dict


def _apply_secret_env(config_dict: dict) -> dict:
    """Fill secrets from their dedicated env vars unless set in YAML."""
    for env_name, (path, key) in _SECRET_ENV.items():
        value = os.getenv(env_name)
        if not value:
            continue
        target = config_dict
        for part in path:
            target = target.setdefault(part, {})
        if not target.get(key):
            target[key] = value
    return config_dict


def load_config(
    config_path: Optional[str] = None,
) -> PortalConfig:
    """Load configuration from YAML file with env overrides.

    Priority: env vars > YAML file > defaults
    """
    config_dict = {}

    # 1. Load YAML if exists
    if config_path is None:
        config_path = os.getenv("CONFIG_PATH", "config/portal.yml")
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            config_dict = yaml.safe_load(f) or {}

    # 2. Apply env overrides
    config_dict = _apply_env_overrides(config_dict)

    # 3. Secrets from dedicated env vars
    config_dict = _apply_secret_env(config_dict)

    return PortalConfig(**config_dict)


# Singleton for the service
_config: Optional[PortalConfig] = None


def get_config() -> PortalConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Optional[str] = None) -> PortalConfig:
    global _config
    _config = load_config(config_path)
    return _config
