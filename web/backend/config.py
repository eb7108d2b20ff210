#!/usr/bin/env python3
"""
Configuration centralisée (variables d'environnement + .env).
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

TWITCH_DEFAULT_SCOPES = " ".join([
    "user:read:chat",                   # EventSub chat receive
    "moderator:read:followers",
    "channel:read:subscriptions",
    "bits:read",
    "channel:read:polls",
    "channel:read:charity",
    "channel:read:goals",
    "channel:read:hype_train",
    "channel:read:redemptions",
])


class Settings(BaseSettings):
    """Configuration via variables d'environnement."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Application
    application: str = "aonyxengine"
    version: str = "1.0.0"
    environment: str = "production"     # "development" active le mock user
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    log_file: str = ""

    # Storage
    database_path: str = "aonyxengine.db"
    aonyxengine_secret_key: str = ""    # AES-256 key (hex, base64 or 32 raw chars)

    # Caller identity (HS256 JWT)
    jwt_secret: str = ""
    jwt_audience: str = "authenticated"
    mock_user_id: str = "dev_mock_user_id"
    mock_user_email: str = "dev_mock_user_email"

    # Twitch OAuth
    twitch_client_id: str = ""
    twitch_client_secret: str = ""
    twitch_redirect_url: str = "http://localhost:3000/auth/v1/callback"
    twitch_code_endpoint: str = "https://id.twitch.tv/oauth2/authorize"
    twitch_token_endpoint: str = "https://id.twitch.tv/oauth2/token"
    twitch_validate_endpoint: str = "https://id.twitch.tv/oauth2/validate"
    twitch_scopes: str = TWITCH_DEFAULT_SCOPES

    # Discord OAuth
    discord_client_id: str = ""
    discord_client_secret: str = ""
    discord_redirect_url: str = "http://localhost:3000/auth/v1/callback"
    discord_code_endpoint: str = "https://discord.com/api/oauth2/authorize"
    discord_token_endpoint: str = "https://discord.com/api/oauth2/token"
    discord_validate_endpoint: str = "https://discord.com/api/users/@me"
    discord_scopes: str = "identify"

    # EventSub
    eventsub_enabled: bool = True
    twitch_event_wss: str = "wss://eventsub.wss.twitch.tv/ws"
    twitch_subscription_endpoint: str = "https://api.twitch.tv/helix/eventsub/subscriptions"
    config_file: str = "config/config.yaml"

    # Timings
    provider_timeout_seconds: float = 5.0
    state_ttl_seconds: int = 5 * 60
    token_ttl_seconds: int = 60 * 60

    # Pages de redirection après le callback
    redirect_home: str = "/"
    redirect_timeout_seconds: int = 5

    @property
    def is_dev(self) -> bool:
        return self.environment.lower() == "development"

    def missing_required(self) -> List[str]:
        """Names of required settings that are still empty."""
        required = ["aonyxengine_secret_key", "jwt_secret", "twitch_client_id", "twitch_client_secret"]
        return [name.upper() for name in required if not getattr(self, name)]


@lru_cache()
def get_settings() -> Settings:
    """Singleton settings."""
    return Settings()
