from __future__ import annotations

from typing import cast

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CATALOG_ENDPOINTS = ",".join(
    [
        "skins_not_grouped.json",
        "stickers.json",
        "crates.json",
        "agents.json",
        "keys.json",
        "patches.json",
        "graffiti.json",
        "music_kits.json",
        "collectibles.json",
        "keychains.json",
    ]
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="", case_sensitive=False)

    STEAM_COMMUNITY_BASE: AnyHttpUrl = Field(
        default=cast(AnyHttpUrl, "https://steamcommunity.com")
    )
    STEAM_APP_ID: int = Field(default=730, ge=1)
    STEAM_LOGIN_SECURE: str | None = None
    STEAM_SESSION_ID: str | None = None

    CATALOG_BASE: AnyHttpUrl = Field(default=cast(AnyHttpUrl, "https://api.cs2data.gg/en"))
    CATALOG_ENDPOINTS: str = Field(default=DEFAULT_CATALOG_ENDPOINTS)

    USER_AGENT: str = Field(default="steam-prices/1.0")
    REQUEST_TIMEOUT: float = Field(default=20.0, gt=0.0)

    # Global ceiling; 0 disables the inter-batch sleep
    REQUESTS_PER_MINUTE: int = Field(default=20, ge=0)
    BATCH_SIZE: int = Field(default=1, ge=1)
    MAX_DURATION: float = Field(default=3600 * 5.7, gt=0.0)  # seconds

    RETRY_MAX: int = Field(default=3, ge=0)
    RETRY_BASE_DELAY: float = Field(default=5.0, ge=0.0)
    LOGIN_RETRY_MAX: int = Field(default=3, ge=0)
    LOGIN_RETRY_DELAY: float = Field(default=10.0, ge=0.0)

    DATA_DIR: str = Field(default="static")

    LOG_LEVEL: str = Field(default="INFO")

    def catalog_endpoints(self) -> list[str]:
        return [e.strip() for e in self.CATALOG_ENDPOINTS.split(",") if e.strip()]


settings = Settings()
