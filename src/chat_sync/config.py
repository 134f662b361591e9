from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    SERVER_URL: str = "ws://localhost:8000"
    WS_PATH: str = "/ws/chat"
    WS_PING_INTERVAL: float | None = 30.0
    WS_OPEN_TIMEOUT: float = 10.0

    RECONCILE_WINDOW_SECONDS: float = 5.0
    STATUS_BUFFER_LIMIT: int = 1000

    TYPING_QUIET_SECONDS: float = 1.0
    TYPING_EXPIRY_SECONDS: float = 5.0

    RECONNECT_ENABLED: bool = True
    RECONNECT_BASE_DELAY: float = 0.5
    RECONNECT_MAX_DELAY: float = 30.0
    RECONNECT_MAX_ATTEMPTS: int = 8

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @property
    def ws_url(self) -> str:
        return f"{self.SERVER_URL.rstrip('/')}{self.WS_PATH}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CHAT_SYNC_",
        extra="ignore",
    )


settings = Settings()
