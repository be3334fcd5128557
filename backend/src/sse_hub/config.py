from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .utilities import constants


class Settings(BaseSettings):
    # ───────────────────────────
    # ▶ server
    # ───────────────────────────
    http_host: str = "127.0.0.1"
    http_port: int = 5000

    # ───────────────────────────
    # ▶ broker
    # ───────────────────────────
    history_size: int = constants.HISTORY_SIZE
    subscriber_queue_size: int = constants.SUBSCRIBER_QUEUE_SIZE
    heartbeat_interval: float = constants.HEARTBEAT_INTERVAL

    # ───────────────────────────
    # ▶ client identity
    # ───────────────────────────
    client_id_cookie: str = constants.CLIENT_ID_COOKIE
    client_id_length: int = constants.CLIENT_ID_LENGTH
    id_seed: Optional[int] = None

    # ───────────────────────────
    # ▶ demo assets / logging
    # ───────────────────────────
    static_dir: Optional[str] = None
    log_level: str = "info"

    model_config = SettingsConfigDict(
        env_prefix="SSE_HUB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
