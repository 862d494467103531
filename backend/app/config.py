from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Masq API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=False, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )
    cors_allow_origin_regex: str | None = Field(
        default=r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$",
        env="CORS_ALLOW_ORIGIN_REGEX",
        description="Optional regular expression that matches allowed CORS origins",
    )

    database_url: str = Field(default="sqlite+pysqlite:///./masq.db", env="DATABASE_URL")

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60 * 24, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    websocket_keepalive_timeout_seconds: float = Field(
        default=30.0,
        env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS",
        description="Receive timeout after which an idle socket is probed with a ping.",
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=25.0,
        env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS",
        description="Minimum delay between two keepalive pings on an idle socket.",
    )

    max_recent_messages: int = Field(default=50, env="MAX_RECENT_MESSAGES")
    max_room_message_length: int = Field(default=1000, env="MAX_ROOM_MESSAGE_LENGTH")
    default_mute_minutes: int = Field(default=10, env="DEFAULT_MUTE_MINUTES")
    max_mute_minutes: int = Field(default=60, env="MAX_MUTE_MINUTES")
    default_message_decay_minutes: int = Field(default=8, env="DEFAULT_MESSAGE_DECAY_MINUTES")
    ephemeral_room_ttl_minutes: int = Field(
        default=120,
        env="EPHEMERAL_ROOM_TTL_MINUTES",
        description="Lifetime applied to ephemeral rooms created without an explicit expiry.",
    )
    max_masks_per_user: int = Field(default=3, env="MAX_MASKS_PER_USER")
    friend_code_attempts: int = Field(default=8, env="FRIEND_CODE_ATTEMPTS")

    message_rate_limit_window_ms: int = Field(default=4000, env="MESSAGE_RATE_LIMIT_WINDOW_MS")
    room_message_rate_limit_count: int = Field(default=8, env="ROOM_MESSAGE_RATE_LIMIT_COUNT")
    dm_message_rate_limit_count: int = Field(default=10, env="DM_MESSAGE_RATE_LIMIT_COUNT")
    channel_message_rate_limit_count: int = Field(default=10, env="CHANNEL_MESSAGE_RATE_LIMIT_COUNT")

    livekit_url: str | None = Field(
        default=None,
        env="LIVEKIT_URL",
        description="LiveKit server URL handed to clients and used for the server API.",
    )
    livekit_api_key: str | None = Field(default=None, env="LIVEKIT_API_KEY")
    livekit_api_secret: str | None = Field(default=None, env="LIVEKIT_API_SECRET")
    livekit_token_ttl_seconds: int = Field(default=3600, env="LIVEKIT_TOKEN_TTL_SECONDS")
    rtc_server_participant_cap: int = Field(
        default=12,
        env="RTC_SERVER_PARTICIPANT_CAP",
        description="Maximum simultaneous participants in a server channel call (0 disables the cap).",
    )

    media_root: Path = Field(default=Path("./uploads"), env="MEDIA_ROOT", description="Directory for uploaded images")
    max_upload_size: int = Field(default=10 * 1024 * 1024, env="MAX_UPLOAD_SIZE", description="Max image size in bytes")

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def livekit_enabled(self) -> bool:
        return bool(self.livekit_url and self.livekit_api_key and self.livekit_api_secret)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("max_mute_minutes", "default_mute_minutes", "max_recent_messages")
    @classmethod
    def ensure_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be at least 1")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
