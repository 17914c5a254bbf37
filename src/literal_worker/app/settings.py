from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_root() -> Path:
    return Path.home() / ".local" / "share" / "literal"


class Settings(BaseSettings):
    """Runtime configuration for the Literal worker process."""

    model_config = SettingsConfigDict(
        env_prefix="LITERAL_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    data_root: Path = Field(default_factory=_default_data_root)
    image_root: Path | None = Field(
        default=None,
        description="Directory holding generated image blobs (defaults to <data_root>/images).",
    )
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy async URL for the image and lyric index.",
    )
    image_gen_url: str = Field(
        default="http://localhost:7860/generate",
        description="Endpoint of the external image generator.",
    )
    image_gen_timeout_seconds: float = Field(default=300.0, gt=0.0, le=3600.0)
    lyrics_api_url: str = Field(
        default="https://spclient.wg.spotify.com/color-lyrics/v2/track",
        description="Base URL of the synced lyric provider.",
    )
    lyrics_access_token: str | None = Field(
        default=None,
        description="Bearer token sent to the lyric provider.",
    )
    lyrics_timeout_seconds: float = Field(default=30.0, gt=0.0, le=300.0)
    generation_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=3600.0,
        description="Inactivity window after which an unpolled job is reclaimed.",
    )
    throttle_batch_size: int = Field(
        default=3,
        ge=1,
        le=100,
        description="New phrases sent to the generator per throttle interval.",
    )
    throttle_interval_seconds: float = Field(default=10.0, ge=0.0, le=600.0)
    cors_allow_origins: list[str] = Field(default_factory=list)

    @property
    def image_dir(self) -> Path:
        if self.image_root is not None:
            return self.image_root
        return self.data_root / "images"

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.data_root / 'literal.db'}"

    def ensure_directories(self) -> None:
        self.data_root.mkdir(parents=True, exist_ok=True)
        self.image_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_directories()
    return settings
