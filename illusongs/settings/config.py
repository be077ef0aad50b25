# illusongs/settings/config.py  (Pydantic v2)
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

OPENAI_IMAGE_SIZES = (
    "auto",
    "1024x1024",
    "1536x1024",
    "1024x1536",
    "1792x1024",
    "1024x1792",
    "512x512",
    "256x256",
)
OPENAI_IMAGE_QUALITIES = ("auto", "standard", "hd", "low", "medium", "high")


def _pick_or_default(value: Optional[str], allowed: tuple[str, ...], fallback: str) -> str:
    value = (value or "").strip()
    return value if value in allowed else fallback


class Settings(BaseSettings):
    # ---------- Database ----------
    DATABASE_URL: str = Field(default="")
    RUN_DB_CREATE_ALL: bool = Field(default=False)

    # ---------- Admin access ----------
    # Shared secret for the admin endpoints; unset means admin access is closed.
    ADMIN_API_TOKEN: Optional[str] = Field(default=None)

    # ---------- Songs ----------
    DEFAULT_LANGUAGE: str = Field(default="da")

    # ---------- Image generation ----------
    IMAGE_PROVIDER: Literal["openrouter", "openai_images"] = Field(default="openrouter")

    OPENROUTER_API_KEY: Optional[str] = Field(default=None)
    OPENROUTER_BASE_URL: str = Field(default="https://openrouter.ai/api/v1")
    OPENROUTER_MODEL: str = Field(default="openai/gpt-5-image-mini")
    OPENROUTER_HTTP_REFERER: str = Field(default="https://illusongs.app")
    OPENROUTER_APP_TITLE: str = Field(default="Illusongs Song Generator")

    OPENAI_API_KEY: Optional[str] = Field(default=None)
    OPENAI_BASE_URL: str = Field(default="https://api.openai.com/v1")
    OPENAI_IMAGE_MODEL: str = Field(default="gpt-image-1")
    OPENAI_IMAGE_SIZE: str = Field(default="1024x1536")
    OPENAI_IMAGE_QUALITY: str = Field(default="high")

    # seconds between scheduled dispatches; 0 = scheduler off
    GENERATION_DISPATCH_SECONDS: int = Field(default=0)

    # ---------- Illustration storage ----------
    ILLUSTRATIONS_ROOT: str = Field(default="static/illustrations")
    ILLUSTRATIONS_PUBLIC_BASE: str = Field(default="/static/illustrations")

    # ---------- pydantic-settings config ----------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # allow lower/upper env names
        extra="ignore",
    )

    @property
    def openai_image_size(self) -> str:
        return _pick_or_default(self.OPENAI_IMAGE_SIZE, OPENAI_IMAGE_SIZES, "1024x1536")

    @property
    def openai_image_quality(self) -> str:
        return _pick_or_default(self.OPENAI_IMAGE_QUALITY, OPENAI_IMAGE_QUALITIES, "high")

    @property
    def openrouter_model(self) -> str:
        return self.OPENROUTER_MODEL.strip() or "openai/gpt-5-image-mini"

    @property
    def openai_image_model(self) -> str:
        return self.OPENAI_IMAGE_MODEL.strip() or "gpt-image-1"


settings = Settings()
