# classmemory/settings/config.py  (Pydantic v2)
from typing import Literal, Optional
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ---------- Forum store ----------
    FORUM_API_URL: str = Field(
        default="https://foru.ms/api/v1",
        validation_alias=AliasChoices("FORUM_API_URL", "FORUMMS_API_URL"),
    )
    FORUM_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("FORUM_API_KEY", "FORUMMS_API_KEY"),
    )
    FORUM_TIMEOUT_SECONDS: float = 30.0

    # ---------- LLM ----------
    # "offline" compiles notes from contributions without calling a model
    LLM_PROVIDER: Literal["ollama", "openai", "offline"] = "ollama"
    OLLAMA_BASE_URL: str = "http://host.docker.internal:11434"
    OLLAMA_MODEL: str = "llama3.1:8b"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = Field(
        default="gpt-4-turbo-preview",
        validation_alias=AliasChoices("OPENAI_MODEL", "AI_MODEL"),
    )
    LLM_TIMEOUT_SECONDS: float = 90.0

    # ---------- AI generation defaults (per-school records override) ----------
    DEFAULT_MIN_CONTRIBUTIONS: int = 5
    DEFAULT_STUDENT_COOLDOWN_HOURS: float = 2.0
    DEFAULT_TEACHER_COOLDOWN_HOURS: float = 0.5

    # ---------- Sandbox ----------
    SANDBOX_PROVISION_ON_STARTUP: bool = False

    # ---------- App ----------
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "*"  # comma-separated

    # ---------- pydantic-settings config ----------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in (self.ALLOWED_ORIGINS or "").split(",") if o.strip()]


settings = Settings()
