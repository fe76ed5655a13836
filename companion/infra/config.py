from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json


class Settings(BaseSettings):
    # Completion endpoint
    completion_endpoint: str = Field(default="http://localhost:8787/v1/chat/stream")
    completion_api_key: Optional[str] = Field(default=None)
    completion_model: str = Field(default="companion-default")
    request_timeout_seconds: float = Field(default=60.0)

    # Database
    database_url: str = Field(default="sqlite://companion.db")

    # Environment
    environment: str = Field(default="development")

    # CORS
    cors_origins: List[str] = Field(default=["http://localhost:5173"])

    # Context assembly
    default_memory_rounds: int = Field(default=10)
    lore_char_budget: int = Field(default=12000)
    max_context_chars: int = Field(default=60000)
    background_turns: int = Field(default=10)
    status_history_limit: int = Field(default=5)
    history_fetch_limit: int = Field(default=200)

    # Segment delivery pacing
    pacing_base_seconds: float = Field(default=0.4)
    pacing_jitter_seconds: float = Field(default=0.2)

    # Rate limiting
    reply_rate_limit: str = Field(default="30/minute")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator("completion_endpoint")
    @classmethod
    def validate_completion_endpoint(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("COMPLETION_ENDPOINT must be an http(s) URL")
        return v

    @field_validator(
        "lore_char_budget",
        "max_context_chars",
        "history_fetch_limit",
        "request_timeout_seconds",
    )
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("budgets and limits must be positive")
        return v

    @field_validator(
        "default_memory_rounds",
        "background_turns",
        "status_history_limit",
        "pacing_base_seconds",
        "pacing_jitter_seconds",
    )
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )
