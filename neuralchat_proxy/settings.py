from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    hf_api_token: str | None = None
    candidates_config_path: str | None = None
    chat_completions_base_url: str = "https://router.huggingface.co/v1"
    raw_generation_base_url: str = "https://api-inference.huggingface.co/models"
    upstream_connect_timeout_seconds: float = 5.0
    upstream_read_timeout_seconds: float = 60.0
    upstream_write_timeout_seconds: float = 30.0
    upstream_pool_timeout_seconds: float = 5.0
    audit_log_enabled: bool = False
    audit_log_path: str = "logs/chat_proxy_attempts.jsonl"

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def api_token(self) -> str | None:
        token = (self.hf_api_token or "").strip()
        return token or None


@lru_cache
def get_settings() -> Settings:
    return Settings()
