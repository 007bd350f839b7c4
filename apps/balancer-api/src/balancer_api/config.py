"""API configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"
    cors_origins: list[str] = ["http://localhost:3000"]
    apply_wait_timeout: float = 30.0  # POST /nginx/reload waits this long for its run

    model_config = {"env_prefix": "BALANCER_API_"}


settings = Settings()
