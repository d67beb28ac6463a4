"""Client configuration via environment variables (SSELINK_ prefix) or defaults."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class ClientConfig(BaseSettings):
    default_retry_ms: int = 1000
    connect_timeout: float = 10.0
    read_timeout: float | None = None
    max_line_bytes: int = 16 * 1024 * 1024  # 16 MB
    decode_errors: Literal["replace", "strict"] = "replace"
    open_when_hidden: bool = False
    log_level: str = "INFO"
    log_dir: str | None = None

    model_config = {"env_prefix": "SSELINK_"}
