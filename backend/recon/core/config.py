from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RECON_", extra="ignore")

    # Upload boundary
    max_upload_bytes: int = 50 * 1024 * 1024
    sniff_prefix_bytes: int = 512
    text_printable_ratio: float = 0.8
    allowed_extensions: Annotated[list[str], NoDecode] = ["csv", "xlsx", "xls", "ods"]
    junk_sample_rows: int = 10

    # Script execution
    script_grace_ms: int = 300
    result_preview_limit: int = 1000

    # Session polling schedule
    poll_base_delay_ms: int = 250
    poll_backoff_factor: float = 1.1
    poll_max_delay_ms: int = 750
    poll_max_attempts: int = 150

    session_transport: Literal["http", "file"] = "http"
    generator_submit_url: str = "http://localhost:8787/send-instruction"
    # Must contain "{session_id}".
    generator_response_url: str = "http://localhost:8787/responses/{session_id}.json"
    exchange_dir: str = "exchange"

    http_connect_timeout_s: float = 5.0
    http_read_timeout_s: float = 20.0
    http_max_bytes: int = 2_000_000

    log_level: str = "INFO"

    cors_allow_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    @field_validator("cors_allow_origins", "allowed_extensions", mode="before")
    @classmethod
    def _parse_list(cls, v: Any) -> Any:
        # Support either:
        # - JSON array (recommended): RECON_CORS_ALLOW_ORIGINS='["https://your-frontend"]'
        # - Comma-separated string:   RECON_ALLOWED_EXTENSIONS='csv,xlsx'
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                return json.loads(s)
            return [p.strip() for p in s.split(",") if p.strip()]
        return v

    @field_validator("allowed_extensions")
    @classmethod
    def _normalize_extensions(cls, v: list[str]) -> list[str]:
        return [ext.lower().lstrip(".") for ext in v]

    @field_validator("sniff_prefix_bytes")
    @classmethod
    def _min_prefix(cls, v: int) -> int:
        if v < 128:
            raise ValueError("sniff_prefix_bytes must be at least 128")
        return v


settings = Settings()
