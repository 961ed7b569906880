from __future__ import annotations

import pytest

from recon.core.config import Settings


def test_defaults() -> None:
    s = Settings()
    assert s.max_upload_bytes == 50 * 1024 * 1024
    assert s.allowed_extensions == ["csv", "xlsx", "xls", "ods"]
    assert (s.poll_base_delay_ms, s.poll_max_delay_ms, s.poll_max_attempts) == (250, 750, 150)


def test_lists_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECON_ALLOWED_EXTENSIONS", "CSV, .xlsx")
    monkeypatch.setenv("RECON_CORS_ALLOW_ORIGINS", '["https://recon.example"]')
    s = Settings()
    assert s.allowed_extensions == ["csv", "xlsx"]
    assert s.cors_allow_origins == ["https://recon.example"]


def test_sniff_prefix_floor(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECON_SNIFF_PREFIX_BYTES", "64")
    with pytest.raises(ValueError):
        Settings()
