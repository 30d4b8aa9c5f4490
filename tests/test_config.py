from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.config import Settings

STORE_ADDRESS = "0x" + "Ab" * 20


def test_settings_load_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("STORE_ADDRESS", f" {STORE_ADDRESS} ")
    monkeypatch.setenv("STORE_GATEWAY_URL", "https://gateway.test/")
    monkeypatch.setenv("STATUS_ERROR_RESET_SECONDS", "5")

    settings = Settings()

    assert settings.store_address == STORE_ADDRESS
    assert settings.store_gateway_url == "https://gateway.test"
    assert settings.status_success_reset_seconds == 2.0
    assert settings.status_error_reset_seconds == 5.0
    assert settings.store_plaintext_public_value is True


@pytest.mark.parametrize("address", ["", "0x1234", "ab" * 20, "0x" + "zz" * 20])
def test_settings_reject_invalid_store_address(monkeypatch: pytest.MonkeyPatch, address: str):
    monkeypatch.setenv("STORE_ADDRESS", address)

    with pytest.raises(ValidationError):
        Settings()
