# app/config.py - Pydantic settings (env vars)

import re
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class Settings(BaseSettings):
    # Ledger store gateway (read + write interface of the morale contract)
    store_gateway_url: str = "http://localhost:8080"
    store_address: str
    store_api_key: str | None = None
    chain_id: int = 11155111

    # FHE relayer (session init, input encryption, decryption proofs)
    relayer_url: str = "http://localhost:8090"
    relayer_api_key: str | None = None

    # HTTP runtime settings shared by both adapters
    http_timeout_seconds: float = 30.0
    http_max_retries: int = 3
    tx_poll_interval_ms: int = 1500
    tx_max_wait_ms: int = 120000

    # Operation status display intervals
    status_success_reset_seconds: float = 2.0
    status_error_reset_seconds: float = 3.0

    # Records
    store_plaintext_public_value: bool = True
    high_morale_threshold: int = 7

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @field_validator("store_address")
    @classmethod
    def _validate_store_address(cls, value: str) -> str:
        cleaned = value.strip()
        if not _ADDRESS_RE.match(cleaned):
            raise ValueError("STORE_ADDRESS must be a 0x-prefixed 20-byte hex address")
        return cleaned

    @field_validator("store_gateway_url", "relayer_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if not cleaned:
            raise ValueError("gateway URLs must be non-empty")
        return cleaned


@lru_cache
def get_settings() -> Settings:
    return Settings()
