from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx

from app.config import Settings
from app.contracts.fhe_relayer import DecryptionProofResult, DecryptionResult, EncryptedInput
from app.providers.common import (
    GatewayError,
    as_str,
    error_message,
    now_ms,
    parse_json_or_raw,
    request_with_retry,
)

logger = logging.getLogger(__name__)

_PROVIDER = "fhe_relayer"
_ENCRYPTED_VALUE_TYPE = "euint32"

SubmitDecryptionCallback = Callable[[str, str], Awaitable[Any]]


class RelayerError(GatewayError):
    provider = _PROVIDER


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


class FheRelayerClient:
    """Encryption subsystem: session setup, input encryption and public decryption proofs."""

    def __init__(
        self,
        *,
        base_url: str,
        chain_id: int,
        api_key: str | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.chain_id = chain_id
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries

    @classmethod
    def from_settings(cls, settings: Settings) -> FheRelayerClient:
        return cls(
            base_url=settings.relayer_url,
            chain_id=settings.chain_id,
            api_key=settings.relayer_api_key,
            timeout_seconds=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        start_ms = now_ms()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await request_with_retry(
                    client,
                    "POST",
                    url,
                    headers=self._headers(),
                    json=payload,
                    max_retries=self._max_retries,
                )
                body = parse_json_or_raw(response.text, response.json)
        except httpx.TimeoutException as exc:
            raise RelayerError("Relayer timed out") from exc
        except httpx.HTTPError as exc:
            raise RelayerError(f"http_error:{exc.__class__.__name__}") from exc

        if response.status_code >= 400:
            logger.warning(
                "Relayer request failed",
                extra={"url": url, "http_status": response.status_code, "duration_ms": now_ms() - start_ms},
            )
            raise RelayerError(
                error_message(body, f"Relayer returned HTTP {response.status_code}"),
                http_status=response.status_code,
                raw_response=body,
            )
        return body

    async def initialize_session(self, identity: str) -> None:
        body = await self._post("/v1/sessions", {"identity": identity, "chainId": self.chain_id})
        if body.get("ready") is False:
            raise RelayerError(error_message(body, "Relayer session not ready"), raw_response=body)

    async def encrypt(self, store_address: str, identity: str, plain_value: int) -> EncryptedInput:
        body = await self._post(
            "/v1/inputs/encrypt",
            {
                "contractAddress": store_address,
                "userAddress": identity,
                "values": [{"type": _ENCRYPTED_VALUE_TYPE, "value": plain_value}],
            },
        )
        handles = _as_list(body.get("handles"))
        encrypted_data = as_str(handles[0]) if handles else None
        proof = as_str(body.get("inputProof"))
        if not encrypted_data or not proof:
            raise RelayerError("Relayer response missing handle or input proof", raw_response=body)
        return EncryptedInput(encrypted_data=encrypted_data, proof=proof)

    async def request_decryption_proof(
        self,
        handles: list[str],
        store_address: str,
        submit: SubmitDecryptionCallback,
    ) -> DecryptionProofResult:
        """Produce a public decryption proof and hand it to ``submit``.

        The callback performs the on-store verification write; its failure
        propagates unchanged so callers can tell a store rejection from a
        relayer failure.
        """
        body = await self._post(
            "/v1/public-decrypt",
            {"handles": list(handles), "contractAddress": store_address},
        )
        clear_values = _as_dict(body.get("clearValues"))
        abi_encoded = as_str(body.get("abiEncodedClearValues"))
        proof = as_str(body.get("decryptionProof"))
        if not abi_encoded or not proof:
            raise RelayerError("Relayer response missing decryption proof", raw_response=body)
        missing = [handle for handle in handles if handle not in clear_values]
        if missing:
            raise RelayerError(f"Relayer did not decrypt handle {missing[0]}", raw_response=body)

        await submit(abi_encoded, proof)

        return DecryptionProofResult(
            decryption_result=DecryptionResult(clear_values=clear_values),
            abi_encoded_clear_values=abi_encoded,
            decryption_proof=proof,
        )
