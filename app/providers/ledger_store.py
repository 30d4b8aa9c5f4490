from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx

from app.config import Settings
from app.contracts.ledger_store import StoreRecordDetail, TransactionReceipt
from app.providers.common import (
    GatewayError,
    as_str,
    error_message,
    now_ms,
    parse_json_or_raw,
    request_with_retry,
)

logger = logging.getLogger(__name__)

_PROVIDER = "ledger_store"
_PENDING_TX_STATUSES = {"pending", "submitted", "queued"}
_CONFIRMED_TX_STATUSES = {"confirmed", "success", "mined"}


class StoreError(GatewayError):
    provider = _PROVIDER


class LedgerStoreGateway:
    """Read and write interface of the morale contract, via the store gateway."""

    def __init__(
        self,
        *,
        base_url: str,
        store_address: str,
        api_key: str | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        poll_interval_ms: int = 1500,
        max_wait_ms: int = 120000,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.store_address = store_address
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._poll_interval_ms = poll_interval_ms
        self._max_wait_ms = max_wait_ms

    @classmethod
    def from_settings(cls, settings: Settings) -> LedgerStoreGateway:
        return cls(
            base_url=settings.store_gateway_url,
            store_address=settings.store_address,
            api_key=settings.store_api_key,
            timeout_seconds=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
            poll_interval_ms=settings.tx_poll_interval_ms,
            max_wait_ms=settings.tx_max_wait_ms,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    def _record_path(self, record_id: str) -> str:
        return f"/contracts/{self.store_address}/records/{quote(record_id, safe='')}"

    async def _call(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        start_ms = now_ms()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await request_with_retry(
                    client,
                    method,
                    url,
                    headers=self._headers(),
                    json=json,
                    max_retries=self._max_retries,
                )
                body = parse_json_or_raw(response.text, response.json)
        except httpx.TimeoutException as exc:
            raise StoreError("Store gateway timed out") from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"http_error:{exc.__class__.__name__}") from exc

        if response.status_code >= 400:
            logger.warning(
                "Store gateway request failed",
                extra={
                    "method": method,
                    "url": url,
                    "http_status": response.status_code,
                    "duration_ms": now_ms() - start_ms,
                },
            )
            raise StoreError(
                error_message(body, f"Store gateway returned HTTP {response.status_code}"),
                http_status=response.status_code,
                raw_response=body,
            )
        return body

    # Read interface

    async def list_record_ids(self) -> list[str]:
        body = await self._call("GET", f"/contracts/{self.store_address}/records")
        ids = body.get("ids")
        if not isinstance(ids, list):
            raise StoreError("Store gateway response missing ids", raw_response=body)
        return [str(record_id) for record_id in ids if record_id not in (None, "")]

    async def get_record(self, record_id: str) -> StoreRecordDetail:
        body = await self._call("GET", self._record_path(record_id))
        return StoreRecordDetail.model_validate(body)

    async def get_encrypted_value_handle(self, record_id: str) -> str:
        body = await self._call("GET", f"{self._record_path(record_id)}/encrypted-value")
        handle = as_str(body.get("handle"))
        if not handle:
            raise StoreError("Store gateway response missing handle", raw_response=body)
        return handle

    async def check_availability(self) -> bool:
        body = await self._call("GET", f"/contracts/{self.store_address}/availability")
        return bool(body.get("available"))

    # Write interface

    async def create_record(
        self,
        *,
        sender: str,
        record_id: str,
        name: str,
        encrypted_data: str,
        proof: str,
        public_value1: int,
        public_value2: int,
        description: str,
    ) -> str:
        body = await self._call(
            "POST",
            f"/contracts/{self.store_address}/records",
            json={
                "from": sender,
                "id": record_id,
                "name": name,
                "encryptedData": encrypted_data,
                "proof": proof,
                "publicValue1": public_value1,
                "publicValue2": public_value2,
                "description": description,
            },
        )
        return self._tx_hash(body)

    async def submit_verification(
        self,
        *,
        sender: str,
        record_id: str,
        abi_encoded_clear_values: str,
        decryption_proof: str,
    ) -> str:
        body = await self._call(
            "POST",
            f"{self._record_path(record_id)}/verification",
            json={
                "from": sender,
                "abiEncodedClearValues": abi_encoded_clear_values,
                "decryptionProof": decryption_proof,
            },
        )
        return self._tx_hash(body)

    async def wait_for_transaction(self, tx_hash: str) -> TransactionReceipt:
        """Poll the gateway until the transaction is final.

        Raises StoreError when the transaction reverts or the wait exceeds
        the configured maximum.
        """
        deadline = now_ms() + self._max_wait_ms
        last_status: str | None = None
        while now_ms() < deadline:
            body = await self._call("GET", f"/transactions/{quote(tx_hash, safe='')}")
            last_status = (as_str(body.get("status")) or "pending").lower()
            if last_status in _CONFIRMED_TX_STATUSES:
                return TransactionReceipt.model_validate({**body, "txHash": tx_hash, "status": last_status})
            if last_status not in _PENDING_TX_STATUSES:
                raise StoreError(
                    error_message(body, f"Transaction {last_status}"),
                    raw_response=body,
                )
            await asyncio.sleep(self._poll_interval_ms / 1000)

        raise StoreError(f"Timed out waiting for transaction {tx_hash} (last status: {last_status})")

    @staticmethod
    def _tx_hash(body: dict[str, Any]) -> str:
        tx_hash = as_str(body.get("txHash")) or as_str(body.get("tx_hash"))
        if not tx_hash:
            raise StoreError("Store gateway response missing transaction hash", raw_response=body)
        return tx_hash
