from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from app.contracts.fhe_relayer import DecryptionProofResult
from app.contracts.ledger_store import StoreRecordDetail
from app.services.operation_status import OperationStatusTracker
from app.services.record_loader import as_number, normalize_record
from app.services.session_manager import SessionHandle
from app.utils.exceptions import AlreadyVerifiedRace, VerificationFailure

logger = logging.getLogger(__name__)

_ALREADY_VERIFIED_MARKER = "already verified"


class VerificationStore(Protocol):
    async def get_record(self, record_id: str) -> StoreRecordDetail | dict[str, Any]: ...

    async def get_encrypted_value_handle(self, record_id: str) -> str: ...

    async def submit_verification(
        self,
        *,
        sender: str,
        record_id: str,
        abi_encoded_clear_values: str,
        decryption_proof: str,
    ) -> str: ...

    async def wait_for_transaction(self, tx_hash: str) -> Any: ...


class DecryptionProver(Protocol):
    async def request_decryption_proof(
        self,
        handles: list[str],
        store_address: str,
        submit: Callable[[str, str], Awaitable[Any]],
    ) -> DecryptionProofResult: ...


@dataclass(frozen=True)
class VerificationOutcome:
    clear_value: int
    already_verified: bool = False


def is_already_verified_rejection(exc: BaseException) -> bool:
    return _ALREADY_VERIFIED_MARKER in str(exc).lower()


async def execute_verify_record(
    *,
    identity: str,
    record_id: str,
    store: VerificationStore,
    relayer: DecryptionProver,
    store_address: str,
    require_session: Callable[[str], SessionHandle],
    status: OperationStatusTracker,
) -> VerificationOutcome:
    """
    Decrypt a record's confidential value and confirm it on the store.

    A record the store already reports as verified short-circuits with its
    stored value. A store rejection because another verifier won the race
    raises AlreadyVerifiedRace; every other failure is VerificationFailure.
    """
    try:
        current = normalize_record(record_id, await store.get_record(record_id))
    except Exception as exc:  # noqa: BLE001
        raise VerificationFailure(f"Decryption failed: {exc}") from exc

    if current.is_verified:
        return VerificationOutcome(clear_value=current.decrypted_value, already_verified=True)

    try:
        handle = await store.get_encrypted_value_handle(record_id)
    except Exception as exc:  # noqa: BLE001
        raise VerificationFailure(f"Decryption failed: {exc}") from exc

    session = require_session(identity)

    async def _submit_verification(abi_encoded_clear_values: str, decryption_proof: str) -> None:
        tx_hash = await store.submit_verification(
            sender=session.identity,
            record_id=record_id,
            abi_encoded_clear_values=abi_encoded_clear_values,
            decryption_proof=decryption_proof,
        )
        status.begin("Verifying decryption...")
        await store.wait_for_transaction(tx_hash)

    try:
        result = await relayer.request_decryption_proof([handle], store_address, _submit_verification)
    except Exception as exc:  # noqa: BLE001
        if is_already_verified_rejection(exc):
            logger.info("Record verified concurrently", extra={"record_id": record_id})
            raise AlreadyVerifiedRace() from exc
        logger.warning("Decryption proof failed", extra={"record_id": record_id, "error": str(exc)})
        raise VerificationFailure(f"Decryption failed: {str(exc) or 'Unknown error'}") from exc

    clear_values = result.decryption_result.clear_values
    if handle not in clear_values:
        raise VerificationFailure("Decryption failed: no clear value returned for record handle")
    clear_value = as_number(clear_values[handle])
    logger.info("Record verified", extra={"record_id": record_id})
    return VerificationOutcome(clear_value=clear_value)
