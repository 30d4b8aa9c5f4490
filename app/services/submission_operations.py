from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from app.contracts.fhe_relayer import EncryptedInput
from app.models.record import Record
from app.providers.common import now_ms
from app.services.operation_status import OperationStatusTracker
from app.services.record_loader import as_number
from app.services.session_manager import SessionHandle
from app.utils.exceptions import EncryptionFailure, SubmissionFailure, UserRejected

logger = logging.getLogger(__name__)

_RECORD_ID_PREFIX = "morale"
_USER_REJECTION_MARKERS = ("user rejected", "user denied", "rejected by user")


class InputEncryptor(Protocol):
    async def encrypt(self, store_address: str, identity: str, plain_value: int) -> EncryptedInput: ...


class RecordWriter(Protocol):
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
    ) -> str: ...

    async def wait_for_transaction(self, tx_hash: str) -> Any: ...


class RecordIdGenerator:
    """Time-derived record ids that never repeat within one process."""

    def __init__(self, prefix: str = _RECORD_ID_PREFIX) -> None:
        self._prefix = prefix
        self._last_ms = 0

    def next_id(self) -> str:
        candidate = now_ms()
        if candidate <= self._last_ms:
            candidate = self._last_ms + 1
        self._last_ms = candidate
        return f"{self._prefix}-{candidate}"


@dataclass(frozen=True)
class SubmittedRecord:
    record: Record
    tx_hash: str


def is_user_rejection(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _USER_REJECTION_MARKERS)


def coerce_morale_value(value: Any) -> int:
    coerced = as_number(value)
    return coerced if coerced > 0 else 0


async def execute_submit_record(
    *,
    session: SessionHandle,
    store: RecordWriter,
    relayer: InputEncryptor,
    store_address: str,
    id_generator: RecordIdGenerator,
    name: str,
    morale_value: Any,
    description: str,
    status: OperationStatusTracker,
    store_plaintext_public_value: bool = True,
) -> SubmittedRecord:
    identity = session.identity
    plain_value = coerce_morale_value(morale_value)
    record_id = id_generator.next_id()

    try:
        encrypted = await relayer.encrypt(store_address, identity, plain_value)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Encryption failed", extra={"record_id": record_id, "error": str(exc)})
        raise EncryptionFailure(f"Encryption failed: {exc}") from exc

    public_value1 = plain_value if store_plaintext_public_value else 0
    try:
        tx_hash = await store.create_record(
            sender=identity,
            record_id=record_id,
            name=name,
            encrypted_data=encrypted.encrypted_data,
            proof=encrypted.proof,
            public_value1=public_value1,
            public_value2=0,
            description=description,
        )
        status.begin("Waiting for transaction...")
        await store.wait_for_transaction(tx_hash)
    except Exception as exc:  # noqa: BLE001
        if is_user_rejection(exc):
            raise UserRejected() from exc
        logger.warning("Record submission failed", extra={"record_id": record_id, "error": str(exc)})
        raise SubmissionFailure(f"Submission failed: {str(exc) or 'Unknown error'}") from exc

    logger.info("Record submitted", extra={"record_id": record_id, "tx_hash": tx_hash})
    record = Record(
        id=record_id,
        name=name,
        description=description,
        creator=identity,
        timestamp=int(time.time()),
        public_value1=public_value1,
        public_value2=0,
        encrypted_value_handle=encrypted.encrypted_data,
    )
    return SubmittedRecord(record=record, tx_hash=tx_hash)
