from __future__ import annotations

import logging
import math
from typing import Any, Protocol

from app.contracts.ledger_store import StoreRecordDetail
from app.models.record import Record
from app.utils.exceptions import LoadFailure

logger = logging.getLogger(__name__)


class RecordReader(Protocol):
    async def list_record_ids(self) -> list[str]: ...

    async def get_record(self, record_id: str) -> StoreRecordDetail | dict[str, Any]: ...


def as_number(value: Any) -> int:
    """Coerce a store numeric field to ``int``; anything unparseable is 0."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            return int(text, 0)
        except ValueError:
            pass
        try:
            parsed = float(text)
        except ValueError:
            return 0
        return int(parsed) if math.isfinite(parsed) else 0
    return 0


def normalize_record(record_id: str, detail: StoreRecordDetail | dict[str, Any]) -> Record:
    parsed = StoreRecordDetail.model_validate(detail)
    return Record(
        id=record_id,
        name=parsed.name,
        description=parsed.description,
        creator=parsed.creator,
        timestamp=as_number(parsed.timestamp),
        public_value1=as_number(parsed.public_value1),
        public_value2=as_number(parsed.public_value2),
        is_verified=parsed.is_verified,
        decrypted_value=as_number(parsed.decrypted_value),
    )


async def load_all(store: RecordReader) -> list[Record]:
    """
    Fetch every record id, then each record's detail.

    Only a failure to list ids raises; a record whose detail cannot be
    fetched or parsed is skipped.
    """
    try:
        record_ids = await store.list_record_ids()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to list record ids", extra={"error": str(exc)})
        raise LoadFailure(f"Failed to load data: {exc}") from exc

    records: list[Record] = []
    for record_id in record_ids:
        try:
            detail = await store.get_record(record_id)
            records.append(normalize_record(record_id, detail))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Skipping record that failed to load",
                extra={"record_id": record_id, "error": str(exc)},
            )
    return records
