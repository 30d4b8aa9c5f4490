# app/services/orchestrator.py - Confidential submission and verification facade

from __future__ import annotations

import asyncio
import logging
from datetime import date
from functools import lru_cache
from typing import Any

from app.config import get_settings
from app.models.operation_status import OperationStatus
from app.models.record import MAX_MORALE_VALUE, MIN_MORALE_VALUE, MoraleStats, Record
from app.providers.fhe_relayer import FheRelayerClient
from app.providers.ledger_store import LedgerStoreGateway
from app.services import record_loader
from app.services.morale_stats import DEFAULT_HIGH_MORALE_THRESHOLD, compute_stats
from app.services.operation_status import OperationStatusTracker
from app.services.session_manager import SessionHandle, SessionManager
from app.services.submission_operations import RecordIdGenerator, execute_submit_record
from app.services.verification_operations import execute_verify_record
from app.utils.exceptions import (
    AlreadyVerifiedRace,
    InvalidMoraleValue,
    LoadFailure,
    NotConnected,
    OrchestratorError,
)

logger = logging.getLogger(__name__)


def _require_identity(identity: str | None) -> str:
    cleaned = identity.strip() if isinstance(identity, str) else ""
    if not cleaned:
        raise NotConnected()
    return cleaned


def _validate_morale_value(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidMoraleValue()
    if not MIN_MORALE_VALUE <= value <= MAX_MORALE_VALUE:
        raise InvalidMoraleValue()
    return value


def _keep_verified(previous: list[Record], loaded: list[Record]) -> list[Record]:
    verified_before = {record.id: record for record in previous if record.is_verified}
    merged: list[Record] = []
    for record in loaded:
        earlier = verified_before.get(record.id)
        if earlier is not None and not record.is_verified:
            logger.warning("Store reported a verified record as unverified", extra={"record_id": record.id})
            merged.append(earlier)
        else:
            merged.append(record)
    return merged


class MoraleOrchestrator:
    """
    The sole surface the presentation layer depends on.

    Owns the session handle, the visible record set and the operation
    status. Triggering actions and reloads queue on one lock so their remote
    writes never interleave and only one status is active at a time.
    """

    def __init__(
        self,
        *,
        store: Any,
        relayer: Any,
        store_address: str,
        tracker: OperationStatusTracker | None = None,
        session: SessionManager | None = None,
        id_generator: RecordIdGenerator | None = None,
        store_plaintext_public_value: bool = True,
        high_morale_threshold: int = DEFAULT_HIGH_MORALE_THRESHOLD,
    ) -> None:
        self._store = store
        self._relayer = relayer
        self.store_address = store_address
        self.tracker = tracker or OperationStatusTracker()
        self.session = session or SessionManager(relayer)
        self._id_generator = id_generator or RecordIdGenerator()
        self._store_plaintext_public_value = store_plaintext_public_value
        self._high_morale_threshold = high_morale_threshold
        self._records: list[Record] = []
        self._operation_lock = asyncio.Lock()
        if store_plaintext_public_value:
            logger.warning("Plaintext morale values are stored as publicValue1 alongside their ciphertext")

    @property
    def records(self) -> list[Record]:
        return list(self._records)

    @property
    def status(self) -> OperationStatus:
        return self.tracker.snapshot()

    def get_record(self, record_id: str) -> Record | None:
        return next((record for record in self._records if record.id == record_id), None)

    def stats(self, *, today: date | None = None) -> MoraleStats:
        return compute_stats(self._records, today=today, high_morale_threshold=self._high_morale_threshold)

    def _report_rejection(self, exc: OrchestratorError) -> None:
        # While the lock is held the running operation owns the status.
        if self._operation_lock.locked():
            logger.info("Rejected while another operation is running", extra={"error": exc.message})
            return
        self.tracker.fail(exc.message)

    async def ensure_ready(self, identity: str | None) -> SessionHandle:
        try:
            return await self.session.ensure_ready(_require_identity(identity))
        except OrchestratorError as exc:
            self._report_rejection(exc)
            raise

    def disconnect(self) -> None:
        self.session.reset()

    async def load_all(self) -> list[Record]:
        async with self._operation_lock:
            try:
                loaded = await record_loader.load_all(self._store)
            except LoadFailure as exc:
                self.tracker.fail(exc.message)
                raise
            self._records = _keep_verified(self._records, loaded)
            return self.records

    async def check_availability(self) -> bool:
        async with self._operation_lock:
            try:
                available = await self._store.check_availability()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Availability check failed", extra={"error": str(exc)})
                self.tracker.fail("Availability check failed")
                return False
            if available:
                self.tracker.succeed("Store is available!")
            else:
                self.tracker.fail("Store is not available")
            return bool(available)

    async def submit(
        self,
        identity: str | None,
        name: str,
        morale_value: Any,
        description: str = "",
    ) -> Record:
        try:
            connected = _require_identity(identity)
            value = _validate_morale_value(morale_value)
        except OrchestratorError as exc:
            self._report_rejection(exc)
            raise

        async with self._operation_lock:
            self.tracker.begin("Creating morale entry with FHE...")
            try:
                session = self.session.require_ready(connected)
                submitted = await execute_submit_record(
                    session=session,
                    store=self._store,
                    relayer=self._relayer,
                    store_address=self.store_address,
                    id_generator=self._id_generator,
                    name=name,
                    morale_value=value,
                    description=description,
                    status=self.tracker,
                    store_plaintext_public_value=self._store_plaintext_public_value,
                )
            except OrchestratorError as exc:
                self.tracker.fail(exc.message)
                raise

            await self._refresh_after_write()
            self.tracker.succeed("Morale entry created!")
            return self.get_record(submitted.record.id) or submitted.record

    async def verify(
        self,
        identity: str | None,
        record_id: str,
        *,
        raise_errors: bool = False,
    ) -> int | None:
        """
        Return the record's clear value, or None when there is nothing new.

        Failures are reported through the operation status; pass
        ``raise_errors`` to also have them raised.
        """
        try:
            connected = _require_identity(identity)
        except NotConnected as exc:
            self._report_rejection(exc)
            if raise_errors:
                raise
            return None

        async with self._operation_lock:
            self.tracker.begin("Decrypting with proof verification...")
            try:
                outcome = await execute_verify_record(
                    identity=connected,
                    record_id=record_id,
                    store=self._store,
                    relayer=self._relayer,
                    store_address=self.store_address,
                    require_session=self.session.require_ready,
                    status=self.tracker,
                )
            except AlreadyVerifiedRace as exc:
                await self._refresh_after_write()
                self.tracker.succeed(exc.message)
                return None
            except OrchestratorError as exc:
                self.tracker.fail(exc.message)
                if raise_errors:
                    raise
                return None

            if outcome.already_verified:
                self.tracker.succeed("Data already verified")
                return outcome.clear_value

            await self._refresh_after_write()
            self.tracker.succeed("Data decrypted successfully!")
            return outcome.clear_value

    async def _refresh_after_write(self) -> None:
        try:
            loaded = await record_loader.load_all(self._store)
        except LoadFailure as exc:
            # The write is already final; keep the previous set.
            logger.warning("Refresh after write failed", extra={"error": exc.message})
            return
        self._records = _keep_verified(self._records, loaded)


@lru_cache
def get_orchestrator() -> MoraleOrchestrator:
    settings = get_settings()
    return MoraleOrchestrator(
        store=LedgerStoreGateway.from_settings(settings),
        relayer=FheRelayerClient.from_settings(settings),
        store_address=settings.store_address,
        tracker=OperationStatusTracker(
            success_reset_seconds=settings.status_success_reset_seconds,
            error_reset_seconds=settings.status_error_reset_seconds,
        ),
        store_plaintext_public_value=settings.store_plaintext_public_value,
        high_morale_threshold=settings.high_morale_threshold,
    )
