from __future__ import annotations

import asyncio
from typing import Any

import pytest

from app.contracts.fhe_relayer import DecryptionProofResult, DecryptionResult, EncryptedInput
from app.models.operation_status import OperationState
from app.providers.ledger_store import StoreError
from app.services.orchestrator import MoraleOrchestrator
from app.utils.exceptions import (
    EncryptionFailure,
    InvalidMoraleValue,
    LoadFailure,
    NotConnected,
    NotReady,
    SessionInitFailure,
    SubmissionFailure,
    UserRejected,
    VerificationFailure,
)

STORE_ADDRESS = "0x" + "ab" * 20


class _Rendezvous:
    def __init__(self, parties: int):
        self.parties = parties
        self.arrived = 0
        self.event = asyncio.Event()

    async def wait(self) -> None:
        self.arrived += 1
        if self.arrived >= self.parties:
            self.event.set()
        await self.event.wait()


class _FakeStore:
    def __init__(self):
        self.records: dict[str, dict[str, Any]] = {}
        self.handles: dict[str, str] = {}
        self.writes: list[tuple[str, str]] = []
        self.failing_details: set[str] = set()
        self.list_error: Exception | None = None
        self.create_error: Exception | None = None
        self.verify_error: Exception | None = None
        self.available = True
        self.tx_gate: asyncio.Event | None = None
        self.detail_gate: asyncio.Event | None = None
        self.parked = asyncio.Event()
        self._tx_count = 0

    def seed(self, record_id: str, *, handle: str, verified: bool = False, value: int = 0, creator: str = "0xABC"):
        self.records[record_id] = {
            "name": f"Team {record_id}",
            "timestamp": "1700000000",
            "creator": creator,
            "publicValue1": value,
            "publicValue2": 0,
            "isVerified": verified,
            "decryptedValue": value if verified else 0,
            "description": "seeded",
        }
        self.handles[record_id] = handle

    def _next_tx(self) -> str:
        self._tx_count += 1
        return f"0xtx{self._tx_count}"

    async def list_record_ids(self) -> list[str]:
        if self.list_error:
            raise self.list_error
        return list(self.records)

    async def get_record(self, record_id: str) -> dict[str, Any]:
        if self.detail_gate is not None:
            self.parked.set()
            await self.detail_gate.wait()
        if record_id in self.failing_details or record_id not in self.records:
            raise StoreError(f"record {record_id} unavailable")
        return dict(self.records[record_id])

    async def get_encrypted_value_handle(self, record_id: str) -> str:
        return self.handles[record_id]

    async def check_availability(self) -> bool:
        return self.available

    async def create_record(self, *, sender, record_id, name, encrypted_data, proof, public_value1, public_value2, description):  # noqa: ANN001
        self.writes.append(("create", record_id))
        if self.create_error:
            raise self.create_error
        self.records[record_id] = {
            "name": name,
            "timestamp": 1700000000,
            "creator": sender,
            "publicValue1": public_value1,
            "publicValue2": public_value2,
            "isVerified": False,
            "decryptedValue": 0,
            "description": description,
        }
        self.handles[record_id] = encrypted_data
        return self._next_tx()

    async def submit_verification(self, *, sender, record_id, abi_encoded_clear_values, decryption_proof):  # noqa: ANN001
        self.writes.append(("verify", record_id))
        if self.verify_error:
            raise self.verify_error
        record = self.records[record_id]
        if record["isVerified"]:
            raise StoreError("execution reverted: Data already verified")
        record["isVerified"] = True
        record["decryptedValue"] = int(abi_encoded_clear_values)
        return self._next_tx()

    async def wait_for_transaction(self, tx_hash: str) -> dict[str, Any]:
        if self.tx_gate is not None:
            self.parked.set()
            await self.tx_gate.wait()
        await asyncio.sleep(0)
        return {"txHash": tx_hash, "status": "confirmed"}


class _FakeRelayer:
    def __init__(self):
        self.secrets: dict[str, int] = {}
        self.session_calls: list[str] = []
        self.encrypt_calls: list[tuple[str, str, int]] = []
        self.init_error: Exception | None = None
        self.encrypt_error: Exception | None = None
        self.rendezvous: _Rendezvous | None = None

    async def initialize_session(self, identity: str) -> None:
        self.session_calls.append(identity)
        await asyncio.sleep(0)
        if self.init_error:
            raise self.init_error

    async def encrypt(self, store_address: str, identity: str, plain_value: int) -> EncryptedInput:
        self.encrypt_calls.append((store_address, identity, plain_value))
        if self.encrypt_error:
            raise self.encrypt_error
        handle = f"0xhandle{len(self.secrets) + 1}"
        self.secrets[handle] = plain_value
        return EncryptedInput(encrypted_data=handle, proof="0xinputproof")

    async def request_decryption_proof(self, handles, store_address, submit) -> DecryptionProofResult:  # noqa: ANN001
        if self.rendezvous is not None:
            await self.rendezvous.wait()
        clear_values = {handle: self.secrets[handle] for handle in handles}
        await submit(str(clear_values[handles[0]]), "0xdecryptionproof")
        return DecryptionProofResult(decryption_result=DecryptionResult(clear_values=clear_values))


def _orchestrator(store: _FakeStore, relayer: _FakeRelayer, **kwargs: Any) -> MoraleOrchestrator:
    return MoraleOrchestrator(store=store, relayer=relayer, store_address=STORE_ADDRESS, **kwargs)


@pytest.mark.asyncio
async def test_fresh_submission_creates_unverified_record_and_reloads():
    store = _FakeStore()
    relayer = _FakeRelayer()
    orchestrator = _orchestrator(store, relayer)
    await orchestrator.ensure_ready("0xABC")

    record = await orchestrator.submit("0xABC", "Team A", 8, "sprint review")

    assert record.is_verified is False
    assert record.public_value1 == 8
    assert record.public_value2 == 0
    assert record.creator == "0xABC"
    assert record.id.startswith("morale-")
    assert relayer.encrypt_calls == [(STORE_ADDRESS, "0xABC", 8)]
    assert store.writes == [("create", record.id)]
    assert [loaded.id for loaded in orchestrator.records] == [record.id]
    assert orchestrator.status.state == OperationState.SUCCESS
    assert orchestrator.status.message == "Morale entry created!"


@pytest.mark.asyncio
async def test_submission_can_omit_plaintext_public_value():
    store = _FakeStore()
    relayer = _FakeRelayer()
    orchestrator = _orchestrator(store, relayer, store_plaintext_public_value=False)
    await orchestrator.ensure_ready("0xABC")

    record = await orchestrator.submit("0xABC", "Team A", 8, "sprint review")

    assert record.public_value1 == 0
    assert relayer.encrypt_calls[0][2] == 8


@pytest.mark.asyncio
@pytest.mark.parametrize("morale_value", [0, 11, "8", True, None])
async def test_invalid_morale_value_is_rejected_before_any_remote_call(morale_value: Any):
    store = _FakeStore()
    relayer = _FakeRelayer()
    orchestrator = _orchestrator(store, relayer)
    await orchestrator.ensure_ready("0xABC")

    with pytest.raises(InvalidMoraleValue):
        await orchestrator.submit("0xABC", "Team A", morale_value, "")

    assert store.writes == []
    assert relayer.encrypt_calls == []
    assert orchestrator.status.state == OperationState.ERROR


@pytest.mark.asyncio
async def test_submit_requires_connected_identity():
    store = _FakeStore()
    orchestrator = _orchestrator(store, _FakeRelayer())

    with pytest.raises(NotConnected):
        await orchestrator.submit(None, "Team A", 5, "")

    assert orchestrator.status.message == "Please connect wallet first"
    assert store.writes == []


@pytest.mark.asyncio
async def test_submit_requires_ready_session():
    store = _FakeStore()
    relayer = _FakeRelayer()
    orchestrator = _orchestrator(store, relayer)

    with pytest.raises(NotReady):
        await orchestrator.submit("0xABC", "Team A", 5, "")

    assert relayer.encrypt_calls == []
    assert store.writes == []


@pytest.mark.asyncio
async def test_encryption_failure_aborts_before_write():
    store = _FakeStore()
    relayer = _FakeRelayer()
    relayer.encrypt_error = RuntimeError("relayer offline")
    orchestrator = _orchestrator(store, relayer)
    await orchestrator.ensure_ready("0xABC")

    with pytest.raises(EncryptionFailure):
        await orchestrator.submit("0xABC", "Team A", 5, "")

    assert store.writes == []
    assert orchestrator.status.state == OperationState.ERROR


@pytest.mark.asyncio
async def test_user_rejection_is_distinguished_from_submission_failure():
    store = _FakeStore()
    relayer = _FakeRelayer()
    orchestrator = _orchestrator(store, relayer)
    await orchestrator.ensure_ready("0xABC")

    store.create_error = StoreError("user rejected transaction")
    with pytest.raises(UserRejected) as rejected:
        await orchestrator.submit("0xABC", "Team A", 5, "")
    assert rejected.value.retryable is False
    assert orchestrator.status.message == "Transaction rejected"

    store.create_error = StoreError("nonce too low")
    with pytest.raises(SubmissionFailure) as failed:
        await orchestrator.submit("0xABC", "Team A", 5, "")
    assert failed.value.message == "Submission failed: nonce too low"
    assert orchestrator.status.state == OperationState.ERROR


@pytest.mark.asyncio
async def test_verify_decrypts_and_marks_record_verified():
    store = _FakeStore()
    relayer = _FakeRelayer()
    orchestrator = _orchestrator(store, relayer)
    await orchestrator.ensure_ready("0xABC")
    record = await orchestrator.submit("0xABC", "Team A", 8, "sprint review")

    clear_value = await orchestrator.verify("0xABC", record.id)

    assert clear_value == 8
    assert store.records[record.id]["isVerified"] is True
    verified = orchestrator.get_record(record.id)
    assert verified is not None
    assert verified.is_verified is True
    assert verified.decrypted_value == 8
    assert orchestrator.status.message == "Data decrypted successfully!"


@pytest.mark.asyncio
async def test_verify_already_verified_record_is_idempotent():
    store = _FakeStore()
    store.seed("morale-1", handle="0xh1", verified=True, value=6)
    relayer = _FakeRelayer()
    orchestrator = _orchestrator(store, relayer)

    first = await orchestrator.verify("0xABC", "morale-1")
    second = await orchestrator.verify("0xABC", "morale-1")

    assert first == second == 6
    assert store.writes == []
    assert store.records["morale-1"]["decryptedValue"] == 6
    assert orchestrator.status.message == "Data already verified"


@pytest.mark.asyncio
async def test_verify_without_identity_returns_none_or_raises():
    orchestrator = _orchestrator(_FakeStore(), _FakeRelayer())

    assert await orchestrator.verify("", "morale-1") is None
    assert orchestrator.status.state == OperationState.ERROR

    with pytest.raises(NotConnected):
        await orchestrator.verify(None, "morale-1", raise_errors=True)


@pytest.mark.asyncio
async def test_verify_failure_reports_error_without_mutating_state():
    store = _FakeStore()
    store.seed("morale-1", handle="0xh1")
    relayer = _FakeRelayer()
    relayer.secrets["0xh1"] = 4
    orchestrator = _orchestrator(store, relayer)
    await orchestrator.ensure_ready("0xABC")
    await orchestrator.load_all()
    store.verify_error = StoreError("proof rejected")

    assert await orchestrator.verify("0xABC", "morale-1") is None

    assert orchestrator.status.state == OperationState.ERROR
    assert orchestrator.status.message == "Decryption failed: proof rejected"
    assert store.records["morale-1"]["isVerified"] is False
    assert orchestrator.get_record("morale-1").is_verified is False

    with pytest.raises(VerificationFailure):
        await orchestrator.verify("0xABC", "morale-1", raise_errors=True)


@pytest.mark.asyncio
async def test_verify_of_unverified_record_requires_ready_session():
    store = _FakeStore()
    store.seed("morale-1", handle="0xh1")
    orchestrator = _orchestrator(store, _FakeRelayer())

    with pytest.raises(NotReady):
        await orchestrator.verify("0xABC", "morale-1", raise_errors=True)
    assert store.writes == []


@pytest.mark.asyncio
async def test_concurrent_verifiers_race_second_returns_none_with_success():
    store = _FakeStore()
    store.seed("morale-1", handle="0xh1")
    relayer = _FakeRelayer()
    relayer.secrets["0xh1"] = 8
    first = _orchestrator(store, relayer)
    second = _orchestrator(store, relayer)
    await first.ensure_ready("0xAAA")
    await second.ensure_ready("0xBBB")
    relayer.rendezvous = _Rendezvous(parties=2)

    results = await asyncio.gather(
        first.verify("0xAAA", "morale-1"),
        second.verify("0xBBB", "morale-1"),
    )

    assert sorted(results, key=lambda value: value is None) == [8, None]
    assert first.status.state == OperationState.SUCCESS
    assert second.status.state == OperationState.SUCCESS
    assert store.records["morale-1"]["isVerified"] is True
    assert store.records["morale-1"]["decryptedValue"] == 8
    assert store.writes == [("verify", "morale-1"), ("verify", "morale-1")]


@pytest.mark.asyncio
async def test_concurrent_operations_on_one_orchestrator_queue():
    store = _FakeStore()
    relayer = _FakeRelayer()
    orchestrator = _orchestrator(store, relayer)
    await orchestrator.ensure_ready("0xABC")
    record = await orchestrator.submit("0xABC", "Team A", 9, "")

    results = await asyncio.gather(
        orchestrator.verify("0xABC", record.id),
        orchestrator.verify("0xABC", record.id),
    )

    assert results == [9, 9]
    assert store.writes.count(("verify", record.id)) == 1


@pytest.mark.asyncio
async def test_rejection_during_running_operation_leaves_its_status_alone():
    store = _FakeStore()
    store.tx_gate = asyncio.Event()
    orchestrator = _orchestrator(store, _FakeRelayer())
    await orchestrator.ensure_ready("0xABC")

    running = asyncio.create_task(orchestrator.submit("0xABC", "Team A", 8, ""))
    await store.parked.wait()
    assert orchestrator.status.state == OperationState.PENDING
    assert orchestrator.status.message == "Waiting for transaction..."

    with pytest.raises(InvalidMoraleValue):
        await orchestrator.submit("0xABC", "Team B", 0, "")
    with pytest.raises(NotConnected):
        await orchestrator.submit(None, "Team B", 5, "")
    assert await orchestrator.verify(None, "morale-1") is None
    with pytest.raises(NotConnected):
        await orchestrator.ensure_ready(None)

    assert orchestrator.status.state == OperationState.PENDING
    assert orchestrator.status.message == "Waiting for transaction..."

    store.tx_gate.set()
    record = await running

    assert orchestrator.status.state == OperationState.SUCCESS
    assert [loaded.id for loaded in orchestrator.records] == [record.id]
    assert store.writes == [("create", record.id)]


@pytest.mark.asyncio
async def test_reload_started_before_submit_does_not_drop_new_record():
    store = _FakeStore()
    store.seed("morale-1", handle="0xh1")
    orchestrator = _orchestrator(store, _FakeRelayer())
    await orchestrator.ensure_ready("0xABC")
    store.detail_gate = asyncio.Event()

    reload = asyncio.create_task(orchestrator.load_all())
    await store.parked.wait()
    submitting = asyncio.create_task(orchestrator.submit("0xABC", "Team B", 8, ""))
    await asyncio.sleep(0)
    store.detail_gate.set()

    _, record = await asyncio.gather(reload, submitting)

    assert sorted(loaded.id for loaded in orchestrator.records) == sorted(["morale-1", record.id])
    assert orchestrator.status.message == "Morale entry created!"


@pytest.mark.asyncio
async def test_load_all_skips_failing_records():
    store = _FakeStore()
    for index in range(1, 5):
        store.seed(f"morale-{index}", handle=f"0xh{index}")
    store.failing_details.add("morale-3")
    orchestrator = _orchestrator(store, _FakeRelayer())

    records = await orchestrator.load_all()

    assert [record.id for record in records] == ["morale-1", "morale-2", "morale-4"]
    assert records[0].timestamp == 1700000000


@pytest.mark.asyncio
async def test_load_failure_preserves_previous_records():
    store = _FakeStore()
    store.seed("morale-1", handle="0xh1")
    orchestrator = _orchestrator(store, _FakeRelayer())
    await orchestrator.load_all()

    store.list_error = StoreError("gateway down")
    with pytest.raises(LoadFailure):
        await orchestrator.load_all()

    assert [record.id for record in orchestrator.records] == ["morale-1"]
    assert orchestrator.status.state == OperationState.ERROR


@pytest.mark.asyncio
async def test_verified_flag_never_reverts_across_reloads():
    store = _FakeStore()
    store.seed("morale-1", handle="0xh1", verified=True, value=7)
    orchestrator = _orchestrator(store, _FakeRelayer())
    await orchestrator.load_all()

    store.records["morale-1"]["isVerified"] = False
    store.records["morale-1"]["decryptedValue"] = 0
    records = await orchestrator.load_all()

    assert records[0].is_verified is True
    assert records[0].decrypted_value == 7


@pytest.mark.asyncio
async def test_session_init_failure_is_retryable():
    relayer = _FakeRelayer()
    relayer.init_error = RuntimeError("wasm load failed")
    orchestrator = _orchestrator(_FakeStore(), relayer)

    with pytest.raises(SessionInitFailure):
        await orchestrator.ensure_ready("0xABC")
    assert orchestrator.status.state == OperationState.ERROR

    relayer.init_error = None
    handle = await orchestrator.ensure_ready("0xABC")

    assert handle.identity == "0xABC"
    assert relayer.session_calls == ["0xABC", "0xABC"]


@pytest.mark.asyncio
async def test_check_availability_reports_status():
    store = _FakeStore()
    orchestrator = _orchestrator(store, _FakeRelayer())

    assert await orchestrator.check_availability() is True
    assert orchestrator.status.state == OperationState.SUCCESS

    async def _broken() -> bool:
        raise StoreError("gateway down")

    store.check_availability = _broken
    assert await orchestrator.check_availability() is False
    assert orchestrator.status.message == "Availability check failed"


@pytest.mark.asyncio
async def test_stats_aggregate_verified_records():
    store = _FakeStore()
    for index, value in enumerate([3, 7, 7, 9], start=1):
        store.seed(f"morale-{index}", handle=f"0xh{index}", verified=True, value=value)
    store.seed("morale-5", handle="0xh5")
    orchestrator = _orchestrator(store, _FakeRelayer())
    await orchestrator.load_all()

    stats = orchestrator.stats()

    assert stats.total_entries == 5
    assert stats.verified_count == 4
    assert stats.avg_morale == 6.5
    assert stats.high_morale_count == 3
