# app/routers/records.py - Confidential record submission and verification

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.auth import IdentityContext, get_connected_identity
from app.models.record import RecordCreate
from app.routers._responses import DataEnvelope, ErrorEnvelope, error_response
from app.services.orchestrator import MoraleOrchestrator, get_orchestrator

router = APIRouter()


class RecordListRequest(BaseModel):
    pass


class RecordGetRequest(BaseModel):
    id: str


class RecordVerifyRequest(BaseModel):
    id: str


@router.post("/refresh", response_model=DataEnvelope, responses={502: {"model": ErrorEnvelope}})
async def refresh_records(
    orchestrator: MoraleOrchestrator = Depends(get_orchestrator),
):
    """Reload every record from the store."""
    records = await orchestrator.load_all()
    return DataEnvelope(data=[record.model_dump() for record in records])


@router.post("/list", response_model=DataEnvelope)
async def list_records(
    _: RecordListRequest,
    orchestrator: MoraleOrchestrator = Depends(get_orchestrator),
):
    """Return the currently loaded record set without touching the store."""
    return DataEnvelope(data=[record.model_dump() for record in orchestrator.records])


@router.post("/get", response_model=DataEnvelope, responses={404: {"model": ErrorEnvelope}})
async def get_record(
    payload: RecordGetRequest,
    orchestrator: MoraleOrchestrator = Depends(get_orchestrator),
):
    record = orchestrator.get_record(payload.id)
    if record is None:
        return error_response(f"Record with ID '{payload.id}' not found", 404)
    return DataEnvelope(data=record.model_dump())


@router.post(
    "/submit",
    response_model=DataEnvelope,
    responses={
        401: {"model": ErrorEnvelope},
        409: {"model": ErrorEnvelope},
        422: {"model": ErrorEnvelope},
        502: {"model": ErrorEnvelope},
    },
)
async def submit_record(
    payload: RecordCreate,
    identity: IdentityContext = Depends(get_connected_identity),
    orchestrator: MoraleOrchestrator = Depends(get_orchestrator),
):
    record = await orchestrator.submit(
        identity.identity,
        payload.name,
        payload.morale_value,
        payload.description,
    )
    return DataEnvelope(data=record.model_dump())


@router.post(
    "/verify",
    response_model=DataEnvelope,
    responses={401: {"model": ErrorEnvelope}, 409: {"model": ErrorEnvelope}, 502: {"model": ErrorEnvelope}},
)
async def verify_record(
    payload: RecordVerifyRequest,
    identity: IdentityContext = Depends(get_connected_identity),
    orchestrator: MoraleOrchestrator = Depends(get_orchestrator),
):
    """Decrypt and verify a record; clear_value is null when there is nothing new to report."""
    clear_value = await orchestrator.verify(identity.identity, payload.id, raise_errors=True)
    return DataEnvelope(
        data={
            "id": payload.id,
            "clear_value": clear_value,
            "status": orchestrator.status.model_dump(mode="json"),
        }
    )


@router.post("/stats", response_model=DataEnvelope)
async def record_stats(
    orchestrator: MoraleOrchestrator = Depends(get_orchestrator),
):
    return DataEnvelope(data=orchestrator.stats().model_dump())
