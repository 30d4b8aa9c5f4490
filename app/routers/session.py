# app/routers/session.py - Encryption session lifecycle for the connected identity

from fastapi import APIRouter, Depends

from app.auth import IdentityContext, get_connected_identity
from app.routers._responses import DataEnvelope, ErrorEnvelope
from app.services.orchestrator import MoraleOrchestrator, get_orchestrator

router = APIRouter()


@router.post(
    "/connect",
    response_model=DataEnvelope,
    responses={401: {"model": ErrorEnvelope}, 503: {"model": ErrorEnvelope}},
)
async def connect(
    identity: IdentityContext = Depends(get_connected_identity),
    orchestrator: MoraleOrchestrator = Depends(get_orchestrator),
):
    """Bring the encryption session to ready, then load the visible record set."""
    handle = await orchestrator.ensure_ready(identity.identity)
    records = await orchestrator.load_all()
    return DataEnvelope(
        data={
            "identity": handle.identity,
            "session_state": orchestrator.session.state.value,
            "store_address": orchestrator.store_address,
            "records": [record.model_dump() for record in records],
        }
    )


@router.post("/disconnect", response_model=DataEnvelope)
async def disconnect(
    orchestrator: MoraleOrchestrator = Depends(get_orchestrator),
):
    orchestrator.disconnect()
    return DataEnvelope(data={"session_state": orchestrator.session.state.value})
