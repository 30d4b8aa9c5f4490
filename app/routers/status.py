# app/routers/status.py - Current operation status

from fastapi import APIRouter, Depends

from app.routers._responses import DataEnvelope
from app.services.orchestrator import MoraleOrchestrator, get_orchestrator

router = APIRouter()


@router.get("", response_model=DataEnvelope)
async def current_status(
    orchestrator: MoraleOrchestrator = Depends(get_orchestrator),
):
    return DataEnvelope(data=orchestrator.status.model_dump(mode="json"))
