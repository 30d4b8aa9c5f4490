# app/routers/store.py - Store availability

from fastapi import APIRouter, Depends

from app.routers._responses import DataEnvelope
from app.services.orchestrator import MoraleOrchestrator, get_orchestrator

router = APIRouter()


@router.post("/availability", response_model=DataEnvelope)
async def check_availability(
    orchestrator: MoraleOrchestrator = Depends(get_orchestrator),
):
    available = await orchestrator.check_availability()
    return DataEnvelope(data={"available": available, "store_address": orchestrator.store_address})
