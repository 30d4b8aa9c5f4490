# app/main.py - FastAPI app entry point

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from app.routers import (
    health,
    records,
    session,
    status,
    store,
)
from app.utils.exceptions import OrchestratorError

app = FastAPI(
    title="confidential-morale-api",
    description="FHE-backed confidential morale submission and verification",
    version="0.1.0",
)


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(OrchestratorError)
async def orchestrator_error_handler(_: Request, exc: OrchestratorError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "retryable": exc.retryable},
    )

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(session.router, prefix="/api/session", tags=["session"])
app.include_router(records.router, prefix="/api/records", tags=["records"])
app.include_router(store.router, prefix="/api/store", tags=["store"])
app.include_router(status.router, prefix="/api/status", tags=["status"])
