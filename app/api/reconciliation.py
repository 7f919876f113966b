from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from app.dependencies import Principal, get_reconciliation_engine, require_admin
from app.schemas.reconciliation import ForceReconciliationResponse, ReconciliationStatusResponse
from app.services.reconciliation import ReconciliationEngine

router = APIRouter()


@router.get(
    "/status",
    response_model=ReconciliationStatusResponse,
    summary="Reconciliation job status",
)
def reconciliation_status(
    admin: Annotated[Principal, Depends(require_admin)],
    engine: Annotated[ReconciliationEngine, Depends(get_reconciliation_engine)],
):
    return engine.status()


@router.post(
    "/force",
    response_model=ForceReconciliationResponse,
    summary="Run one reconciliation pass now",
)
async def force_reconciliation(
    admin: Annotated[Principal, Depends(require_admin)],
    engine: Annotated[ReconciliationEngine, Depends(get_reconciliation_engine)],
):
    """
    Runs a full pass synchronously and returns its report.
    If a pass is already in flight nothing is run and success is false.
    """
    return await run_in_threadpool(engine.force)
