# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

from fastapi import APIRouter, Query

from app.api.deps import AdminDep, RegistryDep
from app.db import SessionDep
from app.models.enums import ReconciliationRunStatus
from app.schemas.reconciliation import (
    ReconciliationBatchResponse,
    ReconciliationRunListResponse,
    RunReconciliationRequest,
)
from app.services import reconciliation as reconciliation_service

reconciliation_router = APIRouter(
    prefix="/reconciliation",
    tags=["reconciliation"],
)


@reconciliation_router.post("/run", response_model=ReconciliationBatchResponse)
async def run_reconciliation(
    session: SessionDep,
    auth: AdminDep,
    registry: RegistryDep,
    payload: RunReconciliationRequest | None = None,
) -> ReconciliationBatchResponse:
    """Run the period-end pass now instead of waiting for the worker."""
    as_of = payload.as_of if payload else None
    result = await reconciliation_service.run_reconciliation(session, registry, as_of)
    return ReconciliationBatchResponse(
        as_of=result.as_of,
        processed=result.processed,
        reconciled=result.reconciled,
        skipped=result.skipped,
        errors=result.errors,
    )


@reconciliation_router.get("/runs", response_model=ReconciliationRunListResponse)
async def list_runs(
    session: SessionDep,
    auth: AdminDep,
    entity_id: str | None = Query(default=None),
    policy_key: str | None = Query(default=None),
    status_filter: ReconciliationRunStatus | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> ReconciliationRunListResponse:
    """List reconciliation runs."""
    return await reconciliation_service.list_runs(
        session, entity_id=entity_id, policy_key=policy_key, status=status_filter, offset=offset, limit=limit
    )
