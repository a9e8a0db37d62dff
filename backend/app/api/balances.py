# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Query, status

from app.api.deps import AdminDep, AuthDep, RegistryDep
from app.core.amount import Amount
from app.db import SessionDep
from app.schemas.balance import (
    CreateAdjustmentRequest,
    CreateGrantRequest,
    LedgerListResponse,
    ProjectionResponse,
    ResourceBalanceResponse,
    TransactionResponse,
)
from app.services import balance as balance_service

entity_balance_router = APIRouter(
    prefix="/entities/{entity_id}",
    tags=["balances"],
)


@entity_balance_router.get("/balances/{resource_type}", response_model=ResourceBalanceResponse)
async def get_resource_balance(
    entity_id: str,
    resource_type: str,
    session: SessionDep,
    auth: AuthDep,
    registry: RegistryDep,
    as_of: date | None = Query(default=None),
) -> ResourceBalanceResponse:
    """Every active policy balance of one resource type, in consumption order."""
    return await balance_service.get_balance_view(session, registry, entity_id, resource_type, as_of)


@entity_balance_router.get("/balances/{resource_type}/projection", response_model=ProjectionResponse)
async def project_consumption(
    entity_id: str,
    resource_type: str,
    session: SessionDep,
    auth: AuthDep,
    registry: RegistryDep,
    policy_key: str = Query(min_length=1),
    amount: Decimal = Query(gt=0),
    on: date | None = Query(default=None),
) -> ProjectionResponse:
    """Check whether consuming ``amount`` from one policy would be allowed."""
    requested = Amount.of(amount, registry.get(resource_type).unit)
    return await balance_service.project_consumption(session, registry, entity_id, policy_key, requested, on)


@entity_balance_router.get("/ledger", response_model=LedgerListResponse)
async def get_ledger(
    entity_id: str,
    session: SessionDep,
    auth: AuthDep,
    policy_key: str | None = Query(default=None),
    resource_type: str | None = Query(default=None),
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> LedgerListResponse:
    """Paginated ledger transactions for an entity."""
    return await balance_service.get_entity_ledger(
        session,
        entity_id,
        policy_key=policy_key,
        resource_type=resource_type,
        start=start,
        end=end,
        offset=offset,
        limit=limit,
    )


@entity_balance_router.post("/adjustments", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_adjustment(
    entity_id: str,
    payload: CreateAdjustmentRequest,
    session: SessionDep,
    auth: AdminDep,
    registry: RegistryDep,
) -> TransactionResponse:
    """Post a manual adjustment to one of the entity's policies."""
    return await balance_service.create_adjustment(session, auth, registry, entity_id, payload)


@entity_balance_router.post("/grants", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_grant(
    entity_id: str,
    payload: CreateGrantRequest,
    session: SessionDep,
    auth: AdminDep,
    registry: RegistryDep,
) -> TransactionResponse:
    """Credit a policy, either a fixed amount or from reported hours worked."""
    return await balance_service.create_grant(session, auth, registry, entity_id, payload)
