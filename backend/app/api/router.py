from fastapi import APIRouter

from app.api.assignments import entity_assignments_router
from app.api.balances import entity_balance_router
from app.api.holidays import holidays_router
from app.api.policies import router as policies_router
from app.api.reconciliation import reconciliation_router
from app.api.requests import entity_requests_router, requests_router

api_router = APIRouter()
api_router.include_router(policies_router)
api_router.include_router(entity_assignments_router)
api_router.include_router(entity_balance_router)
api_router.include_router(entity_requests_router)
api_router.include_router(requests_router)
api_router.include_router(reconciliation_router)
api_router.include_router(holidays_router)
