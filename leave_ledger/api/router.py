from fastapi import APIRouter

from leave_ledger.api.accruals import credits_admin_router
from leave_ledger.api.credits import hire_date_router, user_credits_router
from leave_ledger.api.requests import requests_router

api_router = APIRouter()
api_router.include_router(user_credits_router)
api_router.include_router(hire_date_router)
api_router.include_router(requests_router)
api_router.include_router(credits_admin_router)
