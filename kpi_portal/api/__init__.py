"""
Backend API package initialization.

This package contains FastAPI router modules for the KPI Portal:
- sales: Sales top cards, closer / setter / DM setter tabs, team directory
- home: Home dashboard summary and recent transactions
- marketing: Ads and email dashboards
- csm: Customer success cards, client lists, onboarding, payment plans
- payments: Closer/setter reassignment for a payment
"""

from fastapi import APIRouter

# Import router modules
from kpi_portal.api.sales import router as sales_router
from kpi_portal.api.home import router as home_router
from kpi_portal.api.marketing import router as marketing_router
from kpi_portal.api.csm import router as csm_router
from kpi_portal.api.payments import router as payments_router

# Create main API router; every sub-router carries its own prefix
api_router = APIRouter()

api_router.include_router(sales_router)
api_router.include_router(home_router)
api_router.include_router(marketing_router)
api_router.include_router(csm_router)
api_router.include_router(payments_router)

# Export all routers for selective imports
__all__ = [
    "api_router",
    "sales_router",
    "home_router",
    "marketing_router",
    "csm_router",
    "payments_router",
]
