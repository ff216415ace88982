"""HTTP routers for the Portfolio API."""

from portfolio_api.api.admin import router as admin_router
from portfolio_api.api.health import router as health_router

__all__ = ["admin_router", "health_router"]
