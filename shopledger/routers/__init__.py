"""API routers."""

from shopledger.routers.imports import router as imports_router
from shopledger.routers.reconciliation import router as reconciliation_router

__all__ = ["imports_router", "reconciliation_router"]
