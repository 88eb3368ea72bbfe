"""API routes."""

from payroll_core.api.routes.adjustments import router as adjustments_router
from payroll_core.api.routes.calculations import router as calculations_router
from payroll_core.api.routes.health import router as health_router
from payroll_core.api.routes.periods import router as periods_router
from payroll_core.api.routes.review import router as review_router

__all__ = [
    "adjustments_router",
    "calculations_router",
    "health_router",
    "periods_router",
    "review_router",
]
