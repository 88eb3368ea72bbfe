"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, Request

from payroll_core.payroll import PayrollService


def get_payroll_service(request: Request) -> PayrollService:
    """The service instance bound to the running app."""
    return request.app.state.payroll_service


# Type alias for cleaner dependency injection
Payroll = Annotated[PayrollService, Depends(get_payroll_service)]
