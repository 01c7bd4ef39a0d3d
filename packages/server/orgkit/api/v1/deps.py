"""FastAPI dependencies shared by the v1 routers."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from orgkit.core.auth import get_principal
from orgkit.core.context import OperationContext, Principal
from orgkit.core.middleware import get_request_id
from orgkit.services.registry import UseCases


def get_use_cases(request: Request) -> UseCases:
    return request.app.state.use_cases


async def get_context(
    request_id: str = Depends(get_request_id),
    principal: Optional[Principal] = Depends(get_principal),
) -> OperationContext:
    """Context for the current call.

    A request without a principal still gets a context; the use cases
    reject it with a validation error on field ``principal``.
    """
    return OperationContext.for_principal(principal, request_id=request_id)
