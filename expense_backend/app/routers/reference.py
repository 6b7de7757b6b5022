"""Routers for the reference data offered by the expense forms."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response

from .. import schemas
from ..placeholders import placeholder_categories, placeholder_statuses, placeholder_users
from ..procedures import ProcedureGateway, get_gateway
from ..services import ExpenseService
from .common import or_placeholder

categories_router = APIRouter()
users_router = APIRouter()
statuses_router = APIRouter()


@categories_router.get("", response_model=List[schemas.CategoryRead])
def list_categories(
    response: Response, gateway: ProcedureGateway = Depends(get_gateway)
) -> List[schemas.CategoryRead]:
    """Return the active expense categories."""
    return or_placeholder(
        ExpenseService.list_categories(gateway), response, placeholder_categories
    )


@users_router.get("", response_model=List[schemas.UserRead])
def list_users(
    response: Response, gateway: ProcedureGateway = Depends(get_gateway)
) -> List[schemas.UserRead]:
    return or_placeholder(ExpenseService.list_users(gateway), response, placeholder_users)


@statuses_router.get("", response_model=List[schemas.StatusRead])
def list_statuses(
    response: Response, gateway: ProcedureGateway = Depends(get_gateway)
) -> List[schemas.StatusRead]:
    return or_placeholder(ExpenseService.list_statuses(gateway), response, placeholder_statuses)
