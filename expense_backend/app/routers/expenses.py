"""Router exposing expense operations."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from .. import schemas
from ..placeholders import placeholder_expenses, placeholder_summary
from ..procedures import ProcedureGateway, get_gateway
from ..services import ExpenseService
from .common import or_placeholder, unwrap

router = APIRouter()


@router.get("", response_model=List[schemas.ExpenseRead])
def list_expenses(
    response: Response,
    gateway: ProcedureGateway = Depends(get_gateway),
    status_name: Optional[str] = Query(
        None, alias="status", description="Filter by status name (Draft, Submitted, ...)"
    ),
    search: Optional[str] = Query(
        None, max_length=200, description="Match description, category or user name"
    ),
    user_id: Optional[int] = Query(None, ge=1, description="Filter by owning user"),
) -> List[schemas.ExpenseRead]:
    """Return expenses newest first, or placeholders when the database is unavailable."""

    result = ExpenseService.list_expenses(
        gateway, status=status_name, user_id=user_id, search=search
    )
    return or_placeholder(result, response, lambda: placeholder_expenses(status_name))


@router.get("/summary", response_model=List[schemas.ExpenseSummaryRead])
def expense_summary(
    response: Response, gateway: ProcedureGateway = Depends(get_gateway)
) -> List[schemas.ExpenseSummaryRead]:
    return or_placeholder(ExpenseService.get_summary(gateway), response, placeholder_summary)


@router.get("/{expense_id}", response_model=schemas.ExpenseRead)
def get_expense(
    expense_id: int, gateway: ProcedureGateway = Depends(get_gateway)
) -> schemas.ExpenseRead:
    return unwrap(ExpenseService.get_expense(gateway, expense_id))


@router.post("", response_model=schemas.ExpenseCreated, status_code=status.HTTP_201_CREATED)
def create_expense(
    expense_in: schemas.ExpenseCreate, gateway: ProcedureGateway = Depends(get_gateway)
) -> schemas.ExpenseCreated:
    expense_id = unwrap(ExpenseService.create_expense(gateway, expense_in))
    return schemas.ExpenseCreated(expense_id=expense_id)


@router.put("/{expense_id}", response_model=schemas.ExpenseRead)
def update_expense(
    expense_id: int,
    expense_in: schemas.ExpenseUpdate,
    gateway: ProcedureGateway = Depends(get_gateway),
) -> schemas.ExpenseRead:
    """Edit a Draft expense."""
    return unwrap(ExpenseService.update_expense(gateway, expense_id, expense_in))


@router.post("/{expense_id}/submit", response_model=schemas.ExpenseRead)
def submit_expense(
    expense_id: int, gateway: ProcedureGateway = Depends(get_gateway)
) -> schemas.ExpenseRead:
    return unwrap(ExpenseService.submit_expense(gateway, expense_id))


@router.post("/{expense_id}/approve", response_model=schemas.ExpenseRead)
def approve_expense(
    expense_id: int,
    review: schemas.ReviewRequest,
    gateway: ProcedureGateway = Depends(get_gateway),
) -> schemas.ExpenseRead:
    return unwrap(ExpenseService.approve_expense(gateway, expense_id, review.reviewer_id))


@router.post("/{expense_id}/reject", response_model=schemas.ExpenseRead)
def reject_expense(
    expense_id: int,
    review: schemas.ReviewRequest,
    gateway: ProcedureGateway = Depends(get_gateway),
) -> schemas.ExpenseRead:
    return unwrap(ExpenseService.reject_expense(gateway, expense_id, review.reviewer_id))


@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_expense(expense_id: int, gateway: ProcedureGateway = Depends(get_gateway)) -> Response:
    unwrap(ExpenseService.delete_expense(gateway, expense_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
