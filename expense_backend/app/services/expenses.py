"""Business logic for expenses."""

from __future__ import annotations

import logging
from typing import Callable, Dict, FrozenSet, List, Optional, TypeVar

from .. import schemas
from ..errors import DataAccessError, ExpenseAppError, ExpenseNotFound, InvalidTransition
from ..models import ExpenseStatusName
from ..money import to_minor_units
from ..procedures import ProcedureGateway
from .results import OperationResult

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ALLOWED_TRANSITIONS: Dict[ExpenseStatusName, FrozenSet[ExpenseStatusName]] = {
    ExpenseStatusName.DRAFT: frozenset({ExpenseStatusName.SUBMITTED}),
    ExpenseStatusName.SUBMITTED: frozenset(
        {ExpenseStatusName.APPROVED, ExpenseStatusName.REJECTED}
    ),
    ExpenseStatusName.APPROVED: frozenset(),
    ExpenseStatusName.REJECTED: frozenset(),
}

_PROCEDURE_FOR_TARGET = {
    ExpenseStatusName.SUBMITTED: "SubmitExpense",
    ExpenseStatusName.APPROVED: "ApproveExpense",
    ExpenseStatusName.REJECTED: "RejectExpense",
}


def can_transition(current: str, target: ExpenseStatusName) -> bool:
    try:
        source = ExpenseStatusName(current)
    except ValueError:
        return False
    return target in ALLOWED_TRANSITIONS[source]


def _run(operation: str, func: Callable[[], T]) -> OperationResult[T]:
    try:
        return OperationResult.ok(func())
    except DataAccessError as exc:
        LOGGER.error("%s: %s", operation, exc, exc_info=exc)
        return OperationResult.failure(exc.to_error_info(operation))
    except ExpenseAppError as exc:
        LOGGER.info("%s: %s", operation, exc)
        return OperationResult.failure(exc.to_error_info(operation))


class ExpenseService:
    """Encapsulates expense queries and status transitions."""

    @staticmethod
    def list_expenses(
        gateway: ProcedureGateway,
        *,
        status: Optional[str] = None,
        user_id: Optional[int] = None,
        search: Optional[str] = None,
    ) -> OperationResult[List[schemas.ExpenseRead]]:
        def query() -> List[schemas.ExpenseRead]:
            rows = gateway.call(
                "GetExpenses", status_name=status, user_id=user_id, search_term=search
            )
            return [schemas.ExpenseRead.from_row(row) for row in rows]

        return _run("Failed to retrieve expenses", query)

    @staticmethod
    def _fetch(gateway: ProcedureGateway, expense_id: int) -> schemas.ExpenseRead:
        row = gateway.call("GetExpenseById", expense_id=expense_id)
        if row is None:
            raise ExpenseNotFound(f"Expense {expense_id} was not found")
        return schemas.ExpenseRead.from_row(row)

    @staticmethod
    def get_expense(
        gateway: ProcedureGateway, expense_id: int
    ) -> OperationResult[schemas.ExpenseRead]:
        return _run(
            f"Failed to retrieve expense {expense_id}",
            lambda: ExpenseService._fetch(gateway, expense_id),
        )

    @staticmethod
    def get_summary(gateway: ProcedureGateway) -> OperationResult[List[schemas.ExpenseSummaryRead]]:
        return _run(
            "Failed to retrieve expense summary",
            lambda: [
                schemas.ExpenseSummaryRead.from_row(row)
                for row in gateway.call("GetExpenseSummary")
            ],
        )

    @staticmethod
    def create_expense(
        gateway: ProcedureGateway, data: schemas.ExpenseCreate
    ) -> OperationResult[int]:
        def create() -> int:
            expense_id = gateway.call(
                "CreateExpense",
                user_id=data.user_id,
                category_id=data.category_id,
                amount_minor=to_minor_units(data.amount),
                currency=data.currency,
                expense_date=data.expense_date,
                description=data.description,
                receipt_file=data.receipt_file,
                submit=data.submit,
            )
            LOGGER.info("Created expense %s for user %s", expense_id, data.user_id)
            return int(expense_id)

        return _run("Failed to create expense", create)

    @staticmethod
    def update_expense(
        gateway: ProcedureGateway, expense_id: int, data: schemas.ExpenseUpdate
    ) -> OperationResult[schemas.ExpenseRead]:
        def apply() -> schemas.ExpenseRead:
            current = ExpenseService._fetch(gateway, expense_id)
            if current.status_name != ExpenseStatusName.DRAFT.value:
                raise InvalidTransition(expense_id, current.status_name, "edited")
            affected = gateway.call(
                "UpdateExpense",
                expense_id=expense_id,
                category_id=data.category_id,
                amount_minor=to_minor_units(data.amount),
                expense_date=data.expense_date,
                description=data.description,
            )
            if not affected:
                latest = ExpenseService._fetch(gateway, expense_id)
                raise InvalidTransition(expense_id, latest.status_name, "edited")
            return ExpenseService._fetch(gateway, expense_id)

        return _run(f"Failed to update expense {expense_id}", apply)

    @staticmethod
    def _transition(
        gateway: ProcedureGateway,
        expense_id: int,
        target: ExpenseStatusName,
        **params,
    ) -> schemas.ExpenseRead:
        current = ExpenseService._fetch(gateway, expense_id)
        if not can_transition(current.status_name, target):
            raise InvalidTransition(expense_id, current.status_name, target.value)
        affected = gateway.call(_PROCEDURE_FOR_TARGET[target], expense_id=expense_id, **params)
        updated = ExpenseService._fetch(gateway, expense_id)
        if not affected:
            # Another request moved the expense between the read and the update.
            raise InvalidTransition(expense_id, updated.status_name, target.value)
        LOGGER.info(
            "Expense %s moved from %s to %s", expense_id, current.status_name, target.value
        )
        return updated

    @staticmethod
    def submit_expense(
        gateway: ProcedureGateway, expense_id: int
    ) -> OperationResult[schemas.ExpenseRead]:
        return _run(
            f"Failed to submit expense {expense_id}",
            lambda: ExpenseService._transition(gateway, expense_id, ExpenseStatusName.SUBMITTED),
        )

    @staticmethod
    def approve_expense(
        gateway: ProcedureGateway, expense_id: int, reviewer_id: int
    ) -> OperationResult[schemas.ExpenseRead]:
        return _run(
            f"Failed to approve expense {expense_id}",
            lambda: ExpenseService._transition(
                gateway, expense_id, ExpenseStatusName.APPROVED, reviewed_by=reviewer_id
            ),
        )

    @staticmethod
    def reject_expense(
        gateway: ProcedureGateway, expense_id: int, reviewer_id: int
    ) -> OperationResult[schemas.ExpenseRead]:
        return _run(
            f"Failed to reject expense {expense_id}",
            lambda: ExpenseService._transition(
                gateway, expense_id, ExpenseStatusName.REJECTED, reviewed_by=reviewer_id
            ),
        )

    @staticmethod
    def delete_expense(gateway: ProcedureGateway, expense_id: int) -> OperationResult[bool]:
        def remove() -> bool:
            affected = gateway.call("DeleteExpense", expense_id=expense_id)
            if not affected:
                raise ExpenseNotFound(f"Expense {expense_id} was not found")
            LOGGER.info("Deleted expense %s", expense_id)
            return True

        return _run(f"Failed to delete expense {expense_id}", remove)

    @staticmethod
    def list_categories(gateway: ProcedureGateway) -> OperationResult[List[schemas.CategoryRead]]:
        return _run(
            "Failed to retrieve categories",
            lambda: [schemas.CategoryRead.from_row(row) for row in gateway.call("GetCategories")],
        )

    @staticmethod
    def list_users(gateway: ProcedureGateway) -> OperationResult[List[schemas.UserRead]]:
        return _run(
            "Failed to retrieve users",
            lambda: [schemas.UserRead.from_row(row) for row in gateway.call("GetUsers")],
        )

    @staticmethod
    def list_statuses(gateway: ProcedureGateway) -> OperationResult[List[schemas.StatusRead]]:
        return _run(
            "Failed to retrieve statuses",
            lambda: [schemas.StatusRead.from_row(row) for row in gateway.call("GetStatuses")],
        )
