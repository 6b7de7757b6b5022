"""Named, parameterised procedure calls: the only sanctioned data-access path.

On SQL Server the gateway executes the deployed stored procedures
(``sql/stored_procedures.sql``). On any other dialect it runs the SQLAlchemy
implementation registered under the same name, which returns the same column
names so callers never see the difference.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased, sessionmaker
from sqlalchemy.sql.elements import TextClause

from . import models
from .config import get_settings
from .database import get_session_factory
from .errors import ExpenseAppError, classify_database_error
from .models import ExpenseStatusName

LOGGER = logging.getLogger(__name__)

Row = Dict[str, Any]
SessionFactoryProvider = Callable[[], sessionmaker]

RETURNS_ROWS = "rows"
RETURNS_ROW = "row"
RETURNS_SCALAR = "scalar"


@dataclass(frozen=True)
class ProcedureDefinition:
    name: str
    params: tuple[str, ...]
    returns: str
    implementation: Callable[..., List[Row]]

    def sql_parameter(self, key: str) -> str:
        return "".join(part.capitalize() for part in key.split("_"))


PROCEDURES: Dict[str, ProcedureDefinition] = {}


def procedure(name: str, *, params: Sequence[str] = (), returns: str = RETURNS_ROWS):
    """Register ``func`` as the portable implementation of ``dbo.<name>``."""

    def decorator(func: Callable[..., List[Row]]) -> Callable[..., List[Row]]:
        PROCEDURES[name] = ProcedureDefinition(name, tuple(params), returns, func)
        return func

    return decorator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _status_id(name: ExpenseStatusName):
    return (
        select(models.ExpenseStatus.id)
        .where(models.ExpenseStatus.name == name.value)
        .scalar_subquery()
    )


def _expense_select():
    owner = aliased(models.User)
    reviewer = aliased(models.User)
    statement = (
        select(
            models.Expense.id.label("ExpenseId"),
            models.Expense.user_id.label("UserId"),
            owner.name.label("UserName"),
            models.Expense.category_id.label("CategoryId"),
            models.ExpenseCategory.name.label("CategoryName"),
            models.Expense.status_id.label("StatusId"),
            models.ExpenseStatus.name.label("StatusName"),
            models.Expense.amount_minor.label("AmountMinor"),
            models.Expense.currency.label("Currency"),
            models.Expense.expense_date.label("ExpenseDate"),
            models.Expense.description.label("Description"),
            models.Expense.receipt_file.label("ReceiptFile"),
            models.Expense.submitted_at.label("SubmittedAt"),
            models.Expense.reviewed_by.label("ReviewedBy"),
            reviewer.name.label("ReviewedByName"),
            models.Expense.reviewed_at.label("ReviewedAt"),
            models.Expense.created_at.label("CreatedAt"),
        )
        .select_from(models.Expense)
        .join(owner, owner.id == models.Expense.user_id)
        .join(models.ExpenseCategory, models.ExpenseCategory.id == models.Expense.category_id)
        .join(models.ExpenseStatus, models.ExpenseStatus.id == models.Expense.status_id)
        .outerjoin(reviewer, reviewer.id == models.Expense.reviewed_by)
    )
    return statement, owner


def _rows(session: Session, statement) -> List[Row]:
    return [dict(row) for row in session.execute(statement).mappings()]


def _guarded_update(
    session: Session,
    expense_id: int,
    allowed_from: Sequence[ExpenseStatusName],
    values: Mapping[Any, Any],
) -> List[Row]:
    allowed_ids = select(models.ExpenseStatus.id).where(
        models.ExpenseStatus.name.in_([status.value for status in allowed_from])
    )
    statement = (
        update(models.Expense)
        .where(models.Expense.id == expense_id, models.Expense.status_id.in_(allowed_ids))
        .values(values)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(statement)
    return [{"RowsAffected": result.rowcount}]


@procedure("GetExpenses", params=("status_name", "user_id", "search_term"))
def get_expenses(
    session: Session,
    *,
    status_name: Optional[str] = None,
    user_id: Optional[int] = None,
    search_term: Optional[str] = None,
) -> List[Row]:
    statement, owner = _expense_select()
    if status_name:
        statement = statement.where(
            func.lower(models.ExpenseStatus.name) == status_name.strip().lower()
        )
    if user_id is not None:
        statement = statement.where(models.Expense.user_id == user_id)
    if search_term and search_term.strip():
        pattern = f"%{search_term.strip().lower()}%"
        statement = statement.where(
            or_(
                func.lower(func.coalesce(models.Expense.description, "")).like(pattern),
                func.lower(models.ExpenseCategory.name).like(pattern),
                func.lower(owner.name).like(pattern),
            )
        )
    statement = statement.order_by(models.Expense.created_at.desc(), models.Expense.id.desc())
    return _rows(session, statement)


@procedure("GetExpenseById", params=("expense_id",), returns=RETURNS_ROW)
def get_expense_by_id(session: Session, *, expense_id: int) -> List[Row]:
    statement, _ = _expense_select()
    return _rows(session, statement.where(models.Expense.id == expense_id))


@procedure(
    "CreateExpense",
    params=(
        "user_id",
        "category_id",
        "amount_minor",
        "currency",
        "expense_date",
        "description",
        "receipt_file",
        "submit",
    ),
    returns=RETURNS_SCALAR,
)
def create_expense(
    session: Session,
    *,
    user_id: int,
    category_id: int,
    amount_minor: int,
    currency: str,
    expense_date,
    description: Optional[str] = None,
    receipt_file: Optional[str] = None,
    submit: Optional[bool] = False,
) -> List[Row]:
    status = ExpenseStatusName.SUBMITTED if submit else ExpenseStatusName.DRAFT
    status_id = session.execute(
        select(models.ExpenseStatus.id).where(models.ExpenseStatus.name == status.value)
    ).scalar_one()
    now = _utcnow()
    expense = models.Expense(
        user_id=user_id,
        category_id=category_id,
        status_id=status_id,
        amount_minor=amount_minor,
        currency=currency,
        expense_date=expense_date,
        description=description,
        receipt_file=receipt_file,
        submitted_at=now if submit else None,
        created_at=now,
    )
    session.add(expense)
    session.flush()
    return [{"ExpenseId": expense.id}]


@procedure(
    "UpdateExpense",
    params=("expense_id", "category_id", "amount_minor", "expense_date", "description"),
    returns=RETURNS_SCALAR,
)
def update_expense(
    session: Session,
    *,
    expense_id: int,
    category_id: int,
    amount_minor: int,
    expense_date,
    description: Optional[str] = None,
) -> List[Row]:
    return _guarded_update(
        session,
        expense_id,
        (ExpenseStatusName.DRAFT,),
        {
            models.Expense.category_id: category_id,
            models.Expense.amount_minor: amount_minor,
            models.Expense.expense_date: expense_date,
            models.Expense.description: description,
        },
    )


@procedure("SubmitExpense", params=("expense_id",), returns=RETURNS_SCALAR)
def submit_expense(session: Session, *, expense_id: int) -> List[Row]:
    return _guarded_update(
        session,
        expense_id,
        (ExpenseStatusName.DRAFT,),
        {
            models.Expense.status_id: _status_id(ExpenseStatusName.SUBMITTED),
            models.Expense.submitted_at: _utcnow(),
        },
    )


def _review(session: Session, expense_id: int, reviewed_by: int, target: ExpenseStatusName) -> List[Row]:
    return _guarded_update(
        session,
        expense_id,
        (ExpenseStatusName.SUBMITTED,),
        {
            models.Expense.status_id: _status_id(target),
            models.Expense.reviewed_by: reviewed_by,
            models.Expense.reviewed_at: _utcnow(),
        },
    )


@procedure("ApproveExpense", params=("expense_id", "reviewed_by"), returns=RETURNS_SCALAR)
def approve_expense(session: Session, *, expense_id: int, reviewed_by: int) -> List[Row]:
    return _review(session, expense_id, reviewed_by, ExpenseStatusName.APPROVED)


@procedure("RejectExpense", params=("expense_id", "reviewed_by"), returns=RETURNS_SCALAR)
def reject_expense(session: Session, *, expense_id: int, reviewed_by: int) -> List[Row]:
    return _review(session, expense_id, reviewed_by, ExpenseStatusName.REJECTED)


@procedure("DeleteExpense", params=("expense_id",), returns=RETURNS_SCALAR)
def delete_expense(session: Session, *, expense_id: int) -> List[Row]:
    result = session.execute(
        delete(models.Expense)
        .where(models.Expense.id == expense_id)
        .execution_options(synchronize_session=False)
    )
    return [{"RowsAffected": result.rowcount}]


@procedure("GetCategories")
def get_categories(session: Session) -> List[Row]:
    statement = (
        select(
            models.ExpenseCategory.id.label("CategoryId"),
            models.ExpenseCategory.name.label("CategoryName"),
            models.ExpenseCategory.is_active.label("IsActive"),
        )
        .where(models.ExpenseCategory.is_active.is_(True))
        .order_by(models.ExpenseCategory.name)
    )
    return _rows(session, statement)


@procedure("GetUsers")
def get_users(session: Session) -> List[Row]:
    manager = aliased(models.User)
    statement = (
        select(
            models.User.id.label("UserId"),
            models.User.name.label("UserName"),
            models.User.email.label("Email"),
            models.Role.name.label("RoleName"),
            models.User.manager_id.label("ManagerId"),
            manager.name.label("ManagerName"),
            models.User.is_active.label("IsActive"),
            models.User.created_at.label("CreatedAt"),
        )
        .select_from(models.User)
        .join(models.Role, models.Role.id == models.User.role_id)
        .outerjoin(manager, manager.id == models.User.manager_id)
        .where(models.User.is_active.is_(True))
        .order_by(models.User.name)
    )
    return _rows(session, statement)


@procedure("GetStatuses")
def get_statuses(session: Session) -> List[Row]:
    statement = select(
        models.ExpenseStatus.id.label("StatusId"),
        models.ExpenseStatus.name.label("StatusName"),
    ).order_by(models.ExpenseStatus.id)
    return _rows(session, statement)


@procedure("GetExpenseSummary")
def get_expense_summary(session: Session) -> List[Row]:
    statement = (
        select(
            models.ExpenseStatus.name.label("StatusName"),
            func.count(models.Expense.id).label("ExpenseCount"),
            func.coalesce(func.sum(models.Expense.amount_minor), 0).label("TotalAmountMinor"),
        )
        .select_from(models.Expense)
        .join(models.ExpenseStatus, models.ExpenseStatus.id == models.Expense.status_id)
        .group_by(models.ExpenseStatus.name)
        .order_by(models.ExpenseStatus.name)
    )
    return _rows(session, statement)


def build_exec_statement(definition: ProcedureDefinition, params: Mapping[str, Any]) -> TextClause:
    """Return ``EXEC dbo.<name> @Param = :param, ...`` with every value bound."""

    assignments = ", ".join(
        f"@{definition.sql_parameter(key)} = :{key}" for key in definition.params if key in params
    )
    sql = f"EXEC dbo.{definition.name}"
    if assignments:
        sql = f"{sql} {assignments}"
    return text(sql)


class ProcedureGateway:
    """Executes registered procedures, opening one session per call."""

    def __init__(
        self,
        session_factory_provider: SessionFactoryProvider = get_session_factory,
        *,
        use_stored_procedures: Optional[bool] = None,
    ) -> None:
        self._session_factory_provider = session_factory_provider
        self._use_stored_procedures = use_stored_procedures

    def _uses_stored_procedures(self, session: Session) -> bool:
        if self._use_stored_procedures is not None:
            return self._use_stored_procedures
        return session.get_bind().dialect.name == "mssql"

    def call(self, name: str, **params: Any) -> Any:
        try:
            definition = PROCEDURES[name]
        except KeyError as exc:
            raise ValueError(f"Unknown procedure {name!r}") from exc
        unknown = set(params) - set(definition.params)
        if unknown:
            raise ValueError(f"Unexpected parameters for {name}: {sorted(unknown)}")
        bound = {key: params.get(key) for key in definition.params}

        try:
            session_factory = self._session_factory_provider()
            with session_factory() as session:
                if self._uses_stored_procedures(session):
                    LOGGER.debug("Executing stored procedure dbo.%s", name)
                    result = session.execute(build_exec_statement(definition, bound), bound)
                    rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
                else:
                    LOGGER.debug("Executing procedure %s through SQLAlchemy", name)
                    rows = definition.implementation(session, **bound)
                session.commit()
        except ExpenseAppError:
            raise
        except (SQLAlchemyError, OSError) as exc:
            raise classify_database_error(exc) from exc

        return self._shape(definition, rows)

    @staticmethod
    def _shape(definition: ProcedureDefinition, rows: List[Row]) -> Any:
        if definition.returns == RETURNS_ROWS:
            return rows
        if definition.returns == RETURNS_ROW:
            return rows[0] if rows else None
        if not rows:
            return None
        first = rows[0]
        return next(iter(first.values()))


def get_gateway() -> ProcedureGateway:
    """FastAPI dependency returning a gateway bound to the configured database."""
    return ProcedureGateway(use_stored_procedures=get_settings().use_stored_procedures)
