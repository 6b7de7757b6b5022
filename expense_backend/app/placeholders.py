"""Illustrative records rendered by list endpoints while the database is unavailable."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import List, Optional

from . import schemas
from .money import from_minor_units

_PLACEHOLDER_EXPENSES = (
    # (id, user_id, user, category_id, category, status_id, status, minor, days_ago, description)
    (1, 1, "Alice Example", 1, "Travel", 3, "Approved", 12300, 10, "Travel for meeting"),
    (2, 1, "Alice Example", 3, "Supplies", 3, "Approved", 100, 8, "Office supplies"),
    (3, 2, "Bob Manager", 1, "Travel", 1, "Draft", 23400, 5, "Meeting"),
    (4, 1, "Alice Example", 2, "Meals", 2, "Submitted", 25000, 3, "Client dinner meeting"),
    (5, 1, "Alice Example", 4, "Accommodation", 4, "Rejected", 8950, 2, "Hotel upgrade"),
)


def placeholder_expenses(status: Optional[str] = None) -> List[schemas.ExpenseRead]:
    """Return sample expenses, newest first, optionally narrowed to one status.

    A status that matches none of the samples falls back to the full set so
    degraded reads never come back empty.
    """

    today = date.today()
    expenses = []
    for (
        expense_id,
        user_id,
        user_name,
        category_id,
        category_name,
        status_id,
        status_name,
        amount_minor,
        days_ago,
        description,
    ) in _PLACEHOLDER_EXPENSES:
        expense_date = today - timedelta(days=days_ago)
        expenses.append(
            schemas.ExpenseRead(
                expense_id=expense_id,
                user_id=user_id,
                user_name=user_name,
                category_id=category_id,
                category_name=category_name,
                status_id=status_id,
                status_name=status_name,
                amount_minor=amount_minor,
                amount=from_minor_units(amount_minor),
                currency="GBP",
                expense_date=expense_date,
                description=description,
                created_at=datetime.combine(expense_date, time(9, 0)),
            )
        )
    if status:
        wanted = status.strip().lower()
        matching = [item for item in expenses if item.status_name.lower() == wanted]
        expenses = matching or expenses
    return sorted(expenses, key=lambda item: (item.created_at, item.expense_id), reverse=True)


def placeholder_summary() -> List[schemas.ExpenseSummaryRead]:
    rows = (("Approved", 6, 51924), ("Draft", 3, 49200), ("Submitted", 1, 2540))
    return [
        schemas.ExpenseSummaryRead(
            status_name=name,
            count=count,
            total_amount=from_minor_units(total),
            total_amount_minor=total,
        )
        for name, count, total in rows
    ]


def placeholder_categories() -> List[schemas.CategoryRead]:
    names = ("Travel", "Meals", "Supplies", "Accommodation", "Other")
    return [
        schemas.CategoryRead(category_id=index, category_name=name, is_active=True)
        for index, name in enumerate(names, start=1)
    ]


def placeholder_users() -> List[schemas.UserRead]:
    return [
        schemas.UserRead(
            user_id=1,
            user_name="Alice Example",
            email="alice@example.co.uk",
            role_name="Employee",
            manager_id=2,
            manager_name="Bob Manager",
        ),
        schemas.UserRead(
            user_id=2,
            user_name="Bob Manager",
            email="bob.manager@example.co.uk",
            role_name="Manager",
        ),
    ]


def placeholder_statuses() -> List[schemas.StatusRead]:
    names = ("Draft", "Submitted", "Approved", "Rejected")
    return [
        schemas.StatusRead(status_id=index, status_name=name)
        for index, name in enumerate(names, start=1)
    ]
