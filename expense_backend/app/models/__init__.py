"""Expose SQLAlchemy models for convenient imports."""

from .expense import Expense, ExpenseCategory, ExpenseStatus, ExpenseStatusName
from .user import Role, User

__all__ = [
    "Expense",
    "ExpenseCategory",
    "ExpenseStatus",
    "ExpenseStatusName",
    "Role",
    "User",
]
