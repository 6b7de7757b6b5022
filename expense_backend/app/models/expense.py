"""SQLAlchemy model definitions for expenses and their reference data."""

from __future__ import annotations

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base


class ExpenseStatusName(str, enum.Enum):
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ExpenseCategory(Base):
    """Catalog of available expense categories for consistent reporting."""

    __tablename__ = "ExpenseCategories"

    id = Column("CategoryId", Integer, primary_key=True, autoincrement=True)
    name = Column("CategoryName", String(100), nullable=False, unique=True)
    is_active = Column("IsActive", Boolean, nullable=False, default=True, server_default="1")

    expenses = relationship("Expense", back_populates="category")


class ExpenseStatus(Base):
    __tablename__ = "ExpenseStatus"

    id = Column("StatusId", Integer, primary_key=True, autoincrement=True)
    name = Column("StatusName", String(50), nullable=False, unique=True)

    expenses = relationship("Expense", back_populates="status")


class Expense(Base):
    """An expense claim; money is held as an integer count of minor units."""

    __tablename__ = "Expenses"
    __table_args__ = (
        CheckConstraint("AmountMinor >= 0", name="ck_expenses_amount_non_negative"),
        CheckConstraint(
            "(ReviewedBy IS NULL AND ReviewedAt IS NULL) "
            "OR (ReviewedBy IS NOT NULL AND ReviewedAt IS NOT NULL)",
            name="ck_expenses_review_pair",
        ),
    )

    id = Column("ExpenseId", Integer, primary_key=True, autoincrement=True)
    user_id = Column("UserId", Integer, ForeignKey("Users.UserId"), nullable=False)
    category_id = Column(
        "CategoryId", Integer, ForeignKey("ExpenseCategories.CategoryId"), nullable=False
    )
    status_id = Column("StatusId", Integer, ForeignKey("ExpenseStatus.StatusId"), nullable=False)
    amount_minor = Column("AmountMinor", Integer, nullable=False)
    currency = Column("Currency", String(3), nullable=False, default="GBP", server_default="GBP")
    expense_date = Column("ExpenseDate", Date, nullable=False)
    description = Column("Description", String(1000), nullable=True)
    receipt_file = Column("ReceiptFile", String(500), nullable=True)
    submitted_at = Column("SubmittedAt", DateTime(timezone=True), nullable=True)
    reviewed_by = Column("ReviewedBy", Integer, ForeignKey("Users.UserId"), nullable=True)
    reviewed_at = Column("ReviewedAt", DateTime(timezone=True), nullable=True)
    created_at = Column("CreatedAt", DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", foreign_keys=[user_id])
    reviewer = relationship("User", foreign_keys=[reviewed_by])
    category = relationship("ExpenseCategory", back_populates="expenses")
    status = relationship("ExpenseStatus", back_populates="expenses")


Index("IX_Expenses_UserId", Expense.user_id)
Index("IX_Expenses_StatusId", Expense.status_id)
Index("IX_Expenses_CreatedAt", Expense.created_at)
