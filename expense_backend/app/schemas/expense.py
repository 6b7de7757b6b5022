from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from ..money import MAX_AMOUNT, from_minor_units


class ExpenseCreate(BaseModel):
    """Schema used to create new expenses."""

    user_id: int = Field(..., ge=1, description="Owner of the expense")
    category_id: int = Field(..., ge=1, description="Expense category")
    amount: Decimal = Field(
        ..., ge=0, le=MAX_AMOUNT, description="Amount in major currency units"
    )
    currency: str = Field("GBP", min_length=3, max_length=3, description="ISO 4217 code")
    expense_date: date = Field(default_factory=date.today)
    description: Optional[str] = Field(None, max_length=1000)
    receipt_file: Optional[str] = Field(None, max_length=500)
    submit: bool = Field(False, description="Create the expense directly in Submitted status")

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("currency must be a three letter ISO code")
        return value.upper()


class ExpenseUpdate(BaseModel):
    """Editable fields of a Draft expense."""

    category_id: int = Field(..., ge=1)
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT)
    expense_date: date
    description: Optional[str] = Field(None, max_length=1000)


class ReviewRequest(BaseModel):
    reviewer_id: int = Field(..., ge=1, description="User ID of the reviewing manager")


class ExpenseCreated(BaseModel):
    expense_id: int


class ExpenseRead(BaseModel):
    """Schema representing stored expenses."""

    expense_id: int
    user_id: Optional[int] = None
    user_name: str
    category_id: Optional[int] = None
    category_name: str
    status_id: Optional[int] = None
    status_name: str
    amount_minor: int
    amount: Decimal
    currency: str
    expense_date: date
    description: Optional[str] = None
    receipt_file: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    reviewed_by_name: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ExpenseRead":
        amount_minor = int(row["AmountMinor"])
        return cls(
            expense_id=row["ExpenseId"],
            user_id=row.get("UserId"),
            user_name=row["UserName"],
            category_id=row.get("CategoryId"),
            category_name=row["CategoryName"],
            status_id=row.get("StatusId"),
            status_name=row["StatusName"],
            amount_minor=amount_minor,
            amount=from_minor_units(amount_minor),
            currency=row["Currency"],
            expense_date=_as_date(row["ExpenseDate"]),
            description=row.get("Description"),
            receipt_file=row.get("ReceiptFile"),
            submitted_at=row.get("SubmittedAt"),
            reviewed_by=row.get("ReviewedBy"),
            reviewed_by_name=row.get("ReviewedByName"),
            reviewed_at=row.get("ReviewedAt"),
            created_at=row.get("CreatedAt"),
        )


class ExpenseSummaryRead(BaseModel):
    status_name: str
    count: int = Field(..., ge=0)
    total_amount: Decimal
    total_amount_minor: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ExpenseSummaryRead":
        total_minor = int(row["TotalAmountMinor"] or 0)
        return cls(
            status_name=row["StatusName"],
            count=int(row["ExpenseCount"]),
            total_amount=from_minor_units(total_minor),
            total_amount_minor=total_minor,
        )


class CategoryRead(BaseModel):
    category_id: int
    category_name: str
    is_active: bool = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CategoryRead":
        return cls(
            category_id=row["CategoryId"],
            category_name=row["CategoryName"],
            is_active=bool(row["IsActive"]),
        )


class StatusRead(BaseModel):
    status_id: int
    status_name: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StatusRead":
        return cls(status_id=row["StatusId"], status_name=row["StatusName"])


class UserRead(BaseModel):
    user_id: int
    user_name: str
    email: str
    role_name: str
    manager_id: Optional[int] = None
    manager_name: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserRead":
        return cls(
            user_id=row["UserId"],
            user_name=row["UserName"],
            email=row["Email"],
            role_name=row["RoleName"],
            manager_id=row.get("ManagerId"),
            manager_name=row.get("ManagerName"),
            is_active=bool(row["IsActive"]),
            created_at=row.get("CreatedAt"),
        )


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    return value
