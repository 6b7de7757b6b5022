"""Expose Pydantic schemas for convenient imports."""

from .chat import ChatHistoryItem, ChatRequest, ChatResponse, ChatStatusResponse
from .common import ErrorInfo
from .expense import (
    CategoryRead,
    ExpenseCreate,
    ExpenseCreated,
    ExpenseRead,
    ExpenseSummaryRead,
    ExpenseUpdate,
    ReviewRequest,
    StatusRead,
    UserRead,
)

__all__ = [
    "CategoryRead",
    "ChatHistoryItem",
    "ChatRequest",
    "ChatResponse",
    "ChatStatusResponse",
    "ErrorInfo",
    "ExpenseCreate",
    "ExpenseCreated",
    "ExpenseRead",
    "ExpenseSummaryRead",
    "ExpenseUpdate",
    "ReviewRequest",
    "StatusRead",
    "UserRead",
]
