"""Service layer encapsulating business logic for API routers."""

from .chat import ChatService, ToolDispatcher, get_chat_service
from .expenses import ALLOWED_TRANSITIONS, ExpenseService, can_transition
from .results import OperationResult

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ChatService",
    "ExpenseService",
    "OperationResult",
    "ToolDispatcher",
    "can_transition",
    "get_chat_service",
]
