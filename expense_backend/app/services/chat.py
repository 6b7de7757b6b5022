"""Chat assistant that answers questions by calling back into the expense service."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from azure.identity import (
    DefaultAzureCredential,
    ManagedIdentityCredential,
    get_bearer_token_provider,
)
from openai import AzureOpenAI

from .. import schemas
from ..config import AppSettings, get_settings
from ..money import format_amount
from ..procedures import ProcedureGateway
from .expenses import ExpenseService
from .results import OperationResult

LOGGER = logging.getLogger(__name__)

COGNITIVE_SERVICES_SCOPE = "https://cognitiveservices.azure.com/.default"

NOT_CONFIGURED_MESSAGE = (
    "AI Chat is not available. To enable it, redeploy the infrastructure with "
    "the --deploy-genai option."
)
APOLOGY_MESSAGE = "Sorry, I encountered an error while processing your request. Please try again."

SYSTEM_PROMPT = """You are a helpful assistant for the Expense Management System. You can help users:
- View expenses and expense summaries
- Create new expenses
- Submit expenses for approval
- Approve or reject expenses (as a manager)
- Get information about categories, users and statuses

When users ask about expenses, use the available functions to retrieve real data.
When creating expenses, ask for all required information: amount, category, date, and description.
Format currency amounts in GBP (£).
Be concise and helpful."""

_NO_PARAMETERS = {"type": "object", "properties": {}, "required": []}


def _function(name: str, description: str, parameters: Optional[dict] = None) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": parameters or _NO_PARAMETERS,
        },
    }


def _integer(description: str) -> dict:
    return {"type": "integer", "description": description}


TOOLS: List[dict] = [
    _function("get_expenses", "Retrieves all expenses, newest first"),
    _function(
        "get_expenses_by_status",
        "Gets expenses filtered by status",
        {
            "type": "object",
            "properties": {
                "status": {
                    "type": "string",
                    "enum": ["Draft", "Submitted", "Approved", "Rejected"],
                    "description": "Status to filter by",
                }
            },
            "required": ["status"],
        },
    ),
    _function(
        "get_expense_summary",
        "Gets a summary of expenses grouped by status, including counts and totals",
    ),
    _function(
        "create_expense",
        "Creates a new expense record in Draft status",
        {
            "type": "object",
            "properties": {
                "user_id": _integer("User ID of the expense owner"),
                "category_id": _integer(
                    "Category ID (1=Travel, 2=Meals, 3=Supplies, 4=Accommodation, 5=Other)"
                ),
                "amount": {"type": "number", "description": "Amount in GBP"},
                "expense_date": {
                    "type": "string",
                    "description": "Date of expense in YYYY-MM-DD format",
                },
                "description": {"type": "string", "description": "Description of the expense"},
            },
            "required": ["user_id", "category_id", "amount", "expense_date", "description"],
        },
    ),
    _function(
        "submit_expense",
        "Submits a Draft expense for approval",
        {
            "type": "object",
            "properties": {"expense_id": _integer("ID of the expense to submit")},
            "required": ["expense_id"],
        },
    ),
    _function(
        "approve_expense",
        "Approves a Submitted expense (manager action)",
        {
            "type": "object",
            "properties": {
                "expense_id": _integer("ID of the expense to approve"),
                "reviewer_id": _integer("User ID of the approving manager"),
            },
            "required": ["expense_id", "reviewer_id"],
        },
    ),
    _function(
        "reject_expense",
        "Rejects a Submitted expense (manager action)",
        {
            "type": "object",
            "properties": {
                "expense_id": _integer("ID of the expense to reject"),
                "reviewer_id": _integer("User ID of the rejecting manager"),
            },
            "required": ["expense_id", "reviewer_id"],
        },
    ),
    _function("get_categories", "Gets all active expense categories"),
    _function("get_users", "Gets all active users in the system"),
    _function("get_statuses", "Gets the possible expense statuses"),
]


class ToolArgumentError(ValueError):
    """The model supplied arguments that do not match a tool's schema."""


def _require_int(arguments: Mapping[str, Any], key: str) -> int:
    value = arguments.get(key)
    if isinstance(value, bool) or value is None:
        raise ToolArgumentError(f"{key} is required")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ToolArgumentError(f"{key} must be an integer") from exc


def _expense_payload(expense: schemas.ExpenseRead) -> Dict[str, Any]:
    return {
        "expense_id": expense.expense_id,
        "user_name": expense.user_name,
        "category_name": expense.category_name,
        "amount": format_amount(expense.amount, expense.currency),
        "status_name": expense.status_name,
        "date": expense.expense_date.strftime("%d %b %Y"),
        "description": expense.description,
    }


def _result_payload(
    result: OperationResult[Any], render: Callable[[Any], Any], message: Optional[str] = None
) -> Any:
    if not result.success:
        return {"success": False, "error": result.error.message if result.error else None}
    rendered = render(result.data)
    if message is None:
        return rendered
    return {"success": True, "message": message, **rendered}


class ToolDispatcher:
    """Maps tool names advertised to the model onto expense service calls."""

    def __init__(self, gateway: ProcedureGateway) -> None:
        self._gateway = gateway
        self._handlers: Dict[str, Callable[[Mapping[str, Any]], Any]] = {
            "get_expenses": self._get_expenses,
            "get_expenses_by_status": self._get_expenses_by_status,
            "get_expense_summary": self._get_expense_summary,
            "create_expense": self._create_expense,
            "submit_expense": self._submit_expense,
            "approve_expense": self._approve_expense,
            "reject_expense": self._reject_expense,
            "get_categories": self._get_categories,
            "get_users": self._get_users,
            "get_statuses": self._get_statuses,
        }

    def dispatch(self, name: str, raw_arguments: Optional[str]) -> str:
        """Execute one tool call and return its JSON-encoded result."""

        handler = self._handlers.get(name)
        if handler is None:
            return json.dumps({"error": f"Unknown function: {name}"})
        try:
            arguments = json.loads(raw_arguments or "{}")
            if not isinstance(arguments, dict):
                raise ToolArgumentError("arguments must be a JSON object")
            payload = handler(arguments)
        except ValueError as exc:
            LOGGER.warning("Invalid arguments for tool %s: %s", name, exc)
            payload = {"error": str(exc)}
        return json.dumps(payload, default=str)

    def _get_expenses(self, _: Mapping[str, Any]) -> Any:
        result = ExpenseService.list_expenses(self._gateway)
        return _result_payload(result, lambda items: [_expense_payload(item) for item in items])

    def _get_expenses_by_status(self, arguments: Mapping[str, Any]) -> Any:
        status = arguments.get("status")
        if not isinstance(status, str) or not status.strip():
            raise ToolArgumentError("status is required")
        result = ExpenseService.list_expenses(self._gateway, status=status)
        return _result_payload(result, lambda items: [_expense_payload(item) for item in items])

    def _get_expense_summary(self, _: Mapping[str, Any]) -> Any:
        result = ExpenseService.get_summary(self._gateway)
        return _result_payload(
            result,
            lambda rows: [
                {
                    "status_name": row.status_name,
                    "count": row.count,
                    "total_amount": format_amount(row.total_amount),
                }
                for row in rows
            ],
        )

    def _create_expense(self, arguments: Mapping[str, Any]) -> Any:
        try:
            amount = Decimal(str(arguments["amount"]))
            expense_date = date.fromisoformat(str(arguments["expense_date"])[:10])
        except KeyError as exc:
            raise ToolArgumentError(f"{exc.args[0]} is required") from exc
        except (InvalidOperation, ValueError) as exc:
            raise ToolArgumentError(f"invalid amount or date: {exc}") from exc
        if amount < 0:
            raise ToolArgumentError("amount must not be negative")
        request = schemas.ExpenseCreate(
            user_id=_require_int(arguments, "user_id"),
            category_id=_require_int(arguments, "category_id"),
            amount=amount,
            expense_date=expense_date,
            description=arguments.get("description"),
        )
        result = ExpenseService.create_expense(self._gateway, request)
        return _result_payload(
            result,
            lambda expense_id: {"expense_id": expense_id},
            message="Expense created",
        )

    def _submit_expense(self, arguments: Mapping[str, Any]) -> Any:
        result = ExpenseService.submit_expense(
            self._gateway, _require_int(arguments, "expense_id")
        )
        return _result_payload(result, _expense_payload, message="Expense submitted for approval")

    def _approve_expense(self, arguments: Mapping[str, Any]) -> Any:
        result = ExpenseService.approve_expense(
            self._gateway,
            _require_int(arguments, "expense_id"),
            _require_int(arguments, "reviewer_id"),
        )
        return _result_payload(result, _expense_payload, message="Expense approved")

    def _reject_expense(self, arguments: Mapping[str, Any]) -> Any:
        result = ExpenseService.reject_expense(
            self._gateway,
            _require_int(arguments, "expense_id"),
            _require_int(arguments, "reviewer_id"),
        )
        return _result_payload(result, _expense_payload, message="Expense rejected")

    def _get_categories(self, _: Mapping[str, Any]) -> Any:
        result = ExpenseService.list_categories(self._gateway)
        return _result_payload(
            result,
            lambda rows: [
                {"category_id": row.category_id, "category_name": row.category_name}
                for row in rows
            ],
        )

    def _get_users(self, _: Mapping[str, Any]) -> Any:
        result = ExpenseService.list_users(self._gateway)
        return _result_payload(
            result,
            lambda rows: [
                {
                    "user_id": row.user_id,
                    "user_name": row.user_name,
                    "role_name": row.role_name,
                    "email": row.email,
                }
                for row in rows
            ],
        )

    def _get_statuses(self, _: Mapping[str, Any]) -> Any:
        result = ExpenseService.list_statuses(self._gateway)
        return _result_payload(
            result,
            lambda rows: [
                {"status_id": row.status_id, "status_name": row.status_name} for row in rows
            ],
        )


@dataclass
class _ToolCall:
    id: str
    name: str
    arguments: Optional[str]


def _tool_calls(message: Any) -> List[_ToolCall]:
    return [
        _ToolCall(call.id, call.function.name, call.function.arguments)
        for call in (getattr(message, "tool_calls", None) or [])
    ]


class ChatService:
    """Forwards chat turns to Azure OpenAI and resolves the model's tool calls."""

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        *,
        client_factory: Optional[Callable[[AppSettings], Any]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client_factory = client_factory or self._build_client
        self._credential: Any = None
        self._client: Any = None

    @property
    def is_configured(self) -> bool:
        return self._settings.genai_enabled

    def status(self) -> schemas.ChatStatusResponse:
        if not self.is_configured:
            return schemas.ChatStatusResponse(configured=False, message=NOT_CONFIGURED_MESSAGE)
        return schemas.ChatStatusResponse(
            configured=True,
            model_name=self._settings.openai_model_name,
            endpoint=self._settings.openai_endpoint,
            message="AI Chat is available.",
        )

    def _get_credential(self) -> Any:
        if self._credential is None:
            client_id = self._settings.azure_client_id
            if client_id:
                LOGGER.info("Using ManagedIdentityCredential with client ID %s", client_id)
                self._credential = ManagedIdentityCredential(client_id=client_id)
            else:
                LOGGER.info("Using DefaultAzureCredential")
                self._credential = DefaultAzureCredential()
        return self._credential

    def _build_client(self, settings: AppSettings) -> Any:
        token_provider = get_bearer_token_provider(
            self._get_credential(), COGNITIVE_SERVICES_SCOPE
        )
        return AzureOpenAI(
            azure_endpoint=settings.openai_endpoint,
            api_version=settings.openai_api_version,
            azure_ad_token_provider=token_provider,
        )

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = self._client_factory(self._settings)
        return self._client

    @staticmethod
    def build_messages(
        message: str, history: Iterable[schemas.ChatHistoryItem]
    ) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": SYSTEM_PROMPT}]
        for item in history:
            if item.role in {"user", "assistant"}:
                messages.append({"role": item.role, "content": item.content})
        messages.append({"role": "user", "content": message})
        return messages

    def respond(
        self,
        message: str,
        history: Iterable[schemas.ChatHistoryItem],
        gateway: ProcedureGateway,
    ) -> schemas.ChatResponse:
        if not self.is_configured:
            return schemas.ChatResponse(response=NOT_CONFIGURED_MESSAGE, success=True)

        try:
            text = self._complete(self.build_messages(message, history), ToolDispatcher(gateway))
        except Exception as exc:  # noqa: BLE001 - every model failure becomes an apology
            LOGGER.exception("Error getting chat response")
            return schemas.ChatResponse(response=APOLOGY_MESSAGE, success=False, error=str(exc))
        return schemas.ChatResponse(response=text, success=True)

    def _complete(self, messages: List[Dict[str, Any]], dispatcher: ToolDispatcher) -> str:
        client = self._get_client()
        max_rounds = self._settings.chat_max_tool_rounds

        for round_number in range(max_rounds + 1):
            completion = client.chat.completions.create(
                model=self._settings.openai_model_name,
                messages=messages,
                tools=TOOLS,
            )
            choice = completion.choices[0]
            calls = _tool_calls(choice.message)
            if choice.finish_reason != "tool_calls" or not calls:
                return choice.message.content or ""
            if round_number == max_rounds:
                break

            messages.append(
                {
                    "role": "assistant",
                    "content": choice.message.content or "",
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments or "{}"},
                        }
                        for call in calls
                    ],
                }
            )
            for call in calls:
                LOGGER.info("Model requested tool %s", call.name)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": dispatcher.dispatch(call.name, call.arguments),
                    }
                )

        raise RuntimeError(f"Model did not finish within {max_rounds} tool-call rounds")


_CHAT_SERVICE: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    """FastAPI dependency returning the process-wide chat service."""

    global _CHAT_SERVICE
    if _CHAT_SERVICE is None:
        _CHAT_SERVICE = ChatService()
    return _CHAT_SERVICE
