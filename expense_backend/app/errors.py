"""Typed failures raised by the data-access layer and the expense workflow."""

from __future__ import annotations

import enum
import os
import traceback
from typing import Optional

from sqlalchemy import exc as sa_exc

from .schemas.common import ErrorInfo

# ODBC SQLSTATE prefixes reported by the SQL Server driver.
_SQLSTATE_LOGIN_FAILED = {"28000"}
_SQLSTATE_UNREACHABLE = {"08001", "08S01", "HYT00", "HYT01"}

_IDENTITY_MARKERS = ("managed identity", "activedirectorymsi", "azure_client_id", "msi")
_MISSING_OBJECT_MARKERS = ("no such table", "invalid object name", "could not find stored procedure")

_PACKAGE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class ErrorKind(str, enum.Enum):
    MISSING_IDENTITY_CONFIG = "missing_identity_config"
    CONNECTION_STRING_INVALID = "connection_string_invalid"
    AUTHENTICATION_REJECTED = "authentication_rejected"
    UNREACHABLE = "unreachable"
    QUERY_FAILED = "query_failed"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    VALIDATION = "validation"


class ExpenseAppError(RuntimeError):
    """Base class for failures that are reported to API callers."""

    kind: ErrorKind = ErrorKind.QUERY_FAILED
    guidance: Optional[str] = None

    def __init__(self, message: str, *, guidance: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if guidance is not None:
            self.guidance = guidance

    def to_error_info(self, operation: Optional[str] = None) -> ErrorInfo:
        file_name, line_number = _source_location(self)
        message = f"{operation}: {self.message}" if operation else self.message
        return ErrorInfo(
            kind=self.kind.value,
            message=message,
            file=file_name,
            line_number=line_number,
            guidance=self.guidance,
        )


class DataAccessError(ExpenseAppError):
    """The database could not be reached or rejected a procedure call."""


class MissingIdentityConfig(DataAccessError):
    kind = ErrorKind.MISSING_IDENTITY_CONFIG
    guidance = (
        "The AZURE_CLIENT_ID app setting is missing or does not match the "
        "user-assigned managed identity. Configure it in the App Service settings."
    )


class ConnectionStringInvalid(DataAccessError):
    kind = ErrorKind.CONNECTION_STRING_INVALID
    guidance = (
        "Check that the DATABASE_URL app setting is present and is a valid "
        "SQLAlchemy URL."
    )


class AuthenticationRejected(DataAccessError):
    kind = ErrorKind.AUTHENTICATION_REJECTED
    guidance = (
        "The managed identity database user may not have been created or lacks "
        "the db_datareader, db_datawriter and EXECUTE permissions."
    )


class Unreachable(DataAccessError):
    kind = ErrorKind.UNREACHABLE
    guidance = (
        "The database server did not answer. Verify the server name and that "
        "the firewall allows Azure services."
    )


class QueryFailed(DataAccessError):
    kind = ErrorKind.QUERY_FAILED


class ConstraintViolation(DataAccessError):
    """The database rejected the values, e.g. an unknown user or category."""

    kind = ErrorKind.VALIDATION
    guidance = "Check that the referenced user, category and reviewer exist."


class ExpenseNotFound(ExpenseAppError):
    kind = ErrorKind.NOT_FOUND


class InvalidTransition(ExpenseAppError):
    """A status change was requested from a status that does not allow it."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, expense_id: int, current: str, target: str) -> None:
        super().__init__(
            f"Expense {expense_id} cannot move from {current} to {target}",
            guidance="Only Draft expenses can be submitted or edited, and only "
            "Submitted expenses can be approved or rejected.",
        )
        self.expense_id = expense_id
        self.current = current
        self.target = target


def _source_location(error: BaseException) -> tuple[Optional[str], Optional[int]]:
    frames: list[traceback.FrameSummary] = []
    for item in (error.__cause__, error):
        if item is not None and item.__traceback__ is not None:
            frames.extend(traceback.extract_tb(item.__traceback__))
    if not frames:
        return None, None
    package_frames = [frame for frame in frames if _PACKAGE_DIR in frame.filename]
    frame = (package_frames or frames)[-1]
    return os.path.basename(frame.filename), frame.lineno


def _sqlstate(error: BaseException) -> Optional[str]:
    original = getattr(error, "orig", None)
    args = getattr(original, "args", None) or ()
    if args and isinstance(args[0], str) and len(args[0]) == 5:
        return args[0]
    return None


def classify_database_error(error: BaseException) -> DataAccessError:
    """Translate a driver or SQLAlchemy exception into the typed taxonomy."""

    if isinstance(error, DataAccessError):
        return error

    message = str(error).splitlines()[0] if str(error) else error.__class__.__name__
    lowered = str(error).lower()

    if isinstance(error, (sa_exc.ArgumentError, sa_exc.NoSuchModuleError)):
        return ConnectionStringInvalid(message)

    if isinstance(error, sa_exc.IntegrityError):
        return ConstraintViolation(message)

    if isinstance(error, sa_exc.DBAPIError):
        state = _sqlstate(error)
        if any(marker in lowered for marker in _IDENTITY_MARKERS) and (
            state in _SQLSTATE_LOGIN_FAILED or "identity" in lowered
        ):
            return MissingIdentityConfig(message)
        if state in _SQLSTATE_LOGIN_FAILED or "login failed" in lowered:
            return AuthenticationRejected(message)
        if any(marker in lowered for marker in _MISSING_OBJECT_MARKERS):
            return QueryFailed(
                message,
                guidance="The database schema or stored procedures are missing. "
                "Run the database setup step of the infrastructure deployment.",
            )
        if state in _SQLSTATE_UNREACHABLE or isinstance(
            error, (sa_exc.OperationalError, sa_exc.InterfaceError)
        ):
            return Unreachable(message)
        return QueryFailed(message)

    if isinstance(error, sa_exc.SQLAlchemyError):
        return QueryFailed(message)

    if isinstance(error, OSError):
        return Unreachable(message)

    return QueryFailed(message)
