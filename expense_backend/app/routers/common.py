"""Helpers shared by routers to turn service results into HTTP responses."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from fastapi import HTTPException, Response, status

from ..errors import ErrorKind
from ..services import OperationResult

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ERROR_HEADER = "X-App-Error"

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_TRANSITION.value: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION.value: status.HTTP_400_BAD_REQUEST,
}


def unwrap(result: OperationResult[T]) -> T:
    """Return the result data or raise the matching ``HTTPException``."""

    if result.success:
        return result.data  # type: ignore[return-value]
    error = result.error
    status_code = _STATUS_BY_KIND.get(
        error.kind if error else "", status.HTTP_503_SERVICE_UNAVAILABLE
    )
    raise HTTPException(
        status_code=status_code,
        detail=error.model_dump() if error else "Service unavailable",
    )


def or_placeholder(
    result: OperationResult[T], response: Response, placeholder: Callable[[], T]
) -> T:
    """Return the data, or placeholder records flagged through ``X-App-Error``."""

    if result.success:
        return result.data  # type: ignore[return-value]
    kind = result.error.kind if result.error else "unknown"
    LOGGER.warning("Serving placeholder data after %s failure", kind)
    response.headers[ERROR_HEADER] = kind
    return placeholder()
