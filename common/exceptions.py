from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."


class ConflictError(APIException):
    """Business rule violation against the current state (e.g. a second open order for a table)."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "The request conflicts with the current state of the resource."
    default_code = "conflict"


class InsufficientStockError(ConflictError):
    """Raised when a settlement needs more ingredient stock than the ledger holds.

    ``shortages`` is a list of ``{"ingredient_id", "ingredient_name", "available", "required"}``
    rows, one per ingredient that falls short.
    """

    default_detail = "Insufficient stock."
    default_code = "insufficient_stock"

    def __init__(self, shortages, detail=None):
        self.shortages = list(shortages)
        names = ", ".join(row["ingredient_name"] for row in self.shortages)
        super().__init__(detail or f"Insufficient stock for: {names}.")

    @property
    def errors(self) -> dict[str, Any]:
        return {"shortages": self.shortages}


def build_error_envelope(*, code: str, message: str, errors: Any, status_code: int) -> dict[str, Any]:
    return {"code": code, "message": message, "errors": errors, "status": status_code}


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    """Render every API error as ``{code, message, errors, status}``.

    ``code`` is stable for clients: ``validation_error`` for input errors,
    otherwise the exception's ``default_code`` (``not_found``, ``conflict``,
    ``insufficient_stock``, ...). Exceptions may carry structured ``errors``.
    """
    response = drf_exception_handler(exc, context)

    if response is None:
        view = context.get("view")
        logger.exception("Unhandled API exception in %s", view.__class__.__name__ if view else "unknown")
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return Response(
            build_error_envelope(
                code="internal_server_error",
                message=GENERIC_SERVER_ERROR_MESSAGE,
                errors=None,
                status_code=status_code,
            ),
            status=status_code,
        )

    if isinstance(exc, ConflictError):
        logger.info("request_conflict code=%s", exc.default_code, extra={"status_code": response.status_code})

    errors = getattr(exc, "errors", None)
    if errors is None:
        errors = _normalize_errors(response.data)

    response.data = build_error_envelope(
        code=_build_code(exc),
        message=_build_message(exc, response.data),
        errors=errors,
        status_code=response.status_code,
    )
    return response


def _build_code(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, APIException):
        return str(getattr(exc, "default_code", "api_error"))
    return "not_found" if isinstance(exc, Http404) else "api_error"


def _build_message(exc: Exception, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."

    detail = data.get("detail") if isinstance(data, Mapping) else data if isinstance(data, str) else None
    if detail:
        return str(detail)
    return str(getattr(exc, "detail", "Request failed."))


def _normalize_errors(data: Any) -> Any:
    if isinstance(data, Mapping):
        return None if set(data.keys()) == {"detail"} else data
    if isinstance(data, Sequence) and not isinstance(data, str):
        return data
    return None
