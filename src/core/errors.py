from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class AppError(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(code="not_found", message=message, status_code=404)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request") -> None:
        super().__init__(code="bad_request", message=message, status_code=400)


class GateValidationError(AppError):
    """A stage gate was submitted with missing or malformed answers.

    Nothing has been written when this is raised; the caller redisplays the
    gate with ``missing`` and ``invalid`` highlighted.
    """

    def __init__(
        self,
        stage: str,
        missing: Optional[List[str]] = None,
        invalid: Optional[List[str]] = None,
    ) -> None:
        self.stage = stage
        self.missing = list(missing or [])
        self.invalid = list(invalid or [])
        super().__init__(
            code="gate_validation_error",
            message=f"Stage gate for '{stage}' is incomplete",
            status_code=422,
            details={"stage": stage, "missing": self.missing, "invalid": self.invalid},
        )

    @property
    def fields(self) -> List[str]:
        return self.missing + [key for key in self.invalid if key not in self.missing]


class IllegalTransitionError(AppError):
    def __init__(
        self,
        from_stage: str,
        to_stage: str,
        message: Optional[str] = None,
        missing: Optional[List[str]] = None,
    ) -> None:
        self.from_stage = from_stage
        self.to_stage = to_stage
        self.missing = list(missing or [])
        details: Dict[str, Any] = {"fromStage": from_stage, "toStage": to_stage}
        if self.missing:
            details["missing"] = self.missing
        super().__init__(
            code="illegal_transition",
            message=message or f"Cannot move a deal from '{from_stage}' to '{to_stage}'",
            status_code=409,
            details=details,
        )


class PersistenceError(AppError):
    """The store failed a read or rejected a write; safe to retry from a fresh snapshot."""

    def __init__(self, message: str = "Could not save changes") -> None:
        super().__init__(
            code="persistence_error",
            message=message,
            status_code=503,
            details={"retryable": True},
        )


class ErrorEnvelope(BaseModel):
    error: ErrorDetail


def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    envelope = ErrorEnvelope(
        error=ErrorDetail(code=exc.code, message=exc.message, details=exc.details)
    )
    return JSONResponse(status_code=exc.status_code, content=envelope.model_dump())


def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    envelope = ErrorEnvelope(
        error=ErrorDetail(
            code="validation_error",
            message="Validation error",
            details={"errors": jsonable_encoder(exc.errors())},
        )
    )
    return JSONResponse(status_code=422, content=envelope.model_dump())
