"""
Application error taxonomy.

Every error carries a stable machine-checkable ``kind`` plus a human message.
Route handlers raise these; the handler registered in ``manuflow.main`` turns
them into JSON responses.
"""
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AppError(Exception):
    kind = "general"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "detail": self.message, **self.extra}


class NotFoundError(AppError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class AuthenticationError(AppError):
    kind = "authentication"
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(AppError):
    kind = "authorization"
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(AppError):
    kind = "validation"
    status_code = status.HTTP_400_BAD_REQUEST


class DeletionBlockedError(ValidationError):
    """Dependents exist and no deletion strategy was chosen."""

    def __init__(
        self,
        message: str,
        dependent_count: int,
        dependents: list[dict[str, Any]],
        remediation: list[str],
    ) -> None:
        super().__init__(
            message,
            dependent_count=dependent_count,
            dependents=dependents,
            remediation=remediation,
        )
        self.dependent_count = dependent_count
        self.dependents = dependents
        self.remediation = remediation


# ── Exception handlers ─────────────────────────────────────────────────────

def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None,
    )


def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "kind": ValidationError.kind,
            "detail": "Validation error",
            "errors": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Strip non-serializable context (e.g. raised exceptions) from pydantic errors."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
