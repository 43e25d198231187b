# forswags/errors.py
from __future__ import annotations

from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


class ForswagsError(Exception):
    """
    Base for every domain error.

    Carries a stable `code` for the UI and an HTTP status for the API layer.
    """

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            out.update(self.details)
        return out


class AuthenticationError(ForswagsError):
    status_code = 401
    default_code = "NOT_AUTHENTICATED"


class AuthorizationError(ForswagsError):
    """Caller lacks the role or tier. Shown as 'upgrade required' / 'admin access required'."""

    status_code = 403
    default_code = "ACCESS_DENIED"


class NotFoundError(ForswagsError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(ForswagsError):
    """Lost a race or hit a terminal state. Safe for the user to refresh and retry."""

    status_code = 409
    default_code = "CONFLICT"


class AlreadyApprovedError(ConflictError):
    default_code = "ALREADY_APPROVED"

    def __init__(self, application_id: int):
        super().__init__(
            "Application already approved",
            details={"application_id": application_id},
        )


class ExternalServiceError(ForswagsError):
    """Identity, email or payment provider failure."""

    status_code = 502
    default_code = "EXTERNAL_SERVICE_ERROR"


# -----------------------------
# Handlers
# -----------------------------
MEMBERSHIP_PAGE = "/membership"


def _wants_html(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    # browsers usually send text/html
    return "text/html" in accept


def _detail_code(exc: StarletteHTTPException) -> str | None:
    detail = getattr(exc, "detail", None)
    if isinstance(detail, dict):
        code = detail.get("code")
        if isinstance(code, str):
            return code
    return None


async def forswags_error_handler(request: Request, exc: ForswagsError):
    # Upgrade prompts in a browser go straight to the membership page
    if exc.code == "UPGRADE_REQUIRED" and _wants_html(request):
        return RedirectResponse(url=MEMBERSHIP_PAGE, status_code=303)

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()}, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 403 and _wants_html(request) and _detail_code(exc) == "UPGRADE_REQUIRED":
        return RedirectResponse(url=MEMBERSHIP_PAGE, status_code=303)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )
