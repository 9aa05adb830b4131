"""
SocialNet API Response Utilities
Standardized response envelope and error handling
"""
import math
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .logging_config import api_logger


# ============================================================
# SUCCESS RESPONSES
# ============================================================

def success(data: Any = None, message: str = None) -> Dict:
    """Create success envelope"""
    response = {"status": "success"}

    if message:
        response["message"] = message

    if data is not None:
        response["data"] = data

    return response


def created(data: Any, message: str = "Created successfully") -> Dict:
    """201 Created envelope"""
    return success(data, message)


def deleted(message: str = "Deleted successfully") -> Dict:
    """200 Deleted envelope"""
    return success(message=message)


def pagination(page: int, limit: int, total: int) -> Dict:
    """Pagination block for list responses"""
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def paginated(key: str, items: List, total: int, page: int = 1, limit: int = 20, **extra) -> Dict:
    """Paginated list envelope"""
    data = {key: items, "pagination": pagination(page, limit, total)}
    data.update(extra)
    return success(data)


# ============================================================
# ERROR RESPONSES
# ============================================================

class ApiException(HTTPException):
    """API exception carrying an error code and optional field errors"""

    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: str = None,
        errors: Optional[List[Dict]] = None,
    ):
        self.error_code = error_code or f"ERR_{status_code}"
        self.errors = errors
        super().__init__(status_code=status_code, detail=message)


def bad_request(message: str, code: str = "BAD_REQUEST", errors: List[Dict] = None):
    raise ApiException(400, message, code, errors)

def unauthorized(message: str = "Not authorized to access this route"):
    raise ApiException(401, message, "UNAUTHORIZED")

def forbidden(message: str = "Access denied"):
    raise ApiException(403, message, "FORBIDDEN")

def not_found(resource: str = "Resource"):
    raise ApiException(404, f"{resource} not found", "NOT_FOUND")

def conflict(message: str = "Resource conflict"):
    # Duplicates answer 400; clients treat them as bad input rather than 409.
    raise ApiException(400, message, "CONFLICT")

def validation_error(message: str, errors: List[Dict] = None):
    raise ApiException(400, message, "VALIDATION_ERROR", errors)

def server_error(message: str = "Internal server error"):
    raise ApiException(500, message, "INTERNAL_ERROR")


def error_body(message: str, error_code: str = None, errors: List[Dict] = None) -> Dict:
    body = {"status": "error", "message": message}
    if error_code:
        body["error_code"] = error_code
    if errors:
        body["errors"] = errors
    return body


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

async def api_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for ApiException and plain HTTP exceptions"""

    if isinstance(exc, ApiException):
        api_logger.warning(
            f"API Error: {exc.detail}",
            status_code=exc.status_code,
            error_code=exc.error_code,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.detail, exc.error_code, exc.errors),
        )

    if isinstance(exc, StarletteHTTPException):
        api_logger.warning(
            f"HTTP Error: {exc.detail}",
            status_code=exc.status_code,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail), f"HTTP_{exc.status_code}"),
            headers=getattr(exc, "headers", None),
        )

    return await unhandled_exception_handler(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request validation failures answer 400 with per-field errors"""
    errors = []
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({
            "field": ".".join(location) or None,
            "message": err.get("msg", "Invalid value"),
        })

    api_logger.warning(
        "Validation failed",
        path=request.url.path,
        error_count=len(errors),
    )
    return JSONResponse(
        status_code=400,
        content=error_body("Validation failed", "VALIDATION_ERROR", errors),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Generic 500; internals are only exposed in debug mode"""
    api_logger.error(
        f"Unexpected error: {exc}",
        error=exc,
        path=request.url.path,
    )
    body = error_body("An unexpected error occurred", "INTERNAL_ERROR")
    if get_settings().debug:
        body["errors"] = [{"field": None, "message": str(exc)}]
    return JSONResponse(status_code=500, content=body)


# ============================================================
# VALIDATION HELPERS
# ============================================================

def require(value: Any, field_name: str):
    """Require a field to be present"""
    if value is None or (isinstance(value, str) and not value.strip()):
        validation_error(f"{field_name} is required", [{"field": field_name, "message": "Field required"}])
    return value


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))
