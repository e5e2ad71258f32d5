"""
Structured error bodies for the payment API.

Every failure leaves the service as
``{"success": false, "error": <message>, "code": <ErrorCodes.*>, ...}``;
unexpected exceptions never expose their message.
"""
from typing import Optional
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import time

logger = logging.getLogger(__name__)

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str
    field: Optional[str] = None
    timestamp: float
    trace_id: Optional[str] = None

class ErrorCodes:
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REFERENCE = "INVALID_REFERENCE"
    PAYMENT_NOT_FOUND = "PAYMENT_NOT_FOUND"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    HTTP_ERROR = "HTTP_ERROR"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    # Ledger / dependency failures
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    CIRCUIT_BREAKER_OPEN = "CIRCUIT_BREAKER_OPEN"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"

class BusinessLogicError(Exception):
    """Caller-side fault: bad input or an unknown payment"""
    def __init__(self, code: str, message: str, field: str = None):
        self.code = code
        self.message = message
        self.field = field
        super().__init__(message)

class ServiceError(Exception):
    """The service or one of its dependencies cannot do the work right now"""
    def __init__(self, code: str, message: str, original_error: Exception = None):
        self.code = code
        self.message = message
        self.original_error = original_error
        super().__init__(message)

BUSINESS_STATUS = {
    ErrorCodes.PAYMENT_NOT_FOUND: 404,
}

SERVICE_STATUS = {
    ErrorCodes.SERVICE_UNAVAILABLE: 503,
    ErrorCodes.CIRCUIT_BREAKER_OPEN: 503,
    ErrorCodes.TIMEOUT_ERROR: 504,
}

HTTP_CODES = {
    404: ErrorCodes.NOT_FOUND,
    405: ErrorCodes.METHOD_NOT_ALLOWED,
}

def create_error_response(request: Request, status_code: int, code: str, message: str,
                          field: str = None) -> JSONResponse:
    body = ErrorResponse(
        error=message,
        code=code,
        field=field,
        timestamp=time.time(),
        trace_id=getattr(request.state, "trace_id", None),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))

async def business_logic_exception_handler(request: Request, exc: BusinessLogicError):
    logger.warning(f"Business logic error: {exc.code} - {exc.message}")
    return create_error_response(request, BUSINESS_STATUS.get(exc.code, 400), exc.code, exc.message, exc.field)

async def service_exception_handler(request: Request, exc: ServiceError):
    cause = f" ({exc.original_error})" if exc.original_error else ""
    logger.error(f"Service error: {exc.code} - {exc.message}{cause}")
    return create_error_response(request, SERVICE_STATUS.get(exc.code, 502), exc.code, exc.message)

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", []))
    message = first.get("msg", "Validation error")
    logger.warning(f"Validation error on {field}: {message}")
    return create_error_response(
        request, 400, ErrorCodes.VALIDATION_ERROR, f"Validation error on field '{field}': {message}", field
    )

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Routing errors (unknown path, wrong method) and explicit HTTPExceptions"""
    code = HTTP_CODES.get(exc.status_code, ErrorCodes.HTTP_ERROR)
    response = create_error_response(request, exc.status_code, code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response

async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}")
    return create_error_response(request, 500, ErrorCodes.INTERNAL_SERVER_ERROR, "Internal server error")

def add_error_handlers(app):
    app.add_exception_handler(BusinessLogicError, business_logic_exception_handler)
    app.add_exception_handler(ServiceError, service_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
