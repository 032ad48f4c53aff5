"""
Error Handling Module for Compliance Cloud

This module provides centralized error handling with:
- Custom exception hierarchy
- Standardized error responses
- Batch failure records for multi-tenant jobs
- Database error translation for queue retries
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    OperationalError,
    InterfaceError,
    DisconnectionError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("compliance_cloud.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_RULE_CONDITION = "INVALID_RULE_CONDITION"

    # Authentication/Authorization Errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    CLIENT_NOT_FOUND = "CLIENT_NOT_FOUND"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    QUEUE_NOT_FOUND = "QUEUE_NOT_FOUND"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"

    # Batch Errors
    PARTIAL_BATCH_FAILURE = "PARTIAL_BATCH_FAILURE"

    # Infrastructure Errors (5xx)
    TRANSIENT_IO_ERROR = "TRANSIENT_IO_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    QUEUE_UNAVAILABLE = "QUEUE_UNAVAILABLE"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidRuleConditionException(ValidationException):
    """A compliance rule whose condition or weight cannot be evaluated"""

    def __init__(self, rule_id: Any, reason: str):
        super().__init__(
            message=f"Rule {rule_id} is malformed: {reason}",
            field="condition",
            code=ErrorCode.INVALID_RULE_CONDITION,
            details={"rule_id": str(rule_id), "reason": reason},
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundError(AppException):
    """Resource not found"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Any,
        code: ErrorCode = ErrorCode.NOT_FOUND,
        tenant_id: Optional[UUID] = None,
    ):
        details = {"resource_type": resource_type, "resource_id": str(resource_id)}
        if tenant_id is not None:
            details["tenant_id"] = str(tenant_id)
        super().__init__(
            code=code,
            message=f"{resource_type} {resource_id} not found",
            status_code=status.HTTP_404_NOT_FOUND,
            details=details,
        )


class ClientNotFoundError(NotFoundError):
    """Client missing from the tenant"""

    def __init__(self, client_id: Any, tenant_id: Optional[UUID] = None):
        super().__init__(
            resource_type="Client",
            resource_id=client_id,
            code=ErrorCode.CLIENT_NOT_FOUND,
            tenant_id=tenant_id,
        )


# ============================================================================
# Infrastructure Exceptions
# ============================================================================

class TransientIOError(AppException):
    """
    Storage or queue temporarily unavailable.

    Raised out of a job so that the queue's retry policy re-attempts it.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            code=ErrorCode.TRANSIENT_IO_ERROR,
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            original_error=original_error,
        )


class QueueUnavailableError(AppException):
    """Broker, result backend or workers unreachable"""

    def __init__(self, operation: str, original_error: Optional[Exception] = None):
        super().__init__(
            code=ErrorCode.QUEUE_UNAVAILABLE,
            message=f"Job queue unavailable during {operation}",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"operation": operation},
            original_error=original_error,
        )


# Connection-level failures that fail the whole job instead of one tenant
TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError, DisconnectionError, ConnectionError)


def is_transient_error(error: BaseException) -> bool:
    """True when the error means the shared store itself is unavailable."""
    return isinstance(error, (TransientIOError,) + TRANSIENT_DB_ERRORS)


# ============================================================================
# Batch Failures
# ============================================================================

class PartialBatchFailure(AppException):
    """
    One tenant failed inside a multi-tenant run.

    Never raised out of a job: it is recorded in the run's ``errors`` list and
    the run carries on with the remaining tenants.
    """

    def __init__(self, tenant_id: Any, error: Exception, stage: Optional[str] = None):
        error_code = error.code.value if isinstance(error, AppException) else type(error).__name__
        details = {"tenant_id": str(tenant_id), "error_type": error_code}
        if stage:
            details["stage"] = stage
        super().__init__(
            code=ErrorCode.PARTIAL_BATCH_FAILURE,
            message=str(error) or type(error).__name__,
            details=details,
            original_error=error,
        )
        self.tenant_id = tenant_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": str(self.tenant_id),
            "error": self.message,
            "error_type": self.details["error_type"],
            "stage": self.details.get("stage"),
        }


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    if details:
        content["detail"]["details"] = details
    if field:
        content["detail"]["field"] = field
    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application exceptions"""
    log_level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(
        log_level,
        f"{exc.code.value}: {exc.message}",
        extra={"path": request.url.path, "details": exc.details},
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent error format."""
    code = ErrorCode.UNAUTHORIZED if exc.status_code in (401, 403) else ErrorCode.NOT_FOUND
    if exc.status_code not in (401, 403, 404):
        code = ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.VALIDATION_ERROR
    return create_error_response(code, str(exc.detail), exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors with detailed field info."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return create_error_response(
        ErrorCode.VALIDATION_ERROR,
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle database errors without leaking SQL"""
    logger.error(f"Database error on {request.url.path}: {exc}", exc_info=True)
    if isinstance(exc, TRANSIENT_DB_ERRORS):
        return create_error_response(
            ErrorCode.TRANSIENT_IO_ERROR,
            "Database temporarily unavailable",
            status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return create_error_response(
        ErrorCode.DATABASE_ERROR,
        "A database error occurred",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
