import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from jobqueue.config.logging import get_logger

logger = get_logger(__name__)


class JobQueueException(Exception):
    """Base exception for the job queue application."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(JobQueueException):
    """Raised when a resource is not found."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class UnauthorizedError(JobQueueException):
    """Raised when authentication fails."""

    def __init__(
        self, message: str = "Unauthorized", details: dict[str, Any] | None = None
    ):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED, details)


class InvalidJobTypeError(JobQueueException):
    """Raised when a job is enqueued with an empty or unknown type."""

    def __init__(self, job_type: str | None, reason: str = "Job type is required"):
        super().__init__(
            reason, status.HTTP_400_BAD_REQUEST, {"type": job_type}
        )
        self.job_type = job_type


class InvalidJobOptionsError(JobQueueException):
    """Raised for out-of-range enqueue or cleanup options."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class DuplicateKeyError(JobQueueException):
    """Raised when a job id already exists in the store."""

    def __init__(self, job_id: str):
        super().__init__(
            f"Job '{job_id}' already exists",
            status.HTTP_409_CONFLICT,
            {"job_id": job_id},
        )
        self.job_id = job_id


class UnknownJobTypeError(JobQueueException):
    """A claimed job has no registered handler; handled like a handler failure."""

    error_code = "UNKNOWN_JOB_TYPE"

    def __init__(self, job_type: str):
        super().__init__(
            f"No handler registered for job type: {job_type}", details={"type": job_type}
        )
        self.job_type = job_type


class HandlerFailureError(JobQueueException):
    """A handler raised or timed out; retried according to the retry policy."""

    error_code = "HANDLER_FAILURE"

    def __init__(self, job_type: str, cause: BaseException, error_code: str | None = None):
        message = str(cause) or cause.__class__.__name__
        super().__init__(message, details={"type": job_type, "cause": cause.__class__.__name__})
        if error_code:
            self.error_code = error_code


class StoreUnavailableError(JobQueueException):
    """The job store cannot be reached; aborts the whole operation."""

    def __init__(self, message: str = "Job store unavailable", details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, details)


class PassTimeoutError(JobQueueException):
    """A triggered pass did not finish within JOB_PASS_TIMEOUT_S."""

    def __init__(self, timeout_s: float):
        super().__init__(
            f"Job processing timed out after {timeout_s}s",
            status.HTTP_504_GATEWAY_TIMEOUT,
            {"timeout_s": timeout_s},
        )


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def job_queue_exception_handler(
    request: Request, exc: JobQueueException
) -> JSONResponse:
    """Handle job queue specific exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Application exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=exc.message,
            details=exc.details,
            request_id=request_id,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=str(exc.detail),
            request_id=request_id,
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        request_id=request_id,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
            request_id=request_id,
        ),
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context and correlation IDs."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        from jobqueue.config.logging import add_request_context

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response
