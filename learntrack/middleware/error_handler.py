"""
learntrack/middleware/error_handler.py
Exception handlers that render engine errors as structured JSON

Every error response has the same shape:
    {error_code, message, details, log_id, timestamp}

- LearnTrackError subclasses -> their own category status (400/404/409/503)
- Request schema validation -> 400 VALIDATION_ERROR
- Anything else -> 500 SERVER_ERROR, details only in debug mode
"""
import logging
import traceback
import uuid
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from learntrack.exceptions import ErrorCategory, LearnTrackError

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "An internal error occurred. Please try again or contact support."


def _context(request: Request, log_id: str) -> dict:
    return {
        "log_id": log_id,
        "method": request.method,
        "path": request.url.path,
        "client": request.client.host if request.client else None,
    }


def setup_error_handlers(app: FastAPI, debug: bool = False):
    """
    Setup error handlers for FastAPI application.

    Args:
        app: FastAPI application instance
        debug: Enable debug mode (includes stack traces)
    """

    @app.exception_handler(LearnTrackError)
    async def learntrack_error_handler(request: Request, exc: LearnTrackError):
        content = exc.to_dict()
        if exc.status_code >= 500:
            logger.error(f"Handled error [{exc.log_id}]: {exc.message} | Context: {_context(request, exc.log_id)}")
            if not debug and not exc.retryable:
                content["message"] = GENERIC_MESSAGE
                content["details"] = {}
        else:
            logger.warning(f"Handled error [{exc.log_id}]: {exc.message} | Context: {_context(request, exc.log_id)}")

        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        log_id = str(uuid.uuid4())[:8]
        errors = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]
        logger.warning(f"Validation error [{log_id}] on {request.url.path}: {errors}")
        code, status_code = ErrorCategory.VALIDATION_ERROR
        return JSONResponse(
            status_code=status_code,
            content={
                "error_code": code,
                "message": "Invalid input data",
                "details": jsonable_encoder({"errors": errors}),
                "log_id": log_id,
                "timestamp": datetime.utcnow().isoformat()
            }
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        log_id = str(uuid.uuid4())[:8]
        logger.exception(f"Unhandled exception [{log_id}] | Context: {_context(request, log_id)}")
        code, status_code = ErrorCategory.SERVER_ERROR
        return JSONResponse(
            status_code=status_code,
            content={
                "error_code": code,
                "message": str(exc) if debug else GENERIC_MESSAGE,
                "details": {"traceback": traceback.format_exc()} if debug else {},
                "log_id": log_id,
                "timestamp": datetime.utcnow().isoformat()
            }
        )

    logger.info("Error handlers configured")
