"""
Central API router and utilities for the assessment engine.

This module provides:
- A central router that includes all module routers
- The standard response envelope
- Exception handlers mapping engine errors to HTTP status codes
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from assessment_engine.common.error_handling import (
    ConfigurationError, ConflictError, EngineError, EventDeliveryError, InvalidStateError,
    NotFoundError, StoreError, ValidationError, log_error
)
from assessment_engine.common.logger import app_logger
from assessment_engine.common.serialization import serialize

logger = app_logger.getChild("api")

# Create main API router
main_router = APIRouter()

# Version prefix for all API routes
API_VERSION = "v1"

# Dictionary to track registered modules
registered_modules: Dict[str, APIRouter] = {}

# Most specific classes first
ERROR_STATUS_CODES = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (EventDeliveryError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def register_module(name: str, router: APIRouter) -> None:
    """
    Register a module router with the main API router.

    Args:
        name: Name of the module, used as its path segment
        router: FastAPI router for the module
    """
    if name in registered_modules:
        logger.warning(f"Module '{name}' already registered, skipping")
        return

    main_router.include_router(router, prefix=f"/{API_VERSION}/{name}", tags=[name])
    registered_modules[name] = router
    logger.info(f"Registered module: {name} with {len(router.routes)} routes")


# Standard API response model
class APIResponse:
    """Standard API response structure"""

    @staticmethod
    def success(data: Any = None, message: str = "Success") -> Dict[str, Any]:
        """
        Create a success response.

        Args:
            data: Response data
            message: Success message

        Returns:
            Response dictionary
        """
        return {
            "status": "success",
            "message": message,
            "data": data
        }

    @staticmethod
    def error(message: str, details: Optional[Any] = None,
              code: Optional[str] = None) -> Dict[str, Any]:
        """
        Create an error response.

        Args:
            message: Error message
            details: Optional error details
            code: Optional error code

        Returns:
            Response dictionary
        """
        response = {
            "status": "error",
            "message": message
        }

        if details:
            response["details"] = details

        if code:
            response["code"] = code

        return response


def status_code_for(error: EngineError) -> int:
    """HTTP status code for an engine error."""
    for error_cls, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_cls):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def engine_exception_handler(request: Request, exc: EngineError) -> JSONResponse:
    """
    Handle engine errors and return a standardized response.

    Args:
        request: The incoming request
        exc: The engine error

    Returns:
        A JSON response with error details
    """
    status_code = status_code_for(exc)
    if status_code >= 500:
        log_error(exc, logger)
    else:
        logger.debug(f"{request.method} {request.url.path} failed: {exc}")

    return JSONResponse(
        status_code=status_code,
        content=APIResponse.error(exc.message, details=serialize(exc.details) or None, code=exc.code.value)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle request validation errors and return a standardized response.

    Args:
        request: The incoming request
        exc: The validation exception

    Returns:
        A JSON response with error details
    """
    error_details = []
    for error in exc.errors():
        error_details.append({
            "location": list(error.get("loc", [])),
            "message": error.get("msg", "Unknown validation error"),
            "type": error.get("type", "")
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=APIResponse.error("Validation error", details=error_details, code="validation_error")
    )


def install_exception_handlers(app: FastAPI) -> None:
    """Attach the engine's exception handlers to an application."""
    app.add_exception_handler(EngineError, engine_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
