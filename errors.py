"""
Application errors

Every business failure is raised as one of the AppError subclasses below and
turned into the JSON error envelope by the handlers registered in main.py.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"success": False, "message": self.message, **self.details}


class ValidationError(AppError):
    status_code = 400


class AuthError(AppError):
    status_code = 401

    def __init__(self, message: str, status_code: int = 401, **details):
        super().__init__(message, **details)
        self.status_code = status_code


class NotFound(AppError):
    status_code = 404


class InvalidState(AppError):
    status_code = 400


class InsufficientStock(AppError):
    status_code = 400

    def __init__(self, product_id: str, product_name: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {product_name}",
            product_id=product_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available


class SignatureInvalid(AppError):
    status_code = 400

    def __init__(self, message: str = "Invalid payment signature"):
        super().__init__(message)


class ServiceUnavailable(AppError):
    status_code = 503


def register_error_handlers(app: FastAPI):
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", [])[1:])
        message = f"Invalid {field}: {first.get('msg')}" if field else "Invalid request"
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": message, "errors": jsonable_errors(errors)},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Internal server error", "error": str(exc)},
        )


def jsonable_errors(errors):
    # pydantic may put exception objects in "ctx"; keep only plain fields
    return [
        {"loc": list(e.get("loc", [])), "msg": e.get("msg"), "type": e.get("type")}
        for e in errors
    ]
