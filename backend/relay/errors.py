from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.exceptions import DomainException, ValidationException


def _error_body(detail: Any) -> Dict[str, Any]:
    if isinstance(detail, dict) and isinstance(detail.get("error"), str):
        return {"error": detail["error"]}
    if isinstance(detail, str) and detail:
        return {"error": detail}
    return {"error": "Error"}


def register_error_handlers(app: FastAPI) -> None:
    """Every error leaves the API as ``{"error": "<message>"}``."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            _error_body(exc.detail),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        return JSONResponse({"error": exc.public_message}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Malformed JSON, missing fields and wrong types all read as invalid input
        return JSONResponse(
            {"error": ValidationException.public_message},
            status_code=ValidationException.status_code,
        )
