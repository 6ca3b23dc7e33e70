from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.responses import send_error
from rag_chat.exception.custom_exception import ERROR_CODES, RagChatException
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.utils.config_loader import get_env

GENERIC_MESSAGE = "Internal server error"


def public_error_message(exc: Exception) -> str:
    """Message safe to show a client: known errors verbatim, others hidden in production."""
    if isinstance(exc, RagChatException):
        return exc.message
    return GENERIC_MESSAGE if get_env().is_production else str(exc)


def format_validation_errors(exc: RequestValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg', 'invalid')}"
        for e in exc.errors()
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    message = format_validation_errors(exc)
    log.warning("Validation error | path=%s | %s", request.url.path, message)
    return send_error(message, 400, ERROR_CODES["VALIDATION_ERROR"])


async def app_exception_handler(request: Request, exc: RagChatException):
    log.error(
        "Request failed | path=%s | status=%d | code=%s | error=%s",
        request.url.path,
        exc.status_code,
        exc.code,
        exc.message,
    )
    return send_error(exc.message, exc.status_code, exc.code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    log.warning("HTTP error | path=%s | status=%d | detail=%s", request.url.path, exc.status_code, exc.detail)
    code = ERROR_CODES["NOT_FOUND"] if exc.status_code == 404 else None
    return send_error(str(exc.detail), exc.status_code, code)


async def general_exception_handler(request: Request, exc: Exception):
    log.exception("Unhandled error | path=%s | error=%s", request.url.path, str(exc))
    return send_error(public_error_message(exc), 500, ERROR_CODES["INTERNAL_ERROR"])


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RagChatException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
