"""
Errores del almacén operacional y handlers globales para respuestas consistentes.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import ConnectionFailure, ExecutionTimeout, WTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException


class GrantStoreError(Exception):
    """Base de los errores propios del almacén."""


class GrantValidationError(GrantStoreError, ValueError):
    """Argumento requerido vacío o filtro sin ningún criterio."""


class UniquenessViolation(GrantStoreError):
    """Device code o user code ya existente al crear un flujo de dispositivo."""


class DeviceCodeNotFoundError(GrantStoreError, LookupError):
    """Se intentó autorizar un user code que no existe (error del llamador)."""


class TransientStorageError(GrantStoreError):
    """Falla de conectividad o timeout del motor de almacenamiento."""


_TRANSIENT = (ConnectionFailure, ExecutionTimeout, WTimeoutError)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Traduce fallas transitorias de pymongo a `TransientStorageError`."""
    try:
        yield
    except _TRANSIENT as e:
        raise TransientStorageError(f"{operation}: {e}") from e


def _req_id(request: Request) -> str | None:
    return getattr(getattr(request, "state", object()), "request_id", None)


def _body(request: Request, message: str, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"message": message, **extra}
    rid = _req_id(request)
    if rid:
        body["request_id"] = rid
    return body


def register_exception_handlers(app: FastAPI) -> None:
    log = logging.getLogger("grantstore.errors")

    @app.exception_handler(StarletteHTTPException)
    async def _http_exc_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=_body(request, exc.detail or "HTTP error"))

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=422, content=_body(request, "Validation error", errors=exc.errors()))

    @app.exception_handler(GrantValidationError)
    async def _grant_validation_handler(request: Request, exc: GrantValidationError):
        return JSONResponse(status_code=422, content=_body(request, str(exc)))

    @app.exception_handler(UniquenessViolation)
    async def _uniqueness_handler(request: Request, exc: UniquenessViolation):
        return JSONResponse(status_code=409, content=_body(request, str(exc)))

    @app.exception_handler(DeviceCodeNotFoundError)
    async def _device_not_found_handler(request: Request, exc: DeviceCodeNotFoundError):
        return JSONResponse(status_code=404, content=_body(request, str(exc)))

    @app.exception_handler(TransientStorageError)
    async def _transient_handler(request: Request, exc: TransientStorageError):
        log.warning("Almacenamiento no disponible request_id=%s: %s", _req_id(request), exc)
        return JSONResponse(status_code=503, content=_body(request, "Storage unavailable"))

    @app.exception_handler(Exception)
    async def _generic_handler(request: Request, exc: Exception):
        log.exception("Unhandled error request_id=%s", _req_id(request))
        return JSONResponse(status_code=500, content=_body(request, "Internal server error"))
