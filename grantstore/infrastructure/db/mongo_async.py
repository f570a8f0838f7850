"""Cliente MongoDB asíncrono (Motor) compartido por los stores y el reaper.

Un único cliente/bd por proceso; todas las operaciones suspenden la tarea
llamante hasta completar el round-trip con Mongo.
"""
from __future__ import annotations

import certifi
import logging
from typing import Optional

from grantstore.core.config import settings
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase

_log = logging.getLogger("grantstore.mongo.async")

_aclient: Optional[AsyncIOMotorClient] = None
_adb: Optional[AsyncIOMotorDatabase] = None


def _build_async_client() -> AsyncIOMotorClient:
    uri = settings.mongo_uri
    kwargs = dict(serverSelectionTimeoutMS=settings.mongo_server_selection_timeout_ms)
    if uri.startswith("mongodb+srv://"):
        # SRV ya implica TLS; proveemos CA bundle para robustez
        kwargs["tlsCAFile"] = certifi.where()
    elif settings.mongo_tls:
        kwargs["tls"] = True
        kwargs["tlsCAFile"] = certifi.where()
        if settings.mongo_tls_insecure:
            kwargs["tlsAllowInvalidCertificates"] = True
        if settings.mongo_tls_allow_invalid_hostnames:
            kwargs["tlsAllowInvalidHostnames"] = True
    return AsyncIOMotorClient(uri, **kwargs)


def get_async_db() -> AsyncIOMotorDatabase:
    """Devuelve la DB asíncrona; inicializa lazy un único cliente/bd."""
    global _aclient, _adb
    if _adb is None:
        _aclient = _aclient or _build_async_client()
        _adb = _aclient[settings.mongo_db]
        _log.info("Motor listo (db=%s)", settings.mongo_db)
    return _adb


def persisted_grants() -> AsyncIOMotorCollection:
    return get_async_db()[settings.persisted_grants_collection]


def device_codes() -> AsyncIOMotorCollection:
    return get_async_db()[settings.device_codes_collection]


async def db_ping() -> bool:
    """True si Mongo responde a `ping`."""
    try:
        await get_async_db().command("ping")
        return True
    except Exception as e:
        _log.warning("Mongo no accesible: %s", e)
        return False


def close_async_db() -> None:
    """Cierra el cliente (shutdown de la app)."""
    global _aclient, _adb
    if _aclient is not None:
        _aclient.close()
    _aclient = None
    _adb = None
