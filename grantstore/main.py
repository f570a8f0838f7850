"""Entrada principal de la app FastAPI que hospeda el almacén operacional.

Al arrancar: conecta Mongo, asegura colecciones/índices y, si está habilitado,
lanza la limpieza periódica de grants y device codes vencidos.
"""
from fastapi import FastAPI
from grantstore.core.config import settings
from grantstore.core.logging import setup_logging
from grantstore.core.middleware import add_middlewares
from grantstore.core.exceptions import register_exception_handlers
from grantstore.infrastructure.db.mongo_async import close_async_db, db_ping
from grantstore.infrastructure.db.bootstrap import ensure_collections
from grantstore.services.token_cleanup_service import start_token_cleanup, stop_token_cleanup
from grantstore.api.router import api_router
from pymongo.errors import PyMongoError
import logging

_log = logging.getLogger("grantstore.startup")

setup_logging(settings.log_level)
app = FastAPI(title=settings.app_name)

add_middlewares(app)
register_exception_handlers(app)


@app.on_event("startup")
async def on_startup():
    if await db_ping():
        try:
            await ensure_collections()
        except PyMongoError:
            _log.exception("ensure_collections() falló; los índices únicos son obligatorios")
            raise
    else:
        _log.warning("Mongo no listo; omitiendo ensure_collections()")
    if settings.enable_token_cleanup:
        start_token_cleanup()


@app.on_event("shutdown")
async def on_shutdown():
    await stop_token_cleanup()
    close_async_db()


app.include_router(api_router, prefix=settings.api_prefix_normalized)
