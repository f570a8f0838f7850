"""
Fixtures compartidas: base Mongo en memoria (mongomock-motor) inyectada como
la DB asíncrona del proceso, con los mismos índices que en producción.
"""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from grantstore.infrastructure.db import mongo_async
from grantstore.infrastructure.db.bootstrap import ensure_collections


@pytest_asyncio.fixture
async def mongo(monkeypatch):
    """DB aislada por test; `get_async_db()` la devuelve sin conectar a nada."""
    db = AsyncMongoMockClient()["grantstore_test"]
    monkeypatch.setattr(mongo_async, "_adb", db)
    await ensure_collections(validators=False)
    return db


@pytest.fixture
def utcnow():
    # Sin microsegundos: Mongo guarda milisegundos
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def past(utcnow):
    return utcnow - timedelta(days=3)


@pytest.fixture
def future(utcnow):
    return utcnow + timedelta(days=3)
