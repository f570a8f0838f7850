"""
Bootstrap de la base Mongo: define y aplica validadores (JSON Schema) e índices
de las colecciones operacionales.

Los índices únicos (key de grants, device_code y user_code) sostienen las
garantías de unicidad del almacén: si no se pueden crear, el arranque falla.
Validadores e índices de consulta sólo dejan un warning.
"""
from __future__ import annotations

from typing import Any, Dict, List
import logging
from pymongo.errors import PyMongoError

from grantstore.core.config import settings
from grantstore.infrastructure.db.mongo_async import get_async_db

_log = logging.getLogger("grantstore.mongo.bootstrap")


PERSISTED_GRANT_VALIDATOR: Dict[str, Any] = {
    "bsonType": "object",
    "required": ["key", "type", "creation_time", "data"],
    "properties": {
        "key": {"bsonType": "string", "minLength": 1},
        "type": {"bsonType": "string"},
        "client_id": {"bsonType": ["string", "null"]},
        "subject_id": {"bsonType": ["string", "null"]},
        "session_id": {"bsonType": ["string", "null"]},
        "description": {"bsonType": ["string", "null"]},
        "creation_time": {"bsonType": "date"},
        "expiration": {"bsonType": ["date", "null"]},
        "consumed_time": {"bsonType": ["date", "null"]},
        "data": {"bsonType": "string"},
    },
    "additionalProperties": True,
}

DEVICE_CODE_VALIDATOR: Dict[str, Any] = {
    "bsonType": "object",
    "required": ["device_code", "user_code", "creation_time", "expiration", "data"],
    "properties": {
        "device_code": {"bsonType": "string", "minLength": 1},
        "user_code": {"bsonType": "string", "minLength": 1},
        "client_id": {"bsonType": ["string", "null"]},
        "subject_id": {"bsonType": ["string", "null"]},
        "creation_time": {"bsonType": "date"},
        "expiration": {"bsonType": "date"},
        "data": {"bsonType": "string"},
    },
    "additionalProperties": True,
}


def persisted_grant_indexes() -> List[Dict[str, Any]]:
    return [
        {"keys": [("key", 1)], "unique": True, "name": "uniq_key"},
        {"keys": [("subject_id", 1), ("client_id", 1), ("type", 1)], "name": "ix_subject_client_type"},
        {"keys": [("subject_id", 1), ("session_id", 1), ("type", 1)], "name": "ix_subject_session_type"},
        {"keys": [("expiration", 1)], "name": "ix_expiration"},
    ]


def device_code_indexes() -> List[Dict[str, Any]]:
    return [
        {"keys": [("device_code", 1)], "unique": True, "name": "uniq_device_code"},
        {"keys": [("user_code", 1)], "unique": True, "name": "uniq_user_code"},
        {"keys": [("expiration", 1)], "name": "ix_expiration"},
    ]


async def _collmod_or_create(name: str, validator: Dict[str, Any]) -> None:
    db = get_async_db()
    try:
        await db.command({
            "collMod": name,
            "validator": {"$jsonSchema": validator},
            "validationLevel": "moderate",
        })
    except PyMongoError:
        # Si collMod falla (no existe todavía), intenta crear con validator
        try:
            if name not in await db.list_collection_names():
                await db.create_collection(name, validator={"$jsonSchema": validator})
        except PyMongoError as e:
            _log.warning("No se pudo aplicar validator en '%s': %s", name, e)


async def ensure_indexes(name: str, indexes: List[Dict[str, Any]]) -> None:
    coll = get_async_db()[name]
    for ix in indexes:
        ix = dict(ix)
        keys = ix.pop("keys")
        try:
            await coll.create_index(keys, **ix)
        except PyMongoError as e:
            if ix.get("unique"):
                _log.error("No se pudo crear índice único en '%s' (%s): %s", name, keys, e)
                raise
            _log.warning("No se pudo crear índice en '%s' (%s): %s", name, keys, e)


async def ensure_collections(*, validators: bool = True) -> None:
    """
    Garantiza colecciones, validadores e índices de grants y device codes.
    """
    grants = settings.persisted_grants_collection
    codes = settings.device_codes_collection
    if validators:
        await _collmod_or_create(grants, PERSISTED_GRANT_VALIDATOR)
        await _collmod_or_create(codes, DEVICE_CODE_VALIDATOR)
    await ensure_indexes(grants, persisted_grant_indexes())
    await ensure_indexes(codes, device_code_indexes())
