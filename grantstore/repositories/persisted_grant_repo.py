"""Persistencia de grants (códigos, refresh/reference tokens, consentimientos).

Colección indexada por `key` (único). El contenido de `data` es opaco: el
almacén nunca lo interpreta.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from grantstore.core.exceptions import GrantValidationError, storage_errors
from grantstore.core.time import now_utc, to_storage
from grantstore.infrastructure.db.mongo_async import persisted_grants
from grantstore.infrastructure.db.schemas.persisted_grant import (
    MUTABLE_FIELDS,
    PersistedGrant,
    PersistedGrantFilter,
)

_log = logging.getLogger("grantstore.grants")


def _require(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise GrantValidationError(f"{name} is required")
    return value


def _query(grant_filter: Optional[PersistedGrantFilter]) -> Dict[str, str]:
    if grant_filter is None:
        raise GrantValidationError("grant filter is required")
    return grant_filter.to_query()


async def get(key: str) -> Optional[PersistedGrant]:
    """Busca un grant por key; None si no existe."""
    _require(key, "key")
    with storage_errors("get persisted grant"):
        doc = await persisted_grants().find_one({"key": key})
    _log.debug("%s found in database: %s", key, doc is not None)
    return PersistedGrant.from_document(doc) if doc else None


async def get_all(grant_filter: PersistedGrantFilter) -> List[PersistedGrant]:
    """Lista los grants que cumplen todos los criterios no vacíos del filtro."""
    query = _query(grant_filter)
    with storage_errors("list persisted grants"):
        docs = await persisted_grants().find(query).to_list(length=None)
    _log.debug("%s persisted grants found for %s", len(docs), query)
    return [PersistedGrant.from_document(d) for d in docs]


async def remove(key: str) -> None:
    """Borra por key. Idempotente: si no existe no hace nada."""
    _require(key, "key")
    with storage_errors("remove persisted grant"):
        res = await persisted_grants().delete_one({"key": key})
    if res.deleted_count:
        _log.debug("removed %s persisted grant from database", key)
    else:
        _log.debug("no %s persisted grant found in database", key)


async def remove_all(grant_filter: PersistedGrantFilter) -> int:
    """Borra en bloque todo lo que cumple el filtro; devuelve cuántos se borraron."""
    query = _query(grant_filter)
    with storage_errors("remove persisted grants"):
        res = await persisted_grants().delete_many(query)
    _log.debug("removed %s persisted grants for %s", res.deleted_count, query)
    return int(res.deleted_count)


async def store(grant: PersistedGrant) -> None:
    """Inserta o reemplaza (por key) los campos mutables del grant.

    El `_id` del documento existente se conserva. Si dos escritores insertan la
    misma key nueva a la vez, el índice único rechaza al segundo y se reintenta
    como actualización (gana la última escritura).
    """
    if grant is None:
        raise GrantValidationError("grant is required")
    _require(grant.key, "key")
    doc = grant.to_document()
    update: Dict[str, Any] = {"$set": {k: doc[k] for k in MUTABLE_FIELDS}}
    coll = persisted_grants()
    with storage_errors("store persisted grant"):
        try:
            res = await coll.update_one({"key": grant.key}, update, upsert=True)
        except DuplicateKeyError:
            _log.debug("%s inserted concurrently, retrying as update", grant.key)
            res = await coll.update_one({"key": grant.key}, update, upsert=True)
    if res.upserted_id is not None:
        _log.debug("%s not found in database, inserted", grant.key)
    else:
        _log.debug("%s found in database, updated", grant.key)


async def get_expired(now: Optional[datetime] = None) -> List[PersistedGrant]:
    """Grants con `expiration` estrictamente anterior a `now` (sin vencimiento no aplica)."""
    cutoff = to_storage(now or now_utc())
    with storage_errors("list expired persisted grants"):
        docs = await persisted_grants().find({"expiration": {"$lt": cutoff}}).to_list(length=None)
    return [PersistedGrant.from_document(d) for d in docs]


async def remove_expired(now: Optional[datetime] = None) -> int:
    cutoff = to_storage(now or now_utc())
    with storage_errors("remove expired persisted grants"):
        res = await persisted_grants().delete_many({"expiration": {"$lt": cutoff}})
    return int(res.deleted_count)
