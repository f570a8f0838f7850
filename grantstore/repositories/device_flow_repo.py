"""Persistencia del flujo de autorización de dispositivo (device code / user code).

Un mismo registro se resuelve por `device_code` (el dispositivo hace polling)
y por `user_code` (el usuario lo teclea para aprobar). Ambos son únicos en la
colección mediante índices únicos; una colisión al crear es un error duro.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from grantstore.core.exceptions import (
    DeviceCodeNotFoundError,
    GrantValidationError,
    UniquenessViolation,
    storage_errors,
)
from grantstore.core.time import now_utc, to_storage
from grantstore.domain.device_flow.schemas import DeviceCode, deserialize_device_code, serialize_device_code
from grantstore.infrastructure.db.mongo_async import device_codes
from grantstore.infrastructure.db.schemas.device_code import DeviceFlowRecord

_log = logging.getLogger("grantstore.device_flow")


def _require(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise GrantValidationError(f"{name} is required")
    return value


async def store_device_authorization(device_code: str, user_code: str, data: DeviceCode) -> None:
    """Crea el registro del flujo; falla si cualquiera de los dos códigos ya existe."""
    _require(device_code, "device_code")
    _require(user_code, "user_code")
    if data is None:
        raise GrantValidationError("device code data is required")

    record = DeviceFlowRecord.from_device_code(data, device_code, user_code)
    with storage_errors("store device authorization"):
        try:
            await device_codes().insert_one(record.to_document())
        except DuplicateKeyError as e:
            _log.warning("device flow collision for client %s", data.client_id)
            raise UniquenessViolation("device_code or user_code already in use") from e
    _log.debug("%s stored in database", user_code)


async def _find_data(field: str, value: str) -> Optional[DeviceCode]:
    _require(value, field)
    with storage_errors(f"find device code by {field}"):
        doc = await device_codes().find_one({field: value}, {"data": 1})
    if doc is None:
        _log.debug("%s was not found in database", value)
        return None
    _log.debug("%s found in database", value)
    return deserialize_device_code(doc.get("data"))


async def find_by_device_code(device_code: str) -> Optional[DeviceCode]:
    return await _find_data("device_code", device_code)


async def find_by_user_code(user_code: str) -> Optional[DeviceCode]:
    return await _find_data("user_code", user_code)


async def find_record_by_device_code(device_code: str) -> Optional[DeviceFlowRecord]:
    """Devuelve el sobre completo (códigos, fechas, sujeto) en vez del payload.

    Helper de inspección: el flujo normal sólo usa `find_by_*`. Sirve para
    diagnóstico y para verificar en tests que el sobre no cambia al autorizar.
    """
    _require(device_code, "device_code")
    with storage_errors("find device flow record"):
        doc = await device_codes().find_one({"device_code": device_code})
    return DeviceFlowRecord.from_document(doc) if doc else None


async def update_by_user_code(user_code: str, data: DeviceCode) -> None:
    """Autoriza el flujo: reemplaza `data` y el `subject_id` derivado.

    Códigos, cliente y fechas del sobre quedan intactos. Un user code
    desconocido es un error del llamador y no modifica nada.
    """
    _require(user_code, "user_code")
    if data is None:
        raise GrantValidationError("device code data is required")

    update = {"$set": {"data": serialize_device_code(data), "subject_id": data.subject_id}}
    with storage_errors("update device code"):
        doc = await device_codes().find_one_and_update(
            {"user_code": user_code},
            update,
            projection={"device_code": 1},
        )
    if doc is None:
        _log.error("%s not found in database", user_code)
        raise DeviceCodeNotFoundError("Could not update device code")
    _log.debug("%s authorized in database", user_code)


async def remove_by_device_code(device_code: str) -> None:
    """Borra por device code. Idempotente."""
    _require(device_code, "device_code")
    with storage_errors("remove device code"):
        res = await device_codes().delete_one({"device_code": device_code})
    _log.debug("%s removed from database: %s", device_code, bool(res.deleted_count))


async def get_expired(now: Optional[datetime] = None) -> List[DeviceFlowRecord]:
    cutoff = to_storage(now or now_utc())
    with storage_errors("list expired device codes"):
        docs = await device_codes().find({"expiration": {"$lt": cutoff}}).to_list(length=None)
    return [DeviceFlowRecord.from_document(d) for d in docs]


async def remove_expired(now: Optional[datetime] = None) -> int:
    cutoff = to_storage(now or now_utc())
    with storage_errors("remove expired device codes"):
        res = await device_codes().delete_many({"expiration": {"$lt": cutoff}})
    return int(res.deleted_count)
