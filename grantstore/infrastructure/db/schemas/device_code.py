"""
Modelo Pydantic para documentos de la colección de device codes.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, field_validator

from grantstore.core.time import as_utc, to_storage
from grantstore.domain.device_flow.schemas import DeviceCode, serialize_device_code


class DeviceFlowRecord(BaseModel):
    device_code: str  # único
    user_code: str  # único
    client_id: Optional[str] = None
    subject_id: Optional[str] = None  # se llena al autorizar
    creation_time: datetime
    expiration: datetime
    data: str  # DeviceCode serializado

    @field_validator("creation_time", "expiration")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @classmethod
    def from_device_code(cls, model: DeviceCode, device_code: str, user_code: str) -> "DeviceFlowRecord":
        """Deriva cliente, sujeto y vigencia a partir del payload."""
        return cls(
            device_code=device_code,
            user_code=user_code,
            client_id=model.client_id,
            subject_id=model.subject_id,
            creation_time=model.creation_time,
            expiration=model.expiration,
            data=serialize_device_code(model),
        )

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump()
        doc["creation_time"] = to_storage(self.creation_time)
        doc["expiration"] = to_storage(self.expiration)
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "DeviceFlowRecord":
        return cls.model_validate({k: v for k, v in doc.items() if k != "_id"})
