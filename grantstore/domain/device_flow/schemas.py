# grantstore/domain/device_flow/schemas.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from grantstore.core.time import as_utc, now_utc


class DeviceCode(BaseModel):
    """Payload del flujo de dispositivo tal como lo entrega el motor OAuth."""

    client_id: str
    creation_time: datetime = Field(default_factory=now_utc)
    lifetime: int = 300  # segundos
    description: Optional[str] = None
    is_open_id: bool = False
    is_authorized: bool = False
    requested_scopes: List[str] = Field(default_factory=list)
    authorized_scopes: Optional[List[str]] = None
    subject_id: Optional[str] = None  # ausente hasta autorizar
    session_id: Optional[str] = None

    @field_validator("creation_time")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def expiration(self) -> datetime:
        return self.creation_time + timedelta(seconds=self.lifetime)


def serialize_device_code(model: DeviceCode) -> str:
    return model.model_dump_json()


def deserialize_device_code(data: Optional[str]) -> Optional[DeviceCode]:
    if data is None:
        return None
    return DeviceCode.model_validate_json(data)
