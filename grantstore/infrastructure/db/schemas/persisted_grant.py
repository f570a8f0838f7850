"""
Modelos Pydantic para documentos de la colección de grants persistidos
y el filtro compuesto usado al listar/borrar.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from grantstore.core.exceptions import GrantValidationError
from grantstore.core.time import as_utc, now_utc, to_storage

# Campos que un upsert reemplaza sobre un documento existente
MUTABLE_FIELDS = (
    "type",
    "data",
    "client_id",
    "subject_id",
    "session_id",
    "expiration",
    "description",
    "consumed_time",
    "creation_time",
)


class PersistedGrant(BaseModel):
    key: str
    type: str
    client_id: Optional[str] = None
    subject_id: Optional[str] = None
    session_id: Optional[str] = None
    description: Optional[str] = None
    creation_time: datetime = Field(default_factory=now_utc)
    expiration: Optional[datetime] = None
    consumed_time: Optional[datetime] = None
    data: str = ""

    @field_validator("creation_time", "expiration", "consumed_time")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    def to_document(self) -> Dict[str, Any]:
        """Documento listo para Mongo (fechas en UTC naive, sin `_id`)."""
        doc = self.model_dump()
        for k in ("creation_time", "expiration", "consumed_time"):
            doc[k] = to_storage(doc[k])
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "PersistedGrant":
        return cls.model_validate({k: v for k, v in doc.items() if k != "_id"})


def _blank(v: Optional[str]) -> bool:
    return v is None or not v.strip()


class PersistedGrantFilter(BaseModel):
    """Conjunción de igualdades opcionales; campos vacíos no restringen."""

    subject_id: Optional[str] = None
    client_id: Optional[str] = None
    session_id: Optional[str] = None
    type: Optional[str] = None

    def validate_filter(self) -> None:
        # Evita borrar toda la colección por accidente
        if all(_blank(v) for v in (self.subject_id, self.client_id, self.session_id, self.type)):
            raise GrantValidationError("Grant filter is empty: set at least one of subject_id, client_id, session_id, type")

    def to_query(self) -> Dict[str, str]:
        self.validate_filter()
        query: Dict[str, str] = {}
        for field in ("client_id", "session_id", "subject_id", "type"):
            value = getattr(self, field)
            if not _blank(value):
                query[field] = value
        return query
