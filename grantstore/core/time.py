"""
Helpers de fecha/hora en UTC.

Mongo guarda fechas como UTC sin zona; hacia afuera siempre trabajamos con
datetimes timezone-aware en UTC.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Asegura timezone-aware en UTC (naive se interpreta como UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_storage(dt: Optional[datetime]) -> Optional[datetime]:
    """Convierte a UTC naive, tal como lo persiste Mongo."""
    if dt is None:
        return None
    return as_utc(dt).replace(tzinfo=None)
