"""
Limpieza periódica de grants persistidos y device codes vencidos.

Cada barrido tiene dos fases independientes (grants y device codes), cada una
lee-luego-borra sobre `expiration < ahora`. Si hay un observador registrado,
se leen primero los vencidos y se le notifican después del borrado.

Nota: la lectura y el borrado no son transaccionales. Un registro extendido
entre ambos pasos puede ser notificado y borrado igual.

El barrido nunca propaga excepciones: se registran y se espera al siguiente tick.
Un observador que falla no altera los conteos de borrado.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from grantstore.core.config import settings
from grantstore.core.time import now_utc
from grantstore.infrastructure.db.schemas.device_code import DeviceFlowRecord
from grantstore.infrastructure.db.schemas.persisted_grant import PersistedGrant
from grantstore.repositories import device_flow_repo, persisted_grant_repo

_log = logging.getLogger("grantstore.cleanup")


class OperationalStoreNotification:
    """Observador de borrados del reaper. Por defecto no hace nada.

    Las subclases pueden disparar efectos (p.ej. revocaciones en cascada),
    pero cada llamada está acotada por `token_cleanup_notification_timeout`.
    """

    async def persisted_grants_removed(self, persisted_grants: Sequence[PersistedGrant]) -> None:
        return None

    async def device_codes_removed(self, device_codes: Sequence[DeviceFlowRecord]) -> None:
        return None


@dataclass
class CleanupResult:
    grants_removed: int = 0
    device_codes_removed: int = 0
    failed: bool = False


async def _notify(
    callback: Callable[[Sequence], Awaitable[None]],
    items: Sequence,
    timeout: float,
) -> None:
    try:
        await asyncio.wait_for(callback(items), timeout=timeout)
    except asyncio.TimeoutError:
        _log.warning("notification %s timed out after %ss", getattr(callback, "__name__", callback), timeout)
    except Exception as e:
        # El borrado ya ocurrió: se registra y el barrido sigue
        _log.error("notification %s failed: %s", getattr(callback, "__name__", callback), e)


async def remove_grants(
    notification: Optional[OperationalStoreNotification] = None,
    *,
    notification_timeout: Optional[float] = None,
) -> int:
    """Fase 1: grants persistidos vencidos."""
    now = now_utc()
    expired: List[PersistedGrant] = []
    if notification is not None:
        expired = await persisted_grant_repo.get_expired(now)

    _log.info("performing grants cleanup...")
    removed = await persisted_grant_repo.remove_expired(now)

    if notification is not None:
        await _notify(
            notification.persisted_grants_removed,
            expired,
            notification_timeout or settings.token_cleanup_notification_timeout,
        )
    return removed


async def remove_device_codes(
    notification: Optional[OperationalStoreNotification] = None,
    *,
    notification_timeout: Optional[float] = None,
) -> int:
    """Fase 2: device codes vencidos."""
    now = now_utc()
    expired: List[DeviceFlowRecord] = []
    if notification is not None:
        expired = await device_flow_repo.get_expired(now)

    _log.info("performing codes cleanup...")
    removed = await device_flow_repo.remove_expired(now)

    if notification is not None:
        await _notify(
            notification.device_codes_removed,
            expired,
            notification_timeout or settings.token_cleanup_notification_timeout,
        )
    return removed


async def remove_expired_grants(
    notification: Optional[OperationalStoreNotification] = None,
    *,
    notification_timeout: Optional[float] = None,
) -> CleanupResult:
    """Un barrido completo. Nunca lanza: cada fase corre aunque la otra falle."""
    result = CleanupResult()
    _log.debug("Querying for expired grants to remove")
    try:
        result.grants_removed = await remove_grants(notification, notification_timeout=notification_timeout)
    except Exception as e:
        result.failed = True
        _log.error("Exception removing expired grants: %s", e)
    try:
        result.device_codes_removed = await remove_device_codes(notification, notification_timeout=notification_timeout)
    except Exception as e:
        result.failed = True
        _log.error("Exception removing expired device codes: %s", e)
    return result


class TokenCleanupHost:
    """Tarea de fondo que ejecuta un barrido cada `interval` segundos.

    `stop()` deja de programar barridos; uno en curso termina normalmente.
    """

    def __init__(
        self,
        interval: Optional[float] = None,
        notification: Optional[OperationalStoreNotification] = None,
        notification_timeout: Optional[float] = None,
    ) -> None:
        self.interval = float(interval if interval is not None else settings.token_cleanup_interval)
        if self.interval <= 0:
            raise ValueError("Token cleanup interval must be greater than zero")
        self.notification = notification
        self.notification_timeout = notification_timeout
        self.sweeps = 0
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="token-cleanup")
        _log.info("token cleanup started (interval=%ss)", self.interval)

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
        _log.info("token cleanup stopped")

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass
            await remove_expired_grants(self.notification, notification_timeout=self.notification_timeout)
            self.sweeps += 1


# Instancia de proceso usada por la app FastAPI
_host: Optional[TokenCleanupHost] = None


def start_token_cleanup(notification: Optional[OperationalStoreNotification] = None) -> TokenCleanupHost:
    global _host
    if _host is None:
        _host = TokenCleanupHost(notification=notification)
    elif notification is not None:
        _host.notification = notification
    _host.start()
    return _host


async def stop_token_cleanup() -> None:
    global _host
    if _host is not None:
        await _host.stop()
    _host = None


def cleanup_running() -> bool:
    return _host is not None and _host.running
