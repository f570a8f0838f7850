"""
Unit tests for grantstore/services/token_cleanup_service.py

- Un barrido borra exactamente los vencidos (grants y device codes)
- Notificación al observador con lo leído antes del borrado
- El barrido nunca propaga errores y la tarea de fondo se detiene limpia
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from grantstore.core.config import settings
from grantstore.domain.device_flow.schemas import DeviceCode
from grantstore.infrastructure.db.schemas.device_code import DeviceFlowRecord
from grantstore.infrastructure.db.schemas.persisted_grant import PersistedGrant
from grantstore.repositories import device_flow_repo, persisted_grant_repo
from grantstore.services import token_cleanup_service as cleanup
from grantstore.services.token_cleanup_service import (
    OperationalStoreNotification,
    TokenCleanupHost,
    remove_expired_grants,
)


def _grant(key, expiration):
    return PersistedGrant(key=key, type="reference", client_id="app1", subject_id="123", expiration=expiration, data="{!}")


async def _store_device(device_code, user_code, creation_time, lifetime):
    data = DeviceCode(client_id="app1", subject_id="123", creation_time=creation_time, lifetime=lifetime)
    await device_flow_repo.store_device_authorization(device_code, user_code, data)


def _observer():
    observer = MagicMock(spec=OperationalStoreNotification)
    observer.persisted_grants_removed = AsyncMock()
    observer.device_codes_removed = AsyncMock()
    return observer


class TestRemoveExpiredGrants:
    @pytest.mark.asyncio
    async def test_expired_grants_removed_and_valid_kept(self, mongo, past, future):
        await persisted_grant_repo.store(_grant("expired", past))
        await persisted_grant_repo.store(_grant("valid", future))

        result = await remove_expired_grants()

        assert result.grants_removed == 1
        assert not result.failed
        assert await persisted_grant_repo.get("expired") is None
        assert await persisted_grant_repo.get("valid") is not None

    @pytest.mark.asyncio
    async def test_expired_device_codes_removed_and_valid_kept(self, mongo, utcnow):
        await _store_device("d-old", "u-old", utcnow - timedelta(days=4), 60)
        await _store_device("d-new", "2468", utcnow - timedelta(days=4), int(timedelta(days=7).total_seconds()))

        result = await remove_expired_grants()

        assert result.device_codes_removed == 1
        assert await device_flow_repo.find_by_device_code("d-old") is None
        assert await device_flow_repo.find_by_device_code("d-new") is not None

    @pytest.mark.asyncio
    async def test_sweep_without_expired_records_is_noop(self, mongo, future, utcnow):
        await persisted_grant_repo.store(_grant("valid", future))
        await _store_device("d", "u", utcnow, 300)

        result = await remove_expired_grants()

        assert (result.grants_removed, result.device_codes_removed) == (0, 0)
        assert await mongo[settings.persisted_grants_collection].count_documents({}) == 1
        assert await mongo[settings.device_codes_collection].count_documents({}) == 1

    @pytest.mark.asyncio
    async def test_observer_receives_removed_records(self, mongo, past, future, utcnow):
        await persisted_grant_repo.store(_grant("expired-1", past))
        await persisted_grant_repo.store(_grant("expired-2", past - timedelta(hours=1)))
        await persisted_grant_repo.store(_grant("valid", future))
        await _store_device("d-old", "u-old", utcnow - timedelta(days=1), 60)
        observer = _observer()

        await remove_expired_grants(observer)

        observer.persisted_grants_removed.assert_awaited_once()
        grants = observer.persisted_grants_removed.await_args.args[0]
        assert sorted(g.key for g in grants) == ["expired-1", "expired-2"]
        assert all(isinstance(g, PersistedGrant) for g in grants)

        observer.device_codes_removed.assert_awaited_once()
        codes = observer.device_codes_removed.await_args.args[0]
        assert [c.device_code for c in codes] == ["d-old"]
        assert isinstance(codes[0], DeviceFlowRecord)

    @pytest.mark.asyncio
    async def test_observer_notified_with_empty_set(self, mongo):
        observer = _observer()
        await remove_expired_grants(observer)
        observer.persisted_grants_removed.assert_awaited_once_with([])
        observer.device_codes_removed.assert_awaited_once_with([])

    @pytest.mark.asyncio
    async def test_no_read_without_observer(self, mongo, monkeypatch):
        get_grants = AsyncMock()
        get_codes = AsyncMock()
        monkeypatch.setattr(persisted_grant_repo, "get_expired", get_grants)
        monkeypatch.setattr(device_flow_repo, "get_expired", get_codes)

        await remove_expired_grants()

        get_grants.assert_not_awaited()
        get_codes.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, mongo, monkeypatch, utcnow, caplog):
        await _store_device("d-old", "u-old", utcnow - timedelta(days=1), 60)
        monkeypatch.setattr(
            persisted_grant_repo, "remove_expired", AsyncMock(side_effect=RuntimeError("boom")),
        )

        result = await remove_expired_grants()

        assert result.failed
        # La fase de device codes corre aunque la de grants falle
        assert result.device_codes_removed == 1
        assert "boom" in caplog.text

    @pytest.mark.asyncio
    async def test_hanging_observer_is_bounded(self, mongo, past):
        await persisted_grant_repo.store(_grant("expired", past))

        class SlowObserver(OperationalStoreNotification):
            async def persisted_grants_removed(self, persisted_grants):
                await asyncio.sleep(10)

        result = await asyncio.wait_for(
            remove_expired_grants(SlowObserver(), notification_timeout=0.05), timeout=5,
        )

        assert not result.failed
        assert result.grants_removed == 1

    @pytest.mark.asyncio
    async def test_failing_observer_keeps_counts(self, mongo, past, utcnow, caplog):
        await persisted_grant_repo.store(_grant("expired", past))
        await _store_device("d-old", "u-old", utcnow - timedelta(days=1), 60)
        observer = _observer()
        observer.persisted_grants_removed.side_effect = RuntimeError("observer down")

        result = await remove_expired_grants(observer)

        assert result.grants_removed == 1
        assert result.device_codes_removed == 1
        observer.device_codes_removed.assert_awaited_once()
        assert "observer down" in caplog.text

    @pytest.mark.asyncio
    async def test_default_observer_is_noop(self, mongo, past):
        await persisted_grant_repo.store(_grant("expired", past))
        result = await remove_expired_grants(OperationalStoreNotification())
        assert result.grants_removed == 1


class TestTokenCleanupHost:
    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            TokenCleanupHost(interval=0)

    @pytest.mark.asyncio
    async def test_runs_sweeps_until_stopped(self, mongo, past):
        await persisted_grant_repo.store(_grant("expired", past))
        host = TokenCleanupHost(interval=0.01)

        host.start()
        assert host.running
        for _ in range(200):
            if host.sweeps >= 2:
                break
            await asyncio.sleep(0.01)
        await host.stop()

        assert not host.running
        assert host.sweeps >= 2
        assert await persisted_grant_repo.get("expired") is None

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_sweep_finish(self, monkeypatch):
        started = asyncio.Event()
        release = asyncio.Event()
        finished = []

        async def slow_sweep(notification=None, *, notification_timeout=None):
            started.set()
            await release.wait()
            finished.append(True)

        monkeypatch.setattr(cleanup, "remove_expired_grants", slow_sweep)
        host = TokenCleanupHost(interval=0.01)
        host.start()
        await asyncio.wait_for(started.wait(), timeout=5)

        stopping = asyncio.create_task(host.stop())
        await asyncio.sleep(0.05)
        assert not stopping.done()
        release.set()
        await asyncio.wait_for(stopping, timeout=5)

        assert finished == [True]
        assert host.sweeps == 1

    @pytest.mark.asyncio
    async def test_stop_before_first_tick(self):
        host = TokenCleanupHost(interval=3600)
        host.start()
        await asyncio.wait_for(host.stop(), timeout=5)
        assert host.sweeps == 0

    @pytest.mark.asyncio
    async def test_process_host_helpers(self, mongo, monkeypatch):
        monkeypatch.setattr(cleanup, "_host", None)
        monkeypatch.setattr(settings, "token_cleanup_interval", 3600)

        cleanup.start_token_cleanup()
        assert cleanup.cleanup_running()
        await cleanup.stop_token_cleanup()
        assert not cleanup.cleanup_running()

    @pytest.mark.asyncio
    async def test_restart_with_new_observer(self, mongo, monkeypatch):
        monkeypatch.setattr(cleanup, "_host", None)
        monkeypatch.setattr(settings, "token_cleanup_interval", 3600)
        first, second = _observer(), _observer()

        host = cleanup.start_token_cleanup(first)
        again = cleanup.start_token_cleanup(second)

        assert again is host
        assert host.notification is second
        await cleanup.stop_token_cleanup()
