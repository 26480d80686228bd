import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError

from tradeguard.tasks import dispute_tasks
from tradeguard.tasks.celery_app import app


@pytest.fixture
def redis_lock():
    lock = MagicMock()
    lock.acquire.return_value = True
    client = MagicMock()
    client.lock.return_value = lock
    with patch("tradeguard.tasks.dispute_tasks.redis.Redis.from_url", return_value=client):
        yield lock


def test_beat_schedule_registers_scans():
    schedule = app.conf.beat_schedule
    assert schedule["check-expired-negotiations"]["task"] == "tradeguard.tasks.dispute_tasks.check_expired_negotiations"
    assert schedule["check-expired-arbitrations"]["schedule"] == 300.0
    assert schedule["dispatch-dispute-events"]["schedule"] == 60.0


def test_negotiation_scan_runs_under_lock(redis_lock):
    escalated = [uuid.uuid4(), uuid.uuid4()]
    with patch(
        "tradeguard.core.expiry.scheduler.ExpiryScheduler.mark_expired_negotiations",
        new=AsyncMock(return_value=escalated),
    ):
        result = dispute_tasks.check_expired_negotiations()

    assert result == [str(dispute_id) for dispute_id in escalated]
    redis_lock.acquire.assert_called_once_with(blocking=False)
    redis_lock.release.assert_called_once()


def test_arbitration_scan_runs_under_lock(redis_lock):
    closed = [uuid.uuid4()]
    with patch(
        "tradeguard.core.expiry.scheduler.ExpiryScheduler.mark_expired_arbitrations",
        new=AsyncMock(return_value=closed),
    ):
        assert dispute_tasks.check_expired_arbitrations() == [str(closed[0])]
    redis_lock.release.assert_called_once()


def test_scan_skipped_when_lock_held_elsewhere(redis_lock):
    redis_lock.acquire.return_value = False
    scan = AsyncMock(return_value=[])
    with patch("tradeguard.core.expiry.scheduler.ExpiryScheduler.mark_expired_negotiations", new=scan):
        assert dispute_tasks.check_expired_negotiations() == []
    scan.assert_not_called()
    redis_lock.release.assert_not_called()


def test_scan_skipped_when_redis_unavailable(redis_lock):
    redis_lock.acquire.side_effect = RedisConnectionError("redis down")
    scan = AsyncMock(return_value=[])
    with patch("tradeguard.core.expiry.scheduler.ExpiryScheduler.mark_expired_arbitrations", new=scan):
        assert dispute_tasks.check_expired_arbitrations() == []
    scan.assert_not_called()


def test_expired_lock_on_release_is_tolerated(redis_lock):
    redis_lock.release.side_effect = LockError("lock expired")
    with patch(
        "tradeguard.core.expiry.scheduler.ExpiryScheduler.mark_expired_negotiations",
        new=AsyncMock(return_value=[]),
    ):
        assert dispute_tasks.check_expired_negotiations() == []


def test_scan_lock_names(redis_lock):
    client = dispute_tasks.redis.Redis.from_url.return_value
    with patch(
        "tradeguard.core.expiry.scheduler.ExpiryScheduler.mark_expired_negotiations",
        new=AsyncMock(return_value=[]),
    ):
        dispute_tasks.check_expired_negotiations()
    client.lock.assert_called_once_with("lock:dispute:check-expired-negotiations", timeout=30)


def test_dispatch_task_drains_outbox():
    session = MagicMock()

    class FakeUnitOfWork:
        async def __aenter__(self):
            return session

        async def __aexit__(self, *exc):
            return False

    with (
        patch("tradeguard.db.session.unit_of_work", return_value=FakeUnitOfWork()),
        patch(
            "tradeguard.core.notifications.service.NotificationDispatcher.dispatch_pending",
            new=AsyncMock(return_value=3),
        ) as dispatch,
    ):
        assert dispute_tasks.dispatch_dispute_events() == 3
    dispatch.assert_awaited_once_with(session)
