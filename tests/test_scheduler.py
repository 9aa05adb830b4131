"""
Tests for scheduled delivery, idle-session expiry and the background scheduler.
"""
from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from socialnet.config import get_settings
from socialnet.database import utcnow
from socialnet.models import DeviceToken, Notification, ScreenActivity, UserSession
from socialnet.services.notifications import NotificationPayload, NotificationService
from socialnet.services.tracking import expire_idle_sessions
from socialnet.worker.scheduler import NotificationScheduler


@pytest.fixture
def service(db, push_gateway):
    return NotificationService(db, push_gateway, get_settings())


def schedule_due(db, user, minutes_ago=1, **fields):
    notification = Notification(
        recipient_id=user.id,
        title="Reminder",
        body="Due now",
        is_scheduled=True,
        scheduled_for=utcnow() - timedelta(minutes=minutes_ago),
        **fields,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


class TestProcessScheduled:
    """Test the claim-then-process sweep."""

    def test_delivers_due_notifications(self, service, test_user, db, push_gateway):
        db.add(DeviceToken(user_id=test_user.id, token="a", device_type="android"))
        db.commit()
        notification = schedule_due(db, test_user)

        summary = service.process_scheduled()

        assert summary == {"due": 1, "processed": 1, "sent": 1, "failed": 0}
        db.refresh(notification)
        assert notification.delivery_status == "sent"
        assert notification.is_scheduled is False
        assert db.query(Notification).count() == 1
        assert len(push_gateway.calls) == 1

    def test_second_sweep_sends_nothing(self, service, test_user, db, push_gateway):
        db.add(DeviceToken(user_id=test_user.id, token="a", device_type="android"))
        db.commit()
        schedule_due(db, test_user)

        service.process_scheduled()
        summary = service.process_scheduled()

        assert summary["processed"] == 0
        assert len(push_gateway.calls) == 1

    def test_future_notifications_wait(self, service, test_user, db):
        service.schedule(test_user.id, NotificationPayload(title="Later", body="Later"),
                         utcnow() + timedelta(hours=1))
        assert service.process_scheduled()["due"] == 0

    def test_claimed_record_is_skipped(self, service, test_user, db, push_gateway):
        db.add(DeviceToken(user_id=test_user.id, token="a", device_type="android"))
        db.commit()
        schedule_due(db, test_user, claim_token="other-worker", claimed_at=utcnow())

        assert service.process_scheduled()["processed"] == 0
        assert push_gateway.calls == []

    def test_stale_claim_is_taken_over(self, service, test_user, db):
        db.add(DeviceToken(user_id=test_user.id, token="a", device_type="android"))
        db.commit()
        schedule_due(db, test_user, claim_token="crashed-worker", claimed_at=utcnow() - timedelta(hours=1))

        assert service.process_scheduled()["sent"] == 1

    def test_no_tokens_fails_record(self, service, test_user, db):
        notification = schedule_due(db, test_user)
        summary = service.process_scheduled()
        assert summary["failed"] == 1
        db.refresh(notification)
        assert notification.delivery_status == "failed"
        assert notification.error_message == "No active device tokens found for user"

    def test_admin_trigger(self, client, admin_headers, test_user, db):
        schedule_due(db, test_user)
        response = client.post("/api/v1/admin/notifications/process-scheduled", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["data"]["processed"] == 1


class TestIdleSessions:
    """Test idle-session expiry."""

    def make_session(self, db, user, idle_minutes):
        last = utcnow() - timedelta(minutes=idle_minutes)
        session = UserSession(
            user_id=user.id,
            session_token=f"token-{user.id}-{idle_minutes}",
            start_time=last - timedelta(minutes=10),
            last_activity_time=last,
            status="active",
        )
        db.add(session)
        db.flush()
        db.add(ScreenActivity(session_id=session.id, user_id=user.id, screen_name="home",
                              entered_at=last - timedelta(minutes=1)))
        db.commit()
        db.refresh(session)
        return session

    def test_expires_only_idle(self, db, test_user, other_user):
        idle = self.make_session(db, test_user, 45)
        fresh = self.make_session(db, other_user, 5)

        assert expire_idle_sessions(db, 30) == 1

        db.refresh(idle)
        db.refresh(fresh)
        assert idle.status == "expired"
        assert idle.end_time == idle.last_activity_time
        assert idle.total_duration == 600
        assert all(a.exited_at is not None for a in idle.activities)
        assert fresh.status == "active"

    def test_sweep_is_idempotent(self, db, test_user):
        self.make_session(db, test_user, 45)
        assert expire_idle_sessions(db, 30) == 1
        assert expire_idle_sessions(db, 30) == 0


class TestScheduler:
    """Test the scheduler lifecycle and job runner."""

    @pytest.fixture
    def scheduler(self, db, push_gateway):
        factory = sessionmaker(bind=db.get_bind(), autoflush=False)
        settings = get_settings().model_copy(update={
            "scheduled_sweep_interval_seconds": 3600,
            "cleanup_interval_seconds": 3600,
            "session_sweep_interval_seconds": 3600,
        })
        scheduler = NotificationScheduler(factory, push_gateway, settings)
        yield scheduler
        scheduler.stop()

    def test_start_and_stop(self, scheduler):
        assert scheduler.start() is True
        assert scheduler.start() is False
        assert scheduler.status()["running"] is True
        assert set(scheduler.status()["jobs"]) == {"scheduled-notifications", "cleanup", "idle-sessions"}

        scheduler.stop()
        assert scheduler.status()["running"] is False

    def test_run_job_records_result(self, scheduler, test_user, db):
        db.add(DeviceToken(user_id=test_user.id, token="a", device_type="android"))
        db.commit()
        schedule_due(db, test_user)

        result = scheduler.run_job("scheduled-notifications")

        assert result["sent"] == 1
        assert scheduler.status()["jobs"]["scheduled-notifications"]["last_run"]["result"] == result

    def test_run_job_survives_errors(self, scheduler):
        def broken():
            raise RuntimeError("database unavailable")

        scheduler.jobs["cleanup"].run = broken
        assert scheduler.run_job("cleanup") is None
        assert "cleanup" not in scheduler.last_results

    def test_cleanup_job(self, scheduler, test_user, db):
        db.add(Notification(recipient_id=test_user.id, title="old", body="old",
                            expires_at=utcnow() - timedelta(days=1)))
        db.commit()
        assert scheduler.run_job("cleanup") == {"expired_notifications": 1, "stale_tokens": 0}
