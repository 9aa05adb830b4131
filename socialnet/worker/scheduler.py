"""
Background scheduler for notification and session housekeeping.

Jobs:
- scheduled-notifications: deliver due scheduled notifications (every minute)
- cleanup: drop expired notifications and stale device tokens (daily)
- idle-sessions: expire tracking sessions with no recent activity (every 5 minutes)

Each job runs on its own daemon thread and opens a fresh database session
per run. Every job is safe to run from several instances at once.
"""
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..config import Settings
from ..database import utcnow
from ..logging_config import scheduler_logger
from ..services.notifications import NotificationService
from ..services.push import PushGateway
from ..services.tracking import expire_idle_sessions


@dataclass
class Job:
    name: str
    interval: float
    run: Callable[[], dict]


class NotificationScheduler:
    """Runs periodic jobs until stopped."""

    def __init__(self, session_factory: Callable, gateway: PushGateway, settings: Settings):
        self.session_factory = session_factory
        self.gateway = gateway
        self.settings = settings
        self.running = False
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self.jobs: Dict[str, Job] = {
            job.name: job for job in (
                Job("scheduled-notifications", settings.scheduled_sweep_interval_seconds, self.process_scheduled),
                Job("cleanup", settings.cleanup_interval_seconds, self.cleanup),
                Job("idle-sessions", settings.session_sweep_interval_seconds, self.expire_sessions),
            )
        }
        self.last_results: Dict[str, dict] = {}

    # ------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------

    def _service(self, db) -> NotificationService:
        return NotificationService(db, self.gateway, self.settings)

    def process_scheduled(self) -> dict:
        db = self.session_factory()
        try:
            return self._service(db).process_scheduled()
        finally:
            db.close()

    def cleanup(self) -> dict:
        db = self.session_factory()
        try:
            service = self._service(db)
            return {
                "expired_notifications": service.cleanup_expired(),
                "stale_tokens": service.cleanup_stale_tokens(),
            }
        finally:
            db.close()

    def expire_sessions(self) -> dict:
        db = self.session_factory()
        try:
            return {"expired": expire_idle_sessions(db, self.settings.session_idle_minutes)}
        finally:
            db.close()

    def run_job(self, name: str) -> Optional[dict]:
        """Run one job now; errors are logged and the job keeps its schedule."""
        job = self.jobs[name]
        try:
            result = job.run()
        except Exception as e:
            scheduler_logger.error("Scheduled job failed", error=e, job=name)
            return None
        self.last_results[name] = {"at": utcnow().isoformat(), "result": result}
        scheduler_logger.debug("Scheduled job finished", job=name, **result)
        return result

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def _loop(self, job: Job):
        while not self._stop_event.wait(job.interval):
            self.run_job(job.name)

    def start(self) -> bool:
        """Start one thread per job (non-blocking)."""
        with self._lock:
            if self.running:
                return False
            self._stop_event.clear()
            self.running = True
            self._threads = [
                threading.Thread(target=self._loop, args=(job,), daemon=True, name=f"scheduler-{job.name}")
                for job in self.jobs.values()
            ]
            for thread in self._threads:
                thread.start()

        scheduler_logger.info("Scheduler started", jobs=list(self.jobs))
        return True

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if not self.running:
                return
            self._stop_event.set()
            for thread in self._threads:
                thread.join(timeout)
            self._threads = []
            self.running = False
        scheduler_logger.info("Scheduler stopped")

    def status(self) -> dict:
        return {
            "running": self.running,
            "jobs": {
                name: {"interval_seconds": job.interval, "last_run": self.last_results.get(name)}
                for name, job in self.jobs.items()
            },
        }
