from conftest import CHROME_MAC
from sessionguard.core.database import SessionLocal
from sessionguard.models.audit import LoginEvent
from sessionguard.models.security import SecurityAlert
from sessionguard.services.security_event_worker import SecurityEventWorker


def test_jobs_run_inline_when_worker_is_stopped(db, principal):
    worker = SecurityEventWorker(session_factory=SessionLocal)

    worker.submit_alert(principal.id, "possible_reuse", "reuse", {"ip": "10.0.0.1"})

    assert db.query(SecurityAlert).count() == 1
    assert worker.status()["processed_count"] == 1


def test_failing_job_is_logged_and_swallowed(db, principal, caplog):
    worker = SecurityEventWorker(session_factory=SessionLocal)

    def boom(session):
        raise RuntimeError("storage unavailable")

    worker.submit("boom", boom)
    # Unknown alert categories are rejected inside the job, not at the caller.
    worker.submit_alert(principal.id, "not-a-category", "x")

    status = worker.status()
    assert status["failed_count"] == 2
    assert status["processed_count"] == 0
    assert "Security event job boom failed" in caplog.text
    assert db.query(SecurityAlert).count() == 0


def test_started_worker_processes_queue_and_drains_on_stop(db, principal):
    worker = SecurityEventWorker(session_factory=SessionLocal, max_queue_size=10)
    worker.start()
    try:
        assert worker.is_running()
        worker.submit_observe(principal.id, "10.0.0.1", CHROME_MAC, "login")
    finally:
        worker.stop()

    assert worker.is_running() is False
    assert worker.status()["queue_depth"] == 0
    db.expire_all()
    assert db.query(LoginEvent).count() == 1
    assert db.query(SecurityAlert).count() == 1


def test_full_queue_drops_instead_of_blocking(db, principal, monkeypatch):
    worker = SecurityEventWorker(session_factory=SessionLocal, max_queue_size=1)
    # Pretend the thread is alive so jobs are queued rather than run inline.
    monkeypatch.setattr(worker, "is_running", lambda: True)

    worker.submit_alert(principal.id, "new_device", "first")
    worker.submit_alert(principal.id, "new_device", "second")

    assert worker.status()["dropped_count"] == 1
    assert worker.drain() == 1
    assert db.query(SecurityAlert).count() == 1
