"""Background hand-off for alert and audit writes on the authentication path."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from sessionguard.config import settings
from sessionguard.core.database import SessionLocal
from sessionguard.core.metrics import EVENT_QUEUE_DEPTH
from sessionguard.services.security_event_service import security_event_service

logger = logging.getLogger(__name__)

JobHandler = Callable[[Session], Any]


@dataclass
class _Job:
    name: str
    handler: JobHandler


class SecurityEventWorker:
    """Queue-backed worker; failures are logged and never reach the submitter.

    While the worker thread is not running, submitted jobs execute inline on a
    fresh session, with the same failure isolation.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, max_queue_size: Optional[int] = None) -> None:
        self._session_factory = session_factory or SessionLocal
        self._queue: "queue.Queue[_Job]" = queue.Queue(maxsize=max_queue_size or settings.EVENT_QUEUE_MAX_SIZE)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._heartbeat: float = 0.0
        self._processed_count: int = 0
        self._failed_count: int = 0
        self._dropped_count: int = 0
        self._lock = threading.Lock()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="security-event-worker", daemon=True)
        self._thread.start()
        logger.info("Security event worker started")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._thread = None
        # Whatever is still queued is written before shutdown completes.
        self.drain()
        logger.info("Security event worker stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "last_heartbeat": self._heartbeat,
            "processed_count": self._processed_count,
            "failed_count": self._failed_count,
            "dropped_count": self._dropped_count,
            "queue_depth": self._queue.qsize(),
        }

    def submit(self, name: str, handler: JobHandler) -> None:
        """Hand a job off; never raises."""
        job = _Job(name=name, handler=handler)
        if not self.is_running():
            self._execute(job)
            return
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            with self._lock:
                self._dropped_count += 1
            logger.error("Security event queue full, dropping job %s", name)
            return
        EVENT_QUEUE_DEPTH.set(self._queue.qsize())

    def submit_observe(self, principal_id: str, origin: Optional[str], descriptor: Optional[str], event_kind: str) -> None:
        self.submit(
            f"observe:{event_kind}",
            lambda db: security_event_service.observe(db, principal_id, origin, descriptor, event_kind),
        )

    def submit_alert(self, principal_id: str, alert_type: str, message: str, metadata: Optional[dict] = None) -> None:
        self.submit(
            f"alert:{alert_type}",
            lambda db: security_event_service.create_alert(
                db,
                principal_id=principal_id,
                alert_type=alert_type,
                message=message,
                metadata=metadata,
            ),
        )

    def drain(self) -> int:
        """Run every queued job on the calling thread."""
        processed = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                break
            self._execute(job)
            self._queue.task_done()
            processed += 1
        EVENT_QUEUE_DEPTH.set(self._queue.qsize())
        return processed

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self._heartbeat = time.time()
            try:
                job = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            self._execute(job)
            self._queue.task_done()
            EVENT_QUEUE_DEPTH.set(self._queue.qsize())

    def _execute(self, job: _Job) -> bool:
        db = self._session_factory()
        try:
            job.handler(db)
            db.commit()
            ok = True
        except Exception as exc:
            logger.exception("Security event job %s failed: %s", job.name, exc)
            db.rollback()
            ok = False
        finally:
            db.close()
        with self._lock:
            if ok:
                self._processed_count += 1
            else:
                self._failed_count += 1
        return ok


security_event_worker = SecurityEventWorker()
