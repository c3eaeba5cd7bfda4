"""Non-blocking publisher for access telemetry.

Access decisions must not wait on the broker, so touches are handed to a
bounded in-process queue and published to Celery by a background thread.
A full queue drops the touch and counts it as a side-effect failure.
"""

from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Callable, Optional

log = logging.getLogger("billing.telemetry")


class AccessTouchPublisher:
    def __init__(self, publish: Callable[[int], None], *, max_queue_size: int = 1000) -> None:
        self._publish = publish
        self._queue: Queue = Queue(maxsize=max_queue_size)
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._drain, name="access-touch-publisher", daemon=True)
            self._thread.start()

    def submit(self, grant_pk: int) -> bool:
        """Queue a touch without blocking; False when it had to be dropped."""
        self.start()
        try:
            self._queue.put_nowait(grant_pk)
        except Full:
            from apps.billing.metrics import record_side_effect_failure

            record_side_effect_failure("touch_grant_access")
            log.warning("touch_access_dropped", extra={"grant_id": grant_pk, "reason": "queue_full"})
            return False
        return True

    def join(self, timeout: float = 5.0) -> bool:
        """Wait until queued touches are published. Used by tests and shutdown hooks."""
        done = threading.Event()

        def _wait() -> None:
            self._queue.join()
            done.set()

        threading.Thread(target=_wait, daemon=True).start()
        return done.wait(timeout)

    def _drain(self) -> None:
        while True:
            try:
                grant_pk = self._queue.get(timeout=1.0)
            except Empty:
                continue
            try:
                self._publish(grant_pk)
            except Exception:
                log.exception("touch_access_publish_failed", extra={"grant_id": grant_pk})
            finally:
                self._queue.task_done()


_publisher: Optional[AccessTouchPublisher] = None
_publisher_lock = threading.Lock()


def get_touch_publisher() -> AccessTouchPublisher:
    global _publisher
    with _publisher_lock:
        if _publisher is None:
            from django.conf import settings

            from apps.billing.services.ledger import publish_touch_access

            _publisher = AccessTouchPublisher(
                publish_touch_access,
                max_queue_size=getattr(settings, "ENTITLEMENTS_TOUCH_QUEUE_SIZE", 1000),
            )
        return _publisher
