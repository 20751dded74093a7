"""
Shared state between workers: the claim table and the stop signal.

Both are plain objects owned by the Dispatcher and handed to every worker, so tests
(and several dispatchers in one process) never share them by accident.
"""

import threading
from typing import Dict, Optional


class ClaimRegistry:
    """
    job_id -> worker_id for jobs currently being handled.

    try_claim() is non-blocking: False means another worker has the job and the
    caller should just move on. release() is idempotent.
    """

    def __init__(self):
        self._owners: Dict[str, int] = {}
        self._lock = threading.Lock()

    def try_claim(self, job_id: str, worker_id: int) -> bool:
        with self._lock:
            if job_id in self._owners:
                return False
            self._owners[job_id] = worker_id
            return True

    def release(self, job_id: str) -> None:
        with self._lock:
            self._owners.pop(job_id, None)

    def holder(self, job_id: str) -> Optional[int]:
        with self._lock:
            return self._owners.get(job_id)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._owners)

    def __len__(self) -> int:
        with self._lock:
            return len(self._owners)


class StopSignal:
    """Process-wide cancellation flag. Readable from any thread without extra locking."""

    def __init__(self):
        self._event = threading.Event()

    def set(self) -> None:
        self._event.set()

    def clear(self) -> None:
        self._event.clear()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; returns True early if stop was requested."""
        return self._event.wait(timeout=timeout)
