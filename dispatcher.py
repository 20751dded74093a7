"""
Starts N worker loops on threads and shuts them down in order.

The dispatcher owns the claim registry and the stop signal and passes them to
every worker, so the only state the workers share is the claim table.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Dict, Optional

import bot_config
from bot_config import Credentials, Policy
from bot_logging import debug
from claims import ClaimRegistry, StopSignal
from worker import WorkerLoop


class Dispatcher:
    def __init__(self, sessions, credentials: Credentials, claims: Optional[ClaimRegistry] = None,
                 stop: Optional[StopSignal] = None, worker_factory=WorkerLoop):
        self.sessions = sessions
        self.credentials = credentials
        self.claims = claims if claims is not None else ClaimRegistry()
        self.stop_signal = stop if stop is not None else StopSignal()
        self.worker_factory = worker_factory
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: Dict[object, int] = {}

    @property
    def running(self) -> bool:
        return self._executor is not None

    def start(self, policy: Policy) -> None:
        """Launch policy.worker_count workers. Returns immediately."""
        if self._executor is not None:
            raise RuntimeError("dispatcher is already running")

        count = policy.worker_count if policy.worker_count > 0 else bot_config.DEFAULT_THREAD_COUNT
        self.stop_signal.clear()
        print(f"Starting the bidding bot with {count} worker(s)...")

        self._executor = ThreadPoolExecutor(max_workers=count, thread_name_prefix="bid-worker")
        for i in range(count):
            worker = self.worker_factory(
                worker_id=i,
                sessions=self.sessions,
                claims=self.claims,
                stop=self.stop_signal,
                policy=policy,
                credentials=self.credentials,
            )
            self._futures[self._executor.submit(worker.run)] = i

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to `timeout` seconds; True once every worker has returned on its own."""
        if not self._futures:
            return True
        _, not_done = wait_futures(self._futures, timeout=timeout)
        return not not_done

    def stop(self) -> None:
        """
        Signal every worker, wait for all of them to return, then tear down sessions.

        Blocks until the pool has drained. In-flight page calls are not interrupted,
        so this can take as long as the longest page timeout.
        """
        if self._executor is None:
            raise RuntimeError("stop() called before start()")

        self.stop_signal.set()
        print("Stop signal issued.")

        self._executor.shutdown(wait=True)
        for future, worker_id in self._futures.items():
            exc = future.exception()
            if exc is not None:
                print(f"Worker {worker_id} crashed: {exc}")
        self._executor = None
        self._futures = {}

        self.sessions.close()
        leaked = self.claims.snapshot()
        if leaked:
            debug(f"Claims still held after shutdown: {leaked}")
        print("Bidding bot stopped.")
