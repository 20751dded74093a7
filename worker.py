"""
Worker loop: one browser session, scanning the orders page over and over.

Per worker:
1) open an isolated session (own browser profile)
2) reuse the stored login if the orders page loads, otherwise log in
3) wait a random few seconds so workers don't hit the site in lockstep
4) until stopped: scan the listing, handle at most one eligible order, rescan

Only session setup and login failures end a worker. Everything else is logged
and the loop goes round again straight away (no idle sleep, on purpose).
"""

import random
import traceback
from typing import Optional, Tuple

import bot_config
from bot_config import Credentials, Policy
from bot_logging import debug
from claims import ClaimRegistry, StopSignal
from order_handler import OrderHandler, OrderHandlingError
from order_rules import (
    is_within_deadline_window,
    listings_from_rows,
    parse_deadline_hours,
    should_discard,
)
from page_port import PageError, PageInteractionPort, SessionError


class LoginError(Exception):
    """Login did not reach the orders page."""


class WorkerLoop:
    def __init__(self, worker_id: int, sessions, claims: ClaimRegistry, stop: StopSignal,
                 policy: Policy, credentials: Credentials, handler: Optional[OrderHandler] = None,
                 settle_range: Tuple[float, float] = bot_config.SETTLE_DELAY_RANGE):
        self.worker_id = worker_id
        self.sessions = sessions
        self.claims = claims
        self.stop = stop
        self.policy = policy
        self.credentials = credentials
        self.handler = handler or OrderHandler(worker_id, policy, stop)
        self.settle_range = settle_range

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def run(self) -> None:
        n = self.worker_id
        debug(f"Worker {n} started.")
        try:
            with self.sessions.open(n) as page:
                self.ensure_logged_in(page)
                self._settle()
                self._loop(page)
        except SessionError as e:
            print(f"Worker {n}: Failed to start browser session: {e}")
        except LoginError as e:
            print(f"Thread {n}: Failed to login: {e}")
        debug(f"Worker {n} exiting loop.")

    def _settle(self) -> None:
        low, high = self.settle_range
        delay = random.uniform(low, high) if high > 0 else 0.0
        if delay <= 0:
            return
        print(f"Thread {self.worker_id}: Initial wait for {delay:.1f}s before starting to bid.")
        self.stop.wait(delay)

    def _loop(self, page: PageInteractionPort) -> None:
        n = self.worker_id
        while not self.stop.is_set():
            try:
                processed = self.scan_once(page)
            except Exception as e:
                print(f"Thread {n}: Error scanning orders: {e}")
                debug(f"Thread {n}: scan error\n{traceback.format_exc()}")
                continue

            if self.stop.is_set():
                break
            if not processed:
                debug(f"Thread {n}: No orders processed during this pass.")

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def session_valid(self, page: PageInteractionPort) -> bool:
        """Orders page with the listing container means we are still logged in."""
        try:
            page.navigate(bot_config.ORDERS_URL, timeout=bot_config.SESSION_CHECK_TIMEOUT)
            page.wait_visible(bot_config.LOGGED_IN_LANDMARK, timeout=bot_config.SESSION_CHECK_TIMEOUT)
        except PageError as e:
            debug(f"Session check failed: {e}")
            return False
        return True

    def login(self, page: PageInteractionPort) -> None:
        t = bot_config.LOGIN_TIMEOUT
        try:
            page.navigate(bot_config.LOGIN_URL, timeout=t)
            page.wait_visible(bot_config.LOGIN_FIELD, timeout=t)
            page.wait_visible(bot_config.PASSWORD_FIELD, timeout=t)
            page.clear_field(bot_config.LOGIN_FIELD, timeout=t)
            page.set_field_value(bot_config.LOGIN_FIELD, self.credentials.email, timeout=t)
            page.clear_field(bot_config.PASSWORD_FIELD, timeout=t)
            page.set_field_value(bot_config.PASSWORD_FIELD, self.credentials.password, timeout=t)
            page.click(bot_config.LOGIN_SUBMIT, timeout=t)
            page.wait_visible(bot_config.LOGGED_IN_LANDMARK, timeout=t)
        except PageError as e:
            raise LoginError(f"error during login: {e}") from e

    def ensure_logged_in(self, page: PageInteractionPort) -> None:
        n = self.worker_id
        if self.session_valid(page):
            print(f"Thread {n}: Existing session found, no login required.")
            return
        print(f"Thread {n}: No valid session found, attempting to log in.")
        self.login(page)
        print(f"Thread {n}: Logged in successfully.")

    # -------------------------------------------------------------------------
    # One listing pass
    # -------------------------------------------------------------------------

    def scan_once(self, page: PageInteractionPort) -> bool:
        """
        Read the listing and handle the first eligible, unclaimed order.

        Returns True if an order was handled to completion. Page errors while loading
        the listing propagate to the loop; order handling errors are logged here.
        """
        n = self.worker_id
        page.navigate(bot_config.ORDERS_URL, timeout=bot_config.LISTING_TIMEOUT)
        page.wait_visible(bot_config.ORDER_ROW_SELECTOR, timeout=bot_config.LISTING_TIMEOUT)
        jobs = listings_from_rows(page.evaluate_structured(bot_config.LISTING_SCRIPT))

        for job in jobs:
            if self.stop.is_set():
                return False

            if should_discard(job, self.policy):
                print(f"Thread {n}: Discarding order {job.url} ({job.service_type}).")
                continue

            hours = parse_deadline_hours(job.deadline_text)
            if not is_within_deadline_window(hours, self.policy):
                print(f"Thread {n}: Order {job.url} deadline ({hours}h) out of range.")
                continue

            if not self.claims.try_claim(job.job_id, n):
                debug(f"Thread {n}: Order {job.url} already taken by worker {self.claims.holder(job.job_id)}.")
                continue

            try:
                outcome = self.handler.handle(page, job)
            except OrderHandlingError as e:
                print(f"Thread {n}: Error handling order {job.url}: {e}")
                return False
            finally:
                self.claims.release(job.job_id)

            print(f"Thread {n}: Order {job.url} done ({outcome}).")
            return True

        return False
