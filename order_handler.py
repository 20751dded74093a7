"""
Per-order state machine.

Steps, in order (first hard failure ends the order):

  open detail page   -> abort on failure
  price-mode check   -> abort on failure
  countdown wait     -> missing/unreadable countdown means "no wait"
  attachments        -> best-effort
  accept or bid      -> abort on failure
  optional message   -> best-effort
  back to listing    -> always attempted, best-effort

Aborts surface as OrderHandlingError. Releasing the claim is the caller's job.
"""

import re
from pathlib import Path
from typing import Optional

import bot_config
from bidding import BidNegotiator
from bot_logging import debug
from claims import StopSignal
from order_rules import JobListing, parse_countdown_seconds
from page_port import PageError, PageInteractionPort

OUTCOME_APPLIED = "applied"
OUTCOME_BID = "bid"
OUTCOME_NO_BID = "no_bid"
OUTCOME_CANCELLED = "cancelled"


class OrderHandlingError(Exception):
    """An order had to be abandoned at `stage`."""

    def __init__(self, job_id: str, stage: str, cause: Optional[BaseException] = None):
        self.job_id = job_id
        self.stage = stage
        self.cause = cause
        super().__init__(f"order {job_id} failed at {stage}: {cause}")


def job_slug(url: str) -> str:
    """Filesystem-safe folder name for an order URL."""
    tail = url.rstrip("/").rsplit("/", 1)[-1] or url
    return re.sub(r"[^A-Za-z0-9._-]+", "_", tail).strip("_") or "order"


class OrderHandler:
    def __init__(self, worker_id: int, policy: bot_config.Policy, stop: StopSignal,
                 negotiator: Optional[BidNegotiator] = None, downloads_dir: Optional[Path] = None):
        self.worker_id = worker_id
        self.policy = policy
        self.stop = stop
        self.negotiator = negotiator or BidNegotiator(worker_id)
        self.downloads_dir = downloads_dir or bot_config.DOWNLOADS_DIR

    def handle(self, page: PageInteractionPort, job: JobListing) -> str:
        """Run the state machine for one claimed order. Returns an OUTCOME_* value."""
        try:
            return self._run(page, job)
        finally:
            self._return_to_listing(page, job)

    def _run(self, page: PageInteractionPort, job: JobListing) -> str:
        n = self.worker_id

        try:
            page.navigate(job.url, timeout=bot_config.ORDER_DETAIL_TIMEOUT)
            page.wait_ready("body", timeout=bot_config.ORDER_DETAIL_TIMEOUT)
        except PageError as e:
            raise OrderHandlingError(job.job_id, "open order", e) from e

        try:
            is_fixed = page.has_marker(bot_config.FIXED_PRICE_MARKER, timeout=bot_config.SESSION_CHECK_TIMEOUT)
        except PageError as e:
            raise OrderHandlingError(job.job_id, "price-mode check", e) from e

        seconds = self._countdown_seconds(page)
        if seconds > 0:
            print(f"Thread {n}: Order {job.url} has countdown: {seconds} seconds. Waiting...")
            if self.stop.wait(seconds):
                print(f"Thread {n}: Stop requested during countdown for {job.url}; leaving it.")
                return OUTCOME_CANCELLED

        self._fetch_attachments(page, job)

        try:
            if is_fixed:
                print(f"Thread {n}: Order {job.url} is fixed-price. Applying directly.")
                page.click(bot_config.APPLY_BUTTON, timeout=bot_config.QUICK_READ_TIMEOUT)
                outcome = OUTCOME_APPLIED
            else:
                print(f"Thread {n}: Order {job.url} is not fixed-price. Placing bid.")
                attempt = self.negotiator.negotiate(page)
                outcome = OUTCOME_BID if attempt.submitted else OUTCOME_NO_BID
        except PageError as e:
            raise OrderHandlingError(job.job_id, "accept/bid", e) from e

        if self.policy.message_enabled:
            self._send_message(page, job)

        return outcome

    def _countdown_seconds(self, page: PageInteractionPort) -> int:
        try:
            text = page.read_text(bot_config.COUNTDOWN_SELECTOR, timeout=bot_config.QUICK_READ_TIMEOUT)
        except PageError:
            return 0
        return parse_countdown_seconds(text)

    def _fetch_attachments(self, page: PageInteractionPort, job: JobListing) -> None:
        try:
            if not page.has_marker(bot_config.ATTACHMENTS_MARKER):
                return
            saved = page.download_attachments(self.downloads_dir / job_slug(job.url))
            debug(f"Thread {self.worker_id}: downloaded {len(saved)} attachment(s) for {job.url}")
        except (PageError, OSError) as e:
            print(f"Thread {self.worker_id}: Error downloading attachments for order {job.url}: {e}")

    def _send_message(self, page: PageInteractionPort, job: JobListing) -> None:
        try:
            page.set_field_value(bot_config.MESSAGE_FIELD, self.policy.message_text)
            page.click(bot_config.MESSAGE_SEND)
        except PageError as e:
            print(f"Thread {self.worker_id}: Error sending message for order {job.url}: {e}")

    def _return_to_listing(self, page: PageInteractionPort, job: JobListing) -> None:
        try:
            page.navigate(bot_config.ORDERS_URL, timeout=bot_config.RETURN_TIMEOUT)
        except PageError as e:
            print(f"Thread {self.worker_id}: Error navigating back to orders page after {job.url}: {e}")
