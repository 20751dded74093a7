"""
Minimum-bid discovery.

The marketplace enforces a per-order minimum that is not shown up front. We submit a
bid that is certain to be rejected, read the minimum out of the validation message,
then submit exactly that minimum.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import bot_config
from bot_logging import debug
from order_rules import extract_minimum_bid, format_bid
from page_port import PageInteractionPort


@dataclass
class BidAttempt:
    probe_value: str
    error_text: str = ""
    extracted_minimum: Optional[Decimal] = None
    final_submitted_value: Optional[str] = None

    @property
    def submitted(self) -> bool:
        return self.final_submitted_value is not None


class BidNegotiator:
    """
    Probe-then-submit. Page failures propagate as PageError; an unreadable or
    non-positive minimum ends the attempt quietly without a second submission.
    """

    def __init__(self, worker_id: int = 0, timeout: float = bot_config.BID_TIMEOUT):
        self.worker_id = worker_id
        self.timeout = timeout

    def negotiate(self, page: PageInteractionPort) -> BidAttempt:
        attempt = BidAttempt(probe_value=bot_config.PROBE_BID)

        page.set_field_value(bot_config.BID_FIELD, attempt.probe_value, timeout=self.timeout)
        page.click(bot_config.APPLY_BUTTON, timeout=self.timeout)

        attempt.error_text = page.read_text(bot_config.BID_ERROR, timeout=self.timeout)
        attempt.extracted_minimum = extract_minimum_bid(attempt.error_text)
        if attempt.extracted_minimum is None:
            print(f"Thread {self.worker_id}: Invalid minimum bid extracted, skipping.")
            debug(f"Thread {self.worker_id}: could not read minimum bid from {attempt.error_text!r}")
            return attempt

        value = format_bid(attempt.extracted_minimum)
        page.clear_field(bot_config.BID_FIELD, timeout=self.timeout)
        page.set_field_value(bot_config.BID_FIELD, value, timeout=self.timeout)
        page.click(bot_config.APPLY_BUTTON, timeout=self.timeout)
        attempt.final_submitted_value = value
        debug(f"Thread {self.worker_id}: submitted minimum bid {value}")
        return attempt
