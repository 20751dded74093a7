"""
Admission rules and text parsing for marketplace orders.

Everything here is pure. Marketplace text is not under our control, so parsers
return a sentinel (or None) on bad input instead of raising.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_UP
from typing import List, Optional

from bot_config import Policy

# Returned by parse_deadline_hours() when the text can't be read.
UNKNOWN_DEADLINE = -1

_DEADLINE_RE = re.compile(r"(\d+)d (\d+)h")
_MIN_BID_RE = re.compile(r"\s*Minimum bid is \$(\d+(?:\.\d+)?|\.\d+)")
_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")

CENT = Decimal("0.01")


@dataclass(frozen=True)
class JobListing:
    """One row of the orders table. The detail-page URL doubles as the job id."""
    url: str
    service_type: str = ""
    deadline_text: str = ""

    @property
    def job_id(self) -> str:
        return self.url


def listings_from_rows(data: dict) -> List[JobListing]:
    """
    Turn the batched {links, services, deadlines} record into JobListings.

    Rows with an empty link are dropped. Short service/deadline lists are padded
    with "" rather than failing the whole pass.
    """
    data = data or {}
    links = data.get("links") or []
    services = data.get("services") or []
    deadlines = data.get("deadlines") or []

    out = []
    for i, link in enumerate(links):
        link = (link or "").strip()
        if not link:
            continue
        service = services[i] if i < len(services) else ""
        deadline = deadlines[i] if i < len(deadlines) else ""
        out.append(JobListing(url=link, service_type=service or "", deadline_text=deadline or ""))
    return out


def parse_deadline_hours(text: str) -> int:
    """
    "2d 5h" -> 53. Anything that isn't exactly "<D>d <H>h" -> UNKNOWN_DEADLINE.
    """
    m = _DEADLINE_RE.fullmatch((text or "").strip())
    if not m:
        return UNKNOWN_DEADLINE
    days, hours = int(m.group(1)), int(m.group(2))
    return days * 24 + hours


def should_discard(job: JobListing, policy: Policy) -> bool:
    """True if the job's service type is one the user never wants (case-insensitive)."""
    service = (job.service_type or "").strip().lower()
    if not service:
        return False
    return service in {s.lower() for s in policy.discard_service_types}


def is_within_deadline_window(hours: int, policy: Policy) -> bool:
    """Unknown deadlines are always admitted; otherwise min <= hours <= max."""
    if hours == UNKNOWN_DEADLINE:
        return True
    return policy.min_deadline_hours <= hours <= policy.max_deadline_hours


def extract_minimum_bid(message: str) -> Optional[Decimal]:
    """
    Read the amount out of "Minimum bid is $12.50".

    Returns None when there is no amount or the amount is not positive.
    """
    m = _MIN_BID_RE.match(message or "")
    if not m:
        return None
    try:
        amount = Decimal(m.group(1))
    except InvalidOperation:
        return None
    if amount <= 0:
        return None
    return amount


def format_bid(amount: Decimal) -> str:
    """Two decimal places, never rounding below the announced minimum."""
    return str(amount.quantize(CENT, rounding=ROUND_UP))


def parse_countdown_seconds(text: str) -> int:
    """Leading integer of the countdown widget, or 0 when absent/unreadable."""
    m = _LEADING_INT_RE.match(text or "")
    if not m:
        return 0
    seconds = int(m.group(1))
    return seconds if seconds > 0 else 0
