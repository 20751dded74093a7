import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List

import pytest

# Make repo root importable
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import bot_config  # noqa: E402
from page_port import PageError, PageInteractionPort  # noqa: E402


class FakePage(PageInteractionPort):
    """
    In-memory stand-in for a browser tab. Nothing here touches the network.

    - texts: selector -> text returned by read_text (missing selector = PageError)
    - hidden: selectors that never become visible
    - fail: "op" or "op:target" strings that raise PageError
    - on_click: selector -> callback(page) run after a click
    """

    def __init__(self, body: str = "", texts: Dict[str, str] = None, listing: Dict[str, List[str]] = None,
                 hidden=None, fail=None, on_click=None):
        self.body = body
        self.texts = dict(texts or {})
        self.listing = listing if listing is not None else {"links": [], "services": [], "deadlines": []}
        self.hidden = set(hidden or [])
        self.fail = set(fail or [])
        self.on_click = dict(on_click or {})
        self.fields: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.downloads: List[Path] = []

    def _record(self, op: str, target: str = "", value: Any = None) -> None:
        self.calls.append((op, target, value) if value is not None else (op, target))
        if op in self.fail or f"{op}:{target}" in self.fail:
            raise PageError(op, target, RuntimeError("simulated failure"))

    def ops(self, op: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == op]

    def navigate(self, url, timeout):
        self._record("navigate", url)

    def wait_visible(self, selector, timeout):
        self._record("wait_visible", selector)
        if selector in self.hidden:
            raise PageError("wait_visible", selector, TimeoutError("not visible"))

    def wait_ready(self, selector, timeout):
        self._record("wait_ready", selector)

    def read_text(self, selector, timeout=bot_config.QUICK_READ_TIMEOUT):
        self._record("read_text", selector)
        if selector not in self.texts:
            raise PageError("read_text", selector, TimeoutError("no such element"))
        return self.texts[selector]

    def read_body_text(self, timeout=bot_config.QUICK_READ_TIMEOUT):
        self._record("read_body_text", "body")
        return self.body

    def set_field_value(self, selector, value, timeout=bot_config.QUICK_READ_TIMEOUT):
        self._record("set_field_value", selector, value)
        self.fields[selector] = value

    def click(self, selector, timeout=bot_config.QUICK_READ_TIMEOUT):
        self._record("click", selector)
        callback = self.on_click.get(selector)
        if callback:
            callback(self)

    def evaluate_structured(self, script):
        self._record("evaluate_structured", "listing")
        return {k: list(v) for k, v in self.listing.items()}

    def clear_field(self, selector, timeout=bot_config.QUICK_READ_TIMEOUT):
        self._record("clear_field", selector)
        self.fields[selector] = ""

    def download_attachments(self, dest_dir, timeout=bot_config.QUICK_READ_TIMEOUT):
        self._record("download_attachments", str(dest_dir))
        self.downloads.append(dest_dir)
        return []


class FakeSessions:
    """Session factory handing out FakePages by worker id."""

    def __init__(self, pages=None, page_factory=None, fail_open=False):
        self.pages = pages or {}
        self.page_factory = page_factory
        self.fail_open = fail_open
        self.opened: List[int] = []
        self.exited: List[int] = []
        self.closed = False

    @contextmanager
    def open(self, worker_id):
        from page_port import SessionError

        if self.fail_open:
            raise SessionError(f"no browser for worker {worker_id}")
        self.opened.append(worker_id)
        page = self.pages.get(worker_id) or self.page_factory(worker_id)
        try:
            yield page
        finally:
            self.exited.append(worker_id)

    def close(self):
        self.closed = True


class RecordingStop:
    """StopSignal double that records waits instead of sleeping."""

    def __init__(self, interrupt_waits: bool = False):
        self.waits: List[float] = []
        self.interrupt_waits = interrupt_waits
        self._set = False

    def set(self):
        self._set = True

    def clear(self):
        self._set = False

    def is_set(self):
        return self._set

    def wait(self, timeout):
        self.waits.append(timeout)
        if self.interrupt_waits:
            self._set = True
        return self._set


@pytest.fixture
def policy():
    return bot_config.BotConfig().to_policy()


@pytest.fixture
def credentials():
    return bot_config.Credentials(email="writer@example.com", password="s3cret")


def listing(*rows):
    """rows of (url, service, deadline) -> batched listing record."""
    return {
        "links": [r[0] for r in rows],
        "services": [r[1] for r in rows],
        "deadlines": [r[2] for r in rows],
    }
