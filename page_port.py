"""
Page interaction port and its Playwright implementation.

The bidding core only talks to PageInteractionPort. PlaywrightPage drives a real
Chromium tab (sync API, one Playwright driver per worker thread); tests use an
in-memory fake.

Every real call can place a bid or accept an order on the live marketplace.
"""

import re
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import unquote, urlparse

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

import bot_config
from bot_logging import debug


class PageError(Exception):
    """A page operation failed (timeout, missing element, navigation error...)."""

    def __init__(self, operation: str, target: str = "", cause: Optional[BaseException] = None):
        self.operation = operation
        self.target = target
        self.cause = cause
        detail = f"{operation} {target}".strip()
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(detail)


class SessionError(Exception):
    """The browser session for a worker could not be created."""


# =============================================================================
# Port
# =============================================================================

class PageInteractionPort(ABC):
    """
    Typed page operations used by the worker loop and order handler.

    Implementations raise PageError on failure. Timeouts are in seconds.
    """

    @abstractmethod
    def navigate(self, url: str, timeout: float) -> None: ...

    @abstractmethod
    def wait_visible(self, selector: str, timeout: float) -> None: ...

    @abstractmethod
    def wait_ready(self, selector: str, timeout: float) -> None: ...

    @abstractmethod
    def read_text(self, selector: str, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> str: ...

    @abstractmethod
    def read_body_text(self, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> str: ...

    @abstractmethod
    def set_field_value(self, selector: str, value: str, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> None: ...

    @abstractmethod
    def click(self, selector: str, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> None: ...

    @abstractmethod
    def evaluate_structured(self, script: str) -> Dict[str, Any]: ...

    @abstractmethod
    def clear_field(self, selector: str, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> None: ...

    @abstractmethod
    def download_attachments(self, dest_dir: Path, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> List[Path]: ...

    def has_marker(self, marker: str, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> bool:
        """Case-insensitive search for a landmark phrase in the page text."""
        body = self.read_body_text(timeout=timeout)
        return marker.lower() in (body or "").lower()


# =============================================================================
# Playwright implementation
# =============================================================================

def _ms(seconds: float) -> float:
    return seconds * 1000.0


_DISPOSITION_NAME_RE = re.compile(r"""filename\*?=(?:UTF-8'')?["']?([^"';]+)""", re.IGNORECASE)


def attachment_filename(href: str, headers: Dict[str, str], index: int) -> str:
    """Content-Disposition name if given, else the last URL path segment, made filesystem-safe."""
    name = ""
    m = _DISPOSITION_NAME_RE.search((headers or {}).get("content-disposition", ""))
    if m:
        name = unquote(m.group(1))
    if not name:
        name = unquote(urlparse(href).path.rstrip("/").rsplit("/", 1)[-1])
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return name or f"attachment_{index + 1}"


class PlaywrightPage(PageInteractionPort):
    """PageInteractionPort backed by a Playwright sync Page."""

    def __init__(self, page):
        self._page = page

    def navigate(self, url: str, timeout: float) -> None:
        try:
            self._page.goto(url, timeout=_ms(timeout), wait_until="domcontentloaded")
        except PlaywrightError as e:
            raise PageError("navigate", url, e) from e

    def wait_visible(self, selector: str, timeout: float) -> None:
        try:
            self._page.wait_for_selector(selector, state="visible", timeout=_ms(timeout))
        except PlaywrightError as e:
            raise PageError("wait_visible", selector, e) from e

    def wait_ready(self, selector: str, timeout: float) -> None:
        try:
            self._page.wait_for_selector(selector, state="attached", timeout=_ms(timeout))
        except PlaywrightError as e:
            raise PageError("wait_ready", selector, e) from e

    def read_text(self, selector: str, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> str:
        try:
            loc = self._page.locator(selector).first
            loc.wait_for(state="visible", timeout=_ms(timeout))
            return loc.inner_text(timeout=_ms(timeout)).strip()
        except PlaywrightError as e:
            raise PageError("read_text", selector, e) from e

    def read_body_text(self, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> str:
        try:
            return self._page.inner_text("body", timeout=_ms(timeout))
        except PlaywrightError as e:
            raise PageError("read_body_text", "body", e) from e

    def set_field_value(self, selector: str, value: str, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> None:
        try:
            self._page.fill(selector, value, timeout=_ms(timeout))
        except PlaywrightError as e:
            raise PageError("set_field_value", selector, e) from e

    def click(self, selector: str, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> None:
        try:
            self._page.click(selector, timeout=_ms(timeout))
        except PlaywrightError as e:
            raise PageError("click", selector, e) from e

    def evaluate_structured(self, script: str) -> Dict[str, Any]:
        try:
            result = self._page.evaluate(script)
        except PlaywrightError as e:
            raise PageError("evaluate", "listing script", e) from e
        if not isinstance(result, dict):
            raise PageError("evaluate", "listing script", TypeError(f"expected object, got {type(result).__name__}"))
        return result

    def clear_field(self, selector: str, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> None:
        try:
            self._page.fill(selector, "", timeout=_ms(timeout))
        except PlaywrightError as e:
            raise PageError("clear_field", selector, e) from e

    def download_attachments(self, dest_dir: Path, timeout: float = bot_config.QUICK_READ_TIMEOUT) -> List[Path]:
        """
        Fetch every link in the materials block and write it under dest_dir.

        Files are pulled over the context's request client (same cookies as the tab),
        so the order page itself never navigates away.
        """
        saved: List[Path] = []
        try:
            hrefs = self._page.eval_on_selector_all(
                bot_config.ATTACHMENT_LINKS_SELECTOR, "els => els.map(e => e.href)"
            )
            hrefs = [h for h in (hrefs or []) if h]
            if not hrefs:
                return saved
            dest_dir.mkdir(parents=True, exist_ok=True)
            for i, href in enumerate(hrefs):
                response = self._page.request.get(href, timeout=_ms(timeout))
                if not response.ok:
                    debug(f"Attachment {href} returned HTTP {response.status}, skipped.")
                    continue
                target = dest_dir / attachment_filename(href, response.headers, i)
                target.write_bytes(response.body())
                saved.append(target)
        except (PlaywrightError, OSError) as e:
            raise PageError("download_attachments", str(dest_dir), e) from e
        return saved


class PlaywrightSessions:
    """
    Hands out one isolated browser session per worker.

    Each worker thread starts its own Playwright driver (the sync API is bound to
    the thread that created it) and a persistent Chromium profile under
    chrome_user_data/<worker_id>, so a login survives restarts.
    close() is the top-level teardown: any context still registered is closed.
    """

    def __init__(self, user_data_root: Optional[Path] = None, headless: Optional[bool] = None,
                 executable_path: Optional[str] = None):
        self.user_data_root = user_data_root or bot_config.CHROME_USER_DATA_DIR
        self.headless = bot_config.HEADLESS if headless is None else headless
        self.executable_path = executable_path
        self._open: Dict[int, Any] = {}
        self._lock = threading.Lock()

    @contextmanager
    def open(self, worker_id: int) -> Iterator[PlaywrightPage]:
        user_data_dir = self.user_data_root / str(worker_id)
        user_data_dir.mkdir(parents=True, exist_ok=True)

        with sync_playwright() as p:
            try:
                context = p.chromium.launch_persistent_context(
                    user_data_dir=str(user_data_dir),
                    headless=self.headless,
                    executable_path=self.executable_path,
                    args=bot_config.BROWSER_ARGS,
                    ignore_default_args=bot_config.IGNORE_DEFAULT_ARGS,
                    user_agent=bot_config.USER_AGENT,
                    viewport={"width": bot_config.WINDOW_WIDTH, "height": bot_config.WINDOW_HEIGHT},
                    accept_downloads=True,
                )
            except PlaywrightError as e:
                raise SessionError(f"could not launch browser for worker {worker_id}: {e}") from e

            with self._lock:
                self._open[worker_id] = context

            try:
                page = context.pages[0] if context.pages else context.new_page()
                page.on("console", lambda msg: debug(f"Browser console (worker {worker_id}): {msg.text}"))
                yield PlaywrightPage(page)
            finally:
                with self._lock:
                    self._open.pop(worker_id, None)
                try:
                    context.close()
                except PlaywrightError as e:
                    debug(f"Worker {worker_id}: error closing browser context: {e}")

    def close(self) -> None:
        with self._lock:
            leftovers = list(self._open.items())
            self._open.clear()

        for worker_id, context in leftovers:
            print(f"Closing leftover browser session for worker {worker_id}.")
            try:
                context.close()
            except Exception as e:
                # Context belongs to another (finished) thread's driver; nothing else to do.
                debug(f"Worker {worker_id}: leftover context close failed: {e}")
