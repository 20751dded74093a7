"""
Configuration for the writer marketplace bid bot.

Two layers
----------
1) Module constants (paths, marketplace URLs, selectors, timeouts). A few of them
   can be overridden with environment variables (BOT_*, LOG_RETENTION_DAYS).
2) User settings persisted as JSON in ~/.bidding-bot/config.json. These are edited
   only through save_config() and handed to the workers as a frozen Policy snapshot.
"""

import json
import os
import platform
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import FrozenSet, Optional


# =============================================================================
# Paths
# =============================================================================

CONFIG_DIR = Path(os.getenv("BOT_CONFIG_DIR", "").strip() or Path.home() / ".bidding-bot")
CONFIG_FILE = CONFIG_DIR / "config.json"

SYSFILES_DIR = Path(os.getenv("BOT_SYSFILES_DIR", "").strip() or "sysfiles")
CHROME_USER_DATA_DIR = SYSFILES_DIR / "chrome_user_data"
DOWNLOADS_DIR = SYSFILES_DIR / "downloads"
LOG_DIR = SYSFILES_DIR / "logs"

# =============================================================================
# Browser
# =============================================================================

# Keep False by default; the marketplace behaves better with a visible window.
HEADLESS = os.getenv("BOT_HEADLESS", "0").strip() == "1"
CHROME_PATH = os.getenv("BOT_CHROME_PATH", "").strip()

WINDOW_WIDTH = 1200
WINDOW_HEIGHT = 800
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/117.0.0.0 Safari/537.36"
)

# Evasion toggles only. Nothing here is expected to beat a determined detector.
BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
    "--disable-extensions",
    "--no-sandbox",
    "--disable-gpu",
]
IGNORE_DEFAULT_ARGS = ["--enable-automation"]

# =============================================================================
# Marketplace
# =============================================================================

ORDERS_URL = "https://essayshark.com/writer/orders/"
LOGIN_URL = "https://essayshark.com/log-in.html"

LOGGED_IN_LANDMARK = "#available_orders_list_container"
ORDER_ROW_SELECTOR = "tr.order_container"

LOGIN_FIELD = 'input[name="login"]'
PASSWORD_FIELD = 'input[name="password"]'
LOGIN_SUBMIT = 'button.bb-button[type="submit"]'

# One round trip for the whole listing: {links, services, deadlines}.
LISTING_SCRIPT = """
(function(){
    let rows = document.querySelectorAll("tr.order_container");
    let data = {links: [], services: [], deadlines: []};
    for (let row of rows) {
        let topicLink = row.querySelector("td.topictitle a");
        let serviceEl = row.querySelector("div.service_type");
        let deadlineEl = row.querySelector("td.td_deadline span.d-deadline + span.d-left");
        data.links.push(topicLink ? topicLink.href : "");
        data.services.push(serviceEl ? serviceEl.textContent.trim() : "");
        data.deadlines.push(deadlineEl ? deadlineEl.textContent.trim() : "");
    }
    return data;
})()
"""

FIXED_PRICE_MARKER = "this field is disabled for fixed-price orders"
ATTACHMENTS_MARKER = "uploaded additional materials:"
ATTACHMENT_LINKS_SELECTOR = "#order_files a[href], div.order-files a[href]"

COUNTDOWN_SELECTOR = "#id_read_timeout_sec"
BID_FIELD = "#id_bid4"
BID_ERROR = "#id_bid4-error"
APPLY_BUTTON = "#apply_order"
PROBE_BID = "-1.00"

MESSAGE_FIELD = "#id_body"
MESSAGE_SEND = "#id_send_message"

SERVICE_TYPE_ASSIGNMENTS = "writing help or assignments"
SERVICE_TYPE_EDITING = "editing"

# =============================================================================
# Timeouts (seconds)
# =============================================================================

SESSION_CHECK_TIMEOUT = 10
LOGIN_TIMEOUT = 30
LISTING_TIMEOUT = 20
ORDER_DETAIL_TIMEOUT = 20
QUICK_READ_TIMEOUT = 5
BID_TIMEOUT = 10
RETURN_TIMEOUT = 10

# Random pause before a worker's first scan, to spread the workers out.
SETTLE_DELAY_RANGE = (3.0, 7.0)

# =============================================================================
# User settings
# =============================================================================

DEFAULT_THREAD_COUNT = 3
DEFAULT_MIN_DEADLINE_HOURS = 0
DEFAULT_MAX_DEADLINE_HOURS = 2880


class ConfigError(ValueError):
    """Raised when settings fail validation on save."""


class MissingCredentialsError(RuntimeError):
    """Raised at start when email or password is not available."""


@dataclass(frozen=True)
class Policy:
    """
    Read-only snapshot of the settings a worker needs while it runs.

    discard_service_types holds lowercase marketplace labels.
    """
    message_enabled: bool = False
    message_text: str = ""
    discard_service_types: FrozenSet[str] = field(default_factory=frozenset)
    min_deadline_hours: int = DEFAULT_MIN_DEADLINE_HOURS
    max_deadline_hours: int = DEFAULT_MAX_DEADLINE_HOURS
    worker_count: int = DEFAULT_THREAD_COUNT


@dataclass
class BotConfig:
    """Settings as they are stored in config.json."""
    message_enabled: bool = False
    message_text: str = ""
    discard_assignments: bool = False
    discard_editing: bool = False
    min_deadline_hours: int = DEFAULT_MIN_DEADLINE_HOURS
    max_deadline_hours: int = DEFAULT_MAX_DEADLINE_HOURS
    thread_count: int = DEFAULT_THREAD_COUNT

    def to_policy(self) -> Policy:
        discard = set()
        if self.discard_assignments:
            discard.add(SERVICE_TYPE_ASSIGNMENTS)
        if self.discard_editing:
            discard.add(SERVICE_TYPE_EDITING)
        return Policy(
            message_enabled=self.message_enabled,
            message_text=self.message_text,
            discard_service_types=frozenset(discard),
            min_deadline_hours=self.min_deadline_hours,
            max_deadline_hours=self.max_deadline_hours,
            worker_count=self.thread_count if self.thread_count > 0 else DEFAULT_THREAD_COUNT,
        )


@dataclass
class Credentials:
    email: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(email={self.email!r}, password='***')"


def validate_config(cfg: BotConfig) -> BotConfig:
    """
    Check numeric settings and normalise them in place.

    - min/max deadline and thread count must be integers (bool is rejected)
    - min_deadline_hours must not exceed max_deadline_hours
    - thread_count <= 0 falls back to the default instead of failing
    """
    for name in ("min_deadline_hours", "max_deadline_hours", "thread_count"):
        value = getattr(cfg, name)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"invalid numeric input in settings: {name}={value!r}")

    if cfg.min_deadline_hours > cfg.max_deadline_hours:
        raise ConfigError(
            f"minimum deadline ({cfg.min_deadline_hours}h) is above "
            f"maximum deadline ({cfg.max_deadline_hours}h)"
        )

    if cfg.thread_count <= 0:
        cfg.thread_count = DEFAULT_THREAD_COUNT

    cfg.message_enabled = bool(cfg.message_enabled)
    cfg.discard_assignments = bool(cfg.discard_assignments)
    cfg.discard_editing = bool(cfg.discard_editing)
    cfg.message_text = str(cfg.message_text or "")
    return cfg


def load_config(path: Optional[Path] = None) -> BotConfig:
    """
    Load settings from disk. A missing or unreadable file means defaults.

    Unknown keys are ignored so older/newer config files still load.
    """
    path = path or CONFIG_FILE
    if not path.exists():
        print("Config file not found. Using default settings.")
        return BotConfig()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        known = {k: v for k, v in data.items() if k in BotConfig.__dataclass_fields__}
        return validate_config(BotConfig(**known))
    except (OSError, ValueError, TypeError, AttributeError) as e:
        print(f"Error parsing config file ({e}). Using default settings.")
        return BotConfig()


def save_config(cfg: BotConfig, path: Optional[Path] = None) -> Path:
    """Validate and persist settings (pretty-printed JSON). Returns the path written."""
    validate_config(cfg)
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2), encoding="utf-8")
    return path


def load_credentials(email: Optional[str] = None, password: Optional[str] = None) -> Credentials:
    """Credentials come from CLI arguments first, then BOT_EMAIL / BOT_PASSWORD."""
    email = (email or os.getenv("BOT_EMAIL", "")).strip()
    password = password or os.getenv("BOT_PASSWORD", "")
    if not email or not password:
        raise MissingCredentialsError("please enter both email and password (BOT_EMAIL / BOT_PASSWORD)")
    return Credentials(email=email, password=password)


def find_chrome_executable() -> Optional[str]:
    """
    Locate an installed Google Chrome.

    BOT_CHROME_PATH wins if set. Returns None when nothing is found, in which case
    Playwright's bundled Chromium is used.
    """
    if CHROME_PATH:
        return CHROME_PATH

    system = platform.system().lower()
    if system == "windows":
        candidates = [
            r"C:\Program Files\Google\Chrome\Application\chrome.exe",
            r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
        ]
    elif system == "darwin":
        candidates = ["/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"]
    else:
        candidates = [
            "/usr/bin/google-chrome",
            "/usr/bin/chromium-browser",
            "/usr/bin/chrome",
        ]

    for p in candidates:
        if Path(p).is_file():
            return p
    return None
