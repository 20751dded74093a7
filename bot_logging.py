"""
Logging for the bid bot: stdout/stderr tee'd into timestamped per-run files,
plus an optional detailed debug log.

Workers report progress with plain print() calls ("Thread 2: ..."). Several threads
print at once, so the tee serialises writes with a lock.
"""

import os
import sys
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from bot_config import LOG_DIR

LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "3").strip() or "3")
DEBUG_LOGGING_ENABLED = os.getenv("BOT_DEBUG", "1").strip() != "0"
DEBUG_LOG_NAME = "bot_debug.log"

_debug_handle = None
_debug_lock = threading.Lock()


class TimestampedTee:
    def __init__(self, stream, file_handle):
        self.stream = stream
        self.file_handle = file_handle
        self.at_line_start = True
        self._lock = threading.Lock()

    def write(self, data: str) -> int:
        if not data:
            return 0
        written = 0
        with self._lock:
            for chunk in data.splitlines(True):
                if self.at_line_start:
                    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
                    prefix = f"[{ts}] "
                    self.stream.write(prefix)
                    self.file_handle.write(prefix)
                    written += len(prefix)
                self.stream.write(chunk)
                self.file_handle.write(chunk)
                written += len(chunk)
                self.at_line_start = chunk.endswith("\n")
            self.stream.flush()
            self.file_handle.flush()
        return written

    def flush(self) -> None:
        with self._lock:
            self.stream.flush()
            self.file_handle.flush()

    def isatty(self) -> bool:
        return self.stream.isatty()


def _cleanup_old_logs(log_dir: Path, retention_days: int) -> None:
    cutoff = datetime.now() - timedelta(days=retention_days)
    for path in log_dir.glob("*.log"):
        if path.name == DEBUG_LOG_NAME:
            continue
        try:
            if datetime.fromtimestamp(path.stat().st_mtime) < cutoff:
                path.unlink()
        except OSError:
            # Best-effort cleanup; ignore files that disappear or are locked.
            pass


def setup_logging(log_dir: Optional[Path] = None) -> None:
    """Install the stdout/stderr tee and open the debug log (if enabled)."""
    global _debug_handle

    log_dir = log_dir or LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    run_ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    out_path = log_dir / f"{run_ts}.out.log"
    err_path = log_dir / f"{run_ts}.err.log"

    out_handle = out_path.open("a", encoding="utf-8")
    err_handle = err_path.open("a", encoding="utf-8")

    sys.stdout = TimestampedTee(sys.stdout, out_handle)
    sys.stderr = TimestampedTee(sys.stderr, err_handle)

    if DEBUG_LOGGING_ENABLED:
        _debug_handle = (log_dir / DEBUG_LOG_NAME).open("a", encoding="utf-8")

    _cleanup_old_logs(log_dir, LOG_RETENTION_DAYS)


def debug(msg: str) -> None:
    """Append a line to the debug log. No-op until setup_logging() has run."""
    if _debug_handle is None:
        return
    ts = datetime.now().strftime("%Y/%m/%d %H:%M:%S")
    line = f"DEBUG: {ts} [{threading.current_thread().name}] {msg}\n"
    with _debug_lock:
        _debug_handle.write(line)
        _debug_handle.flush()
