"""
Writer marketplace bid bot (Playwright, threaded workers)

High-level flow
---------------
1) Load settings from ~/.bidding-bot/config.json and credentials from the
   command line / BOT_EMAIL / BOT_PASSWORD.
2) Start N workers (settings: thread_count). Each one opens its own persistent
   Chromium profile, reuses or creates a login, then keeps scanning the orders page.
3) For each eligible order (service type + deadline filters, not claimed by another
   worker): accept it if fixed-price, otherwise discover the minimum bid and bid it,
   then optionally message the client.
4) Ctrl+C stops the workers; the process waits until every worker has finished.

Commands
--------
  python bid_bot.py run [--email you@example.com] [--headless]
  python bid_bot.py settings --threads 4 --discard-editing --max-deadline 72
  python bid_bot.py show-settings
"""

import argparse
import getpass
import json
import os
import sys
from dataclasses import asdict
from typing import List, Optional

import bot_config
from bot_config import ConfigError, MissingCredentialsError
from bot_logging import setup_logging
from dispatcher import Dispatcher
from page_port import PlaywrightSessions


# =============================================================================
# Settings
# =============================================================================

def apply_settings_args(cfg: bot_config.BotConfig, args: argparse.Namespace) -> bot_config.BotConfig:
    """Copy any settings given on the command line onto cfg."""
    if args.message is not None:
        cfg.message_enabled = args.message
    if args.message_text is not None:
        cfg.message_text = args.message_text
    if args.discard_assignments is not None:
        cfg.discard_assignments = args.discard_assignments
    if args.discard_editing is not None:
        cfg.discard_editing = args.discard_editing
    if args.min_deadline is not None:
        cfg.min_deadline_hours = args.min_deadline
    if args.max_deadline is not None:
        cfg.max_deadline_hours = args.max_deadline
    if args.threads is not None:
        cfg.thread_count = args.threads
    return cfg


def cmd_settings(args: argparse.Namespace) -> int:
    cfg = apply_settings_args(bot_config.load_config(), args)
    try:
        path = bot_config.save_config(cfg)
    except ConfigError as e:
        print(f"Settings not saved: {e}")
        return 2
    print(f"Settings saved to {path}")
    return 0


def cmd_show_settings(args: argparse.Namespace) -> int:
    cfg = bot_config.load_config()
    print(json.dumps(asdict(cfg), indent=2))
    return 0


# =============================================================================
# Run
# =============================================================================

def cmd_run(args: argparse.Namespace) -> int:
    cfg = bot_config.load_config()

    password = None
    if not os.getenv("BOT_PASSWORD") and sys.stdin.isatty():
        password = getpass.getpass("Password: ")
    try:
        credentials = bot_config.load_credentials(args.email, password)
    except MissingCredentialsError as e:
        print(f"Cannot start: {e}")
        return 2

    setup_logging()

    sessions = PlaywrightSessions(
        headless=True if args.headless else None,
        executable_path=bot_config.find_chrome_executable(),
    )
    dispatcher = Dispatcher(sessions, credentials)
    dispatcher.start(cfg.to_policy())
    print("The bidding bot has started working. Press Ctrl+C to stop.")

    try:
        # Returns early only if every worker gave up (e.g. login failed everywhere).
        while not dispatcher.wait(timeout=1.0):
            pass
        print("All workers have exited.")
    except KeyboardInterrupt:
        print("\nStopping (waiting for workers to finish their current step)...")
    finally:
        dispatcher.stop()
    return 0


# =============================================================================
# Entrypoint
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Writer marketplace bid bot")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="start bidding until Ctrl+C")
    run.add_argument("--email", default=None, help="login email (default: BOT_EMAIL)")
    run.add_argument("--headless", action="store_true", help="hide browser windows")
    run.set_defaults(func=cmd_run)

    settings = sub.add_parser("settings", help="change saved settings")
    settings.add_argument("--message", dest="message", action="store_true", default=None)
    settings.add_argument("--no-message", dest="message", action="store_false")
    settings.add_argument("--message-text", default=None)
    settings.add_argument("--discard-assignments", dest="discard_assignments", action="store_true", default=None)
    settings.add_argument("--keep-assignments", dest="discard_assignments", action="store_false")
    settings.add_argument("--discard-editing", dest="discard_editing", action="store_true", default=None)
    settings.add_argument("--keep-editing", dest="discard_editing", action="store_false")
    settings.add_argument("--min-deadline", type=int, default=None, help="minimum deadline (hours)")
    settings.add_argument("--max-deadline", type=int, default=None, help="maximum deadline (hours)")
    settings.add_argument("--threads", type=int, default=None, help="number of workers")
    settings.set_defaults(func=cmd_settings)

    show = sub.add_parser("show-settings", help="print saved settings")
    show.set_defaults(func=cmd_show_settings)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
