import threading

import pytest

import bot_config
from bot_config import BotConfig
from claims import ClaimRegistry, StopSignal
from conftest import FakePage, FakeSessions, RecordingStop, listing
from order_handler import OrderHandlingError
from page_port import PageError
from worker import LoginError, WorkerLoop


class CountingHandler:
    def __init__(self, outcome="bid", error=None, on_handle=None):
        self.jobs = []
        self.outcome = outcome
        self.error = error
        self.on_handle = on_handle
        self._lock = threading.Lock()

    def handle(self, page, job):
        with self._lock:
            self.jobs.append(job.url)
        if self.on_handle:
            self.on_handle(job)
        if self.error:
            raise self.error
        return self.outcome


def make_worker(worker_id=0, claims=None, stop=None, handler=None, sessions=None, credentials=None, **settings):
    return WorkerLoop(
        worker_id=worker_id,
        sessions=sessions or FakeSessions(),
        claims=claims if claims is not None else ClaimRegistry(),
        stop=stop if stop is not None else StopSignal(),
        policy=BotConfig(**settings).to_policy(),
        credentials=credentials or bot_config.Credentials("writer@example.com", "pw"),
        handler=handler or CountingHandler(),
        settle_range=(0.0, 0.0),
    )


class TestScanOnce:
    def test_handles_first_eligible_order(self):
        page = FakePage(listing=listing(
            ("", "Writing", "1d 0h"),
            ("https://site/o/edit", "Editing", "1d 0h"),
            ("https://site/o/late", "Writing", "200d 0h"),
            ("https://site/o/good", "Writing", "2d 5h"),
            ("https://site/o/next", "Writing", "2d 5h"),
        ))
        handler = CountingHandler()
        claims = ClaimRegistry()
        worker = make_worker(claims=claims, handler=handler, discard_editing=True, max_deadline_hours=100)

        assert worker.scan_once(page) is True
        assert handler.jobs == ["https://site/o/good"]
        assert len(claims) == 0

    def test_unknown_deadline_is_admitted(self):
        page = FakePage(listing=listing(("https://site/o/1", "Writing", "whenever")))
        handler = CountingHandler()
        assert make_worker(handler=handler, max_deadline_hours=1).scan_once(page)
        assert handler.jobs == ["https://site/o/1"]

    def test_skips_order_claimed_elsewhere(self):
        page = FakePage(listing=listing(
            ("https://site/o/1", "Writing", "1d 0h"),
            ("https://site/o/2", "Writing", "1d 0h"),
        ))
        claims = ClaimRegistry()
        claims.try_claim("https://site/o/1", 7)
        handler = CountingHandler()

        assert make_worker(claims=claims, handler=handler).scan_once(page)

        assert handler.jobs == ["https://site/o/2"]
        assert claims.snapshot() == {"https://site/o/1": 7}

    def test_nothing_eligible(self):
        page = FakePage(listing=listing(("https://site/o/1", "Editing", "1d 0h")))
        handler = CountingHandler()
        assert make_worker(handler=handler, discard_editing=True).scan_once(page) is False
        assert handler.jobs == []

    def test_handling_error_releases_claim(self, capsys):
        page = FakePage(listing=listing(
            ("https://site/o/1", "Writing", "1d 0h"),
            ("https://site/o/2", "Writing", "1d 0h"),
        ))
        claims = ClaimRegistry()
        handler = CountingHandler(error=OrderHandlingError("https://site/o/1", "accept/bid"))

        assert make_worker(claims=claims, handler=handler).scan_once(page) is False

        # one order per pass, even when it fails
        assert handler.jobs == ["https://site/o/1"]
        assert len(claims) == 0
        assert "Error handling order" in capsys.readouterr().out

    def test_unexpected_error_still_releases_claim(self):
        page = FakePage(listing=listing(("https://site/o/1", "Writing", "1d 0h")))
        claims = ClaimRegistry()
        handler = CountingHandler(error=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            make_worker(claims=claims, handler=handler).scan_once(page)
        assert len(claims) == 0

    def test_stop_checked_mid_scan(self):
        page = FakePage(listing=listing(("https://site/o/1", "Writing", "1d 0h")))
        stop = StopSignal()
        stop.set()
        handler = CountingHandler()

        assert make_worker(stop=stop, handler=handler).scan_once(page) is False
        assert handler.jobs == []

    def test_listing_failure_propagates(self):
        page = FakePage(hidden={bot_config.ORDER_ROW_SELECTOR})
        with pytest.raises(PageError):
            make_worker().scan_once(page)


class TestSession:
    def test_existing_session_skips_login(self):
        page = FakePage()
        make_worker().ensure_logged_in(page)
        assert page.calls[0] == ("navigate", bot_config.ORDERS_URL)
        assert ("navigate", bot_config.LOGIN_URL) not in page.calls

    def test_login_when_session_missing(self):
        def landmark_appears(p):
            p.hidden.discard(bot_config.LOGGED_IN_LANDMARK)

        page = FakePage(hidden={bot_config.LOGGED_IN_LANDMARK}, on_click={bot_config.LOGIN_SUBMIT: landmark_appears})
        make_worker().ensure_logged_in(page)

        assert ("navigate", bot_config.LOGIN_URL) in page.calls
        assert page.fields[bot_config.LOGIN_FIELD] == "writer@example.com"
        assert page.fields[bot_config.PASSWORD_FIELD] == "pw"
        assert ("clear_field", bot_config.LOGIN_FIELD) in page.calls

    def test_login_failure_raises(self):
        page = FakePage(hidden={bot_config.LOGGED_IN_LANDMARK})
        with pytest.raises(LoginError):
            make_worker().ensure_logged_in(page)


class TestRun:
    def test_login_failure_ends_worker(self, capsys):
        page = FakePage(hidden={bot_config.LOGGED_IN_LANDMARK})
        sessions = FakeSessions(pages={0: page})
        handler = CountingHandler()

        make_worker(sessions=sessions, handler=handler).run()

        assert handler.jobs == []
        assert sessions.exited == [0]
        assert "Failed to login" in capsys.readouterr().out

    def test_session_failure_ends_worker(self, capsys):
        sessions = FakeSessions(fail_open=True)
        make_worker(sessions=sessions).run()
        assert "Failed to start browser session" in capsys.readouterr().out

    def test_loop_runs_until_stopped(self):
        stop = StopSignal()
        page = FakePage(listing=listing(("https://site/o/1", "Writing", "1d 0h")))
        handler = CountingHandler(on_handle=lambda job: stop.set())
        sessions = FakeSessions(pages={0: page})

        make_worker(sessions=sessions, stop=stop, handler=handler).run()

        assert handler.jobs == ["https://site/o/1"]
        assert sessions.exited == [0]

    def test_scan_errors_do_not_end_worker(self):
        stop = StopSignal()
        page = FakePage(hidden={bot_config.ORDER_ROW_SELECTOR})
        scans = []

        real_wait = page.wait_visible

        def counting_wait(selector, timeout):
            if selector == bot_config.ORDER_ROW_SELECTOR:
                scans.append(1)
                if len(scans) >= 3:
                    stop.set()
            return real_wait(selector, timeout)

        page.wait_visible = counting_wait
        make_worker(sessions=FakeSessions(pages={0: page}), stop=stop).run()

        assert len(scans) == 3

    def test_settle_delay_uses_stop_wait(self):
        stop = RecordingStop()
        stop.set()
        worker = make_worker(sessions=FakeSessions(pages={0: FakePage()}), stop=stop)
        worker.settle_range = (3.0, 7.0)

        worker.run()

        assert len(stop.waits) == 1
        assert 3.0 <= stop.waits[0] <= 7.0


def test_two_workers_one_order():
    """Both workers see the same order at the same time; only one handles it."""
    rows = listing(("https://site/o/only", "Writing", "1d 0h"))
    barrier = threading.Barrier(2, timeout=5)
    loser_done = threading.Event()

    class SyncedPage(FakePage):
        def evaluate_structured(self, script):
            data = super().evaluate_structured(script)
            barrier.wait()
            return data

    handler = CountingHandler(on_handle=lambda job: loser_done.wait(5))
    claims = ClaimRegistry()
    workers = [make_worker(worker_id=i, claims=claims, handler=handler) for i in range(2)]
    results = {}

    def scan(worker):
        processed = worker.scan_once(SyncedPage(listing=rows))
        results[worker.worker_id] = processed
        if not processed:
            loser_done.set()

    threads = [threading.Thread(target=scan, args=(w,)) for w in workers]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert handler.jobs == ["https://site/o/only"]
    assert sorted(results.values()) == [False, True]
    assert len(claims) == 0
