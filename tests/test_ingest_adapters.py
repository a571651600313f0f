"""Tests for the live (httpx + BeautifulSoup) and synthetic adapters and
adapter selection."""

from __future__ import annotations

import os
import time
import unittest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import httpx

from newsstack_gov._http import sanitize_exc, sanitize_url
from newsstack_gov.adapters import build_adapter
from newsstack_gov.config import AGENCIES, AgencyConfig, AgencySelectors, Config
from newsstack_gov.errors import ConfigError, SourceFetchError
from newsstack_gov.ingest_live import LiveAdapter, parse_board
from newsstack_gov.ingest_synthetic import TEMPLATES, SyntheticAdapter

BOARD_HTML = """
<html><body>
<table class="board-list">
  <thead><tr><th>No</th><th>Title</th><th>Date</th></tr></thead>
  <tbody>
    <tr>
      <td class="num">2</td>
      <td class="left"><a href="/no010101/81234">Stablecoin  oversight
          framework</a></td>
      <td class="date">2024-06-10</td>
    </tr>
    <tr>
      <td class="num">1</td>
      <td class="left"><a href="javascript:void(0)">Card fee review</a></td>
      <td class="date">2024.06.07</td>
    </tr>
    <tr>
      <td class="num">0</td>
      <td class="left"></td>
      <td class="date">2024-06-01</td>
    </tr>
  </tbody>
</table>
</body></html>
"""


def _live(handler, retry_attempts=1):
    return LiveAdapter(timeout_s=5.0, retry_attempts=retry_attempts,
                       transport=httpx.MockTransport(handler))


# ── Board parsing ───────────────────────────────────────────────


class TestParseBoard(unittest.TestCase):

    def test_rows_extracted(self):
        items = parse_board(BOARD_HTML, AGENCIES["fsc"])
        self.assertEqual([c.title for c in items],
                         ["Stablecoin oversight framework", "Card fee review"])
        first, second = items
        self.assertEqual(first.url, "https://www.fsc.go.kr/no010101/81234")
        self.assertEqual(first.published_at.date(), date(2024, 6, 10))
        self.assertIn("Financial Services Commission", first.summary)
        self.assertIsNone(second.url)
        self.assertEqual(second.published_at.date(), date(2024, 6, 7))

    def test_unparseable_date_falls_back_to_now(self):
        html = ('<table class="board-list"><tbody><tr><td class="left"><a href="/x">T</a></td>'
                '<td class="date">soon</td></tr></tbody></table>')
        before = datetime.now(timezone.utc)
        (item,) = parse_board(html, AGENCIES["fsc"])
        self.assertGreaterEqual(item.published_at, before)

    def test_selectors_come_from_agency(self):
        agency = AgencyConfig(
            code="fsc", name="X", base_url="https://example.kr", news_url="https://example.kr/list",
            selectors=AgencySelectors(rows="ul.news li", title="a.t", date="span.d"),
        )
        html = '<ul class="news"><li><a class="t" href="p/1">Hello</a><span class="d">2024-05-01</span></li></ul>'
        (item,) = parse_board(html, agency)
        self.assertEqual(item.title, "Hello")
        self.assertEqual(item.url, "https://example.kr/p/1")

    def test_no_rows(self):
        self.assertEqual(parse_board("<html><body>maintenance</body></html>", AGENCIES["fss"]), [])


# ── Live adapter over a mock transport ──────────────────────────


class TestLiveAdapter(unittest.TestCase):

    def test_fetch_success(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, text=BOARD_HTML)

        adapter = _live(handler)
        try:
            items = adapter.fetch(AGENCIES["fsc"])
        finally:
            adapter.close()
        self.assertEqual(len(items), 2)
        self.assertEqual(seen, [AGENCIES["fsc"].news_url])

    def test_client_error_raises_source_fetch_error(self):
        adapter = _live(lambda request: httpx.Response(404, text="gone"))
        with self.assertRaises(SourceFetchError) as ctx:
            adapter.fetch(AGENCIES["ftc"])
        self.assertEqual(ctx.exception.source_id, "ftc")
        self.assertIn("404", str(ctx.exception))

    def test_network_error_raises_source_fetch_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(SourceFetchError):
            _live(handler).fetch(AGENCIES["fss"])

    @patch("newsstack_gov.errors.time.sleep")
    def test_server_error_retried_then_succeeds(self, mock_sleep):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, text=BOARD_HTML)

        items = _live(handler, retry_attempts=3).fetch(AGENCIES["fsc"])
        self.assertEqual(calls["n"], 2)
        self.assertEqual(len(items), 2)
        mock_sleep.assert_called_once()

    @patch("newsstack_gov.errors.time.sleep")
    def test_server_error_exhausts_retries(self, mock_sleep):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(502, text="bad gateway")

        with self.assertRaises(SourceFetchError):
            _live(handler, retry_attempts=2).fetch(AGENCIES["fsc"])
        self.assertEqual(calls["n"], 2)

    def test_request_timeout_capped_by_deadline(self):
        timeouts = []

        def handler(request):
            timeouts.append(request.extensions["timeout"]["read"])
            return httpx.Response(200, text=BOARD_HTML)

        items = _live(handler).fetch(AGENCIES["fsc"], deadline=time.monotonic() + 2.0)
        self.assertEqual(len(items), 2)
        self.assertEqual(len(timeouts), 1)
        self.assertLessEqual(timeouts[0], 2.0)

    def test_passed_deadline_sends_nothing(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(200, text=BOARD_HTML)

        with self.assertRaises(SourceFetchError) as ctx:
            _live(handler, retry_attempts=3).fetch(AGENCIES["fss"], deadline=time.monotonic() - 1)
        self.assertEqual(calls["n"], 0)
        self.assertEqual(ctx.exception.source_id, "fss")

    @patch("newsstack_gov.errors.time.sleep")
    def test_retries_stop_at_deadline(self, mock_sleep):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(503, text="busy")

        with self.assertRaises(SourceFetchError):
            _live(handler, retry_attempts=3).fetch(AGENCIES["fsc"], deadline=time.monotonic() + 0.5)
        self.assertEqual(calls["n"], 1)
        mock_sleep.assert_not_called()

    def test_sanitize_hides_tokens(self):
        self.assertEqual(sanitize_url("https://x.kr/a?key=abc&page=2"), "https://x.kr/a?key=***&page=2")
        self.assertNotIn("s3cr3t", sanitize_exc(RuntimeError("GET /list;jsessionid=s3cr3t failed")))


# ── Synthetic adapter ───────────────────────────────────────────


class TestSyntheticAdapter(unittest.TestCase):

    NOW = datetime(2024, 6, 10, 23, 0, tzinfo=timezone.utc)

    def _adapter(self, seed=7):
        return SyntheticAdapter(seed=seed, clock=lambda: self.NOW)

    def test_shape(self):
        for code, agency in AGENCIES.items():
            with self.subTest(code=code):
                items = self._adapter().fetch(agency)
                self.assertTrue(3 <= len(items) <= 5)
                for c in items:
                    self.assertTrue(c.is_valid)
                    self.assertTrue(c.title.endswith(" - 6/10"))
                    self.assertTrue(any(c.title.startswith(t) for t in TEMPLATES[code]))
                    self.assertTrue(c.url.startswith(agency.base_url))
                    self.assertLessEqual(c.published_at, self.NOW)
                    self.assertGreater(c.published_at, self.NOW - timedelta(hours=24))

    def test_seed_is_deterministic(self):
        a = [c.title for c in self._adapter(seed=42).fetch(AGENCIES["fss"])]
        b = [c.title for c in self._adapter(seed=42).fetch(AGENCIES["fss"])]
        self.assertEqual(a, b)

    def test_unknown_agency(self):
        agency = AgencyConfig(code="bok", name="Bank of Korea", base_url="https://www.bok.or.kr",
                              news_url="https://www.bok.or.kr/list",
                              selectors=AgencySelectors(rows="tr", title="a", date="td"))
        with self.assertRaises(SourceFetchError) as ctx:
            self._adapter().fetch(agency)
        self.assertEqual(ctx.exception.source_id, "bok")


# ── Adapter selection ───────────────────────────────────────────


class TestBuildAdapter(unittest.TestCase):

    def test_default_is_synthetic(self):
        with patch.dict(os.environ, {"NEWSSTACK_FETCH_MODE": "synthetic"}):
            adapter = build_adapter(Config())
        self.assertIsInstance(adapter, SyntheticAdapter)

    def test_live_mode(self):
        with patch.dict(os.environ, {"NEWSSTACK_FETCH_MODE": "live",
                                     "NEWSSTACK_FETCH_RETRY_ATTEMPTS": "5"}):
            adapter = build_adapter(Config())
        try:
            self.assertIsInstance(adapter, LiveAdapter)
            self.assertEqual(adapter.retry_attempts, 5)
        finally:
            adapter.close()

    def test_unknown_mode(self):
        with patch.dict(os.environ, {"NEWSSTACK_FETCH_MODE": "ftp"}):
            with self.assertRaises(ConfigError):
                build_adapter(Config())


if __name__ == "__main__":
    unittest.main()
