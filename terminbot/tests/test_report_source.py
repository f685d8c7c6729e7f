from __future__ import annotations

import datetime as dt
from unittest.mock import patch

import httpx
import pytest

from terminbot.config import Settings
from terminbot.domain import ReportFetchError
from terminbot.report_source import extract_markdown, fetch_report, parse_report_meta

PDF_URL = "https://www.kccg.me/wp-content/uploads/2025/01/Prvi-slobodan-termin-05.01.2025.pdf"

HOME_HTML = f"""
<html><body>
  <div class="report">
    <h6 class="elementor-heading-title">05.01.2025</h6>
    <a href="{PDF_URL}">Prvi slobodan termin</a>
  </div>
</body></html>
"""

PROXY_TEXT = """Title: prvi-slobodan-termin

URL Source: https://www.kccg.me/wp-content/uploads/2025/01/Prvi-slobodan-termin-05.01.2025.pdf

Markdown Content:
# 1 - INTERNA KLINIKA
123456 Dr Jane Doe
01.01.2025. 10:00 05.01.2025. 09:30
"""


def _settings(**overrides) -> Settings:
    values = dict(state_file=":memory:", fetch_retry_attempts=1)
    values.update(overrides)
    return Settings(**values)


def test_parse_report_meta() -> None:
    meta = parse_report_meta(HOME_HTML)
    assert meta.report_url == PDF_URL
    assert meta.report_date == "05.01.2025"


def test_parse_report_meta_falls_back_to_today_without_date() -> None:
    meta = parse_report_meta(f'<a href="{PDF_URL}">x</a>')
    assert meta.report_date == dt.date.today().isoformat()


def test_parse_report_meta_without_link_fails() -> None:
    with pytest.raises(ReportFetchError, match=r"Unable to locate"):
        parse_report_meta("<html><h6>05.01.2025</h6></html>")


def test_extract_markdown_drops_proxy_preamble() -> None:
    assert extract_markdown(PROXY_TEXT).lstrip().startswith("# 1 - INTERNA KLINIKA")
    assert extract_markdown("plain text") == "plain text"


def test_fetch_report_discovers_and_downloads_text() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        if request.url.host == "www.kccg.me":
            return httpx.Response(200, text=HOME_HTML)
        return httpx.Response(200, text=PROXY_TEXT)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        report = fetch_report(_settings(), client=client)

    assert report.report_url == PDF_URL
    assert report.report_date == "05.01.2025"
    assert "123456 Dr Jane Doe" in report.report_text
    assert "URL Source" not in report.report_text
    assert seen[0] == "https://www.kccg.me/"
    assert seen[1].startswith("https://r.jina.ai/")
    assert PDF_URL.split("//", 1)[1] in seen[1]


def test_fetch_report_gives_up_after_configured_attempts() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(503)

    with (
        httpx.Client(transport=httpx.MockTransport(handler)) as client,
        patch("time.sleep"),
    ):
        with pytest.raises(ReportFetchError, match=r"Home page fetch failed: 503"):
            fetch_report(_settings(fetch_retry_attempts=3), client=client)

    assert len(calls) == 3


def test_fetch_report_retries_transient_errors() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) == 1:
            raise httpx.ConnectError("connection reset", request=request)
        if request.url.host == "www.kccg.me":
            return httpx.Response(200, text=HOME_HTML)
        return httpx.Response(200, text=PROXY_TEXT)

    with (
        httpx.Client(transport=httpx.MockTransport(handler)) as client,
        patch("time.sleep"),
    ):
        report = fetch_report(_settings(fetch_retry_attempts=2), client=client)

    assert report.report_url == PDF_URL
    assert len(calls) == 3
