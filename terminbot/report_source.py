from __future__ import annotations

import datetime as dt
import logging
import re

import httpx
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from terminbot.config import Settings
from terminbot.domain import FetchedReport, ReportFetchError, ReportMeta

logger = logging.getLogger(__name__)

USER_AGENT = "terminbot/1.0"

_REPORT_LINK = re.compile(
    r'href="(https://www\.kccg\.me/wp-content/uploads/[^"]*prvi-slobodan-termin[^"]*\.pdf)"',
    re.IGNORECASE,
)
_REPORT_DATE = re.compile(r"<h6[^>]*>(\d{2}\.\d{2}\.\d{4})</h6>", re.IGNORECASE)
_MARKDOWN_MARKER = "Markdown Content:"


def extract_markdown(raw: str) -> str:
    """Drop the proxy's preamble (title, source url) in front of the document text."""

    idx = raw.find(_MARKDOWN_MARKER)
    return raw[idx + len(_MARKDOWN_MARKER):] if idx >= 0 else raw


def parse_report_meta(html: str) -> ReportMeta:
    link = _REPORT_LINK.search(html)
    if not link:
        raise ReportFetchError("Unable to locate the daily report PDF URL on the home page")

    date = _REPORT_DATE.search(html)
    report_date = date.group(1) if date else dt.date.today().isoformat()
    return ReportMeta(report_date=report_date, report_url=link.group(1))


def fetch_report_meta(client: httpx.Client, home_url: str) -> ReportMeta:
    r = client.get(home_url)
    if r.status_code >= 400:
        raise ReportFetchError(f"Home page fetch failed: {r.status_code}")
    return parse_report_meta(r.text)


def fetch_report_text(client: httpx.Client, meta: ReportMeta, proxy_prefix: str) -> str:
    r = client.get(f"{proxy_prefix}{meta.report_url}")
    if r.status_code >= 400:
        raise ReportFetchError(f"Report text fetch failed: {r.status_code}")
    return extract_markdown(r.text)


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_before_attempt(retry_state: RetryCallState) -> None:
    logger.debug("Report fetch attempt %s: start", retry_state.attempt_number)


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        logger.warning("Report fetch attempt %s failed (%s)", retry_state.attempt_number, _short_exc(retry_state))


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Retrying report fetch...")
        return
    logger.info("Retrying report fetch in %.0f s (attempt %s)", sleep_seconds, retry_state.attempt_number + 1)


def _fetch_once(client: httpx.Client, settings: Settings) -> FetchedReport:
    meta = fetch_report_meta(client, settings.report_home_url)
    logger.info("Report %s located: %s", meta.report_date, meta.report_url)
    text = fetch_report_text(client, meta, settings.report_text_proxy)
    return FetchedReport(report_text=text, report_date=meta.report_date, report_url=meta.report_url)


def fetch_report(settings: Settings, *, client: httpx.Client | None = None) -> FetchedReport:
    decorated = retry(
        stop=stop_after_attempt(settings.fetch_retry_attempts),
        wait=wait_exponential(multiplier=2, min=2, max=8),
        retry=retry_if_exception_type((httpx.HTTPError, ReportFetchError)),
        before=_log_before_attempt,
        after=_log_after_attempt,
        before_sleep=_log_before_sleep,
        reraise=True,
    )(_fetch_once)

    if client is not None:
        return decorated(client, settings)

    with httpx.Client(
        timeout=settings.http_timeout_seconds,
        headers={"user-agent": USER_AGENT},
        follow_redirects=True,
    ) as own_client:
        return decorated(own_client, settings)
