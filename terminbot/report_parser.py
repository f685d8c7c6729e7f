from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from terminbot.domain import HAS_SLOTS, NO_SLOTS, ReportMeta, SlotRecord

logger = logging.getLogger(__name__)

_SECTION_HEADER = re.compile(r"^#\s*\d+\s*-\s*(.+)$", re.ASCII)
_ROW_START = re.compile(r"^(\d{6})\s+(.+)$", re.ASCII)
_NO_SLOTS_PHRASE = re.compile(r"Nema slobodnih termina", re.IGNORECASE)
_TIMESTAMP = re.compile(r"\d{2}\.\d{2}\.\d{4}\.\s*\d{2}:\d{2}", re.ASCII)
_WHITESPACE = re.compile(r"\s+")

# Page footers and repeated column titles of the PDF.
_BOILERPLATE = (
    re.compile(r"^Strana\s+\d+\s+od\s+\d+", re.IGNORECASE),
    re.compile(r"^#\s*Klini", re.IGNORECASE),
    re.compile(r"^Prvi slobodni termin$", re.IGNORECASE),
    re.compile(r"^Datum Ambulanta", re.IGNORECASE),
)

# 111111 is not a real row: the PDF repeats it in front of the doctor title
# when a name wraps onto the next line.
CONTINUATION_CODE = "111111"
_NAME_SUFFIX = re.compile(r"\s+111111\s+Ljekar specijalista u amb\..*$", re.IGNORECASE)


def _collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def clean_specialist_name(value: str) -> str:
    return _collapse_whitespace(_NAME_SUFFIX.sub("", value))


@dataclass
class _OpenRow:
    code: str
    name: str
    lines: list[str] = field(default_factory=list)


def _is_boilerplate(line: str) -> bool:
    return any(pattern.search(line) for pattern in _BOILERPLATE)


def _close_row(row: _OpenRow, section: str, meta: ReportMeta) -> SlotRecord | None:
    block = _collapse_whitespace(" ".join(row.lines))
    no_slots = bool(_NO_SLOTS_PHRASE.search(block))
    timestamps = [_collapse_whitespace(m.group(0)) for m in _TIMESTAMP.finditer(block)]

    # Layout of a row: "<last booked> <first available>", so the second
    # timestamp is the interesting one. A lone timestamp is all we have.
    first_available: str | None = None
    if not no_slots and timestamps:
        first_available = timestamps[1] if len(timestamps) > 1 else timestamps[0]

    specialist = clean_specialist_name(row.name)
    if not specialist:
        return None

    return SlotRecord(
        section=section,
        code=row.code,
        specialist=specialist,
        status=NO_SLOTS if no_slots else HAS_SLOTS,
        first_available=first_available,
        last_booked=timestamps[0] if timestamps else None,
        source_report_date=meta.report_date,
        source_report_url=meta.report_url,
    )


def dedupe_records(records: Iterable[SlotRecord]) -> list[SlotRecord]:
    seen: set[tuple] = set()
    out: list[SlotRecord] = []
    for record in records:
        key = (
            record.section,
            record.code,
            record.specialist,
            record.status,
            record.first_available or "",
            record.last_booked or "",
        )
        if key in seen:
            continue
        seen.add(key)
        out.append(record)
    return out


def parse_report(report_text: str, meta: ReportMeta) -> list[SlotRecord]:
    """Turn the extracted report text into one record per table row.

    Lines are consumed in a single pass. A section header closes the open row
    and switches the section; a line starting with a 6-digit code opens a new
    row; anything else is a continuation of the open row (status text and
    dates usually wrap below the code line). Lines outside any row are noise.
    """

    # Only \n separates lines: other unicode line breaks belong to the wrapped name.
    lines = [line.strip() for line in re.split(r"\r?\n", report_text)]

    section = ""
    current: _OpenRow | None = None
    rows: list[SlotRecord] = []

    def flush() -> None:
        nonlocal current
        if current is None:
            return
        record = _close_row(current, section, meta)
        if record is not None:
            rows.append(record)
        current = None

    for line in lines:
        if not line:
            continue

        header = _SECTION_HEADER.match(line)
        if header:
            flush()
            section = _collapse_whitespace(header.group(1))
            continue

        if _is_boilerplate(line):
            continue

        row_start = _ROW_START.match(line)
        if row_start:
            code, name = row_start.groups()
            if code == CONTINUATION_CODE and current is not None:
                current.lines.append(line)
                continue
            flush()
            current = _OpenRow(code=code, name=name, lines=[line])
            continue

        if current is not None:
            current.lines.append(line)

    flush()

    records = dedupe_records(rows)
    logger.info("Parsed report %s: rows=%d unique=%d", meta.report_date, len(rows), len(records))
    return records
