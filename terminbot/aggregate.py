from __future__ import annotations

import datetime as dt
from typing import Iterable, Protocol

from terminbot.domain import HAS_SLOTS, NO_SLOTS, ReportMeta, SlotRecord, SlotsSnapshot, SpecialistSlot
from terminbot.normalize import make_key, slot_date_order


class _Sortable(Protocol):
    section: str
    specialist: str
    status: str
    first_available: str | None


def slot_sort_key(item: _Sortable) -> tuple:
    """Canonical ordering: open slots first, earliest date, then section and name."""

    return (
        0 if item.status == HAS_SLOTS else 1,
        slot_date_order(item.first_available),
        item.section,
        item.specialist,
    )


def _earliest(values: Iterable[str | None]) -> str | None:
    candidates = [v for v in values if v]
    if not candidates:
        return None
    return min(candidates, key=slot_date_order)


def aggregate_records(records: Iterable[SlotRecord]) -> list[SpecialistSlot]:
    groups: dict[str, list[SlotRecord]] = {}
    for record in records:
        groups.setdefault(make_key(record.section, record.specialist), []).append(record)

    aggregated: list[SpecialistSlot] = []
    for key, members in groups.items():
        with_slots = [m for m in members if m.status == HAS_SLOTS]
        status = HAS_SLOTS if with_slots else NO_SLOTS
        aggregated.append(
            SpecialistSlot(
                key=key,
                section=members[0].section,
                specialist=members[0].specialist,
                status=status,
                first_available=_earliest(m.first_available for m in with_slots),
                codes=tuple(sorted({m.code for m in members})),
                variants=len(members),
            )
        )

    aggregated.sort(key=slot_sort_key)
    return aggregated


def build_snapshot(
    records: list[SlotRecord],
    meta: ReportMeta,
    *,
    generated_at: str | None = None,
) -> SlotsSnapshot:
    if generated_at is None:
        generated_at = dt.datetime.now(dt.timezone.utc).isoformat()
    return SlotsSnapshot(
        generated_at=generated_at,
        source_report_date=meta.report_date,
        source_report_url=meta.report_url,
        records_count=len(records),
        by_specialist=tuple(aggregate_records(records)),
    )
