from __future__ import annotations

from terminbot.aggregate import aggregate_records, build_snapshot
from terminbot.domain import HAS_SLOTS, NO_SLOTS, ReportMeta, SlotRecord

META = ReportMeta(report_date="05.01.2025", report_url="https://example.test/report.pdf")


def _record(section: str, specialist: str, code: str, first_available: str | None, *, status: str = HAS_SLOTS) -> SlotRecord:
    return SlotRecord(
        section=section,
        code=code,
        specialist=specialist,
        status=status,  # type: ignore[arg-type]
        first_available=first_available,
        last_booked=None,
        source_report_date=META.report_date,
        source_report_url=META.report_url,
    )


def test_group_takes_earliest_date_among_members_with_slots() -> None:
    records = [
        _record("INTERNA KLINIKA", "Dr Jane Doe", "200000", "10.01.2025. 09:00"),
        _record("INTERNA KLINIKA", "Dr Jane Doe", "100000", "03.01.2025. 12:00"),
        _record("INTERNA KLINIKA", "Dr Jane Doe", "100000", None, status=NO_SLOTS),
    ]

    [slot] = aggregate_records(records)

    assert slot.key == "INTERNA KLINIKA::Dr Jane Doe"
    assert slot.status == HAS_SLOTS
    assert slot.first_available == "03.01.2025. 12:00"
    assert slot.codes == ("100000", "200000")
    assert slot.variants == 3


def test_group_without_slots_has_no_first_available() -> None:
    records = [
        _record("S", "Dr A", "100000", None, status=NO_SLOTS),
        _record("S", "Dr A", "100001", None, status=NO_SLOTS),
    ]

    [slot] = aggregate_records(records)
    assert slot.status == NO_SLOTS
    assert slot.first_available is None


def test_unparseable_date_is_chosen_only_when_nothing_else_parses() -> None:
    records = [
        _record("S", "Dr A", "100000", "soon"),
        _record("S", "Dr A", "100001", "04.04.2025. 08:00"),
        _record("S", "Dr B", "100002", "soon"),
    ]

    by_specialist = {slot.specialist: slot for slot in aggregate_records(records)}
    assert by_specialist["Dr A"].first_available == "04.04.2025. 08:00"
    assert by_specialist["Dr B"].first_available == "soon"


def test_grouping_key_is_exact_not_normalized() -> None:
    records = [
        _record("S", "Dr Čović", "100000", "01.01.2025. 08:00"),
        _record("S", "Dr Covic", "100001", "01.01.2025. 08:00"),
    ]
    assert len(aggregate_records(records)) == 2


def test_sort_order_status_then_date_then_section_then_name() -> None:
    records = [
        _record("B", "Dr Z", "1", None, status=NO_SLOTS),
        _record("B", "Dr Late", "2", "09.01.2025. 08:00"),
        _record("B", "Dr Early", "3", "01.01.2025. 08:00"),
        _record("A", "Dr Same", "4", "05.01.2025. 08:00"),
        _record("B", "Dr Same", "5", "05.01.2025. 08:00"),
        _record("A", "Dr Y", "6", None, status=NO_SLOTS),
    ]

    keys = [slot.key for slot in aggregate_records(records)]
    assert keys == ["B::Dr Early", "A::Dr Same", "B::Dr Same", "B::Dr Late", "A::Dr Y", "B::Dr Z"]


def test_build_snapshot_carries_report_meta_and_counts() -> None:
    records = [
        _record("S", "Dr A", "1", "01.01.2025. 08:00"),
        _record("S", "Dr A", "2", "02.01.2025. 08:00"),
    ]

    snapshot = build_snapshot(records, META, generated_at="2025-01-05T06:00:00+00:00")

    assert snapshot.generated_at == "2025-01-05T06:00:00+00:00"
    assert snapshot.source_report_date == META.report_date
    assert snapshot.source_report_url == META.report_url
    assert snapshot.records_count == 2
    assert len(snapshot.by_specialist) == 1
