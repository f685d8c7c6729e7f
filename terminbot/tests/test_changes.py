from __future__ import annotations

from terminbot.changes import detect_changes
from terminbot.domain import HAS_SLOTS, NO_SLOTS, SlotsSnapshot, SpecialistSlot
from terminbot.normalize import make_key


def _slot(specialist: str, first_available: str | None = None, *, section: str = "INTERNA KLINIKA") -> SpecialistSlot:
    return SpecialistSlot(
        key=make_key(section, specialist),
        section=section,
        specialist=specialist,
        status=HAS_SLOTS if first_available else NO_SLOTS,
        first_available=first_available,
        codes=("123456",),
        variants=1,
    )


def _snapshot(*slots: SpecialistSlot) -> SlotsSnapshot:
    return SlotsSnapshot(
        generated_at="2025-01-05T06:00:00+00:00",
        source_report_date="05.01.2025",
        source_report_url="https://example.test/report.pdf",
        records_count=len(slots),
        by_specialist=tuple(slots),
    )


def test_without_previous_snapshot_every_open_specialist_is_new() -> None:
    current = _snapshot(_slot("Dr A", "01.02.2025. 08:00"), _slot("Dr B"))

    changes = detect_changes(None, current)

    assert [(c.specialist, c.reason) for c in changes] == [("Dr A", "NEW_SPECIALIST_WITH_SLOTS")]
    assert changes[0].previous_status is None


def test_identical_snapshots_produce_no_changes() -> None:
    snapshot = _snapshot(_slot("Dr A", "01.02.2025. 08:00"), _slot("Dr B"))
    assert detect_changes(snapshot, snapshot) == []


def test_opened_slots() -> None:
    previous = _snapshot(_slot("Dr A"))
    current = _snapshot(_slot("Dr A", "03.02.2025. 08:00"))

    [change] = detect_changes(previous, current)

    assert change.reason == "OPENED_SLOTS"
    assert change.previous_status == NO_SLOTS
    assert change.current_first_available == "03.02.2025. 08:00"


def test_earlier_slot_is_reported_but_later_one_is_not() -> None:
    previous = _snapshot(_slot("Dr A", "10.02.2025. 08:00"), _slot("Dr B", "10.02.2025. 08:00"))
    current = _snapshot(_slot("Dr A", "09.02.2025. 12:00"), _slot("Dr B", "11.02.2025. 08:00"))

    [change] = detect_changes(previous, current)

    assert change.specialist == "Dr A"
    assert change.reason == "EARLIER_SLOT"
    assert change.previous_first_available == "10.02.2025. 08:00"


def test_unparseable_dates_never_count_as_earlier() -> None:
    previous = _snapshot(_slot("Dr A", "soon"))
    current = _snapshot(_slot("Dr A", "01.01.2025. 08:00"))
    assert detect_changes(previous, current) == []


def test_closures_and_disappearances_are_silent() -> None:
    previous = _snapshot(_slot("Dr A", "01.02.2025. 08:00"), _slot("Dr Gone", "01.02.2025. 08:00"))
    current = _snapshot(_slot("Dr A"))
    assert detect_changes(previous, current) == []


def test_new_specialist_in_existing_snapshot() -> None:
    previous = _snapshot(_slot("Dr A"))
    current = _snapshot(_slot("Dr A"), _slot("Dr New", "05.02.2025. 08:00"), _slot("Dr Closed"))

    [change] = detect_changes(previous, current)
    assert (change.specialist, change.reason) == ("Dr New", "NEW_SPECIALIST_WITH_SLOTS")
