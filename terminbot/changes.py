from __future__ import annotations

from terminbot.domain import HAS_SLOTS, NO_SLOTS, ChangeReason, SlotChange, SlotsSnapshot, SpecialistSlot
from terminbot.normalize import parse_slot_date


def _change(current: SpecialistSlot, reason: ChangeReason, previous: SpecialistSlot | None) -> SlotChange:
    return SlotChange(
        key=current.key,
        section=current.section,
        specialist=current.specialist,
        reason=reason,
        previous_status=previous.status if previous else None,
        previous_first_available=previous.first_available if previous else None,
        current_status=current.status,
        current_first_available=current.first_available,
    )


def _is_earlier(previous: SpecialistSlot, current: SpecialistSlot) -> bool:
    prev_date = parse_slot_date(previous.first_available)
    curr_date = parse_slot_date(current.first_available)
    if prev_date is None or curr_date is None:
        return False
    return curr_date < prev_date and current.first_available != previous.first_available


def detect_changes(previous: SlotsSnapshot | None, current: SlotsSnapshot) -> list[SlotChange]:
    """Improvements between two snapshots.

    Only openings are reported: a new specialist with slots, slots opening
    for a specialist that had none, or an earlier first slot. Closures are
    deliberately silent.
    """

    if previous is None:
        return [_change(item, "NEW_SPECIALIST_WITH_SLOTS", None) for item in current.by_specialist if item.status == HAS_SLOTS]

    previous_by_key = {item.key: item for item in previous.by_specialist}
    changes: list[SlotChange] = []

    for item in current.by_specialist:
        before = previous_by_key.get(item.key)
        if before is None:
            if item.status == HAS_SLOTS:
                changes.append(_change(item, "NEW_SPECIALIST_WITH_SLOTS", None))
            continue

        if before.status == NO_SLOTS and item.status == HAS_SLOTS:
            changes.append(_change(item, "OPENED_SLOTS", before))
            continue

        if before.status == HAS_SLOTS and item.status == HAS_SLOTS and _is_earlier(before, item):
            changes.append(_change(item, "EARLIER_SLOT", before))

    return changes
