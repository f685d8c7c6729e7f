from __future__ import annotations

from terminbot.domain import HAS_SLOTS, NO_SLOTS, ReportMeta, SlotRecord
from terminbot.report_parser import clean_specialist_name, dedupe_records, parse_report

META = ReportMeta(report_date="05.01.2025", report_url="https://www.kccg.me/wp-content/uploads/2025/01/prvi-slobodan-termin.pdf")


def _report(*lines: str) -> str:
    return "\n".join(lines)


def test_row_with_two_timestamps_uses_the_second_as_first_available() -> None:
    text = _report(
        "# 1 - INTERNA KLINIKA",
        "123456 Dr Jane Doe",
        "01.01.2025. 10:00 05.01.2025. 09:30",
    )

    records = parse_report(text, META)

    assert records == [
        SlotRecord(
            section="INTERNA KLINIKA",
            code="123456",
            specialist="Dr Jane Doe",
            status=HAS_SLOTS,
            first_available="05.01.2025. 09:30",
            last_booked="01.01.2025. 10:00",
            source_report_date=META.report_date,
            source_report_url=META.report_url,
        )
    ]


def test_no_slots_phrase_wins_over_embedded_timestamps() -> None:
    text = _report(
        "# 1 - INTERNA KLINIKA",
        "123456 Dr Jane Doe",
        "01.01.2025. 10:00 NEMA SLOBODNIH TERMINA 05.01.2025. 09:30",
    )

    [record] = parse_report(text, META)
    assert record.status == NO_SLOTS
    assert record.first_available is None
    assert record.last_booked == "01.01.2025. 10:00"


def test_single_timestamp_is_used_as_first_available() -> None:
    text = _report("# 3 - KLINIKA ZA NEUROLOGIJU", "222222 Neuroloska ambulanta I", "07.03.2025. 11:15")

    [record] = parse_report(text, META)
    assert record.status == HAS_SLOTS
    assert record.first_available == "07.03.2025. 11:15"


def test_sections_switch_and_boilerplate_is_ignored() -> None:
    text = _report(
        "# Klinicki centar Crne Gore",
        "Datum Ambulanta Prvi slobodni",
        "Prvi slobodni termin",
        "# 1 - INTERNA KLINIKA",
        "111222 Endokrinoloska ambulanta 1",
        "02.02.2025. 08:00 10.02.2025. 08:30",
        "Strana 1 od 12",
        "# 2 - KLINIKA ZA BOLESTI SRCA",
        "333444 Kardioloska ambulanta 2",
        "Nema slobodnih termina",
    )

    records = parse_report(text, META)

    assert [(r.section, r.specialist, r.status) for r in records] == [
        ("INTERNA KLINIKA", "Endokrinoloska ambulanta 1", HAS_SLOTS),
        ("KLINIKA ZA BOLESTI SRCA", "Kardioloska ambulanta 2", NO_SLOTS),
    ]


def test_continuation_code_does_not_open_a_new_row() -> None:
    text = _report(
        "# 1 - REUMATOLOGIJA",
        "654321 Dr Petar Petrovic",
        "111111 Ljekar specijalista u amb. reumatologije",
        "03.02.2025. 08:00 04.02.2025. 09:00",
    )

    [record] = parse_report(text, META)
    assert record.code == "654321"
    assert record.specialist == "Dr Petar Petrovic"
    assert record.first_available == "04.02.2025. 09:00"


def test_clean_specialist_name_strips_wrapped_title() -> None:
    assert clean_specialist_name("Dr  Petar   Petrovic 111111 Ljekar specijalista u amb. reum") == "Dr Petar Petrovic"
    assert clean_specialist_name("  Reumatoloska   ambulanta ") == "Reumatoloska ambulanta"


def test_lines_outside_rows_are_noise() -> None:
    text = _report("some preamble 01.01.2025. 10:00", "# 1 - INTERNA KLINIKA", "not a row either")
    assert parse_report(text, META) == []


def test_repeated_rows_are_deduplicated_keeping_first_seen_order() -> None:
    text = _report(
        "# 1 - INTERNA KLINIKA",
        "123456 Dr Jane Doe",
        "01.01.2025. 10:00 05.01.2025. 09:30",
        "777777 Dr John Roe",
        "Nema slobodnih termina",
        "123456 Dr Jane Doe",
        "01.01.2025. 10:00 05.01.2025. 09:30",
    )

    records = parse_report(text, META)
    assert [r.code for r in records] == ["123456", "777777"]


def test_dedupe_records_keeps_distinct_dates() -> None:
    base = dict(
        section="S",
        code="123456",
        specialist="Dr Jane Doe",
        status=HAS_SLOTS,
        last_booked=None,
        source_report_date="d",
        source_report_url="u",
    )
    a = SlotRecord(first_available="05.01.2025. 09:30", **base)
    b = SlotRecord(first_available="06.01.2025. 09:30", **base)

    assert dedupe_records([a, b, a]) == [a, b]


def test_unicode_line_separator_stays_inside_the_row() -> None:
    text = _report("# 1 - INTERNA KLINIKA", "123456 Dr Jane\u2028Doe", "05.01.2025. 09:30")

    records = parse_report(text, META)

    assert [r.specialist for r in records] == ["Dr Jane Doe"]
    assert records[0].first_available == "05.01.2025. 09:30"


def test_row_code_must_be_ascii_digits() -> None:
    text = _report("# 1 - INTERNA KLINIKA", "١٢٣٤٥٦ Dr X", "05.01.2025. 09:30")
    assert parse_report(text, META) == []


def test_crlf_line_endings() -> None:
    text = "\r\n".join(["# 1 - INTERNA KLINIKA", "123456 Dr Jane Doe", "Nema slobodnih termina"])

    records = parse_report(text, META)

    assert [(r.section, r.specialist, r.status) for r in records] == [("INTERNA KLINIKA", "Dr Jane Doe", NO_SLOTS)]
