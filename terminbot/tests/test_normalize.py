from __future__ import annotations

import datetime as dt

import pytest

from terminbot.normalize import (
    expand_aliases,
    format_slot_date,
    make_key,
    normalize_for_search,
    normalize_query_latin,
    parse_slot_date,
    slot_date_order,
    transliterate,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Reumatološka ambulanta", "reumatoloska ambulanta"),
        ("ĐURĐEVIĆ Žarko", "djurdjevic zarko"),
        ("  KLINIKA  za očne-bolesti!! ", "klinika za ocne bolesti"),
        ("Crème brûlée", "creme brulee"),
        ("", ""),
    ],
)
def test_normalize_for_search(raw: str, expected: str) -> None:
    assert normalize_for_search(raw) == expected


@pytest.mark.parametrize("raw", ["Đorđe Čović", "Ultrazvučna dijagnostika (UZ)", "a--b__c", "ĆĆ šš"])
def test_normalize_is_idempotent(raw: str) -> None:
    once = normalize_for_search(raw)
    assert normalize_for_search(once) == once


def test_transliterate_maps_cyrillic_and_passes_other_characters() -> None:
    assert transliterate("Кардиолог") == "kardiolog"
    assert transliterate("ревматолог 2") == "revmatolog 2"
    assert transliterate("Љубиша") == "ljubisha"
    assert transliterate("abc-123") == "abc-123"


def test_normalize_query_latin_composes_transliteration_and_folding() -> None:
    assert normalize_query_latin("Невролог, амбулатория!") == "nevrolog ambulatoriya"


def test_expand_aliases_always_contains_query_and_transliteration() -> None:
    aliases = expand_aliases("Кардиолог")
    assert "kardiolog" in aliases
    assert "kardioloska ambulanta" in aliases


def test_expand_aliases_maps_russian_rheumatology_to_local_terms() -> None:
    aliases = expand_aliases("ревматолог")
    assert "revmatolog" in aliases
    assert "reumatolog" in aliases
    assert "reumatoloska ambulanta" in aliases


def test_expand_aliases_accumulates_multiple_triggers() -> None:
    aliases = expand_aliases("kardiolog dopler")
    assert "kardioloska ambulanta" in aliases
    assert "ultrazvuk" in aliases
    assert "ultrazvucna dijagnostika" in aliases


def test_expand_aliases_of_empty_query_is_empty() -> None:
    assert expand_aliases("   ") == set()


def test_make_key() -> None:
    assert make_key("INTERNA KLINIKA", "Dr Jane Doe") == "INTERNA KLINIKA::Dr Jane Doe"


def test_parse_and_format_slot_date() -> None:
    parsed = parse_slot_date("05.01.2025. 09:30")
    assert parsed == dt.datetime(2025, 1, 5, 9, 30)
    assert format_slot_date(parsed) == "05.01.2025. 09:30"


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "5.1.2025. 09:30",
        "31.02.2025. 10:00",
        "05.01.2025 09:30",
        "garbage",
        # arabic-indic digits
        "\u0660\u0665.\u0660\u0661.\u0662\u0660\u0662\u0665. \u0660\u0669:\u0663\u0660",
    ],
)
def test_parse_slot_date_rejects_malformed_values(raw: str | None) -> None:
    assert parse_slot_date(raw) is None


def test_slot_date_order_puts_unparseable_last() -> None:
    values = ["garbage", "02.01.2025. 08:00", None, "01.01.2025. 12:00"]
    ordered = sorted(values, key=slot_date_order)
    assert ordered[:2] == ["01.01.2025. 12:00", "02.01.2025. 08:00"]
    assert set(ordered[2:]) == {"garbage", None}
