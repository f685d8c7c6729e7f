"""Text folding used for matching report rows against user input.

Report rows are written in Montenegrin latin with diacritics, users type
either latin (often without diacritics) or cyrillic, sometimes russian
medical terms. Everything is folded to plain ascii words before comparing.
"""

from __future__ import annotations

import datetime as dt
import re
import unicodedata

_LOCAL_LETTERS = (
    ("đ", "dj"),
    ("š", "s"),
    ("č", "c"),
    ("ć", "c"),
    ("ž", "z"),
)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_CYR_TO_LAT = {
    "а": "a",
    "б": "b",
    "в": "v",
    "г": "g",
    "д": "d",
    "е": "e",
    "ё": "e",
    "ж": "zh",
    "з": "z",
    "и": "i",
    "й": "i",
    "к": "k",
    "л": "l",
    "м": "m",
    "н": "n",
    "о": "o",
    "п": "p",
    "р": "r",
    "с": "s",
    "т": "t",
    "у": "u",
    "ф": "f",
    "х": "h",
    "ц": "c",
    "ч": "ch",
    "ш": "sh",
    "щ": "shch",
    "ъ": "",
    "ы": "y",
    "ь": "",
    "э": "e",
    "ю": "yu",
    "я": "ya",
    # ukrainian
    "і": "i",
    "ї": "i",
    "є": "e",
    "ґ": "g",
    # serbian / montenegrin cyrillic
    "ђ": "dj",
    "ј": "j",
    "љ": "lj",
    "њ": "nj",
    "ћ": "c",
    "џ": "dz",
}

_SLOT_DATE = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})\.\s*(\d{2}):(\d{2})$", re.ASCII)


def normalize_for_search(text: str) -> str:
    value = text.lower()
    for letter, replacement in _LOCAL_LETTERS:
        value = value.replace(letter, replacement)
    value = unicodedata.normalize("NFD", value)
    value = "".join(ch for ch in value if not unicodedata.combining(ch))
    return _NON_ALNUM.sub(" ", value).strip()


def transliterate(text: str) -> str:
    return "".join(_CYR_TO_LAT.get(ch, ch) for ch in text.lower())


def normalize_query_latin(query: str) -> str:
    return normalize_for_search(transliterate(query))


# Each trigger is checked independently against the latin form of the query;
# every trigger that fires contributes its synonyms.
_ALIAS_TRIGGERS: tuple[tuple[re.Pattern[str], tuple[str, ...]], ...] = (
    (
        re.compile(r"revmatolog|revmatol|reumatolog|reumatol"),
        ("reumatolog", "reumatolosk", "reumatoloska ambulanta", "reumatoloski konzilijum"),
    ),
    (re.compile(r"nevrolog|neurolog|nevro|neuro"), ("neurolog", "neuroloska ambulanta")),
    (re.compile(r"kardiolog|cardiolog"), ("kardiolog", "kardioloska ambulanta")),
    (
        re.compile(r"gastroenterolog|gastroenterohepatolog|geh|gastrolog"),
        ("gastroenterohepatolog", "gastroenterohepatoloska", "geh"),
    ),
    (re.compile(r"endokrinolog"), ("endokrinolog", "endokrinoloska ambulanta")),
    (re.compile(r"nefrolog"), ("nefrolog", "nefroloska ambulanta")),
    (re.compile(r"pulmonolog|pneumolog"), ("pulmolog", "pulmoloska ambulanta")),
    (re.compile(r"alergolog|allergolog"), ("alergolog", "alergoloska ambulanta")),
    (re.compile(r"ginekolog"), ("ginekolog", "ginekoloska ambulanta")),
    (re.compile(r"urolog"), ("urolog", "uroloska ambulanta")),
    (re.compile(r"ortoped"), ("ortoped", "ortopedska ambulanta")),
    (re.compile(r"hirurg|chirurg|surgeon"), ("hirurg", "hirurska ambulanta")),
    (re.compile(r"oftalmolog|okulist"), ("oftalmolog", "oftalmoloska ambulanta")),
    (re.compile(r"lor|otorino|otolaringolog"), ("orl", "otorinolaringolog")),
    (re.compile(r"psihiatr|psychiatr"), ("psihijatar", "psihijatrijska ambulanta")),
    (re.compile(r"onkolog"), ("onkolog", "onkologija")),
    (re.compile(r"hematolog"), ("hematolog", "hematoloska ambulanta")),
    (re.compile(r"dermatolog|venerolog"), ("dermatovenerolog", "dermatovenerologija")),
    (
        re.compile(r"osteodenzitomet|dxa|dexa|dex|denzitomet|densitomet|gustina kost|bone density"),
        (
            "osteodenzitometrij",
            "osteodenzitometriju",
            "kabinet za osteodenzitometriju",
            "dxa",
            "dexa",
            "dex",
            "denzitometrij",
            "densitometrij",
            "gustina kostiju",
            "gustina kosti",
        ),
    ),
    (
        re.compile(r"\buz\b|ultrazv|ultrasound"),
        (
            "uz",
            "uzv",
            "ultrazv",
            "ultrazvuk",
            "ultrazvuc",
            "ultrazvucn",
            "ultrazvucna dijagnostika",
            "ultrzvucna dijagnostika",
        ),
    ),
    # Ultrasound and Doppler are used interchangeably by patients.
    (
        re.compile(r"dopler|doppler"),
        (
            "dopler",
            "doppler",
            "ultrazv",
            "ultrazvuk",
            "ultrazvuc",
            "ultrazvucn",
            "uzv",
            "ultrazvucna dijagnostika",
            "ultrzvucna dijagnostika",
            "uz",
        ),
    ),
    # Typo-tolerant: ultrzv..., bare uz inside a word.
    (
        re.compile(r"ultrazv|ultrazvuk|ultrazvuc|ultrzvuc|uz"),
        (
            "ultrazv",
            "ultrazvuk",
            "ultrazvuc",
            "ultrazvucn",
            "uzv",
            "dopler",
            "doppler",
            "kolor dopler",
            "color doppler",
        ),
    ),
)


def expand_aliases(query: str) -> set[str]:
    """Return every normalized spelling the query should be matched with."""

    out: set[str] = set()

    def add(value: str) -> None:
        normalized = normalize_for_search(value)
        if normalized:
            out.add(normalized)

    add(query)
    transliterated = transliterate(query)
    add(transliterated)

    latin = normalize_for_search(transliterated)
    for trigger, synonyms in _ALIAS_TRIGGERS:
        if trigger.search(latin):
            for synonym in synonyms:
                add(synonym)

    return out


def make_key(section: str, specialist: str) -> str:
    return f"{section}::{specialist}"


def parse_slot_date(value: str | None) -> dt.datetime | None:
    """Parse ``dd.mm.yyyy. hh:mm``; anything else (or an impossible date) gives None."""

    if not value:
        return None
    match = _SLOT_DATE.match(value)
    if not match:
        return None
    day, month, year, hour, minute = (int(part) for part in match.groups())
    try:
        return dt.datetime(year, month, day, hour, minute)
    except ValueError:
        return None


def format_slot_date(value: dt.datetime) -> str:
    return value.strftime("%d.%m.%Y. %H:%M")


def slot_date_order(value: str | None) -> dt.datetime:
    """Ordering key where missing or unparseable dates sort after every real one."""

    parsed = parse_slot_date(value)
    return parsed if parsed is not None else dt.datetime.max
