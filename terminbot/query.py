"""Answering free-text questions ("ima li termina za kardiologa?") against a snapshot.

The flow for one query:

1. build the searchable universe: drop pediatric rows unless the query is
   about children, drop consilium / referral-abroad rows always;
2. default result: rows loosely matching the query (or one of its aliases);
3. ordered intent rules (OCT, CT, ultrasound, endocrinology, cardiology) may
   replace the result and force a combined verdict, first rule wins;
4. otherwise the verdict is synthesized from the result list.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Literal

from terminbot.aggregate import slot_sort_key
from terminbot.domain import HAS_SLOTS, NO_SLOTS, SlotsSnapshot, SlotStatus
from terminbot.normalize import expand_aliases, normalize_for_search, normalize_query_latin, slot_date_order

logger = logging.getLogger(__name__)

SlotKind = Literal["INVESTIGATION", "SPECIALIST_VISIT"]
AnswerKind = Literal["empty", "none", "single", "narrow"]
Tone = Literal["success", "danger", "info"]

DEFAULT_LIMIT = 50
MAX_LIMIT = 200
MAX_SUGGESTIONS = 6


@dataclass(frozen=True)
class SlotItem:
    key: str
    section: str
    specialist: str
    status: SlotStatus
    first_available: str | None
    codes: tuple[str, ...]
    slot_kind: SlotKind

    @property
    def search_text(self) -> str:
        return f"{self.specialist} {self.section}"


@dataclass(frozen=True)
class Suggestion:
    label: str
    query: str


@dataclass(frozen=True)
class Answer:
    kind: AnswerKind
    text: str
    specialist: str | None = None
    section: str | None = None
    status: SlotStatus | None = None
    first_available: str | None = None
    suggestions: tuple[Suggestion, ...] = ()
    tone: Tone = "info"


@dataclass(frozen=True)
class QueryResult:
    query: str
    total: int
    child_intent: bool
    pediatric_filtered: bool
    source_report_date: str
    source_report_url: str
    answer: Answer
    items: tuple[SlotItem, ...]
    related_items: tuple[SlotItem, ...] = ()
    related_title: str | None = None


# --- query classifiers -------------------------------------------------------

_CHILD = re.compile(
    r"det|reben|pediatr|children|child|kids|kid|baby|infant|pedij|pediat|deca|djeca|djec|dijete|dece|ibd|neonat"
)
_NEUROLOGY = re.compile(r"nevrolog|neurolog|nevrolo|neurolo")
_ENDOCRINOLOGY = re.compile(r"endokri|endocri|endokrinolog|endokrinologija|endokrinol")
_CARDIOLOGY = re.compile(r"kardiolog|cardiolog|kardiolo|cardiolo|kardiologija|kardio")
_INVESTIGATION_QUERY = re.compile(
    r"ct|mr|mri|mrt|eeg|emng|echo|eho|dopler|doppler|gastroskop|kolono|uz|ultrazv|ultrzv|ultrazvuc"
    r"|dijagnost|kabinet|test|dxa|dexa|dex|denzitomet|densitomet|osteodenzito|gustina kost"
)
_CABINET_NUMBER = re.compile(r"\b(i|ii|iii|1|2|3)\b")
_ULTRASOUND_QUERY_TOKENS = ("uz", "uzv", "ultrazv", "ultrazvuk", "ultrazvuc", "ultrzv", "dopler", "doppler")

# Applied to raw specialist names, which may carry diacritics: keep \b ascii.
_NUMBERED = re.compile(r"\b(1|2|3|i|ii|iii)\b", re.IGNORECASE | re.ASCII)
_ONE_OR_TWO = re.compile(r"\b(i|ii|1|2)\b", re.IGNORECASE | re.ASCII)


def _latin_tokens(query: str) -> list[str]:
    return normalize_query_latin(query).split()


def has_child_intent(query: str) -> bool:
    return bool(_CHILD.search(normalize_query_latin(query)))


def has_neurology_intent(query: str) -> bool:
    return bool(_NEUROLOGY.search(normalize_query_latin(query)))


def has_endocrinology_intent(query: str) -> bool:
    return bool(_ENDOCRINOLOGY.search(normalize_query_latin(query)))


def has_cardiology_intent(query: str) -> bool:
    return bool(_CARDIOLOGY.search(normalize_query_latin(query)))


def has_investigation_intent(query: str) -> bool:
    return bool(_INVESTIGATION_QUERY.search(normalize_query_latin(query)))


def has_cabinet_number(query: str) -> bool:
    return bool(_CABINET_NUMBER.search(normalize_query_latin(query)))


def has_oct_intent(query: str) -> bool:
    return "oct" in _latin_tokens(query)


def has_ct_intent(query: str) -> bool:
    tokens = _latin_tokens(query)
    return "ct" in tokens and "oct" not in tokens


def is_only_ct_query(query: str) -> bool:
    return _latin_tokens(query) == ["ct"]


def has_ultrasound_intent(query: str) -> bool:
    if has_ct_intent(query) or has_oct_intent(query):
        return False
    return any(k in token for token in _latin_tokens(query) for k in _ULTRASOUND_QUERY_TOKENS)


def _visit_intent(predicate: Callable[[str], bool]) -> Callable[[str], bool]:
    # Specialist-visit intents give way to explicit procedures or cabinet numbers.
    def applies(query: str) -> bool:
        return predicate(query) and not has_investigation_intent(query) and not has_cabinet_number(query)

    return applies


# --- item classifiers --------------------------------------------------------

_INVESTIGATION_MARKERS = (
    "gastroskop",
    "kolono",
    "ct ",
    " ct",
    "mr ",
    " mri",
    " mrt",
    "rtg",
    "eeg",
    "emng",
    "echo",
    "eho",
    "dopler",
    "doppler",
    "uz ",
    "ultrazv",
    "ergomet",
    "holter",
    "endoskop",
    "kabinet",
    "dijagnost",
    "dxa",
    "dexa",
    "dex",
    "denzitomet",
    "densitomet",
    "osteodenzit",
    "gustina kost",
)
_UPPER_TOKEN = re.compile(r"[A-Z0-9]+")
_PEDIATRIC_WORDS = re.compile(r"djec|deca|djeca|pedij|pediat|neonat|ibd")
_CONSILIUM = re.compile(r"konzilij|konsilij|consilium|konsilium")
_UZ_WORD = re.compile(r"(^|\s)uzv?($|\s)")

PEDIATRIC_INSTITUTE = "institut za bolesti djece"
REFERRAL_ABROAD = "upucivanje pacijenata u inostranstvo"
OPHTHALMOLOGY_CLINIC = "klinika za ocne bolesti"
INTERNAL_MEDICINE_CLINIC = "interna klinika"
CARDIOLOGY_CLINIC = "klinika za bolesti srca"
NEUROLOGY_CLINIC = "klinika za neurologiju"


def detect_slot_kind(section: str, specialist: str) -> SlotKind:
    text = normalize_for_search(f"{specialist} {section}")
    if any(marker in text for marker in _INVESTIGATION_MARKERS):
        return "INVESTIGATION"
    return "SPECIALIST_VISIT"


def _upper_tokens(item: SlotItem) -> list[str]:
    return _UPPER_TOKEN.findall(item.search_text.upper())


def is_ct_item(item: SlotItem) -> bool:
    return "CT" in _upper_tokens(item)


def is_oct_item(item: SlotItem) -> bool:
    return "OCT" in _upper_tokens(item)


def is_ophthalmology_clinic(item: SlotItem) -> bool:
    return OPHTHALMOLOGY_CLINIC in normalize_for_search(item.section)


def is_ultrasound_item(item: SlotItem) -> bool:
    text = normalize_for_search(item.search_text)
    if "dopler" in text or "doppler" in text:
        return True
    if "ultrazv" in text or "ultrazvuk" in text or "ultrazvuc" in text:
        return True
    return bool(_UZ_WORD.search(text))


def is_pediatric_item(item: SlotItem) -> bool:
    section = normalize_for_search(item.section)
    specialist = normalize_for_search(item.specialist)
    raw = f"{item.section} {item.specialist}".upper()

    if PEDIATRIC_INSTITUTE in section:
        return True
    if "IBD" in raw or "DJE" in raw or "PEDIJ" in raw:
        return True
    return bool(_PEDIATRIC_WORDS.search(specialist))


def is_excluded_administrative_item(item: SlotItem) -> bool:
    combined = normalize_for_search(item.search_text)
    if _CONSILIUM.search(combined):
        return True
    return REFERRAL_ABROAD in combined


def is_primary_endocrinology_clinic(item: SlotItem) -> bool:
    section = normalize_for_search(item.section)
    specialist = normalize_for_search(item.specialist)
    if INTERNAL_MEDICINE_CLINIC not in section:
        return False
    if "endokrinol" not in specialist or "ambulanta" not in specialist:
        return False
    return bool(_NUMBERED.search(item.specialist))


def is_related_endocrinology_item(item: SlotItem) -> bool:
    section = normalize_for_search(item.section)
    specialist = normalize_for_search(item.specialist)
    if "endokrin" not in specialist:
        return False
    surgery = "hirurg" in specialist or "hirurska klinika" in section
    gynecology = "ginekol" in specialist or "ginekologiju i akuserstvo" in section
    return surgery or gynecology


def is_cardiology_universe_item(item: SlotItem) -> bool:
    if CARDIOLOGY_CLINIC in normalize_for_search(item.section):
        return True
    specialist = normalize_for_search(item.specialist)
    return "kardio" in specialist or "kardiol" in specialist


def is_primary_cardiology_item(item: SlotItem) -> bool:
    section = normalize_for_search(item.section)
    specialist = normalize_for_search(item.specialist)
    if CARDIOLOGY_CLINIC not in section or "kardiol" not in specialist:
        return False

    numbered_clinic = "ambulanta" in specialist and bool(_NUMBERED.search(item.specialist))
    control_visit = "kontrol" in specialist
    interventional = "intervent" in specialist
    return numbered_clinic or control_visit or interventional


def is_neurology_clinic_one_or_two(item: SlotItem) -> bool:
    section = normalize_for_search(item.section)
    specialist = normalize_for_search(item.specialist)
    if NEUROLOGY_CLINIC not in section or "ambulanta" not in specialist:
        return False
    if "neurol" not in specialist and "NEUROLO" not in item.specialist.upper():
        return False
    return bool(_ONE_OR_TWO.search(item.specialist) or _ONE_OR_TWO.search(specialist))


# --- matching ----------------------------------------------------------------


def word_wise_loose_match(haystack: str, needle: str) -> bool:
    """Every needle word must be found among the haystack words.

    Both sides are expected to be normalized already.
    """

    if not needle:
        return False

    h_words = haystack.split()
    n_words = needle.split()
    if not n_words:
        return False

    def word_matches(n: str, h: str) -> bool:
        if (n, h) in (("1", "i"), ("2", "ii"), ("i", "1"), ("ii", "2")):
            return True
        # "ct" must not hit "oct", "mr" must not hit "amr..."
        if len(n) <= 2:
            return h == n or h.startswith(n)
        if n in h:
            return True
        if len(h) >= 3 and h in n:
            return True
        if len(h) >= 5 and len(n) >= 5:
            return h[:5] == n[:5]
        return False

    return all(any(word_matches(n, h) for h in h_words) for n in n_words)


def loose_text_match(haystack_raw: str, query: str) -> bool:
    if not query.strip():
        return True
    haystack = normalize_for_search(haystack_raw)
    return any(word_wise_loose_match(haystack, candidate) for candidate in expand_aliases(query))


def _sorted(items: Iterable[SlotItem]) -> list[SlotItem]:
    return sorted(items, key=slot_sort_key)


def _clinic_rank(specialist: str) -> int:
    upper = specialist.upper()
    if re.search(r"\b1\b|\bI\b", upper, re.ASCII):
        return 1
    if re.search(r"\b2\b|\bII\b", upper, re.ASCII):
        return 2
    if re.search(r"\b3\b|\bIII\b", upper, re.ASCII):
        return 3
    return 99


def _sorted_by_clinic_number(items: Iterable[SlotItem]) -> list[SlotItem]:
    return sorted(items, key=lambda item: (_clinic_rank(item.specialist), item.specialist))


def refine_endocrinology_visits(query: str, items: list[SlotItem]) -> list[SlotItem]:
    """Prefer numbered endocrinology outpatient clinics for a plain endocrinology query."""

    if not has_endocrinology_intent(query) or has_investigation_intent(query):
        return items

    clinics = []
    for item in items:
        specialist = normalize_for_search(item.specialist)
        if item.slot_kind == "SPECIALIST_VISIT" and "endokrinol" in specialist and "ambulanta" in specialist:
            clinics.append(item)
    if not clinics:
        return items

    numbered = [item for item in clinics if _NUMBERED.search(item.specialist)]
    return numbered or clinics


# --- verdicts ----------------------------------------------------------------


def _no_records(label: str) -> Answer:
    return Answer(kind="none", text=f'No records found for "{label}".', tone="info")


def single_answer(item: SlotItem) -> Answer:
    if item.status == HAS_SLOTS:
        text = (
            f'YES: slots are available for "{item.specialist}". '
            f"First available: {item.first_available or 'unknown'}."
        )
        tone: Tone = "success"
    else:
        text = f'NO: there are no free slots for "{item.specialist}".'
        tone = "danger"
    return Answer(
        kind="single",
        text=text,
        specialist=item.specialist,
        section=item.section,
        status=item.status,
        first_available=item.first_available,
        tone=tone,
    )


def combined_investigation_answer(label: str, items: list[SlotItem]) -> Answer:
    if not items:
        return _no_records(label)

    best = next((item for item in items if item.status == HAS_SLOTS), None)
    if best is None:
        return Answer(
            kind="single",
            text="NEMA TERMINA",
            specialist=label,
            section="",
            status=NO_SLOTS,
            tone="danger",
        )
    return Answer(
        kind="single",
        text=f"IMA TERMINA\nPrvi dostupni termin: {best.first_available or 'nepoznato'} ({best.specialist})",
        specialist=label,
        section=best.section,
        status=HAS_SLOTS,
        first_available=best.first_available,
        tone="success",
    )


def _combined_visit_answer(*, label: str, section: str, field_name: str, primary: list[SlotItem]) -> Answer:
    with_slots = _sorted(item for item in primary if item.status == HAS_SLOTS)
    if not with_slots:
        return Answer(
            kind="single",
            text="NEMA SLOBODNIH TERMINA",
            specialist=label,
            section=section,
            status=NO_SLOTS,
            tone="danger",
        )
    best = with_slots[0]
    return Answer(
        kind="single",
        text=f"YES: first available {field_name} slot is {best.first_available or 'unknown'} ({best.specialist}).",
        specialist=label,
        section=section,
        status=HAS_SLOTS,
        first_available=best.first_available,
        tone="success",
    )


ENDOCRINOLOGY_LABEL = "ENDOKRINOLOSKA AMBULANTA 1/2/3"
CARDIOLOGY_LABEL = "KARDIOLOSKA AMB 1/2/3 + KONTROLA + INTERVENTNA"
NEUROLOGY_LABEL = "Neuroloska ambulanta I/II"


def neurology_answer(universe: list[SlotItem]) -> Answer:
    relevant = [item for item in universe if is_neurology_clinic_one_or_two(item)]
    if not relevant:
        return Answer(kind="none", text=f'No "{NEUROLOGY_LABEL}" records found in the current report.', tone="info")

    with_slots = [item for item in relevant if item.status == HAS_SLOTS]
    if not with_slots:
        return Answer(
            kind="single",
            text=f"NO: there are no free slots for neurologist ({NEUROLOGY_LABEL}).",
            specialist=NEUROLOGY_LABEL,
            section="KLINIKA ZA NEUROLOGIJU",
            status=NO_SLOTS,
            tone="danger",
        )

    best = min(with_slots, key=lambda item: slot_date_order(item.first_available))
    return Answer(
        kind="single",
        text=(
            f"YES: there are free neurologist slots ({NEUROLOGY_LABEL}). "
            f'Earliest: {best.first_available or "unknown"} in "{best.specialist}".'
        ),
        specialist=NEUROLOGY_LABEL,
        section="KLINIKA ZA NEUROLOGIJU",
        status=HAS_SLOTS,
        first_available=best.first_available,
        tone="success",
    )


def narrow_suggestions(items: Iterable[SlotItem]) -> tuple[Suggestion, ...]:
    out: list[Suggestion] = []
    seen: set[str] = set()
    for item in items:
        label = f"{item.specialist} ({item.section})"
        key = normalize_for_search(label)
        if key in seen:
            continue
        seen.add(key)
        out.append(Suggestion(label=label, query=item.specialist))
        if len(out) >= MAX_SUGGESTIONS:
            break
    return tuple(out)


def build_answer(query: str, items: list[SlotItem], universe: list[SlotItem]) -> Answer:
    """Verdict for a query that no intent rule claimed."""

    q = query.strip()
    if not q:
        return Answer(kind="empty", text='Enter specialist name, for example: "Neuroloska ambulanta I".', tone="info")

    if has_neurology_intent(q) and not has_cabinet_number(q):
        return neurology_answer(universe)

    if not items:
        return _no_records(q)

    if len(items) == 1:
        return single_answer(items[0])

    q_norm = normalize_query_latin(q)
    exact = []
    for item in items:
        specialist = normalize_for_search(item.specialist)
        section = normalize_for_search(item.section)
        if specialist == q_norm or f"{specialist} {section}" == q_norm:
            exact.append(item)
    if len(exact) == 1:
        return single_answer(exact[0])

    return Answer(
        kind="narrow",
        text=f"Several matches found ({len(items)}).",
        suggestions=narrow_suggestions(items),
        tone="info",
    )


# --- intent rules ------------------------------------------------------------


@dataclass(frozen=True)
class Override:
    items: list[SlotItem]
    answer: Answer
    related_items: list[SlotItem]
    related_title: str | None = None


Resolver = Callable[[str, list[SlotItem]], Override | None]


@dataclass(frozen=True)
class IntentRule:
    name: str
    applies: Callable[[str], bool]
    resolve: Resolver


def _matching(query: str, universe: list[SlotItem], predicate: Callable[[SlotItem], bool]) -> list[SlotItem]:
    return _sorted(item for item in universe if predicate(item) and loose_text_match(item.search_text, query))


def _resolve_oct(query: str, universe: list[SlotItem]) -> Override:
    items = _matching(query, universe, is_oct_item)
    return Override(items=items, answer=combined_investigation_answer("OCT", items), related_items=[])


def _resolve_ct(query: str, universe: list[SlotItem]) -> Override:
    items = _matching(query, universe, is_ct_item)
    related: list[SlotItem] = []
    related_title = None
    # Someone asking just for "CT" may well mean the eye OCT.
    if is_only_ct_query(query):
        related = _sorted(item for item in universe if is_oct_item(item) and is_ophthalmology_clinic(item))
        related_title = "OCT (Klinika za ocne bolesti)" if related else None
    return Override(
        items=items,
        answer=combined_investigation_answer("CT", items),
        related_items=related,
        related_title=related_title,
    )


def _resolve_ultrasound(query: str, universe: list[SlotItem]) -> Override:
    items = _matching(query, universe, is_ultrasound_item)
    return Override(items=items, answer=combined_investigation_answer("UZ / DOPLER", items), related_items=[])


def _resolve_endocrinology(query: str, universe: list[SlotItem]) -> Override | None:
    primary = _sorted_by_clinic_number(item for item in universe if is_primary_endocrinology_clinic(item))
    if not primary:
        return None
    return Override(
        items=primary,
        answer=_combined_visit_answer(
            label=ENDOCRINOLOGY_LABEL,
            section="INTERNA KLINIKA",
            field_name="endocrinology",
            primary=primary,
        ),
        related_items=_sorted(item for item in universe if is_related_endocrinology_item(item)),
    )


def _resolve_cardiology(query: str, universe: list[SlotItem]) -> Override | None:
    cardiology = _matching(query, universe, is_cardiology_universe_item)
    primary = [item for item in cardiology if is_primary_cardiology_item(item)]
    if not primary:
        return None
    return Override(
        items=primary,
        answer=_combined_visit_answer(
            label=CARDIOLOGY_LABEL,
            section="KLINIKA ZA BOLESTI SRCA",
            field_name="cardiology",
            primary=primary,
        ),
        related_items=[item for item in cardiology if not is_primary_cardiology_item(item)],
    )


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule("oct", has_oct_intent, _resolve_oct),
    IntentRule("ct", has_ct_intent, _resolve_ct),
    IntentRule("ultrasound", has_ultrasound_intent, _resolve_ultrasound),
    IntentRule("endocrinology", _visit_intent(has_endocrinology_intent), _resolve_endocrinology),
    IntentRule("cardiology", _visit_intent(has_cardiology_intent), _resolve_cardiology),
)


def apply_intent_rules(query: str, universe: list[SlotItem]) -> tuple[str, Override] | None:
    for rule in INTENT_RULES:
        if not rule.applies(query):
            continue
        override = rule.resolve(query, universe)
        if override is not None:
            return rule.name, override
    return None


# --- entry point -------------------------------------------------------------


def safe_limit(value: object, fallback: int = DEFAULT_LIMIT) -> int:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return max(1, min(int(number), MAX_LIMIT))


def snapshot_items(snapshot: SlotsSnapshot) -> list[SlotItem]:
    return [
        SlotItem(
            key=slot.key,
            section=slot.section,
            specialist=slot.specialist,
            status=slot.status,
            first_available=slot.first_available,
            codes=tuple(slot.codes),
            slot_kind=detect_slot_kind(slot.section, slot.specialist),
        )
        for slot in snapshot.by_specialist
    ]


def answer_query(snapshot: SlotsSnapshot, query: str, limit: object = DEFAULT_LIMIT) -> QueryResult:
    q = (query or "").strip()
    max_items = safe_limit(limit)
    child_intent = has_child_intent(q)

    all_items = snapshot_items(snapshot)
    searchable = all_items if child_intent else [item for item in all_items if not is_pediatric_item(item)]
    universe = [item for item in searchable if not is_excluded_administrative_item(item)]

    items = _sorted(item for item in universe if loose_text_match(item.search_text, q))
    items = refine_endocrinology_visits(q, items)

    related: list[SlotItem] = []
    related_title: str | None = None
    forced = apply_intent_rules(q, universe)
    if forced is not None:
        rule_name, override = forced
        logger.debug("Query %r handled by intent rule %s", q, rule_name)
        items = override.items
        related = override.related_items
        related_title = override.related_title

    items = items[:max_items]
    answer = forced[1].answer if forced is not None else build_answer(q, items, universe)

    return QueryResult(
        query=q,
        total=len(items),
        child_intent=child_intent,
        pediatric_filtered=not child_intent,
        source_report_date=snapshot.source_report_date,
        source_report_url=snapshot.source_report_url,
        answer=answer,
        items=tuple(items),
        related_items=tuple(related),
        related_title=related_title,
    )
