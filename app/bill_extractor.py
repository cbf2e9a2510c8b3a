"""
Bill Text Extractor
===================

Turns raw OCR / PDF text of an electricity bill into an ExtractedBillData
record. Extraction is a single pass over an ordered rule table; each rule is
(field name, compiled pattern, transform name) and the first match wins.

Never raises for string input: fields that don't match keep their defaults,
and the confidence score reflects how many primary fields were found.

Usage:
    from bill_extractor import extract_from_text
    data = extract_from_text(ocr_text)
    print(data.to_json(indent=2))
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from bill_data import (
    ExtractedBillData,
    FALLBACK_TARIFF_RATE,
    current_billing_month,
    default_bill_data,
)

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Known suppliers
# ---------------------------------------------------------------------------

# Alternation order matters only when two names start at the same offset.
SUPPLIER_KEYWORDS: list[str] = [
    "torrent", "adani", "tata", "mseb", "bescom", "kseb", "tneb", "pspcl",
    "uhbvn", "dvvnl", "uppcl", "wbsedcl", "pseb", "mppkvvcl",
    "paschim gujarat", "dakshin gujarat", "madhya gujarat", "uttar gujarat",
]


# ---------------------------------------------------------------------------
# Value transforms
# ---------------------------------------------------------------------------

_TRANSFORMS: dict[str, Callable[[str], object]] = {}


def register_transform(name: str):
    """Decorator to register a post-match value transform."""
    def decorator(fn):
        _TRANSFORMS[name] = fn
        return fn
    return decorator


@register_transform("number")
def _to_number(value: str) -> float:
    """Parse a number after stripping thousands separators."""
    return float(value.replace(",", ""))


@register_transform("billing_month")
def _to_billing_month(value: str) -> Optional[str]:
    """Normalize ``mm/yyyy`` to ``yyyy-mm``; pass ``yyyy-mm`` through.

    Any other format (e.g. ``March 2024``) returns None so the caller keeps
    the current-month default.
    """
    if "/" in value:
        month, year = value.split("/", 1)
        return f"{year}-{month.zfill(2)}"
    if "-" in value:
        return value
    return None


@register_transform("text")
def _to_text(value: str) -> str:
    return value


def _apply_transform(value: str, transform: str) -> object:
    return _TRANSFORMS[transform](value)


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldRule:
    """One field extractor: the first capture group feeds the transform."""
    field_name: str
    pattern: re.Pattern
    transform: str = "text"


# ASCII digits only: "२०२४" must not parse as a year or amount.
_FLAGS = re.IGNORECASE | re.ASCII

_NUMBER = r"(\d+(?:,\d+)*(?:\.\d{2})?)"

FIELD_RULES: list[FieldRule] = [
    FieldRule(
        "energy_supplier",
        re.compile("(" + "|".join(SUPPLIER_KEYWORDS) + ")", _FLAGS),
    ),
    FieldRule(
        "bill_total",
        re.compile(r"(?:total|amount|bill\s*amount|payable)\s*:?\s*₹?\s*" + _NUMBER, _FLAGS),
        "number",
    ),
    FieldRule(
        "units_consumed",
        re.compile(r"(?:units|kwh|consumption)\s*:?\s*(\d+(?:,\d+)*(?:\.\d+)?)", _FLAGS),
        "number",
    ),
    FieldRule(
        "billing_month",
        re.compile(
            r"(?:month|period|bill\s*for)\s*:?\s*([a-z]+\s*\d{4}|\d{2}/\d{4}|\d{4}-\d{2})",
            _FLAGS,
        ),
        "billing_month",
    ),
    FieldRule(
        "customer_id",
        re.compile(r"(?:customer|consumer|account)\s*(?:id|no|number)\s*:?\s*([A-Z0-9]+)", _FLAGS),
    ),
    FieldRule(
        "meter_number",
        re.compile(r"(?:meter|device)\s*(?:no|number)\s*:?\s*([A-Z0-9]+)", _FLAGS),
    ),
    # Labels are case-insensitive; the name itself must be capitalized.
    FieldRule(
        "user_name",
        re.compile(r"(?i:name|consumer)\s*:?\s*([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)", re.ASCII),
    ),
]

# Fraction of the bill total attributed to each breakdown line.
# TODO: replace with per-supplier tariff schedules once real bill samples
# with itemized charges are available.
CHARGE_SPLIT: dict[str, float] = {
    "energy_charges": 0.70,
    "fpppa_charges": 0.10,
    "government_duty": 0.10,
    "fixed_charges": 0.05,
}

BASE_CONFIDENCE = 0.3


@dataclass
class FieldMatch:
    """A single successful rule match."""
    field_name: str
    raw: str
    value: object


def match_fields(text: str, rules: list[FieldRule] | None = None) -> dict[str, FieldMatch]:
    """Run every rule once against *text* and collect the matches.

    Rules whose transform yields None are dropped, as if they hadn't matched.
    """
    if rules is None:
        rules = FIELD_RULES

    matches: dict[str, FieldMatch] = {}
    for rule in rules:
        m = rule.pattern.search(text)
        if not m:
            continue
        raw = m.group(1)
        value = _apply_transform(raw, rule.transform)
        if value is None:
            log.debug("Discarded %s match %r: unsupported format", rule.field_name, raw)
            continue
        log.debug("Matched %s = %r", rule.field_name, value)
        matches[rule.field_name] = FieldMatch(rule.field_name, raw, value)
    return matches


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def score_confidence(
    energy_supplier: str,
    bill_total: float,
    units_consumed: float,
    customer_id: str,
) -> float:
    """Additive heuristic: 0.3 base, +0.2 supplier/amount/units, +0.1 customer id."""
    score = BASE_CONFIDENCE
    if energy_supplier:
        score += 0.2
    if bill_total > 0:
        score += 0.2
    if units_consumed > 0:
        score += 0.2
    if customer_id:
        score += 0.1
    return min(round(score, 2), 1.0)


def derive_tariff_rate(bill_total: float, units_consumed: float) -> float:
    """Cost per kWh, or the fallback rate when either side is missing."""
    if bill_total > 0 and units_consumed > 0:
        return bill_total / units_consumed
    return FALLBACK_TARIFF_RATE


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_from_text(text: str) -> ExtractedBillData:
    """Extract a fully-populated ExtractedBillData from free-form bill text."""
    matches = match_fields(text or "")

    def get_val(name: str, default):
        fm = matches.get(name)
        return fm.value if fm else default

    energy_supplier = get_val("energy_supplier", "")
    bill_total = get_val("bill_total", 0.0)
    units_consumed = get_val("units_consumed", 0.0)
    billing_month = get_val("billing_month", current_billing_month())
    customer_id = get_val("customer_id", "")

    data = ExtractedBillData(
        energy_supplier=energy_supplier,
        monthly_bill=bill_total,
        billing_month=billing_month,
        units_consumed=units_consumed,
        bill_total=bill_total,
        bill_breakdown=f"Extracted data for {billing_month}",
        tariff_rate=derive_tariff_rate(bill_total, units_consumed),
        customer_id=customer_id,
        meter_number=get_val("meter_number", ""),
        user_name=get_val("user_name", ""),
        units_billed=units_consumed,
        confidence=score_confidence(energy_supplier, bill_total, units_consumed, customer_id),
    )
    for field_name, fraction in CHARGE_SPLIT.items():
        setattr(data, field_name, bill_total * fraction)

    log.debug(
        "Extracted %d/%d fields (confidence %.2f)",
        len(matches), len(FIELD_RULES), data.confidence,
    )
    return data


def merge_multiple(results: list[ExtractedBillData]) -> ExtractedBillData:
    """Pick the single highest-confidence record; ties keep the earliest.

    Whole-record selection only: fields are never combined across pages.
    """
    if not results:
        return default_bill_data()

    best = results[0]
    for current in results[1:]:
        # Strictly greater: earlier pages win ties
        if current.confidence > best.confidence:
            best = current
    return best
