"""Talent Radar — Value Normalization.

Pure helpers shared by the extractor and the deduplicator: whitespace
cleanup, salary and work-model parsing, identity keys and content hashes.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Iterable, Optional

_WS = re.compile(r"\s+")

# Checked in order; multi-character symbols first
CURRENCY_PATTERNS: tuple[tuple[str, str], ...] = (
    ("лева", "BGN"),
    ("лв", "BGN"),
    ("bgn", "BGN"),
    ("eur", "EUR"),
    ("€", "EUR"),
    ("usd", "USD"),
    ("$", "USD"),
    ("gbp", "GBP"),
    ("£", "GBP"),
    ("pln", "PLN"),
    ("zł", "PLN"),
)

REMOTE_MARKERS = ("remote", "дистанционно", "full remote", "fully remote")
HYBRID_MARKERS = ("hybrid", "хибридно")

_NUMBER = re.compile(r"\d[\d\s,.']*")


def clean_text(value: Optional[str]) -> str:
    """Collapse runs of whitespace and trim."""
    if not value:
        return ""
    return _WS.sub(" ", value).strip()


def unique(values: Iterable[str]) -> list[str]:
    """Drop empties and case-insensitive duplicates, keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        value = clean_text(value)
        key = value.casefold()
        if value and key not in seen:
            seen.add(key)
            out.append(value)
    return out


def detect_currency(text: str) -> str:
    lowered = text.lower()
    for symbol, code in CURRENCY_PATTERNS:
        if symbol in lowered:
            return code
    return ""


def _to_number(raw: str) -> Optional[float]:
    digits = re.sub(r"[\s,']", "", raw)
    # "4.500" style thousands separators
    if re.fullmatch(r"\d{1,3}(\.\d{3})+", digits):
        digits = digits.replace(".", "")
    try:
        return float(digits)
    except ValueError:
        return None


def parse_salary(text: Optional[str]) -> tuple[Optional[float], Optional[float], str]:
    """Parse a salary snippet into (min, max, currency).

    Handles:
      "4 500 - 9 500 лв"   → (4500.0, 9500.0, "BGN")
      "От 5000 до 8000 лв" → (5000.0, 8000.0, "BGN")
      "Up to 9500 BGN"     → (None, 9500.0, "BGN")
      "3000 EUR"           → (3000.0, 3000.0, "EUR")
      ""                   → (None, None, "")
    """
    text = clean_text(text)
    if not text:
        return None, None, ""

    currency = detect_currency(text)
    numbers = [n for n in (_to_number(m.group(0)) for m in _NUMBER.finditer(text)) if n is not None]
    if not numbers:
        return None, None, currency

    lowered = text.lower()
    if len(numbers) == 1:
        if lowered.startswith(("up to", "до ")):
            return None, numbers[0], currency
        return numbers[0], numbers[0], currency
    return min(numbers[0], numbers[1]), max(numbers[0], numbers[1]), currency


def parse_work_model(text: Optional[str]) -> str:
    """Map free text to remote / hybrid / on-site."""
    lowered = clean_text(text).lower()
    if not lowered:
        return ""
    if any(marker in lowered for marker in REMOTE_MARKERS):
        return "remote"
    if any(marker in lowered for marker in HYBRID_MARKERS):
        return "hybrid"
    return "on-site"


def _digest(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def identity_key(
    external_id: Optional[str],
    title: str,
    company: str,
    location: str,
    use_external_id: bool = True,
) -> str:
    """Stable identity of a posting within its source.

    The board's external id wins when the source exposes stable ids;
    otherwise a hash of the normalized (title, company, location).
    """
    if use_external_id and external_id:
        return f"ext:{clean_text(external_id)}"
    parts = [clean_text(v).casefold() for v in (title, company, location)]
    return "hash:" + _digest("|".join(parts))[:32]


def content_hash(payload: dict[str, Any]) -> str:
    """Hash of a normalized field payload; key order does not matter."""
    return _digest(json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str))
