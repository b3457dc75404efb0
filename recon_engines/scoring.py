"""
recon_engines.scoring -- Per-field similarity scores.

Responsibility:
    Pure functions turning a pair of field values (amount, date, free
    text) into an integer score in [0, 100], higher meaning more similar.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Leaf module; used by
    ``recon_engines.matching``.

Invariants enforced:
    - Every score is an int clamped to [0, 100].
    - Amount and date scores are non-increasing in the raw difference.
    - Decimal arithmetic with ROUND_HALF_UP; no float intermediates.
    - Text scores never raise on odd input; they degrade toward 0.

Failure modes:
    - None by design.  Missing values are the match engine's concern.

Scoring curves:
    amount  100 at zero difference.  Without tolerance, linear decay in
            ``difference / larger_amount``, reaching 0 at a 10% difference.
            With a tolerance band, 100 -> minimum_score across the band,
            then minimum_score -> 0 over the next 10% of the larger amount.
    date    100 at zero days.  Inside ``tolerance_days`` decays to
            minimum_score; beyond it loses ``decay_per_day`` per excess day.
    text    ``round((1 - levenshtein / max_len) * 100)`` on lower-cased,
            trimmed strings.  Both empty is a vacuous 100.
"""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from rapidfuzz.distance import Levenshtein

from recon_kernel.domain.records import (
    DEFAULT_DATE_DECAY_PER_DAY,
    DEFAULT_MINIMUM_SCORE,
    ToleranceKind,
)

AMOUNT_DECAY_SPAN = Decimal("0.10")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def _to_score(value: Decimal) -> int:
    clamped = max(_ZERO, min(_HUNDRED, value))
    return int(clamped.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_text(value: str | None) -> str:
    return (value or "").strip().lower()


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit cost insert/delete/substitute."""
    return Levenshtein.distance(a, b)


def text_score(a: str | None, b: str | None) -> int:
    """Normalized Levenshtein similarity.

    Two empty strings score 100 (vacuous match); callers that weight
    text must decide what an empty pair means for them.
    """
    left, right = normalize_text(a), normalize_text(b)
    if left == right:
        return 100
    if not left or not right:
        return 0
    distance = levenshtein_distance(left, right)
    longest = max(len(left), len(right))
    return _to_score((1 - Decimal(distance) / Decimal(longest)) * _HUNDRED)


def amount_difference(a: Decimal, b: Decimal) -> Decimal:
    """Difference between the magnitudes of two signed amounts."""
    return abs(abs(a) - abs(b))


def tolerance_band(
    a: Decimal,
    b: Decimal,
    tolerance: Decimal = _ZERO,
    kind: ToleranceKind = ToleranceKind.FIXED,
) -> Decimal:
    """Absolute width of the tolerance band for this pair."""
    if tolerance <= 0:
        return _ZERO
    if kind is ToleranceKind.PERCENTAGE:
        return max(abs(a), abs(b)) * tolerance / _HUNDRED
    return tolerance


def amount_within_tolerance(
    a: Decimal,
    b: Decimal,
    tolerance: Decimal = _ZERO,
    kind: ToleranceKind = ToleranceKind.FIXED,
) -> bool:
    return amount_difference(a, b) <= tolerance_band(a, b, tolerance, kind)


def amount_score(
    a: Decimal,
    b: Decimal,
    tolerance: Decimal = _ZERO,
    kind: ToleranceKind = ToleranceKind.FIXED,
    minimum_score: int = DEFAULT_MINIMUM_SCORE,
) -> int:
    diff = amount_difference(a, b)
    if diff == 0:
        return 100

    larger = max(abs(a), abs(b))
    band = tolerance_band(a, b, tolerance, kind)
    floor = Decimal(minimum_score)

    if band > 0 and diff <= band:
        return _to_score(_HUNDRED - (_HUNDRED - floor) * diff / band)

    plateau = floor if band > 0 else _HUNDRED
    excess_ratio = (diff - band) / larger
    return _to_score(plateau * (1 - excess_ratio / AMOUNT_DECAY_SPAN))


def day_difference(a: date, b: date) -> int:
    return abs((a - b).days)


def date_score(
    a: date,
    b: date,
    tolerance_days: int = 0,
    decay_per_day: int = DEFAULT_DATE_DECAY_PER_DAY,
    minimum_score: int = DEFAULT_MINIMUM_SCORE,
) -> int:
    days = day_difference(a, b)
    if days == 0:
        return 100

    floor = Decimal(minimum_score)
    if tolerance_days > 0 and days <= tolerance_days:
        return _to_score(_HUNDRED - (_HUNDRED - floor) * days / tolerance_days)

    plateau = floor if tolerance_days > 0 else _HUNDRED
    return _to_score(plateau - Decimal(decay_per_day) * (days - tolerance_days))
