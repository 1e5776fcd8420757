"""
Scoring Engine

Pure computation over IPCR scores; no database or I/O.

- average_score: per-indicator mean of quantity, quality and timeliness
- grand_average: equally weighted mean of indicator averages
- adjectival_rating: qualitative band for a grand average

The band cut points live in ADJECTIVAL_BANDS and nowhere else.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence

from ipcr_portal.models.performance_form import AdjectivalRating

MIN_SCORE = 1
MAX_SCORE = 5

AVERAGE_PLACES = Decimal("0.01")
GRAND_AVERAGE_PLACES = Decimal("0.001")

# Lower bound (inclusive) of each band, highest first. Anything below the
# last bound is Poor.
ADJECTIVAL_BANDS = (
    (Decimal("5.0"), AdjectivalRating.OUTSTANDING),
    (Decimal("4.0"), AdjectivalRating.VERY_SATISFACTORY),
    (Decimal("3.0"), AdjectivalRating.SATISFACTORY),
    (Decimal("2.0"), AdjectivalRating.UNSATISFACTORY),
)
LOWEST_BAND = AdjectivalRating.POOR


def clamp_score(score: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(score)))


def average_score(
    quantity: Optional[int],
    quality: Optional[int],
    timeliness: Optional[int]
) -> Optional[Decimal]:
    """Mean of the three component scores rounded half-up to 2 places, or None if any is unset."""
    components = (quantity, quality, timeliness)
    if any(c is None for c in components):
        return None
    total = sum(Decimal(clamp_score(c)) for c in components)
    return (total / 3).quantize(AVERAGE_PLACES, rounding=ROUND_HALF_UP)


def grand_average(averages: Sequence[Decimal]) -> Decimal:
    if not averages:
        raise ValueError("grand average needs at least one indicator average")
    total = sum((Decimal(a) for a in averages), Decimal("0"))
    return (total / len(averages)).quantize(GRAND_AVERAGE_PLACES, rounding=ROUND_HALF_UP)


def adjectival_rating(grand: Decimal) -> AdjectivalRating:
    value = Decimal(grand)
    for lower_bound, band in ADJECTIVAL_BANDS:
        if value >= lower_bound:
            return band
    return LOWEST_BAND


def score_form(score_rows: Iterable[Sequence[Optional[int]]]):
    """
    Score a whole form from (quantity, quality, timeliness) rows.
    Returns (indicator averages, grand average, adjectival band).
    Raises ValueError when a row is not fully scored.
    """
    averages = []
    for row in score_rows:
        avg = average_score(*row)
        if avg is None:
            raise ValueError("every indicator needs quantity, quality and timeliness scores")
        averages.append(avg)
    grand = grand_average(averages)
    return averages, grand, adjectival_rating(grand)
