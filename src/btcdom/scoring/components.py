"""Component scores for short-candidate ranking.

Each function maps one property of an alt asset to a score in [0, 1]. The
composite score is their weighted sum. All functions are pure and total:
degenerate inputs (zero ranges, missing funding data) map to a defined score.

CRITICAL: All computations use Decimal. Never use float for signal scores.
"""

from decimal import Decimal

ZERO = Decimal("0")
ONE = Decimal("1")
NEUTRAL_FUNDING_SCORE = Decimal("0.5")
MIN_VOLATILITY_SPREAD = Decimal("0.01")

# Funding rates are quoted as fractions; the score spans -2%..+2% per period.
_FUNDING_FLOOR_PCT = Decimal("-2")
_FUNDING_SPAN_PCT = Decimal("4")


def clamp_unit(value: Decimal) -> Decimal:
    """Clamp a score into [0, 1]."""
    return max(ZERO, min(ONE, value))


def price_change_score(
    change: Decimal,
    min_change: Decimal,
    max_change: Decimal,
    max_abs_decline: Decimal,
    has_decline: bool,
) -> Decimal:
    """Score a candidate's 24h price change; weaker assets score higher.

    When any ranked asset declined, the score is the candidate's decline
    relative to the largest decline (gainers score 0). When nothing
    declined, changes are normalized linearly over [min, max] with the
    smallest gain scoring 1.

    Args:
        change: Candidate 24h change in percent.
        min_change: Smallest 24h change across the period's ranking.
        max_change: Largest 24h change across the period's ranking.
        max_abs_decline: Magnitude of the largest decline (0 if none).
        has_decline: Whether any ranked asset had a negative change.

    Returns:
        Score in [0, 1]. Identical changes everywhere score 1.
    """
    if has_decline:
        if max_abs_decline <= ZERO:
            return ONE
        return clamp_unit(abs(min(change, ZERO)) / max_abs_decline)
    spread = max_change - min_change
    if spread <= ZERO:
        return ONE
    return clamp_unit(ONE - (change - min_change) / spread)


def volume_rank_score(rank: int, total: int) -> Decimal:
    """Score by volume rank: (N - rank + 1) / N, rank 1 scores 1."""
    if total <= 0:
        return ZERO
    return clamp_unit(Decimal(total - rank + 1) / Decimal(total))


def volatility_spread(min_volatility: Decimal, max_volatility: Decimal) -> Decimal:
    """Bell-curve spread for the period: a quarter of the range, floored at 0.01."""
    return max((max_volatility - min_volatility) / Decimal(4), MIN_VOLATILITY_SPREAD)


def volatility_score(volatility: Decimal, mean: Decimal, spread: Decimal) -> Decimal:
    """Gaussian bell centred on the period mean volatility.

    Formula: exp(-(v - mean)^2 / (2 * spread^2)). A zero spread scores 1.
    """
    if spread <= ZERO:
        return ONE
    exponent = -((volatility - mean) ** 2) / (Decimal(2) * spread * spread)
    return clamp_unit(exponent.exp())


def funding_rate_score(funding_rate: Decimal | None) -> Decimal:
    """Map a funding rate from [-2%, +2%] to [0, 1], clamped.

    Higher funding scores higher: shorts collect positive funding.
    Missing data scores the neutral 0.5.
    """
    if funding_rate is None or not funding_rate.is_finite():
        return NEUTRAL_FUNDING_SCORE
    pct = funding_rate * Decimal(100)
    return clamp_unit((pct - _FUNDING_FLOOR_PCT) / _FUNDING_SPAN_PCT)


def compute_composite_score(
    price_change: Decimal,
    volume: Decimal,
    volatility: Decimal,
    funding_rate: Decimal,
    weights: dict[str, Decimal],
) -> Decimal:
    """Weighted linear combination of the four component scores.

    Formula:
        score = weights["price_change"] * price_change
              + weights["volume"] * volume
              + weights["volatility"] * volatility
              + weights["funding_rate"] * funding_rate

    Args:
        price_change: Price change score (0-1).
        volume: Volume rank score (0-1).
        volatility: Volatility bell score (0-1).
        funding_rate: Funding rate score (0-1).
        weights: Dict with keys "price_change", "volume", "volatility", "funding_rate".

    Returns:
        Composite score. In [0, 1] when the weights sum to 1.
    """
    return (
        weights["price_change"] * price_change
        + weights["volume"] * volume
        + weights["volatility"] * volatility
        + weights["funding_rate"] * funding_rate
    )
