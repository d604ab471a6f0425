"""
Risk Engine: combines the price-deviation and call-burst signals into a
single 0-100 risk score.

Signal Sources:
1. Price deviation: move between the last analyzed price and the current
   sample, capped at 60 points
2. Call bursts: 10 points for each dangerous operation kind called more
   often than the burst threshold inside the current window, capped at 40

The engine is pure: it never touches sentinel state. Committing a score,
recomputing the block set and emitting events is done by the sentinel.
"""

import logging
import math
from dataclasses import dataclass, field

from .models import DANGEROUS_OPERATIONS, OperationKind, RiskParams

logger = logging.getLogger(__name__)

MAX_SCORE = 100
MAX_PRICE_POINTS = 60
MAJOR_PRICE_POINTS = 40
MAX_BURST_POINTS = 40
POINTS_PER_BURST = 10

SEVERE_DEVIATION_PCT = 20
MAJOR_DEVIATION_PCT = 10
DEVIATION_MULTIPLIER = 3


@dataclass
class RiskAssessment:
    """Outcome of one scoring pass and the reasons behind it."""
    score: int               # 0–100
    deviation: int           # whole percent
    price_points: int
    burst_points: int
    bursting: list[OperationKind] = field(default_factory=list)


def price_deviation(current_price: float, last_price: float) -> int:
    """Absolute move from last_price in whole percent, floored."""
    if not last_price or last_price <= 0:
        return 0
    return math.floor(abs(current_price - last_price) * 100 / last_price)


class RiskEngine:
    """Scores price and burst signals into a bounded risk level."""

    def price_points(self, deviation: int, threshold_pct: int) -> int:
        if deviation >= SEVERE_DEVIATION_PCT:
            return MAX_PRICE_POINTS
        if deviation >= MAJOR_DEVIATION_PCT:
            return MAJOR_PRICE_POINTS
        if deviation >= threshold_pct:
            return min(deviation * DEVIATION_MULTIPLIER, MAX_PRICE_POINTS)
        return 0

    def burst_points(
        self,
        burst_counts: dict[OperationKind, int],
        threshold: int,
    ) -> tuple[int, list[OperationKind]]:
        bursting = sorted(
            (k for k in DANGEROUS_OPERATIONS if burst_counts.get(k, 0) > threshold),
            key=lambda k: k.value,
        )
        return min(len(bursting) * POINTS_PER_BURST, MAX_BURST_POINTS), bursting

    def assess(
        self,
        current_price: float,
        last_price: float,
        burst_counts: dict[OperationKind, int],
        params: RiskParams,
    ) -> RiskAssessment:
        deviation = price_deviation(current_price, last_price)
        price_pts = self.price_points(deviation, params.price_threshold_pct)
        burst_pts, bursting = self.burst_points(burst_counts, params.burst_threshold)
        score = min(price_pts + burst_pts, MAX_SCORE)

        logger.debug(
            f"Assessed risk {score}: deviation={deviation}% "
            f"price={price_pts} burst={burst_pts}"
        )
        return RiskAssessment(
            score=score,
            deviation=deviation,
            price_points=price_pts,
            burst_points=burst_pts,
            bursting=bursting,
        )
