"""
Evaluation Trigger: decides when the sentinel must re-run its analysis.

Follows the keeper "check / perform" split: check_upkeep() is a read-only
due-check, perform_upkeep() runs the analysis if the check still holds.
Scheduling belongs to the host (see keeper.py); nothing here sleeps or
spawns work.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import PriceUnavailable
from .models import TriggerReason
from .risk_engine import RiskAssessment
from .sentinel import AegisSentinel

logger = logging.getLogger(__name__)


class TriggerState(str, Enum):
    IDLE = "idle"
    EVALUATION_DUE = "evaluation_due"


@dataclass
class UpkeepCheck:
    needed: bool
    reason: Optional[str]    # "interval" or "deviation"
    deviation: Optional[int]  # None when the price could not be read
    elapsed: float


class EvaluationTrigger:
    """Interval- and spike-driven due-check over an AegisSentinel."""

    def __init__(self, sentinel: AegisSentinel) -> None:
        self.sentinel = sentinel

    def check_upkeep(self, now: Optional[float] = None) -> UpkeepCheck:
        s = self.sentinel
        now = s.clock() if now is None else now
        params = s.params()
        elapsed = now - s.last_analyzed_at()

        deviation: Optional[int] = None
        try:
            deviation = s.current_deviation()
        except PriceUnavailable as e:
            logger.warning(f"Upkeep check without price signal: {e}")

        if elapsed >= params.evaluation_interval_seconds:
            return UpkeepCheck(True, "interval", deviation, elapsed)
        if deviation is not None and deviation >= params.price_threshold_pct:
            return UpkeepCheck(True, "deviation", deviation, elapsed)
        return UpkeepCheck(False, None, deviation, elapsed)

    @property
    def state(self) -> TriggerState:
        if self.check_upkeep().needed:
            return TriggerState.EVALUATION_DUE
        return TriggerState.IDLE

    def perform_upkeep(self) -> Optional[RiskAssessment]:
        """Run an automatic analysis if one is due; None otherwise."""
        check = self.check_upkeep()
        if not check.needed:
            return None
        logger.info(
            f"Upkeep due ({check.reason}), running analysis",
            extra={"elapsed": round(check.elapsed, 1), "deviation": check.deviation},
        )
        return self.sentinel.analyze(trigger=TriggerReason.AUTO)
