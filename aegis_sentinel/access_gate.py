"""Access Gate: the enforcement point every guarded operation passes through."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import OperationBlocked
from .models import OperationKind
from .sentinel import AegisSentinel

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass
class GateDecision:
    verdict: Verdict
    kind: OperationKind
    score: int
    reason: Optional[str] = None  # "OperationBlocked" on deny
    calls_in_window: int = 0

    @property
    def allowed(self) -> bool:
        return self.verdict is Verdict.ALLOW


class AccessGate:
    """Admits or denies guarded operations against the current block set.

    Admitted calls are counted in the burst window; denied calls are not.
    Global pause and caller authorisation are checked before the gate.
    """

    def __init__(self, sentinel: AegisSentinel) -> None:
        self.sentinel = sentinel

    def enter(self, kind: OperationKind, now: Optional[float] = None) -> GateDecision:
        with self.sentinel.transaction() as s:
            now = s.clock() if now is None else now
            score = s.current_score()
            if s.is_blocked(kind):
                logger.info(f"Denied {kind.label} at risk {score}")
                return GateDecision(Verdict.DENY, kind, score, reason="OperationBlocked")
            count = s.record_call(kind, now)

        if kind.dangerous and count == s.params().burst_threshold + 1:
            logger.warning(
                f"Call burst on {kind.label}: {count} calls inside "
                f"{s.params().burst_window_seconds}s window"
            )
        return GateDecision(Verdict.ALLOW, kind, score, calls_in_window=count)

    def require(self, kind: OperationKind, now: Optional[float] = None) -> GateDecision:
        """Like enter(), but raises OperationBlocked on deny."""
        decision = self.enter(kind, now)
        if not decision.allowed:
            raise OperationBlocked(kind, decision.score)
        return decision
