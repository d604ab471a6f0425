"""
Gate Policy: maps a risk score to the set of blocked operations.

Tier mapping:
  0–39    → Clear     (nothing blocked)
  40–69   → Elevated  (trade)
  70–84   → High      (withdraw, trade, borrow)
  85–100  → Critical  (withdraw, trade, borrow, liquidate)

Deposit and repay never appear in a tier's blocked set.
"""

from enum import Enum

from .errors import InvalidScore
from .models import BlockSet, OperationKind


class Tier(str, Enum):
    CLEAR = "clear"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_score(cls, score: int) -> "Tier":
        if not 0 <= score <= 100:
            raise InvalidScore(score)
        if score < 40:
            return cls.CLEAR
        if score < 70:
            return cls.ELEVATED
        if score < 85:
            return cls.HIGH
        return cls.CRITICAL


TIER_BLOCKS: dict[Tier, frozenset[OperationKind]] = {
    Tier.CLEAR: frozenset(),
    Tier.ELEVATED: frozenset({OperationKind.TRADE}),
    Tier.HIGH: frozenset({
        OperationKind.WITHDRAW,
        OperationKind.TRADE,
        OperationKind.BORROW,
    }),
    Tier.CRITICAL: frozenset({
        OperationKind.WITHDRAW,
        OperationKind.TRADE,
        OperationKind.BORROW,
        OperationKind.LIQUIDATE,
    }),
}

NEVER_BLOCKED: frozenset[OperationKind] = frozenset({
    OperationKind.DEPOSIT,
    OperationKind.REPAY,
})


class GatePolicy:
    """Deterministic tier → block-set mapping."""

    def tier_for(self, score: int) -> Tier:
        return Tier.from_score(score)

    def recompute(self, score: int) -> BlockSet:
        blocked = TIER_BLOCKS[self.tier_for(score)]
        return {kind: kind in blocked for kind in OperationKind}

    def transitions(self, current: BlockSet, target: BlockSet) -> list[tuple[OperationKind, bool]]:
        """Kinds whose flag changes, in declaration order, with their new flag."""
        return [
            (kind, target[kind])
            for kind in OperationKind
            if current.get(kind, False) != target[kind]
        ]
