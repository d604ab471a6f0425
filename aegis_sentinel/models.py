"""Domain models for the Aegis Sentinel."""

from __future__ import annotations

import time
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field
from web3 import Web3

from .errors import UnknownOperation


# ── Enums ──────────────────────────────────────────────────────────────────────

class OperationKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRADE = "trade"
    BORROW = "borrow"
    REPAY = "repay"
    LIQUIDATE = "liquidate"

    @property
    def label(self) -> str:
        return self.value

    @property
    def signature(self) -> str:
        return OPERATION_SIGNATURES[self]

    @property
    def selector(self) -> bytes:
        return _SELECTORS[self]

    @property
    def selector_hex(self) -> str:
        return "0x" + self.selector.hex()

    @property
    def dangerous(self) -> bool:
        return self in DANGEROUS_OPERATIONS

    @classmethod
    def from_selector(cls, selector: Union[bytes, str]) -> OperationKind:
        """Look up a kind by its 4-byte identifier (raw or 0x-hex)."""
        if isinstance(selector, str):
            try:
                selector = bytes.fromhex(selector.removeprefix("0x"))
            except ValueError:
                raise UnknownOperation(f"malformed selector {selector!r}") from None
        try:
            return _BY_SELECTOR[bytes(selector)]
        except KeyError:
            raise UnknownOperation(f"no operation for selector 0x{bytes(selector).hex()}") from None

    @classmethod
    def resolve(cls, ident: Union[OperationKind, bytes, str]) -> OperationKind:
        """Accept a kind, a selector, or an operation name."""
        if isinstance(ident, OperationKind):
            return ident
        if isinstance(ident, bytes) or ident.startswith("0x"):
            return cls.from_selector(ident)
        try:
            return cls(ident.lower())
        except ValueError:
            raise UnknownOperation(f"no operation named {ident!r}") from None


class TriggerReason(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    SIMULATED = "simulated"
    RESET = "reset"


OPERATION_SIGNATURES: dict[OperationKind, str] = {
    OperationKind.DEPOSIT: "deposit()",
    OperationKind.WITHDRAW: "withdraw(uint256)",
    OperationKind.TRADE: "trade(string,uint256)",
    OperationKind.BORROW: "borrow(uint256)",
    OperationKind.REPAY: "repay(uint256)",
    OperationKind.LIQUIDATE: "liquidate(address)",
}

DANGEROUS_OPERATIONS: frozenset[OperationKind] = frozenset({
    OperationKind.WITHDRAW,
    OperationKind.TRADE,
    OperationKind.BORROW,
    OperationKind.LIQUIDATE,
})

# keccak256(signature)[:4], the same identifier an EVM dispatcher would use
_SELECTORS: dict[OperationKind, bytes] = {
    kind: bytes(Web3.keccak(text=sig)[:4]) for kind, sig in OPERATION_SIGNATURES.items()
}
_BY_SELECTOR: dict[bytes, OperationKind] = {sel: kind for kind, sel in _SELECTORS.items()}


BlockSet = dict[OperationKind, bool]


def empty_block_set() -> BlockSet:
    return {kind: False for kind in OperationKind}


# ── Market Data ────────────────────────────────────────────────────────────────

class PriceSample(BaseModel):
    price: float
    updated_at: float = Field(default_factory=time.time, description="Unix seconds")
    source: str = "unknown"

    def age(self, now: float) -> float:
        return max(0.0, now - self.updated_at)

    def is_stale(self, now: float, max_age_seconds: float) -> bool:
        return self.price <= 0 or self.age(now) > max_age_seconds


# ── Risk Parameters ────────────────────────────────────────────────────────────

class RiskParams(BaseModel):
    price_threshold_pct: int = Field(default=5, ge=1, le=100)
    burst_window_seconds: int = Field(default=60, ge=1)
    burst_threshold: int = Field(default=5, ge=1)
    evaluation_interval_seconds: int = Field(default=300, ge=1)

    @classmethod
    def from_settings(cls, settings) -> RiskParams:
        return cls(
            price_threshold_pct=settings.price_threshold_pct,
            burst_window_seconds=settings.burst_window_seconds,
            burst_threshold=settings.burst_threshold,
            evaluation_interval_seconds=settings.evaluation_interval_seconds,
        )


# ── Events ─────────────────────────────────────────────────────────────────────

class RiskUpdatedEvent(BaseModel):
    event: Literal["RiskUpdated"] = "RiskUpdated"
    timestamp: float
    new_score: int = Field(ge=0, le=100)
    deviation: int = Field(ge=0, description="Measured price deviation, whole percent")
    trigger: TriggerReason
    price_points: int = 0
    burst_points: int = 0
    bursting: list[OperationKind] = Field(default_factory=list)


class OperationBlockedEvent(BaseModel):
    event: Literal["OperationBlocked"] = "OperationBlocked"
    timestamp: float
    selector: str
    name: str
    score: int


class OperationUnblockedEvent(BaseModel):
    event: Literal["OperationUnblocked"] = "OperationUnblocked"
    timestamp: float
    selector: str
    name: str


SentinelEvent = Union[RiskUpdatedEvent, OperationBlockedEvent, OperationUnblockedEvent]


# ── Snapshots ──────────────────────────────────────────────────────────────────

class SentinelSnapshot(BaseModel):
    score: int
    tier: str
    deviation: int
    last_price: float
    last_analyzed_at: float
    blocked: dict[str, bool]
    params: RiskParams
    last_trigger: Optional[TriggerReason] = None
