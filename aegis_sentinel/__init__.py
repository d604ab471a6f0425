from .access_gate import AccessGate, GateDecision, Verdict
from .errors import (
    InvalidParameter,
    InvalidScore,
    OperationBlocked,
    PriceUnavailable,
    SentinelError,
    SystemPaused,
    Unauthorized,
    UnknownOperation,
)
from .evaluation_trigger import EvaluationTrigger, TriggerState, UpkeepCheck
from .gate_policy import GatePolicy, Tier
from .models import OperationKind, PriceSample, RiskParams, TriggerReason
from .price_feed import HttpPriceFeed, StaticPriceFeed
from .risk_engine import RiskAssessment, RiskEngine
from .sentinel import AegisSentinel

__all__ = [
    "AccessGate",
    "AegisSentinel",
    "EvaluationTrigger",
    "GateDecision",
    "GatePolicy",
    "HttpPriceFeed",
    "InvalidParameter",
    "InvalidScore",
    "OperationBlocked",
    "OperationKind",
    "PriceSample",
    "PriceUnavailable",
    "RiskAssessment",
    "RiskEngine",
    "RiskParams",
    "SentinelError",
    "StaticPriceFeed",
    "SystemPaused",
    "Tier",
    "TriggerReason",
    "TriggerState",
    "Unauthorized",
    "UnknownOperation",
    "UpkeepCheck",
    "Verdict",
]
