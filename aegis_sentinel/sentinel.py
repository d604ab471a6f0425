"""
Aegis Sentinel: the single owner of all mutable risk state.

Score, block set, burst windows, last analyzed price/time and the runtime
risk parameters live here behind one re-entrant lock. Every mutation is a
whole-state transaction: values are computed first, then committed
together, so no caller ever sees a score without its matching block set.

Events raised inside a transaction are buffered and only published (added to
the history and handed to listeners) once the transaction has committed. A
transaction that raises publishes nothing.
"""

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Union

from pydantic import ValidationError

from .burst_detector import BurstDetector
from .errors import InvalidParameter, InvalidScore, PriceUnavailable
from .gate_policy import GatePolicy, Tier
from .models import (
    BlockSet,
    OperationBlockedEvent,
    OperationKind,
    OperationUnblockedEvent,
    PriceSample,
    RiskParams,
    RiskUpdatedEvent,
    SentinelEvent,
    SentinelSnapshot,
    TriggerReason,
    empty_block_set,
)
from .price_feed import PriceSampler
from .risk_engine import RiskAssessment, RiskEngine, price_deviation

logger = logging.getLogger(__name__)

Listener = Callable[[SentinelEvent], Any]


class AegisSentinel:
    """Risk state, analysis and administration behind one lock."""

    def __init__(
        self,
        price_feed: PriceSampler,
        params: Optional[RiskParams] = None,
        clock: Callable[[], float] = time.time,
        max_price_age_seconds: float = 3600,
        history_size: int = 200,
        engine: Optional[RiskEngine] = None,
        policy: Optional[GatePolicy] = None,
    ) -> None:
        self.price_feed = price_feed
        self.clock = clock
        self.max_price_age_seconds = max_price_age_seconds
        self.engine = engine or RiskEngine()
        self.policy = policy or GatePolicy()

        self._params = params or RiskParams()
        self._bursts = BurstDetector(
            self._params.burst_window_seconds, self._params.burst_threshold
        )
        self._lock = threading.RLock()
        self._pending: list[SentinelEvent] = []
        self._pending_active = False
        self._history: deque[SentinelEvent] = deque(maxlen=history_size)
        self._listeners: list[Listener] = []

        seed = self._read_price(self.clock())
        self._score = 0
        self._blocked: BlockSet = empty_block_set()
        self._last_price = seed.price
        self._last_analyzed_at = self.clock()
        self._last_deviation = 0
        self._last_trigger: Optional[TriggerReason] = None

        logger.info(
            "Sentinel initialised",
            extra={"seed_price": seed.price, "params": self._params.model_dump()},
        )

    # ── Transactions ──────────────────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator["AegisSentinel"]:
        """Hold the state lock; publish buffered events on clean exit."""
        with self._lock:
            outer = not self._pending_active
            if outer:
                self._pending_active = True
                self._pending = []
            try:
                yield self
            except BaseException:
                if outer:
                    self._pending = []
                raise
            else:
                if outer:
                    self._publish()
            finally:
                if outer:
                    self._pending_active = False

    def _publish(self) -> None:
        # Listeners may call back in; their events land in _pending and are
        # drained after the current batch.
        while self._pending:
            events, self._pending = self._pending, []
            for event in events:
                self._history.append(event)
                for listener in list(self._listeners):
                    try:
                        listener(event)
                    except Exception:
                        logger.exception(f"Event listener failed on {event.event}")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ── Price input ───────────────────────────────────────────────────────────

    def _read_price(self, now: float) -> PriceSample:
        sample = self.price_feed.latest()
        if sample.is_stale(now, self.max_price_age_seconds):
            logger.warning(
                f"Rejecting stale price sample ({sample.age(now):.0f}s old, "
                f"price={sample.price})"
            )
            raise PriceUnavailable(
                f"price sample is stale ({sample.age(now):.0f}s old)"
            )
        return sample

    # ── Evaluation ────────────────────────────────────────────────────────────

    def analyze(self, trigger: TriggerReason = TriggerReason.MANUAL) -> RiskAssessment:
        """Score the current price and bursts, then re-gate every operation.

        Raises PriceUnavailable, with no state change, when the price source
        fails or returns a stale sample.
        """
        sample = self._read_price(self.clock())

        with self.transaction():
            now = self.clock()
            assessment = self.engine.assess(
                current_price=sample.price,
                last_price=self._last_price,
                burst_counts=self._bursts.snapshot(now),
                params=self._params,
            )
            self._commit(
                score=assessment.score,
                deviation=assessment.deviation,
                trigger=trigger,
                now=now,
                price=sample.price,
                assessment=assessment,
            )
        return assessment

    def simulate_attack(self, score: int) -> None:
        """Force the score (0-100) and re-gate, skipping the price read."""
        if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100:
            raise InvalidScore(score)
        with self.transaction():
            self._commit(score=score, deviation=0, trigger=TriggerReason.SIMULATED, now=self.clock())
        logger.warning(f"Simulated attack applied: risk score forced to {score}")

    def reset_risk(self) -> None:
        """Drop the score to zero, unblock everything and clear burst windows."""
        with self.transaction():
            self._bursts.reset()
            self._commit(score=0, deviation=0, trigger=TriggerReason.RESET, now=self.clock())
        logger.info("Risk reset to 0")

    def _commit(
        self,
        score: int,
        deviation: int,
        trigger: TriggerReason,
        now: float,
        price: Optional[float] = None,
        assessment: Optional[RiskAssessment] = None,
    ) -> None:
        target = self.policy.recompute(score)
        changes = self.policy.transitions(self._blocked, target)
        updated = RiskUpdatedEvent(
            timestamp=now,
            new_score=score,
            deviation=deviation,
            trigger=trigger,
            price_points=assessment.price_points if assessment else 0,
            burst_points=assessment.burst_points if assessment else 0,
            bursting=assessment.bursting if assessment else [],
        )

        previous = self._score
        self._score = score
        self._blocked = target
        self._last_analyzed_at = now
        self._last_deviation = deviation
        self._last_trigger = trigger
        if price is not None:
            self._last_price = price

        self._pending.append(updated)
        self._record_transitions(changes, now)

        log = logger.warning if score > previous else logger.info
        log(
            f"Risk updated {previous} -> {score} ({Tier.from_score(score).value})",
            extra={"trigger": trigger.value, "deviation": deviation},
        )

    def _record_transitions(
        self,
        changes: list[tuple[OperationKind, bool]],
        now: float,
        name: Optional[str] = None,
    ) -> None:
        for kind, blocked in changes:
            label = name or kind.label
            if blocked:
                self._pending.append(OperationBlockedEvent(
                    timestamp=now, selector=kind.selector_hex, name=label, score=self._score,
                ))
                logger.warning(f"Operation blocked: {label} at risk {self._score}")
            else:
                self._pending.append(OperationUnblockedEvent(
                    timestamp=now, selector=kind.selector_hex, name=label,
                ))
                logger.info(f"Operation unblocked: {label}")

    # ── Burst accounting (called by the access gate under the lock) ───────────

    def record_call(self, kind: OperationKind, now: float) -> int:
        with self._lock:
            return self._bursts.record_call(kind, now)

    def burst_count(self, kind: OperationKind, now: Optional[float] = None) -> int:
        with self._lock:
            return self._bursts.count_in_window(kind, self.clock() if now is None else now)

    # ── Administration ────────────────────────────────────────────────────────

    def set_blocked_manually(
        self,
        operation: Union[OperationKind, bytes, str],
        name: Optional[str],
        blocked: bool,
    ) -> None:
        """Force one kind's flag. The next analysis overwrites it."""
        kind = OperationKind.resolve(operation)
        with self.transaction():
            if self._blocked[kind] == blocked:
                return
            self._blocked = {**self._blocked, kind: blocked}
            self._record_transitions([(kind, blocked)], self.clock(), name=name)
        logger.warning(f"Manual override: {kind.label} blocked={blocked}")

    def set_price_threshold(self, pct: int) -> None:
        self._update_params(price_threshold_pct=pct)

    def set_burst_params(self, window_seconds: int, threshold: int) -> None:
        self._update_params(burst_window_seconds=window_seconds, burst_threshold=threshold)

    def set_evaluation_interval(self, seconds: int) -> None:
        self._update_params(evaluation_interval_seconds=seconds)

    def update_params(self, **changes: Any) -> RiskParams:
        return self._update_params(**changes)

    def _update_params(self, **changes: Any) -> RiskParams:
        unknown = set(changes) - set(RiskParams.model_fields)
        if unknown:
            raise InvalidParameter(f"unknown parameter(s): {', '.join(sorted(unknown))}")
        with self.transaction():
            try:
                params = RiskParams(**{**self._params.model_dump(), **changes})
            except ValidationError as e:
                raise InvalidParameter(str(e)) from e
            self._params = params
            self._bursts.reconfigure(params.burst_window_seconds, params.burst_threshold)
        logger.info("Risk parameters updated", extra={"changes": changes})
        return params

    # ── Queries ───────────────────────────────────────────────────────────────

    def current_score(self) -> int:
        with self._lock:
            return self._score

    def tier(self) -> Tier:
        with self._lock:
            return self.policy.tier_for(self._score)

    def is_blocked(self, operation: Union[OperationKind, bytes, str]) -> bool:
        kind = OperationKind.resolve(operation)
        with self._lock:
            return self._blocked[kind]

    def last_analyzed_at(self) -> float:
        with self._lock:
            return self._last_analyzed_at

    def last_price(self) -> float:
        with self._lock:
            return self._last_price

    def params(self) -> RiskParams:
        with self._lock:
            return self._params

    def blocked_operations(self) -> frozenset[OperationKind]:
        with self._lock:
            return frozenset(k for k, v in self._blocked.items() if v)

    def block_set(self) -> BlockSet:
        with self._lock:
            return dict(self._blocked)

    def events(self, limit: Optional[int] = None) -> list[SentinelEvent]:
        with self._lock:
            events = list(self._history)
        return events[-limit:] if limit else events

    def current_deviation(self) -> int:
        """Read-only deviation of the live price from the last analyzed one."""
        sample = self._read_price(self.clock())
        with self._lock:
            return price_deviation(sample.price, self._last_price)

    def snapshot(self) -> SentinelSnapshot:
        with self._lock:
            return SentinelSnapshot(
                score=self._score,
                tier=self.policy.tier_for(self._score).value,
                deviation=self._last_deviation,
                last_price=self._last_price,
                last_analyzed_at=self._last_analyzed_at,
                blocked={k.label: v for k, v in self._blocked.items()},
                params=self._params,
                last_trigger=self._last_trigger,
            )
