import threading

import pytest

from aegis_sentinel import AegisSentinel, StaticPriceFeed
from aegis_sentinel.errors import InvalidParameter, InvalidScore, PriceUnavailable, UnknownOperation
from aegis_sentinel.gate_policy import Tier
from aegis_sentinel.models import OperationKind, TriggerReason


def event_names(events):
    return [(e.event, getattr(e, "name", None)) for e in events]


def test_starts_clear(sentinel, clock):
    assert sentinel.current_score() == 0
    assert sentinel.tier() is Tier.CLEAR
    assert sentinel.blocked_operations() == frozenset()
    assert sentinel.last_analyzed_at() == clock.now
    assert sentinel.last_price() == 2000.0


def test_seed_requires_price(clock):
    feed = StaticPriceFeed(2000.0, clock=clock)
    feed.set_unavailable()

    with pytest.raises(PriceUnavailable):
        AegisSentinel(feed, clock=clock)


def test_simulate_attack_blocks_dangerous_operations(sentinel):
    sentinel.simulate_attack(85)

    assert sentinel.current_score() == 85
    assert sentinel.is_blocked(OperationKind.WITHDRAW)
    assert sentinel.is_blocked(OperationKind.LIQUIDATE)
    assert not sentinel.is_blocked(OperationKind.DEPOSIT)
    assert not sentinel.is_blocked(OperationKind.REPAY)


def test_simulate_attack_rejects_invalid_score(sentinel):
    with pytest.raises(InvalidScore):
        sentinel.simulate_attack(101)
    with pytest.raises(InvalidScore):
        sentinel.simulate_attack(-5)

    assert sentinel.current_score() == 0
    assert sentinel.events() == []


def test_reset_unblocks_everything(sentinel, gate, clock):
    for _ in range(7):
        gate.enter(OperationKind.WITHDRAW)
    sentinel.simulate_attack(85)

    sentinel.reset_risk()

    assert sentinel.current_score() == 0
    assert sentinel.blocked_operations() == frozenset()
    assert sentinel.burst_count(OperationKind.WITHDRAW) == 0
    assert sentinel.snapshot().last_trigger is TriggerReason.RESET


def test_analyze_price_jump(sentinel, feed):
    feed.set_price(2400.0)

    out = sentinel.analyze()

    assert out.deviation == 20
    assert out.score >= 40
    assert sentinel.current_score() == out.score
    assert sentinel.is_blocked(OperationKind.TRADE)
    assert sentinel.last_price() == 2400.0


def test_burst_raises_score_by_ten(sentinel, gate):
    for _ in range(6):
        gate.enter(OperationKind.WITHDRAW)
    assert sentinel.analyze().score == 10

    gate.enter(OperationKind.WITHDRAW)
    assert sentinel.analyze().score == 10


def test_burst_expires_with_window(sentinel, gate, clock):
    for _ in range(6):
        gate.enter(OperationKind.TRADE)
    clock.advance(61)

    assert sentinel.analyze().score == 0


def test_price_unavailable_leaves_state_untouched(sentinel, feed, clock):
    sentinel.simulate_attack(50)
    before = sentinel.snapshot()
    events_before = len(sentinel.events())
    clock.advance(30)
    feed.set_unavailable()

    with pytest.raises(PriceUnavailable):
        sentinel.analyze()

    assert sentinel.snapshot() == before
    assert len(sentinel.events()) == events_before


def test_stale_price_is_rejected(sentinel, feed, clock):
    feed.set_price(2600.0, updated_at=clock.now - 4000)

    with pytest.raises(PriceUnavailable):
        sentinel.analyze()

    assert sentinel.last_price() == 2000.0
    assert sentinel.current_score() == 0


def test_events_emitted_on_transitions_only(sentinel):
    sentinel.simulate_attack(85)

    assert event_names(sentinel.events()) == [
        ("RiskUpdated", None),
        ("OperationBlocked", "withdraw"),
        ("OperationBlocked", "trade"),
        ("OperationBlocked", "borrow"),
        ("OperationBlocked", "liquidate"),
    ]

    sentinel.simulate_attack(85)
    assert event_names(sentinel.events()[5:]) == [("RiskUpdated", None)]

    sentinel.simulate_attack(50)
    assert event_names(sentinel.events()[6:]) == [
        ("RiskUpdated", None),
        ("OperationUnblocked", "withdraw"),
        ("OperationUnblocked", "borrow"),
        ("OperationUnblocked", "liquidate"),
    ]


def test_blocked_event_carries_selector_and_score(sentinel):
    sentinel.simulate_attack(72)

    blocked = [e for e in sentinel.events() if e.event == "OperationBlocked"]

    assert blocked[0].selector == OperationKind.WITHDRAW.selector_hex
    assert all(e.score == 72 for e in blocked)


def test_risk_updated_records_trigger(sentinel, feed):
    feed.set_price(2200.0)
    sentinel.analyze(trigger=TriggerReason.MANUAL)

    update = sentinel.events()[0]

    assert update.trigger is TriggerReason.MANUAL
    assert update.deviation == 10
    assert update.new_score == 40


def test_listeners_receive_events_after_commit(sentinel):
    seen = []
    unsubscribe = sentinel.subscribe(lambda e: seen.append((e.event, sentinel.current_score())))

    sentinel.simulate_attack(45)
    unsubscribe()
    sentinel.simulate_attack(10)

    assert seen == [("RiskUpdated", 45), ("OperationBlocked", 45)]


def test_failing_listener_does_not_break_analysis(sentinel):
    def boom(event):
        raise RuntimeError("listener down")

    sentinel.subscribe(boom)
    sentinel.simulate_attack(90)

    assert sentinel.current_score() == 90


def test_manual_override_is_not_sticky(sentinel):
    sentinel.set_blocked_manually(OperationKind.DEPOSIT, "deposit", True)
    assert sentinel.is_blocked(OperationKind.DEPOSIT)

    sentinel.analyze()

    assert not sentinel.is_blocked(OperationKind.DEPOSIT)


def test_manual_override_by_selector(sentinel):
    selector = OperationKind.BORROW.selector_hex

    sentinel.set_blocked_manually(selector, "borrow", True)
    sentinel.set_blocked_manually(selector, "borrow", True)

    assert sentinel.is_blocked(selector)
    assert event_names(sentinel.events()) == [("OperationBlocked", "borrow")]


def test_manual_override_unknown_selector(sentinel):
    with pytest.raises(UnknownOperation):
        sentinel.set_blocked_manually("0xdeadbeef", "nope", True)


def test_price_threshold_update_changes_scoring(sentinel, feed):
    feed.set_price(2100.0)  # 5%
    sentinel.set_price_threshold(7)

    assert sentinel.analyze().score == 0

    sentinel.set_price_threshold(5)
    feed.set_price(2226.0)  # 6% from the new last price
    assert sentinel.analyze().score == 18


def test_invalid_params_rejected(sentinel):
    before = sentinel.params()

    with pytest.raises(InvalidParameter):
        sentinel.set_burst_params(0, 5)
    with pytest.raises(InvalidParameter):
        sentinel.set_evaluation_interval(0)
    with pytest.raises(InvalidParameter):
        sentinel.update_params(bogus=1)

    assert sentinel.params() == before


def test_burst_params_apply_to_detector(sentinel, gate):
    sentinel.set_burst_params(window_seconds=30, threshold=2)

    for _ in range(3):
        gate.enter(OperationKind.BORROW)

    assert sentinel.analyze().score == 10


def test_simulate_attack_rejects_bool(sentinel):
    with pytest.raises(InvalidScore):
        sentinel.simulate_attack(True)

    assert sentinel.current_score() == 0


def test_listener_callback_events_are_recorded(sentinel):
    def block_deposits(event):
        if event.event == "OperationBlocked" and event.name == "trade":
            sentinel.set_blocked_manually(OperationKind.DEPOSIT, "deposit", True)

    sentinel.subscribe(block_deposits)
    sentinel.simulate_attack(45)

    assert sentinel.is_blocked(OperationKind.DEPOSIT)
    assert event_names(sentinel.events()) == [
        ("RiskUpdated", None),
        ("OperationBlocked", "trade"),
        ("OperationBlocked", "deposit"),
    ]

    sentinel.simulate_attack(45)
    assert event_names(sentinel.events()[3:]) == [
        ("RiskUpdated", None),
        ("OperationUnblocked", "deposit"),
    ]


def test_concurrent_callers_see_consistent_state(sentinel, gate):
    allowed = []
    mismatches = []

    def caller():
        n = 0
        for _ in range(200):
            if gate.enter(OperationKind.WITHDRAW).allowed:
                n += 1
        allowed.append(n)

    def admin():
        for i in range(100):
            sentinel.simulate_attack((i * 37) % 101)
            sentinel.analyze()

    def watcher():
        for _ in range(300):
            snap = sentinel.snapshot()
            expected = sentinel.policy.recompute(snap.score)
            if snap.blocked != {k.label: v for k, v in expected.items()}:
                mismatches.append(snap)
            if snap.tier != Tier.from_score(snap.score).value:
                mismatches.append(snap)

    threads = [threading.Thread(target=caller) for _ in range(4)]
    threads += [threading.Thread(target=admin), threading.Thread(target=watcher)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(allowed) == 4
    assert mismatches == []
    assert sentinel.block_set() == sentinel.policy.recompute(sentinel.current_score())
    assert sentinel.burst_count(OperationKind.WITHDRAW) == sum(allowed)
