import pytest

from aegis_sentinel.errors import InvalidScore
from aegis_sentinel.gate_policy import NEVER_BLOCKED, TIER_BLOCKS, GatePolicy, Tier
from aegis_sentinel.models import OperationKind

W, T, B, L = (
    OperationKind.WITHDRAW,
    OperationKind.TRADE,
    OperationKind.BORROW,
    OperationKind.LIQUIDATE,
)


def blocked(policy, score):
    return {kind for kind, flag in policy.recompute(score).items() if flag}


def test_tier_boundaries():
    assert Tier.from_score(0) is Tier.CLEAR
    assert Tier.from_score(39) is Tier.CLEAR
    assert Tier.from_score(40) is Tier.ELEVATED
    assert Tier.from_score(69) is Tier.ELEVATED
    assert Tier.from_score(70) is Tier.HIGH
    assert Tier.from_score(84) is Tier.HIGH
    assert Tier.from_score(85) is Tier.CRITICAL
    assert Tier.from_score(100) is Tier.CRITICAL


def test_tier_rejects_out_of_range():
    with pytest.raises(InvalidScore):
        Tier.from_score(101)
    with pytest.raises(InvalidScore):
        Tier.from_score(-1)


def test_block_sets_for_every_score():
    policy = GatePolicy()

    for score in range(0, 40):
        assert blocked(policy, score) == set()
    for score in range(40, 70):
        assert blocked(policy, score) == {T}
    for score in range(70, 85):
        assert blocked(policy, score) == {W, T, B}
    for score in range(85, 101):
        assert blocked(policy, score) == {W, T, B, L}


def test_deposit_and_repay_never_blocked():
    policy = GatePolicy()

    for score in range(0, 101):
        block_set = policy.recompute(score)
        assert block_set[OperationKind.DEPOSIT] is False
        assert block_set[OperationKind.REPAY] is False


def test_recompute_is_idempotent():
    policy = GatePolicy()

    first = policy.recompute(75)
    second = policy.recompute(75)

    assert first == second
    assert policy.transitions(first, second) == []


def test_transitions_report_only_changes():
    policy = GatePolicy()

    changes = policy.transitions(policy.recompute(50), policy.recompute(90))

    assert changes == [(W, True), (B, True), (L, True)]


def test_tier_table_is_complete():
    assert set(TIER_BLOCKS) == set(Tier)
    assert not any(blocked & NEVER_BLOCKED for blocked in TIER_BLOCKS.values())
