"""
Protected Vault: the guarded operations the sentinel defends.

A small in-memory ledger: deposits, withdrawals, borrowing against a deposit,
repayment, trades and liquidation of an under-collateralised borrower. Every
operation first checks the global pause capability, then its own ledger
preconditions, and only then passes through the access gate. A call that
fails its preconditions is never counted in the burst window.
"""

import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Optional

from .access_gate import AccessGate
from .errors import InsufficientBalance, SystemPaused
from .models import OperationKind

logger = logging.getLogger(__name__)

MAX_BORROW_RATIO = 0.5  # borrow up to 50% of deposits


@dataclass
class LedgerEntry:
    event: str       # Deposited, Withdrawn, Traded, Borrowed, Repaid, Liquidated
    account: str
    amount: float
    timestamp: float


class ProtectedVault:
    """Ledger whose mutations are admitted by an AccessGate."""

    def __init__(self, gate: AccessGate, activity_size: int = 200) -> None:
        self.gate = gate
        self.paused = False
        self._lock = threading.Lock()
        self._balances: dict[str, float] = defaultdict(float)
        self._debts: dict[str, float] = defaultdict(float)
        self._trades: list[dict[str, Any]] = []
        self._activity: deque[LedgerEntry] = deque(maxlen=activity_size)
        self.total_deposits = 0.0

    # ── Pause capability ──────────────────────────────────────────────────────

    def emergency_pause(self) -> None:
        self.paused = True
        logger.warning("Vault paused")

    def unpause(self) -> None:
        self.paused = False
        logger.info("Vault unpaused")

    def _check_open(self) -> None:
        if self.paused:
            raise SystemPaused("vault is paused")

    def _record(self, event: str, account: str, amount: float) -> None:
        self._activity.append(
            LedgerEntry(event, account, amount, self.gate.sentinel.clock())
        )

    @staticmethod
    def _positive(amount: float) -> float:
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {amount}")
        return amount

    # ── Operations ────────────────────────────────────────────────────────────

    def deposit(self, account: str, amount: float) -> float:
        self._positive(amount)
        self._check_open()
        with self._lock:
            self.gate.require(OperationKind.DEPOSIT)
            self._balances[account] += amount
            self.total_deposits += amount
            self._record("Deposited", account, amount)
            logger.info(f"Deposited {amount} for {account}")
            return self._balances[account]

    def withdraw(self, account: str, amount: float) -> float:
        self._positive(amount)
        self._check_open()
        with self._lock:
            if self._balances[account] < amount:
                raise InsufficientBalance(
                    f"{account} holds {self._balances[account]}, cannot withdraw {amount}"
                )
            self.gate.require(OperationKind.WITHDRAW)
            self._balances[account] -= amount
            self.total_deposits -= amount
            self._record("Withdrawn", account, amount)
            logger.info(f"Withdrawn {amount} for {account}")
            return self._balances[account]

    def trade(self, account: str, pair: str, amount: float) -> dict[str, Any]:
        self._positive(amount)
        self._check_open()
        with self._lock:
            self.gate.require(OperationKind.TRADE)
            record = {"account": account, "pair": pair, "amount": amount}
            self._trades.append(record)
            self._record("Traded", account, amount)
            logger.info(f"Trade {pair} x{amount} for {account}")
            return record

    def borrow(self, account: str, amount: float) -> float:
        self._positive(amount)
        self._check_open()
        with self._lock:
            limit = self._balances[account] * MAX_BORROW_RATIO
            if self._debts[account] + amount > limit:
                raise InsufficientBalance(
                    f"{account} may borrow up to {limit - self._debts[account]}"
                )
            self.gate.require(OperationKind.BORROW)
            self._debts[account] += amount
            self._record("Borrowed", account, amount)
            logger.info(f"Borrowed {amount} for {account}")
            return self._debts[account]

    def repay(self, account: str, amount: float) -> float:
        self._positive(amount)
        self._check_open()
        with self._lock:
            self.gate.require(OperationKind.REPAY)
            self._debts[account] = max(0.0, self._debts[account] - amount)
            self._record("Repaid", account, amount)
            logger.info(f"Repaid {amount} for {account}")
            return self._debts[account]

    def liquidate(self, account: str) -> float:
        """Seize the collateral of a borrower above the borrow ratio."""
        self._check_open()
        with self._lock:
            debt = self._debts[account]
            if debt == 0 or debt <= self._balances[account] * MAX_BORROW_RATIO:
                raise ValueError(f"{account} is not liquidatable")
            self.gate.require(OperationKind.LIQUIDATE)
            seized = self._balances[account]
            self.total_deposits -= seized
            self._balances[account] = 0.0
            self._debts[account] = 0.0
            self._record("Liquidated", account, seized)
            logger.warning(f"Liquidated {account}: seized {seized} against debt {debt}")
            return seized

    # ── Queries ───────────────────────────────────────────────────────────────

    def balance_of(self, account: str) -> float:
        return self._balances.get(account, 0.0)

    def debt_of(self, account: str) -> float:
        return self._debts.get(account, 0.0)

    def activity(self, account: Optional[str] = None) -> list[LedgerEntry]:
        """Completed ledger operations, oldest first."""
        with self._lock:
            entries = list(self._activity)
        if account is None:
            return entries
        return [e for e in entries if e.account == account]
