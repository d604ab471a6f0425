"""Error kinds raised by the sentinel core and its collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import OperationKind


class SentinelError(Exception):
    """Base class for every error the sentinel signals to its caller."""


class OperationBlocked(SentinelError):
    """A guarded operation was attempted while its kind is blocked."""

    def __init__(self, kind: OperationKind, score: int) -> None:
        self.kind = kind
        self.score = score
        super().__init__(
            f"{kind.label} blocked due to elevated risk (score={score})"
        )


class SystemPaused(SentinelError):
    """The vault is under an emergency pause."""


class InvalidScore(SentinelError, ValueError):
    """An administrative score outside [0, 100]."""

    def __init__(self, score: int) -> None:
        self.score = score
        super().__init__(f"risk score must be within 0-100, got {score}")


class InvalidParameter(SentinelError, ValueError):
    """A risk parameter update with an out-of-range value."""


class UnknownOperation(SentinelError, KeyError):
    """An identifier or name that maps to no operation kind."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "unknown operation"


class PriceUnavailable(SentinelError):
    """The price source could not supply a usable sample."""


class Unauthorized(SentinelError):
    """The caller lacks the administrative capability."""


class InsufficientBalance(SentinelError, ValueError):
    """A vault debit larger than the account balance."""
