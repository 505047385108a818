"""
Result values returned by forwarding cycle phases.

Each phase reports success, a failure worth retrying on the next tick, or a
fatal failure, instead of raising. The scheduler and the cycle branch on these.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


class Outcome(str, Enum):
    SUCCESS = "success"
    RETRIABLE = "retriable"
    FATAL = "fatal"


class CycleState(str, Enum):
    """States of one forwarding cycle, in the order they are visited."""
    CONNECTING = "connecting"
    LISTING_IDS = "listing_ids"
    FILTERING = "filtering"
    FETCHING = "fetching"
    SENDING = "sending"
    PERSISTING = "persisting"
    DONE = "done"
    RECONNECT_INBOUND = "reconnect_inbound"
    RECONNECT_OUTBOUND = "reconnect_outbound"


@dataclass
class PhaseResult(Generic[T]):
    outcome: Outcome
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "PhaseResult[T]":
        return cls(Outcome.SUCCESS, value=value)

    @classmethod
    def retry(cls, error: BaseException, value: Optional[T] = None) -> "PhaseResult[T]":
        return cls(Outcome.RETRIABLE, value=value, error=error)

    @classmethod
    def fatal(cls, error: BaseException) -> "PhaseResult[T]":
        return cls(Outcome.FATAL, error=error)

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS


@dataclass
class CycleResult:
    """Summary of one account's forwarding cycle."""
    account: str
    state: CycleState
    outcome: Outcome
    forwarded: int = 0
    failed: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS


def is_retriable(result: CycleResult) -> bool:
    """
    Retry policy: whether the account should simply be tried again next tick.

    Successful cycles with withheld messages are retriable too, since every
    unsent message stays eligible for the next cycle.
    """
    if result.outcome is Outcome.RETRIABLE:
        return True
    return result.outcome is Outcome.SUCCESS and bool(result.failed)
