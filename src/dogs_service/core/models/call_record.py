from dataclasses import dataclass
from enum import StrEnum
from typing import Optional
import uuid

from pydantic import BaseModel, Field


class CallOutcome(StrEnum):
    retry = "retry"
    success = "success"
    exhausted = "exhausted"
    non_retryable = "non_retryable"
    cancelled = "cancelled"
    gate_closed = "gate_closed"
    internal = "internal"


TERMINAL_OUTCOMES = frozenset(CallOutcome) - {CallOutcome.retry}


class CallRecord(BaseModel):
    """One observability event emitted for an attempt or a finished call."""

    call_id: str
    operation: str
    attempt: int = Field(ge=0)
    outcome: CallOutcome
    error_kind: Optional[str] = None  # exception class name of the failure, if any
    elapsed: float = Field(ge=0)

    model_config = {"frozen": True}

    @property
    def terminal(self) -> bool:
        return self.outcome in TERMINAL_OUTCOMES


def new_call_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class InvocationContext:
    """Per-call state; lives only for the duration of one invoker call."""

    operation: str
    started_at: float
    call_id: str = ""
    attempt: int = 0
    last_error: Optional[BaseException] = None

    def __post_init__(self) -> None:
        if not self.call_id:
            self.call_id = new_call_id()

    def record(
        self,
        outcome: CallOutcome,
        now: float,
        error: Optional[BaseException] = None,
        attempt: Optional[int] = None,
    ) -> CallRecord:
        return CallRecord(
            call_id=self.call_id,
            operation=self.operation,
            attempt=self.attempt if attempt is None else attempt,
            outcome=outcome,
            error_kind=type(error).__name__ if error is not None else None,
            elapsed=max(0.0, now - self.started_at),
        )
