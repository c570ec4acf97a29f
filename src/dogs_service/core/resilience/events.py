"""Call event sinks: logging, recording and aggregate metrics."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from dogs_service.core.interfaces.call_events import CallEventSink
from dogs_service.core.models.call_record import CallOutcome, CallRecord

logger = logging.getLogger(__name__)


def emit(sink: Optional[CallEventSink], record: CallRecord) -> None:
    """Deliver a record; a failing sink never breaks the call."""
    if sink is None:
        return
    try:
        sink.on_call_event(record)
    except Exception as exc:
        logger.error(
            f"[events:error] sink failed sink={type(sink).__name__} "
            f"call_id={record.call_id} outcome={record.outcome} error={exc}"
        )


class LoggingCallEventSink:
    """Writes every record to the log: retries at INFO, failures at WARNING."""

    def __init__(self, logger_name: str = "dogs_service.calls"):
        self._logger = logging.getLogger(logger_name)

    def on_call_event(self, record: CallRecord) -> None:
        msg = (
            f"[call:{record.outcome}] op={record.operation} call_id={record.call_id} "
            f"attempt={record.attempt} error={record.error_kind} elapsed={record.elapsed:.3f}s"
        )
        if record.outcome in (CallOutcome.retry, CallOutcome.success):
            self._logger.info(msg)
        elif record.outcome is CallOutcome.internal:
            self._logger.error(msg)
        else:
            self._logger.warning(msg)


class RecordingCallEventSink:
    """Keeps records in memory so tests can assert on the sequence of outcomes."""

    def __init__(self) -> None:
        self.records: List[CallRecord] = []

    def on_call_event(self, record: CallRecord) -> None:
        self.records.append(record)

    def for_call(self, call_id: str) -> List[CallRecord]:
        return [r for r in self.records if r.call_id == call_id]

    def outcomes(self) -> List[tuple[int, CallOutcome]]:
        return [(r.attempt, r.outcome) for r in self.records]

    def clear(self) -> None:
        self.records.clear()


@dataclass
class OperationMetrics:
    calls: int = 0
    attempts: int = 0
    retries: int = 0
    outcomes: Counter = field(default_factory=Counter)
    total_elapsed: float = 0.0

    def as_dict(self) -> Dict[str, object]:
        return {
            "calls": self.calls,
            "attempts": self.attempts,
            "retries": self.retries,
            "outcomes": dict(self.outcomes),
            "avg_elapsed": self.total_elapsed / self.calls if self.calls else 0.0,
        }


class CallMetricsSink:
    """Aggregates counts per operation from terminal and retry records."""

    def __init__(self) -> None:
        self._by_operation: Dict[str, OperationMetrics] = {}

    def on_call_event(self, record: CallRecord) -> None:
        metrics = self._by_operation.setdefault(record.operation, OperationMetrics())
        if record.outcome is CallOutcome.retry:
            metrics.retries += 1
            return
        metrics.calls += 1
        metrics.attempts += record.attempt
        metrics.outcomes[record.outcome.value] += 1
        metrics.total_elapsed += record.elapsed

    def get(self, operation: str) -> Optional[OperationMetrics]:
        return self._by_operation.get(operation)

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        return {name: m.as_dict() for name, m in self._by_operation.items()}


class CompositeCallEventSink:
    def __init__(self, sinks: Iterable[CallEventSink]):
        self._sinks = list(sinks)

    def on_call_event(self, record: CallRecord) -> None:
        for sink in self._sinks:
            emit(sink, record)
