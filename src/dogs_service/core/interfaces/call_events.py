"""Observer protocol for resilient call events.

Sinks receive a `CallRecord` for every attempt that fails but will be
retried, and one terminal record per call. They may be invoked from many
concurrent tasks and must be safe for that.
"""

from typing import Protocol

from dogs_service.core.models.call_record import CallRecord


class CallEventSink(Protocol):
    def on_call_event(self, record: CallRecord) -> None:  # pragma: no cover - protocol
        """Consume one record. Must not raise; failures are logged and dropped."""
        ...
