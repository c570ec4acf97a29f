from typing import Protocol


class ClockPort(Protocol):
    """Monotonic time source used for backoff delays and elapsed times.

    Injected so tests can drive time explicitly (see `VirtualClock`).
    """

    def monotonic(self) -> float:  # pragma: no cover - protocol
        """Seconds on a monotonic scale; only differences are meaningful."""
        ...

    async def sleep(self, seconds: float) -> None:  # pragma: no cover - protocol
        """Suspend the calling task for ``seconds`` of clock time."""
        ...
