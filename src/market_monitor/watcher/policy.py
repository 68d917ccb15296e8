from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

from ..errors import TransportClosedError

DisconnectClassifier = Callable[[BaseException], bool]

DEFAULT_DISCONNECT_SIGNATURES = ("socket has been closed",)


def make_disconnect_classifier(
    signatures: Iterable[str] = DEFAULT_DISCONNECT_SIGNATURES,
) -> DisconnectClassifier:
    """Build a classifier deciding whether a subscription error means the transport closed.

    ``TransportClosedError`` always counts as a closure. Any other error counts only
    when its message contains one of ``signatures`` (case-insensitive).
    """
    needles = tuple(s.lower() for s in signatures if s)

    def classify(exc: BaseException) -> bool:
        if isinstance(exc, TransportClosedError):
            return True
        msg = str(exc).lower()
        return any(n in msg for n in needles)

    return classify


default_disconnect_classifier = make_disconnect_classifier()


@dataclass(frozen=True)
class ReconnectPolicy:
    """Bounded exponential backoff for reconnect attempts.

    ``attempt`` counts reconnects already made since the last successful
    connection (0 on the first retry).
    """

    max_retries: int = 10
    base_delay_ms: float = 2000
    max_delay_ms: float = 30000
    multiplier: float = 1.5

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.multiplier <= 1:
            raise ValueError("multiplier must be > 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")
        if self.base_delay_ms > self.max_delay_ms:
            raise ValueError("base_delay_ms must be <= max_delay_ms")

    def delay_ms(self, attempt: int) -> float:
        attempt = max(0, attempt)
        try:
            raw = self.base_delay_ms * (self.multiplier**attempt)
        except OverflowError:
            return float(self.max_delay_ms)
        return float(min(raw, self.max_delay_ms))

    def delay(self, attempt: int) -> float:
        """Delay in seconds, for ``loop.call_later``."""
        return self.delay_ms(attempt) / 1000.0

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_retries
