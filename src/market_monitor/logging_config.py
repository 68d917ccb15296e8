"""Route loguru output into the event sink so lifecycle lines share the event log."""

from __future__ import annotations

from loguru import logger

from .utils import iso_timestamp
from .watcher.types import LineSink

_PLAIN_LEVELS = {"INFO", "SUCCESS"}


class SinkHandler:
    """loguru sink callable writing ``[<ISO-8601>] <message>`` lines to a LineSink."""

    def __init__(self, sink: LineSink):
        self._sink = sink

    def __call__(self, message) -> None:
        record = message.record
        level = record["level"].name
        text = record["message"]
        if level not in _PLAIN_LEVELS:
            text = f"{level}: {text}"
        if record["exception"] is not None:
            exc = record["exception"]
            text = f"{text} ({exc.type.__name__ if exc.type else 'error'})"
        self._sink.append(f"[{iso_timestamp(record['time'])}] {text}")


def configure_logging(sink: LineSink, level: str = "INFO") -> int:
    """Replace loguru's default stderr handler with one targeting ``sink``.

    Records are queued and written by loguru's worker thread, so a slow disk
    never stalls the event loop. Returns the handler id; ``logger.remove(id)``
    drains the queue before returning.
    """
    logger.remove()
    return logger.add(
        SinkHandler(sink), level=level.upper(), format="{message}", enqueue=True, catch=True
    )
