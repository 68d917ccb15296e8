"""
Utility functions for the market monitor.

Time helpers and hex word decoding shared by the dispatcher and the sources.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def iso_timestamp(dt: Optional[datetime] = None) -> str:
    """Render ``dt`` (default: now) as ISO-8601 UTC with millisecond precision and a Z suffix."""
    dt = dt or utc_now()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def log_file_date(dt: Optional[datetime] = None) -> str:
    """Date component used in daily log file names (YYYY-MM-DD, UTC)."""
    return (dt or utc_now()).astimezone(timezone.utc).date().isoformat()


def strip_0x(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


def hex_to_int(value: str) -> int:
    """Parse a JSON-RPC quantity (``0x``-prefixed hex) into an int."""
    return int(strip_0x(value) or "0", 16)


def keccak_hex(text: str) -> str:
    """Keccak-256 of ``text`` as a 0x-prefixed hex string (Ethereum event topic)."""
    from Crypto.Hash import keccak

    return "0x" + keccak.new(digest_bits=256, data=text.encode("utf-8")).hexdigest()
