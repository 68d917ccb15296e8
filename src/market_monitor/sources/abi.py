"""
Minimal decoding of Ethereum contract logs against a SubscriptionSpec.

Only static 32-byte ABI types are supported (uintN, intN, address, bool,
bytesN). Indexed fields come from ``topics[1:]``, the rest from ``data`` in
schema order.
"""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError

from ..errors import DecodeError
from ..models import RawEvent, SubscriptionSpec
from ..utils import hex_to_int, strip_0x

WORD_HEX = 64


def decode_word(abi_type: str, word: str) -> Any:
    word = strip_0x(word).rjust(WORD_HEX, "0")
    if len(word) != WORD_HEX:
        raise DecodeError(f"expected one 32-byte word for {abi_type}, got {len(word) // 2} bytes")
    try:
        value = int(word, 16)
    except ValueError as e:
        raise DecodeError(f"invalid hex word for {abi_type}") from e

    if abi_type.startswith("uint"):
        return value
    if abi_type.startswith("int"):
        return value - (1 << 256) if value >= (1 << 255) else value
    if abi_type == "address":
        return "0x" + word[-40:]
    if abi_type == "bool":
        return value != 0
    if abi_type.startswith("bytes") and abi_type[5:].isdigit():
        size = int(abi_type[5:])
        if not 1 <= size <= 32:
            raise DecodeError(f"unsupported ABI type {abi_type!r}")
        return "0x" + word[: size * 2]
    raise DecodeError(f"unsupported ABI type {abi_type!r}")


def decode_args(spec: SubscriptionSpec, log: Mapping[str, Any]) -> dict[str, Any]:
    topics = list(log.get("topics") or [])
    if not topics:
        raise DecodeError("log has no topics")
    if topics[0].lower() != spec.event_topic:
        raise DecodeError(f"topic {topics[0]} does not match {spec.signature}")

    indexed = [f for f in spec.fields if f.indexed]
    plain = [f for f in spec.fields if not f.indexed]
    if len(topics) - 1 < len(indexed):
        raise DecodeError(f"expected {len(indexed)} indexed topic(s), got {len(topics) - 1}")

    data = strip_0x(log.get("data") or "")
    words = [data[i : i + WORD_HEX] for i in range(0, len(data), WORD_HEX)]
    if len(words) < len(plain):
        raise DecodeError(f"expected {len(plain)} data word(s), got {len(words)}")

    args: dict[str, Any] = {}
    for f, topic in zip(indexed, topics[1:]):
        args[f.name] = decode_word(f.type, topic)
    for f, word in zip(plain, words):
        args[f.name] = decode_word(f.type, word)
    return args


def _quantity(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return hex_to_int(str(value))
    except ValueError:
        return None


def _metadata(log: Mapping[str, Any]) -> dict[str, Any]:
    """Transport metadata; values of the wrong shape are dropped rather than rejected."""
    tx = log.get("transactionHash")
    return dict(
        block_number=_quantity(log.get("blockNumber")),
        transaction_hash=tx if isinstance(tx, str) else None,
        log_index=_quantity(log.get("logIndex")),
        removed=log.get("removed") is True,
        raw=dict(log),
    )


def decode_log(spec: SubscriptionSpec, log: Mapping[str, Any]) -> RawEvent:
    """Decode ``log`` into a RawEvent; undecodable payloads carry ``error`` instead of args. Never raises."""
    if not isinstance(log, Mapping):
        return RawEvent(error=f"notification is not a log object ({type(log).__name__})")
    meta = _metadata(log)
    try:
        return RawEvent(args=decode_args(spec, log), **meta)
    except (DecodeError, ValidationError, TypeError, ValueError, AttributeError) as e:
        return RawEvent(error=str(e), **meta)
