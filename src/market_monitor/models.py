"""
Pydantic data models for the market monitor.

Subscription specs are fixed at startup; raw events are produced by an
event source per notification and consumed by the dispatcher.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional

from .utils import keccak_hex


class FieldSpec(BaseModel):
    """One entry of an event's ordered field schema."""

    name: str
    type: str
    indexed: bool = False
    unit: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("field type must not be empty")
        return v


class SubscriptionSpec(BaseModel):
    """Immutable descriptor of one event kind the monitor subscribes to."""

    name: str
    address: str
    fields: List[FieldSpec]
    category: Optional[str] = None
    topic: Optional[str] = None  # overrides the keccak of the signature

    model_config = ConfigDict(frozen=True)

    @field_validator("fields")
    @classmethod
    def _unique_field_names(cls, v):
        names = [f.name for f in v]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate field names in {names}")
        return v

    @property
    def label(self) -> str:
        return self.category or self.name

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(f.type for f in self.fields)})"

    @property
    def event_topic(self) -> str:
        return (self.topic or keccak_hex(self.signature)).lower()

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]


class RawEvent(BaseModel):
    """One notification as delivered by the event source, before rendering."""

    args: Dict[str, Any] = Field(default_factory=dict)
    block_number: Optional[int] = None
    transaction_hash: Optional[str] = None
    log_index: Optional[int] = None
    removed: bool = False
    raw: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None  # set by sources when the payload could not be decoded

    model_config = ConfigDict(frozen=True)
