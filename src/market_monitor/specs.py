"""
Subscription specs for the marketplace contract.

Specs are fixed at process start: either the built-in listing/purchase pair
or a JSON array loaded from ``MONITOR_SPECS_FILE``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from .errors import ConfigError
from .models import FieldSpec, SubscriptionSpec

DEFAULT_CONTRACT_ADDRESS = "0x04653aBcccFA3Db8911E8Aba69924Cb0e94534d3"


def market_specs(address: str = DEFAULT_CONTRACT_ADDRESS) -> list[SubscriptionSpec]:
    """Listing and purchase events emitted by the NFT marketplace contract."""
    return [
        SubscriptionSpec(
            name="NFTListed",
            category="listed",
            address=address,
            fields=[
                FieldSpec(name="tokenId", type="uint256", indexed=True),
                FieldSpec(name="seller", type="address", indexed=True),
                FieldSpec(name="price", type="uint256", unit="Wei"),
            ],
        ),
        SubscriptionSpec(
            name="NFTPurchased",
            category="purchased",
            address=address,
            fields=[
                FieldSpec(name="tokenId", type="uint256", indexed=True),
                FieldSpec(name="buyer", type="address", indexed=True),
                FieldSpec(name="seller", type="address", indexed=True),
                FieldSpec(name="price", type="uint256", unit="Wei"),
            ],
        ),
    ]


def load_specs(path: Path, default_address: str | None = None) -> list[SubscriptionSpec]:
    """Load a JSON array of specs; entries without ``address`` use ``default_address``."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read specs file {path}: {e}") from e

    if not isinstance(data, list):
        raise ConfigError(f"Specs file {path} must contain a JSON array")

    specs = []
    for i, entry in enumerate(data):
        if isinstance(entry, dict) and default_address and "address" not in entry:
            entry = {**entry, "address": default_address}
        try:
            specs.append(SubscriptionSpec.model_validate(entry))
        except ValidationError as e:
            raise ConfigError(f"Invalid spec #{i} in {path}: {e}") from e
    return validate_specs(specs)


def validate_specs(specs: Sequence[SubscriptionSpec]) -> list[SubscriptionSpec]:
    if not specs:
        raise ConfigError("At least one subscription spec is required")
    names = [s.name for s in specs]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigError(f"Duplicate subscription spec names: {', '.join(dupes)}")
    return list(specs)
