"""
Subscription registry.

Holds the subscription handles of the current connection epoch and releases
them in bulk. Teardown is idempotent and never raises: each handle is
released independently and failures are logged as warnings.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from loguru import logger

from ..errors import InvariantViolation
from ..metrics.registry import TEARDOWN_TOTAL
from .types import SubscriptionHandle


class SubscriptionRegistry:
    def __init__(self) -> None:
        self._handles: dict[str, SubscriptionHandle] = {}
        self._epoch: Optional[int] = None
        self._lock = asyncio.Lock()

    @property
    def size(self) -> int:
        return len(self._handles)

    @property
    def is_empty(self) -> bool:
        return not self._handles

    @property
    def epoch(self) -> Optional[int]:
        """Epoch the registered handles belong to (None when empty)."""
        return self._epoch

    def names(self) -> list[str]:
        return list(self._handles)

    async def register_all(
        self,
        handles: dict[str, SubscriptionHandle] | Iterable[tuple[str, SubscriptionHandle]],
        *,
        epoch: Optional[int] = None,
    ) -> None:
        """Replace the handle set. Raises InvariantViolation over live handles."""
        items = dict(handles)
        async with self._lock:
            if self._handles:
                raise InvariantViolation(
                    f"register_all over {len(self._handles)} live handle(s) "
                    f"from epoch {self._epoch}; teardown first"
                )
            self._handles = items
            self._epoch = epoch if items else None
        logger.debug(f"Registered {len(items)} subscription(s) for epoch {epoch}")

    async def teardown_all(self) -> int:
        """Release every registered handle; returns how many released cleanly."""
        async with self._lock:
            if not self._handles:
                logger.debug("Subscription teardown: nothing registered")
                return 0
            handles, self._handles = self._handles, {}
            epoch, self._epoch = self._epoch, None

            released = 0
            for name, handle in handles.items():
                try:
                    await handle.unsubscribe()
                except Exception as exc:
                    TEARDOWN_TOTAL.labels(outcome="error").inc()
                    logger.warning(
                        f"Failed to release {name} subscription (epoch {epoch}): "
                        f"{type(exc).__name__}: {exc}"
                    )
                else:
                    released += 1
                    TEARDOWN_TOTAL.labels(outcome="ok").inc()
                    logger.info(f"Released {name} subscription")
            return released
