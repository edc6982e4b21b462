"""One-shot readiness signal for providers that warm up asynchronously."""

from __future__ import annotations

import asyncio
from typing import Optional

from bizrag.utils.errors import NotInitializedError


class ReadinessSignal:
    """Set once when a component becomes ready; waiters select against a timeout."""

    def __init__(self, name: str):
        self.name = name
        self._event = asyncio.Event()
        self._failure: Optional[BaseException] = None

    def set_ready(self) -> None:
        self._failure = None
        self._event.set()

    def set_failed(self, error: BaseException) -> None:
        """Record a fatal initialization error. The signal stays unset."""
        self._failure = error

    def reset(self) -> None:
        self._event.clear()

    @property
    def is_ready(self) -> bool:
        return self._event.is_set()

    @property
    def failure(self) -> Optional[BaseException]:
        return self._failure

    def ensure_ready(self) -> None:
        """Raise NotInitializedError unless the component is ready."""
        if not self._event.is_set():
            detail = f": {self._failure}" if self._failure else ""
            raise NotInitializedError(f"{self.name} not initialized{detail}")

    async def wait(self, timeout: float) -> None:
        """Wait for readiness, raising NotInitializedError after ``timeout`` seconds."""
        if self._event.is_set():
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise NotInitializedError(
                f"{self.name} did not become ready within {timeout:.0f}s"
            ) from exc
