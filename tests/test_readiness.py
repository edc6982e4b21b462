"""Tests for the readiness signal used by providers and stores."""

import asyncio

import pytest

from bizrag.utils.errors import NotInitializedError
from bizrag.utils.readiness import ReadinessSignal


class TestReadinessSignal:
    def test_ensure_ready_fails_before_set(self):
        signal = ReadinessSignal("Vector store")

        with pytest.raises(NotInitializedError, match="Vector store not initialized"):
            signal.ensure_ready()

    def test_failure_detail_is_reported(self):
        signal = ReadinessSignal("Embeddings")
        signal.set_failed(ConnectionError("refused"))

        with pytest.raises(NotInitializedError, match="refused"):
            signal.ensure_ready()
        assert not signal.is_ready

    @pytest.mark.asyncio
    async def test_wait_times_out(self):
        signal = ReadinessSignal("Vector store")

        with pytest.raises(NotInitializedError):
            await signal.wait(timeout=0.01)

    @pytest.mark.asyncio
    async def test_wait_returns_once_ready(self):
        signal = ReadinessSignal("Vector store")

        async def mark_ready():
            await asyncio.sleep(0.01)
            signal.set_ready()

        task = asyncio.create_task(mark_ready())
        await signal.wait(timeout=1.0)
        await task

        assert signal.is_ready
        signal.ensure_ready()

    def test_reset(self):
        signal = ReadinessSignal("Vector store")
        signal.set_ready()

        signal.reset()

        assert not signal.is_ready
