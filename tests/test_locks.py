"""
Tests for KeyedLockRegistry.
"""

import asyncio

import pytest

from deskflow.shared.infrastructure.locks import KeyedLockRegistry


class TestKeyedLockRegistry:

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        registry = KeyedLockRegistry()
        both_inside = asyncio.Event()
        inside = []

        async def work(key):
            async with registry.hold(key):
                inside.append(key)
                if len(inside) == 2:
                    both_inside.set()
                await asyncio.wait_for(both_inside.wait(), timeout=1)

        await asyncio.gather(work(("ticket", "1")), work(("ticket", "2")))

        assert sorted(inside) == [("ticket", "1"), ("ticket", "2")]

    @pytest.mark.asyncio
    async def test_locks_are_released_and_dropped(self):
        registry = KeyedLockRegistry()

        async with registry.hold("T-1"):
            assert registry.is_held("T-1")
            assert len(registry) == 1

        assert not registry.is_held("T-1")
        assert len(registry) == 0
