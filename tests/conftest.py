"""Shared test fixtures for provx."""

from __future__ import annotations

import asyncio

import pytest

from provx import _registry


@pytest.fixture(autouse=True)
def fresh_registry():
    """Each test gets its own provider instances."""
    _registry.clear()
    yield
    _registry.clear()


async def settle(rounds: int = 20) -> None:
    """Let deferred refreshes and build tasks run to quiescence."""
    for _ in range(rounds):
        await asyncio.sleep(0)
