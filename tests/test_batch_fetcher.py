"""Tests for batched provider fetching."""

import pytest
from unittest.mock import AsyncMock

from skyalert.services.batch_fetcher import batch_fetch

from conftest import FakeGateway, make_flight


@pytest.fixture
def provider():
    gateway = FakeGateway()
    for ident in ["X1", "X2", "X3", "X4", "X5", "X6", "X7"]:
        gateway.flights[ident] = make_flight(ident)
    return gateway


@pytest.mark.asyncio
async def test_failing_identifier_is_omitted(provider):
    provider.errors.add("X2")

    result = await batch_fetch(provider, ["X1", "X2"], delay_seconds=0)

    assert list(result) == ["X1"]
    assert result["X1"].ident == "X1"


@pytest.mark.asyncio
async def test_identifier_without_data_is_absent(provider):
    result = await batch_fetch(provider, ["X1", "NOPE"], delay_seconds=0)
    assert set(result) == {"X1"}


@pytest.mark.asyncio
async def test_identifiers_are_fetched_once(provider):
    await batch_fetch(provider, ["X1", "X1", "X2", "X1"], delay_seconds=0)
    assert sorted(provider.calls) == ["X1", "X2"]


@pytest.mark.asyncio
async def test_batches_are_spaced_by_delay(provider):
    sleep = AsyncMock()

    result = await batch_fetch(
        provider,
        ["X1", "X2", "X3", "X4", "X5", "X6", "X7"],
        batch_size=3,
        delay_seconds=1.0,
        sleep=sleep
    )

    assert len(result) == 7
    # three batches, no sleep after the last one
    assert sleep.await_count == 2
    sleep.assert_awaited_with(1.0)


@pytest.mark.asyncio
async def test_single_batch_never_sleeps(provider):
    sleep = AsyncMock()

    await batch_fetch(provider, ["X1", "X2"], batch_size=5, delay_seconds=1.0, sleep=sleep)

    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_input():
    gateway = FakeGateway()
    assert await batch_fetch(gateway, []) == {}
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_dated_requests_are_keyed_per_date(provider):
    provider.flights[("X1", "2025-06-16")] = make_flight("X1", status="active")

    result = await batch_fetch(
        provider,
        [("X1", "2025-06-15"), ("X1", "2025-06-16"), ("X1", "2025-06-16")],
        delay_seconds=0
    )

    assert sorted(provider.requests) == [("X1", "2025-06-15"), ("X1", "2025-06-16")]
    assert result[("X1", "2025-06-15")].status == "scheduled"
    assert result[("X1", "2025-06-16")].status == "active"
