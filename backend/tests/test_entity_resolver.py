"""
Tests for driver identity resolution.

Tests cover:
- Deduplication within a call and against the cache
- No remote call for empty or fully cached input
- Cache entries never overwritten
- Sentinel driver id ignored
"""

import pytest

from dvirsync.core.exceptions import GeotabApiException
from dvirsync.schemas.inspection import UNKNOWN_DRIVER_ID, DriverIdentity
from dvirsync.services.entity_resolver import EntityResolver
from dvirsync.services.fleet_context import FleetContext

from fakes import FakeInspectionApi, make_user


@pytest.fixture
def api():
    return FakeInspectionApi(users=[
        make_user("u1", "Ada", "Lovelace"),
        make_user("u2", "Grace", "Hopper"),
        make_user("u3", name="mechanic"),
    ])


@pytest.fixture
def resolver(api, fleet_context, fake_sleep):
    return EntityResolver(api, fleet_context, batch_size=50, sleep=fake_sleep)


class TestEntityResolver:
    """Test EntityResolver.resolve."""

    @pytest.mark.asyncio
    async def test_resolves_into_cache(self, resolver, api, fleet_context):
        outcome = await resolver.resolve(["u1", "u2"])

        assert fleet_context.driver("u1").display_name == "Ada Lovelace"
        assert fleet_context.driver("u2").display_name == "Grace Hopper"
        assert len(outcome.results) == 2
        assert api.multi_call_count == 1

    @pytest.mark.asyncio
    async def test_duplicates_in_one_call_fetched_once(self, resolver, api):
        await resolver.resolve(["u1", "u1", "u2", "u1"])
        assert api.requested_ids("User") == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_second_call_for_same_id_makes_no_request(self, resolver, api):
        """Test that resolving the same identifier twice issues exactly one fetch."""
        await resolver.resolve(["u1"])
        await resolver.resolve(["u1"])
        assert api.requested_ids("User") == ["u1"]
        assert api.multi_call_count == 1

    @pytest.mark.asyncio
    async def test_already_cached_id_makes_no_request(self, resolver, api, fleet_context):
        fleet_context.add_driver(DriverIdentity(id="u1", first_name="Cached"))
        await resolver.resolve(["u1"])
        assert api.multi_call_count == 0

    @pytest.mark.asyncio
    async def test_empty_input_is_a_no_op(self, resolver, api):
        outcome = await resolver.resolve([])
        assert api.requests == []
        assert outcome.total_batches == 0

    @pytest.mark.asyncio
    async def test_sentinel_and_blank_ids_skipped(self, resolver, api):
        await resolver.resolve([UNKNOWN_DRIVER_ID, None, "", "u3"])
        assert api.requested_ids("User") == ["u3"]

    @pytest.mark.asyncio
    async def test_existing_entry_is_never_overwritten(self, api, fake_sleep):
        """Test that a late result for a cached id leaves the cached object in place."""
        context = FleetContext()
        cached = DriverIdentity(id="u1", first_name="Original")
        resolver = EntityResolver(api, context, sleep=fake_sleep)

        # Populate between dedup and the response arriving
        api.before_multi_call = lambda count: context.add_driver(cached)
        await resolver.resolve(["u1"])

        assert context.driver("u1") is cached

    @pytest.mark.asyncio
    async def test_unknown_user_is_skipped(self, resolver, fleet_context):
        outcome = await resolver.resolve(["ghost"])
        assert fleet_context.driver("ghost") is None
        assert outcome.results == []

    @pytest.mark.asyncio
    async def test_batches_by_configured_size(self, fake_sleep):
        api = FakeInspectionApi(users=[make_user(f"u{i}") for i in range(120)])
        resolver = EntityResolver(api, FleetContext(), batch_size=50, sleep=fake_sleep)
        await resolver.resolve([f"u{i}" for i in range(120)])
        assert api.batch_sizes("User") == [50, 50, 20]

    @pytest.mark.asyncio
    async def test_failed_batch_is_reported(self, resolver, api, fleet_context):
        api.multi_call_errors = [GeotabApiException("down")]
        outcome = await resolver.resolve(["u1"])
        assert outcome.failed_batches == 1
        assert fleet_context.driver("u1") is None


class TestDriverIdentity:
    """Test display name fallbacks."""

    def test_full_name(self):
        assert DriverIdentity(id="x", first_name="Ada", last_name="Lovelace").display_name == "Ada Lovelace"

    def test_name_fallback(self):
        assert DriverIdentity(id="x", first_name="", last_name="", name="ada@example.com").display_name == "ada@example.com"

    def test_id_fallback(self):
        assert DriverIdentity(id="x").display_name == "x"
