"""
Unit Tests for the Identity Resolver

Covers:
- Fixed partition priority when one email exists in two partitions
- Lookup by id
- NotFound only after every partition is searched
- Cross-partition uniqueness check (all five partitions, with exclusion)

Run with: pytest tests/test_resolver.py -v
"""

import pytest
from unittest.mock import AsyncMock, patch

from identity.models import PARTITION_PRIORITY, Role
from utils.errors import NotFound, ValidationFailed


class TestResolve:

    @pytest.mark.asyncio
    async def test_resolve_by_email_returns_record_and_partition(self, services, plant_identity):
        record = await plant_identity(Role.DESIGNER, "dee@x.com")

        resolved = await services.identities.resolver.resolve("DEE@x.com ")

        assert resolved.partition == Role.DESIGNER
        assert resolved.id == record.id

    @pytest.mark.asyncio
    async def test_resolve_by_id(self, services, plant_identity):
        record = await plant_identity(Role.PROJECT_MANAGER, "pm@x.com")

        resolved = await services.identities.resolver.resolve(record.id)

        assert resolved.partition == Role.PROJECT_MANAGER
        assert resolved.email == "pm@x.com"

    @pytest.mark.asyncio
    async def test_priority_order_wins_for_duplicate_email(self, services, plant_identity):
        """Developer is searched before client, so the developer copy wins."""
        await plant_identity(Role.CLIENT, "twin@x.com")
        developer = await plant_identity(Role.DEVELOPER, "twin@x.com")

        resolved = await services.identities.resolver.resolve("twin@x.com")

        assert resolved.partition == Role.DEVELOPER
        assert resolved.id == developer.id

    @pytest.mark.asyncio
    async def test_not_found_after_searching_every_partition(self, services, registry):
        visited = []
        for partition in registry:
            original = partition.find_by_email

            async def spy(email, _original=original, _role=partition.role):
                visited.append(_role)
                return await _original(email)

            partition.find_by_email = spy

        with pytest.raises(NotFound):
            await services.identities.resolver.resolve("ghost@x.com")

        assert visited == list(PARTITION_PRIORITY)

    @pytest.mark.asyncio
    async def test_find_all_by_email_lists_every_copy(self, services, plant_identity):
        await plant_identity(Role.ADMINISTRATOR, "many@x.com")
        await plant_identity(Role.CLIENT, "many@x.com")

        copies = await services.identities.resolver.find_all_by_email("many@x.com")

        assert [c.partition for c in copies] == [Role.ADMINISTRATOR, Role.CLIENT]


    @pytest.mark.asyncio
    async def test_find_in_partition(self, services, plant_identity):
        record = await plant_identity(Role.DESIGNER, "d@x.com")
        resolver = services.identities.resolver

        found = await resolver.find_in_partition("designer", record.id)
        assert found.partition == Role.DESIGNER
        assert found.id == record.id

        with pytest.raises(NotFound):
            await resolver.find_in_partition("developer", record.id)


class TestUniqueness:

    @pytest.mark.asyncio
    async def test_free_email(self, services):
        assert await services.identities.resolver.resolve_by_email_for_uniqueness("free@x.com") is True

    @pytest.mark.asyncio
    async def test_email_in_last_partition_is_taken(self, services, plant_identity):
        """The client partition is searched last; a hit there must still block creation."""
        await plant_identity(Role.CLIENT, "late@x.com")

        assert await services.identities.resolver.resolve_by_email_for_uniqueness("late@x.com") is False

    @pytest.mark.asyncio
    async def test_checks_all_five_partitions(self, services, registry):
        mocks = {}
        for partition in registry:
            mocks[partition.role] = AsyncMock(return_value=None)

        with patch.multiple(registry[Role.ADMINISTRATOR], find_by_email=mocks[Role.ADMINISTRATOR]), \
                patch.multiple(registry[Role.DEVELOPER], find_by_email=mocks[Role.DEVELOPER]), \
                patch.multiple(registry[Role.DESIGNER], find_by_email=mocks[Role.DESIGNER]), \
                patch.multiple(registry[Role.PROJECT_MANAGER], find_by_email=mocks[Role.PROJECT_MANAGER]), \
                patch.multiple(registry[Role.CLIENT], find_by_email=mocks[Role.CLIENT]):
            assert await services.identities.resolver.resolve_by_email_for_uniqueness("a@x.com")

        for mock in mocks.values():
            mock.assert_awaited_once_with("a@x.com")

    @pytest.mark.asyncio
    async def test_exclude_ignores_the_moving_record(self, services, plant_identity):
        record = await plant_identity(Role.DEVELOPER, "mover@x.com")
        resolver = services.identities.resolver

        assert await resolver.resolve_by_email_for_uniqueness("mover@x.com") is False
        assert await resolver.resolve_by_email_for_uniqueness(
            "mover@x.com", exclude=(Role.DEVELOPER, record.id)
        ) is True

    @pytest.mark.asyncio
    async def test_malformed_email_rejected(self, services):
        with pytest.raises(ValidationFailed):
            await services.identities.resolver.resolve_by_email_for_uniqueness("not-an-email")
