"""
Unit Tests for the Identity Service

Tests registration, authentication, profile updates and deletion against
a real in-memory database.

Run with: pytest tests/test_identity_service.py -v
"""

import pytest

from identity.models import Role
from utils.errors import AuthenticationFailed, Conflict, NotFound, ValidationFailed


class TestRegistration:

    @pytest.mark.asyncio
    async def test_register_creates_in_role_partition(self, services, registry):
        resolved = await services.identities.register(
            "New@Example.com", "secret123", "New Dev", "developer", tech_stack=["python"], shoe_size=44
        )

        assert resolved.partition == Role.DEVELOPER
        record = await registry[Role.DEVELOPER].find_by_email("new@example.com")
        assert record is not None
        assert record.tech_stack == ["python"]
        assert record.extra_data == {"shoe_size": 44}
        assert record.hashed_credential != "secret123"
        assert record.role_tag == "developer"

    @pytest.mark.asyncio
    async def test_unknown_role_rejected(self, services):
        with pytest.raises(ValidationFailed) as exc_info:
            await services.identities.register("x@example.com", "secret123", "X", "intern")
        assert exc_info.value.field == "role"

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, services):
        with pytest.raises(ValidationFailed) as exc_info:
            await services.identities.register("x@example.com", "123", "X", "designer")
        assert exc_info.value.field == "password"

    @pytest.mark.asyncio
    async def test_bad_email_rejected(self, services):
        with pytest.raises(ValidationFailed):
            await services.identities.register("nope", "secret123", "X", "designer")

    @pytest.mark.asyncio
    async def test_email_taken_in_other_partition(self, services, plant_identity):
        await plant_identity(Role.CLIENT, "taken@example.com")

        with pytest.raises(Conflict):
            await services.identities.register("taken@example.com", "secret123", "X", "developer")


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_authenticate_success_stamps_last_login(self, services):
        await services.identities.register("auth@example.com", "secret123", "Auth", "designer")

        resolved = await services.identities.authenticate("auth@example.com", "secret123")

        assert resolved.partition == Role.DESIGNER
        assert resolved.record.last_login is not None

    @pytest.mark.asyncio
    async def test_wrong_password_and_unknown_email_look_the_same(self, services):
        await services.identities.register("auth@example.com", "secret123", "Auth", "designer")

        with pytest.raises(AuthenticationFailed) as wrong_password:
            await services.identities.authenticate("auth@example.com", "wrong-pass")
        with pytest.raises(AuthenticationFailed) as unknown_email:
            await services.identities.authenticate("ghost@example.com", "secret123")

        assert wrong_password.value.message == unknown_email.value.message
        assert isinstance(unknown_email.value, NotFound)

    @pytest.mark.asyncio
    async def test_inactive_identity_cannot_authenticate(self, services):
        await services.identities.register("off@example.com", "secret123", "Off", "developer", is_active=False)

        with pytest.raises(AuthenticationFailed):
            await services.identities.authenticate("off@example.com", "secret123")


class TestProfile:

    @pytest.mark.asyncio
    async def test_get_profile_hides_credential(self, services):
        await services.identities.register("p@example.com", "secret123", "Pat", "project-manager")

        profile = await services.identities.get_profile("p@example.com")

        assert profile["partition"] == "project-manager"
        assert "hashed_credential" not in profile

    @pytest.mark.asyncio
    async def test_update_profile_in_place(self, services):
        resolved = await services.identities.register("p@example.com", "secret123", "Pat", "developer")

        updated = await services.identities.update_profile(
            resolved.id, "developer", {"title": "Lead", "favourite_editor": "vim"}
        )

        assert updated.record.title == "Lead"
        assert updated.record.extra_data["favourite_editor"] == "vim"

    @pytest.mark.asyncio
    async def test_role_change_rejected(self, services):
        resolved = await services.identities.register("p@example.com", "secret123", "Pat", "developer")

        with pytest.raises(ValidationFailed):
            await services.identities.update_profile(resolved.id, "developer", {"role": "designer"})
        with pytest.raises(ValidationFailed):
            await services.identities.update_profile(resolved.id, "developer", {"role_tag": "designer"})

    @pytest.mark.asyncio
    async def test_email_change_checks_every_partition(self, services, plant_identity):
        await plant_identity(Role.ADMINISTRATOR, "boss@example.com")
        resolved = await services.identities.register("p@example.com", "secret123", "Pat", "developer")

        with pytest.raises(Conflict):
            await services.identities.update_profile(resolved.id, "developer", {"email": "boss@example.com"})

    @pytest.mark.asyncio
    async def test_password_change_is_rehashed(self, services):
        resolved = await services.identities.register("p@example.com", "secret123", "Pat", "developer")

        await services.identities.update_profile(resolved.id, "developer", {"password": "brand-new-pass"})

        with pytest.raises(AuthenticationFailed):
            await services.identities.authenticate("p@example.com", "secret123")
        assert await services.identities.authenticate("p@example.com", "brand-new-pass")

    @pytest.mark.asyncio
    async def test_update_missing_identity(self, services):
        with pytest.raises(NotFound):
            await services.identities.update_profile("missing-id", "designer", {"title": "x"})


    @pytest.mark.asyncio
    async def test_list_identities(self, services, plant_identity):
        await plant_identity(Role.CLIENT, "c@x.com")
        await plant_identity(Role.DEVELOPER, "d1@x.com")
        await plant_identity(Role.DEVELOPER, "d2@x.com")
        await plant_identity(Role.ADMINISTRATOR, "a@x.com")

        everyone = await services.identities.list_identities()
        assert [i["partition"] for i in everyone] == ["administrator", "developer", "developer", "client"]
        assert all("hashed_credential" not in i for i in everyone)

        developers = await services.identities.list_identities("developer")
        assert sorted(i["email"] for i in developers) == ["d1@x.com", "d2@x.com"]

    @pytest.mark.asyncio
    async def test_list_identities_unknown_role(self, services):
        with pytest.raises(ValidationFailed):
            await services.identities.list_identities("wizard")


class TestDeletion:

    @pytest.mark.asyncio
    async def test_delete_identity(self, services):
        resolved = await services.identities.register("d@example.com", "secret123", "D", "designer")

        await services.identities.delete_identity(resolved.id, "designer")

        with pytest.raises(NotFound):
            await services.identities.resolver.resolve("d@example.com")
        with pytest.raises(NotFound):
            await services.identities.delete_identity(resolved.id, "designer")

    @pytest.mark.asyncio
    async def test_delete_by_email_tolerates_absence(self, services):
        assert await services.identities.delete_by_email("nobody@example.com", Role.CLIENT) is False
