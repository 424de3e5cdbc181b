"""
Unit Tests for Client Service

Covers client CRUD and the best-effort companion portal login.

Run with: pytest tests/test_clients.py -v
"""

import pytest

from identity.models import Role
from utils.errors import Conflict, ValidationFailed


class TestCreateClient:

    @pytest.mark.asyncio
    async def test_create_with_companion_login(self, services, registry):
        result = await services.clients.create_client(
            {"name": "Acme", "email": "Ops@Acme.io", "company_name": "Acme Inc"},
            password="portal123",
        )

        assert result.client["email"] == "ops@acme.io"
        assert result.companion.status == "created"

        login = await registry[Role.CLIENT].find_by_email("ops@acme.io")
        assert login is not None
        assert login.id == result.companion.identity_id
        assert login.company_name == "Acme Inc"

        resolved = await services.identities.authenticate("ops@acme.io", "portal123")
        assert resolved.partition == Role.CLIENT

    @pytest.mark.asyncio
    async def test_create_without_password_skips_companion(self, services, registry):
        result = await services.clients.create_client({"name": "Acme", "email": "ops@acme.io"})

        assert result.companion.status == "skipped"
        assert await registry[Role.CLIENT].count() == 0

    @pytest.mark.asyncio
    async def test_name_required(self, services):
        with pytest.raises(ValidationFailed):
            await services.clients.create_client({"email": "ops@acme.io"})

    @pytest.mark.asyncio
    async def test_duplicate_client_email(self, services):
        await services.clients.create_client({"name": "Acme", "email": "ops@acme.io"})

        with pytest.raises(Conflict):
            await services.clients.create_client({"name": "Acme 2", "email": "OPS@acme.io"})

    @pytest.mark.asyncio
    async def test_companion_failure_keeps_client(self, services, stores, plant_identity):
        await plant_identity(Role.DEVELOPER, "ops@acme.io")

        result = await services.clients.create_client(
            {"name": "Acme", "email": "ops@acme.io"}, password="portal123"
        )

        assert result.companion.status == "failed"
        assert result.companion.error
        assert await stores.clients.get(result.client["id"]) is not None

        events = await services.ledger.list_events()
        assert len(events) == 1
        assert events[0].state == "companion_drift"
        assert events[0].entity_id == result.client["id"]


class TestUpdateClient:

    @pytest.mark.asyncio
    async def test_email_change_follows_to_companion(self, services, registry):
        created = await services.clients.create_client(
            {"name": "Acme", "email": "ops@acme.io"}, password="portal123"
        )

        result = await services.clients.update_client(
            created.client["id"], {"email": "team@acme.io", "name": "Acme Labs"}
        )

        assert result.companion.status == "updated"
        assert await registry[Role.CLIENT].find_by_email("ops@acme.io") is None
        login = await registry[Role.CLIENT].find_by_email("team@acme.io")
        assert login.display_name == "Acme Labs"

    @pytest.mark.asyncio
    async def test_password_in_changes_updates_credential(self, services):
        created = await services.clients.create_client(
            {"name": "Acme", "email": "ops@acme.io"}, password="portal123"
        )

        await services.clients.update_client(created.client["id"], {"password": "rotated456"})

        resolved = await services.identities.authenticate("ops@acme.io", "rotated456")
        assert resolved.partition == Role.CLIENT

    @pytest.mark.asyncio
    async def test_rerun_repairs_companion_drift(self, services, registry, plant_identity):
        taken = await plant_identity(Role.DEVELOPER, "ops@acme.io")
        created = await services.clients.create_client(
            {"name": "Acme", "email": "ops@acme.io"}, password="portal123"
        )
        assert created.companion.status == "failed"

        await registry[Role.DEVELOPER].delete(taken.id)
        result = await services.clients.update_client(created.client["id"], {}, password="portal123")

        assert result.companion.status == "created"

    @pytest.mark.asyncio
    async def test_links_cannot_be_written_directly(self, services):
        created = await services.clients.create_client({"name": "Acme", "email": "ops@acme.io"})

        with pytest.raises(ValidationFailed):
            await services.clients.update_client(created.client["id"], {"linked_projects": ["p1"]})

    @pytest.mark.asyncio
    async def test_email_taken_by_another_client(self, services):
        await services.clients.create_client({"name": "Acme", "email": "ops@acme.io"})
        other = await services.clients.create_client({"name": "Globex", "email": "ops@globex.io"})

        with pytest.raises(Conflict):
            await services.clients.update_client(other.client["id"], {"email": "ops@acme.io"})


class TestDeleteClient:

    @pytest.mark.asyncio
    async def test_delete_removes_companion(self, services, registry):
        created = await services.clients.create_client(
            {"name": "Acme", "email": "ops@acme.io"}, password="portal123"
        )
        project = await services.projects.create_project({"title": "Portal"}, client_id=created.client["id"])

        result = await services.clients.delete_client(created.client["id"])

        assert result.companion.status == "deleted"
        assert result.cascade.detached == [project["id"]]
        assert await registry[Role.CLIENT].count() == 0
        assert (await services.projects.get_project(project["id"]))["client_id"] is None

    @pytest.mark.asyncio
    async def test_delete_without_companion(self, services):
        created = await services.clients.create_client({"name": "Acme", "email": "ops@acme.io"})

        result = await services.clients.delete_client(created.client["id"])

        assert result.companion.status == "absent"
