"""
Unit Tests for the Aggregate Counter Reconciler

Run with: pytest tests/test_reconciler.py -v
"""

import pytest

from config import get_settings
from identity.models import Role
from reconciliation.reconciler import IrregularityType


class TestCounters:

    @pytest.mark.asyncio
    async def test_counters(self, services, stores, plant_identity):
        await plant_identity(Role.DEVELOPER, "dev@x.com", effectiveness={"overall": 80})
        await plant_identity(Role.DESIGNER, "des@x.com", effectiveness={"overall": 60})
        await plant_identity(Role.PROJECT_MANAGER, "pm@x.com", is_active=False)
        await plant_identity(Role.CLIENT, "login@x.com")

        await services.clients.create_client({
            "name": "Acme", "email": "a@x.com",
            "feedback_history": [{"rating": 8}, {"rating": 6}],
        })
        await services.clients.create_client({
            "name": "Globex", "email": "b@x.com",
            "feedback_history": [{"rating": 10, "comment": "great"}],
        })
        await services.projects.create_project({"title": "A", "satisfaction": {"overall": 4}})
        await services.projects.create_project({"title": "B", "status": "Blocked", "satisfaction": {"overall": 5}})
        await services.projects.create_project({"title": "C", "status": "Completed"})

        report = await services.reconciler.reconcile(write_counters=False)
        counters = report.counters

        assert counters["partition_counts"] == {
            "administrator": 0,
            "developer": 1,
            "designer": 1,
            "project-manager": 1,
            "client": 1,
        }
        assert counters["total_employees"] == 3
        assert counters["total_clients"] == 2
        assert counters["total_active_users"] == 3
        assert counters["total_projects"] == 3
        assert counters["active_projects"] == 1
        assert counters["blocked_projects"] == 1
        assert counters["avg_employee_rating"] == 70.0
        assert counters["overall_client_satisfaction"] == 4.5
        assert counters["client_feedback_average"] == 8.0
        assert report.counters_written == 0

    @pytest.mark.asyncio
    async def test_empty_store(self, services):
        report = await services.reconciler.reconcile(write_counters=False)

        assert report.consistent
        assert report.counters["total_projects"] == 0
        assert report.counters["avg_employee_rating"] == 0.0

    @pytest.mark.asyncio
    async def test_counters_written_onto_administrators(self, services, registry, plant_identity):
        admin = await plant_identity(Role.ADMINISTRATOR, "root@x.com")
        await plant_identity(Role.DEVELOPER, "dev@x.com")
        await services.projects.create_project({"title": "A"})

        report = await services.reconciler.reconcile(write_counters=True)

        assert report.counters_written == 1
        stored = await registry[Role.ADMINISTRATOR].find_by_id(admin.id)
        assert stored.total_developers == 1
        assert stored.total_projects == 1
        assert stored.active_projects == 1
        assert stored.counters_updated_at is not None

    @pytest.mark.asyncio
    async def test_write_follows_setting(self, services, plant_identity, monkeypatch):
        monkeypatch.setenv("RECONCILE_WRITE_COUNTERS", "false")
        get_settings.cache_clear()
        await plant_identity(Role.ADMINISTRATOR, "root@x.com")

        report = await services.reconciler.reconcile()

        assert report.counters_written == 0


class TestIrregularities:

    @pytest.mark.asyncio
    async def test_consistent_after_normal_operations(self, services):
        client = await services.clients.create_client({"name": "Acme", "email": "a@x.com"}, password="portal123")
        project = await services.projects.create_project(
            {"title": "Portal"}, client_id=client.client["id"], initial_milestones=[{"title": "Design"}]
        )
        await services.projects.create_milestone(project["id"], {"title": "Launch"})
        dev = await services.identities.register("dev@x.com", "secret123", role="developer")
        await services.transitions.transition(dev.id, "developer", "designer")

        report = await services.reconciler.reconcile(write_counters=False)

        assert report.consistent, report.to_dict()["irregularities"]

    @pytest.mark.asyncio
    async def test_every_category_is_reported(self, services, stores, plant_identity):
        await plant_identity(Role.DEVELOPER, "dup@x.com")
        await plant_identity(Role.DESIGNER, "dup@x.com")
        await plant_identity(Role.PROJECT_MANAGER, "pm@x.com", managed_projects=["ghost-p3"])

        free = await stores.projects.create({"title": "Free", "milestones": ["ghost-m"]})
        stray = await stores.projects.create({"title": "Stray", "client_id": "ghost-c"})
        await stores.clients.create({
            "name": "Half", "email": "h@x.com", "linked_projects": [free.id, "ghost-p"],
        })
        await stores.milestones.create({"title": "Orphan", "project_id": "ghost-p2", "assigned_to": ["ghost-user"]})
        await stores.milestones.create({"title": "Unlisted", "project_id": stray.id})
        await services.ledger.record(
            "link_project", "set_project_client", "half_link", "project", free.id
        )

        report = await services.reconciler.reconcile(write_counters=False)

        assert not report.consistent
        assert report.irregularity_counts() == {category.value: 1 for category in IrregularityType}

        duplicate = report.of_type(IrregularityType.DUPLICATE_EMAIL)[0]
        assert duplicate.entity_id == "dup@x.com"
        assert [c["partition"] for c in duplicate.details["copies"]] == ["developer", "designer"]
        assert report.of_type(IrregularityType.DANGLING_CLIENT_REFERENCE)[0].entity_id == stray.id

    @pytest.mark.asyncio
    async def test_irregularities_are_not_repaired(self, services, registry, plant_identity):
        await plant_identity(Role.DEVELOPER, "dup@x.com")
        await plant_identity(Role.CLIENT, "dup@x.com")

        await services.reconciler.reconcile(write_counters=True)

        assert await registry[Role.DEVELOPER].count() == 1
        assert await registry[Role.CLIENT].count() == 1

    @pytest.mark.asyncio
    async def test_resolved_events_are_not_reported(self, services):
        event = await services.ledger.record("transition", "delete_source", "duplicate", "identity", "i1")
        await services.ledger.mark_resolved(event.id)

        report = await services.reconciler.reconcile(write_counters=False)

        assert report.of_type(IrregularityType.UNRESOLVED_PARTIAL_FAILURE) == []
