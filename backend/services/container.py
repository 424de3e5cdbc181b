"""
Service wiring

Builds every integrity-layer service on one session factory. Routers get it
through a FastAPI dependency; the maintenance CLI calls build_services()
directly.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import async_sessionmaker

from backfill.runner import BackfillRunner
from identity.service import IdentityService
from identity.transition import TransitionManager
from reconciliation.reconciler import Reconciler
from relationships.clients import ClientService
from relationships.graph import RelationshipGraph
from relationships.projects import ProjectService
from relationships.store import RelationshipStores
from services.integrity_log import IntegrityLog


@dataclass
class IntegrityServices:
    ledger: IntegrityLog
    identities: IdentityService
    transitions: TransitionManager
    graph: RelationshipGraph
    projects: ProjectService
    clients: ClientService
    reconciler: Reconciler
    backfill: BackfillRunner


def build_services(session_factory: async_sessionmaker) -> IntegrityServices:
    ledger = IntegrityLog(session_factory)
    identities = IdentityService(session_factory)
    stores = RelationshipStores(session_factory)
    graph = RelationshipGraph(stores, ledger)

    return IntegrityServices(
        ledger=ledger,
        identities=identities,
        transitions=TransitionManager(identities.registry, ledger, identities.resolver),
        graph=graph,
        projects=ProjectService(stores, graph),
        clients=ClientService(stores, graph, identities, ledger),
        reconciler=Reconciler(identities, stores, ledger),
        backfill=BackfillRunner(session_factory, identities.registry),
    )
