from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from fastapi import Request

from pickbridge.core.encryption import TokenCipher

from .base.factory import ProviderRegistry
from .base.prisma_store import PrismaIntegrationStore
from .base.store import BaseIntegrationStore
from .connections.service import ConnectionService
from .finalization.matching import ProductMatcher
from .finalization.service import FinalizationService
from .sync.reconciliation import ReconciliationEngine
from .sync.scheduler import SyncScheduler
from .tokens.manager import TokenLifecycleManager
from .tokens.store import TokenStore

if TYPE_CHECKING:
    from prisma import Prisma


class IntegrationServices:
    """Process-wide wiring of the integration core. Built once at startup."""

    def __init__(
        self,
        store: BaseIntegrationStore,
        registry: ProviderRegistry,
        cipher: Optional[TokenCipher] = None,
    ):
        self.store = store
        self.registry = registry
        self.tokens = TokenLifecycleManager(store, registry, TokenStore(store, cipher))
        self.engine = ReconciliationEngine(store, self.tokens)
        self.scheduler = SyncScheduler(store, self.engine)
        self.finalization = FinalizationService(store, self.tokens)
        self.matcher = ProductMatcher(store)
        self.connections = ConnectionService(store, registry, self.tokens)

    @classmethod
    def from_prisma(cls, db: Prisma) -> "IntegrationServices":
        return cls(PrismaIntegrationStore(db), ProviderRegistry.from_settings())

    async def aclose(self) -> None:
        self.scheduler.shutdown()
        await self.registry.aclose()


def get_integrations(request: Request) -> IntegrationServices:
    """FastAPI dependency returning the services built in the app lifespan."""
    return request.app.state.integrations
