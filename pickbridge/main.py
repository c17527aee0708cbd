import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pickbridge.core.database import prisma
from pickbridge.core.settings import settings
from pickbridge.domains.external_accounting.connections.routes import (
    router as connections_router,
)
from pickbridge.domains.external_accounting.container import IntegrationServices
from pickbridge.domains.external_accounting.finalization.routes import (
    router as finalization_router,
)
from pickbridge.domains.external_accounting.sync.routes import router as sync_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await prisma.connect()
    services = IntegrationServices.from_prisma(prisma)
    app.state.integrations = services
    if settings.SYNC_SCHEDULER_ENABLED:
        services.scheduler.start()
    yield
    # Shutdown
    await services.aclose()
    await prisma.disconnect()


app = FastAPI(
    title="Pickbridge API",
    description="Accounting integration core for order picking",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL] if settings.FRONTEND_URL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(connections_router, prefix="/api/v1")
app.include_router(sync_router, prefix="/api/v1")
app.include_router(finalization_router, prefix="/api/v1")


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Pickbridge API is running"}


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}
