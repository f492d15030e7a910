"""FastAPI application entry point for the WasteEx marketplace API."""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wasteex.app.config import get_settings
from wasteex.infra.database import init_db
from wasteex.services.background_jobs import catalog_sweep_loop, ledger_retry_loop

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database and start periodic jobs."""
    await init_db()

    tasks = [
        asyncio.create_task(catalog_sweep_loop()),
        asyncio.create_task(ledger_retry_loop()),
    ]
    yield
    for task in tasks:
        task.cancel()


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="WasteEx Marketplace API",
    lifespan=lifespan,
    debug=settings.debug,
)

_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from wasteex.app.routes.auth import router as auth_router
from wasteex.app.routes.listings import router as listings_router
from wasteex.app.routes.material_requests import router as material_requests_router
from wasteex.app.routes.negotiations import router as negotiations_router
from wasteex.app.routes.contracts import router as contracts_router
from wasteex.app.routes.payments import router as payments_router
from wasteex.app.routes.logistics import router as logistics_router
from wasteex.app.routes.admin import router as admin_router

app.include_router(auth_router)
app.include_router(listings_router)
app.include_router(material_requests_router)
app.include_router(negotiations_router)
app.include_router(contracts_router)
app.include_router(payments_router)
app.include_router(logistics_router)
app.include_router(admin_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "wasteex"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "wasteex.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
