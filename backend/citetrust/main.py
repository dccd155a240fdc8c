import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from citetrust.api.routes import router
from citetrust.config import get_settings
from citetrust.database import create_tables, get_engine
from citetrust.services.embeddings import EmbeddingEngine, get_embedding_engine
from citetrust.services.orchestrator import get_orchestrator

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


# =============================================================================
# LIFESPAN: Startup and Shutdown Logic
# =============================================================================
#
# - Before 'yield': create tables (only when a database is configured)
# - After 'yield': close the fetcher's HTTP client and the connection pool
#
# The embedding model is NOT loaded here. It loads lazily on the first
# verification, so the service starts fast and still serves trust profiles
# when the model cannot be acquired.
#
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""

    # === STARTUP ===
    if settings.database_url:
        await create_tables(get_engine())
        logger.info("Database tables ready")
    else:
        logger.warning("No DATABASE_URL configured, using in-memory stores")

    yield

    # === SHUTDOWN ===
    await get_orchestrator().fetcher.close()
    if settings.database_url:
        await get_engine().dispose()


app = FastAPI(
    title="Citation Trust Service",
    description="Verifies that cited sources support their claims and ranks source domains by trust",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/health")
async def health_check(engine: EmbeddingEngine = Depends(get_embedding_engine)):
    """Health check endpoint, including the embedding engine state."""
    return {"status": "healthy", "embedding_engine": engine.state.value}
