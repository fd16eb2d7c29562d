"""FastAPI application entry point."""

import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from grocerypricing.config import get_settings
from grocerypricing.database import Base, async_engine
from grocerypricing.logging_config import LoggingContext, configure_logging, get_logger
from grocerypricing.routers import pricing_router
from grocerypricing.routers.pricing import get_pricing_client, get_store_directory

settings = get_settings()

# Configure logging on module load
configure_logging(log_level=settings.log_level)
logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting Grocery Pricing API")

    # Create the price cache table if it doesn't exist
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    if not settings.perplexity_api_key:
        logger.warning("PERPLEXITY_API_KEY is not set, live pricing is disabled")

    yield

    # Shutdown
    logger.info("Shutting down Grocery Pricing API")

    await get_pricing_client().close()
    directory = get_store_directory()
    if hasattr(directory, "close"):
        await directory.close()

    await async_engine.dispose()


app = FastAPI(
    title="Grocery Pricing API",
    description="Ingredient pricing with one-store-first shopping plans",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    """Tag every log line of a request with its request ID."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    with LoggingContext(request_id=request_id):
        response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


# Include routers
app.include_router(pricing_router)


@app.get("/health")
async def health_check() -> dict:
    """Basic health check endpoint."""
    return {"status": "ok", "service": "grocerypricing-api"}


@app.get("/")
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": "Grocery Pricing API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
