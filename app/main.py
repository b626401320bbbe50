from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app.api import assets, cron, portfolio, prices
from app.core.config import settings
from app.core.errors import ConfigurationError, UpstreamError, UpstreamUnavailable, init_sentry
from app.core.logging_config import get_logger
from app.core.scheduler import scheduler, start_scheduler
from app.middleware.context import RequestContextMiddleware
from app.services.pricing_clients import PricingClients

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("PriceVault API starting", environment=settings.ENVIRONMENT)
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    # One HTTP client for the scraper and both providers
    app.state.clients = PricingClients.create(settings)

    if settings.RUN_SCHEDULER:
        start_scheduler(app.state.clients)
    else:
        logger.info("RUN_SCHEDULER is false, skipping scheduler startup in this process")

    try:
        yield
    finally:
        if scheduler.running:
            scheduler.shutdown(wait=False)
        await app.state.clients.aclose()
        logger.info("PriceVault API stopped")


app = FastAPI(title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json", lifespan=lifespan)

app.add_middleware(cast(Any, RequestContextMiddleware))
app.add_middleware(cast(Any, GZipMiddleware), minimum_size=1000)
app.add_middleware(
    cast(Any, CORSMiddleware),
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(UpstreamUnavailable)
async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable):
    content = {"detail": "Upstream pricing source unavailable", "source": exc.source}
    if isinstance(exc, UpstreamError):
        content["status"] = exc.status
    return JSONResponse(status_code=502, content=content)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Missing configuration", setting=exc.setting, path=request.url.path)
    return JSONResponse(status_code=500, content={"detail": str(exc), "setting": exc.setting})


app.include_router(prices.router, prefix=f"{settings.API_V1_STR}/prices", tags=["prices"])
app.include_router(assets.router, prefix=f"{settings.API_V1_STR}/assets", tags=["assets"])
app.include_router(cron.router, prefix=f"{settings.API_V1_STR}/cron", tags=["cron"])
app.include_router(portfolio.router, prefix=f"{settings.API_V1_STR}/portfolio", tags=["portfolio"])


@app.get("/")
def root():
    return {"message": "Welcome to PriceVault API"}


@app.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}
