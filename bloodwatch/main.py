import sentry_sdk
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.asgi import SentryAsgiMiddleware

from bloodwatch.api.v1 import deliveries
from bloodwatch.core.config import settings
from bloodwatch.utils.logger import configure_logging, get_logger

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="BloodWatch Alerts",
    description=(
        "Blood-reserve change detection and subscriber notification service"
    ),
    version="1.0.0",
)

# Initialize Sentry if DSN is provided
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.APP_ENV,
        traces_sample_rate=0.1,
    )
    app.add_middleware(SentryAsgiMiddleware)
    logger.info("sentry_initialized", environment=settings.APP_ENV)
else:
    logger.info("sentry_not_configured")

app.include_router(deliveries.router, prefix="/api/v1")

# Initialize Prometheus metrics
instrumentator = Instrumentator(
    should_group_status_codes=False,
    excluded_handlers=["/metrics"],  # Don't monitor the metrics endpoint itself
)
instrumentator.instrument(app).expose(app)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint"""
    return {"status": "ok", "app": settings.APP_NAME}
