"""
FastAPI application with assistant lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from calendar_mcp.config import Settings, settings
from calendar_mcp.core.assistant import Assistant
from calendar_mcp.core.auth.token_supervisor import TokenSupervisor
from calendar_mcp.infrastructure.observability.logging import get_logger, setup_logging
from calendar_mcp.middleware.request_context import RequestContextMiddleware
from calendar_mcp.routes import health, mcp
from calendar_mcp.services.google_oauth_service import GoogleOAuthService
from calendar_mcp.services.openai_service import OpenAIService
from calendar_mcp.services.redis_client import RedisClient

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
logger = get_logger(__name__)


async def build_assistant(config: Settings) -> tuple[Assistant, RedisClient | None]:
    """Wire collaborators from configuration. Redis is connected before returning."""
    redis_client = None
    if config.REDIS_URL:
        logger.info("Initializing Redis connection")
        redis_client = RedisClient(
            config.REDIS_URL,
            max_connections=config.REDIS_MAX_CONNECTIONS,
            namespace=config.REDIS_KEY_PREFIX,
        )
        await redis_client.initialize()

    model = None
    if config.model_tier_enabled():
        model = OpenAIService(
            config.OPENAI_API_KEY,
            model=config.OPENAI_MODEL,
            timeout_seconds=config.OPENAI_TIMEOUT_SECONDS,
        )

    token_supervisor = None
    if config.GOOGLE_CLIENT_ID and config.GOOGLE_CLIENT_SECRET:
        oauth = GoogleOAuthService(config.GOOGLE_CLIENT_ID, config.GOOGLE_CLIENT_SECRET)
        token_supervisor = TokenSupervisor(
            oauth.refresh, refresh_threshold_minutes=config.REFRESH_THRESHOLD_MINUTES
        )

    assistant = Assistant.from_settings(
        config, kv=redis_client, model=model, token_supervisor=token_supervisor
    )
    return assistant, redis_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    redis_client = None
    try:
        assistant, redis_client = await build_assistant(settings)
        await assistant.start()
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        if redis_client is not None:
            try:
                await redis_client.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))
        raise

    app.state.assistant = assistant
    app.state.redis = redis_client
    logger.info(
        "All services initialized successfully",
        redis=redis_client is not None,
        model_tier=settings.model_tier_enabled(),
    )

    try:
        yield
    finally:
        # Scheduler, then queues, then the store connection
        logger.info("Application shutting down")
        try:
            await assistant.shutdown()
        except Exception as e:
            logger.error("Error during shutdown", error=str(e))
        app.state.assistant = None
        logger.info("All services closed")


app = FastAPI(
    title=settings.APP_NAME,
    description="Command dispatch, intent resolution and background jobs for calendar and docs",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(mcp.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


# Outermost middleware: the request id is bound for every inner layer
app.add_middleware(RequestContextMiddleware)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
