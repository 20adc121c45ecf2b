"""
FastAPI app: health endpoints and the direct-enqueue intake API.

The API process only produces jobs; workers run in the fortune-worker CLI.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from fortune.config import load_settings
from fortune.container import ServiceContainer
from fortune.infrastructure.observability.logging import bind_process_mode, get_logger, setup_logging
from fortune.routes import health, jobs

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the container on startup and tear it down on shutdown."""
    settings = load_settings()
    setup_logging(log_level=settings.LOG_LEVEL)
    bind_process_mode("api")
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    container = ServiceContainer.build(settings)
    await container.initialize()
    app.state.container = container

    yield

    logger.info("Application shutting down")
    await container.close()
    app.state.container = None


app = FastAPI(
    title="Fortune Engagement",
    description="Background job dispatch and engagement scheduling",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(jobs.router)


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


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
