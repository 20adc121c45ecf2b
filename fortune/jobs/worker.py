"""
Background worker runner.

Reads the process mode from CLI args or the WORKER_MODE environment
variable, builds the service container and runs the matching coroutine.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from fortune.config import Settings, load_settings
from fortune.container import ServiceContainer
from fortune.infrastructure.observability.logging import bind_process_mode, get_logger, setup_logging

logger = get_logger(__name__)

ModeCoroutine = Callable[[ServiceContainer], Awaitable[None]]


async def run_workers(container: ServiceContainer) -> None:
    """Bind every queue handler and schedule, then poll until cancelled."""
    await container.start_workers()
    await asyncio.Event().wait()


async def run_reaper(container: ServiceContainer) -> None:
    cleaned = await container.reaper.run_once()
    logger.info("Stale-lock cleanup finished", cleaned_count=cleaned)


async def run_morning_dispatch(container: ServiceContainer) -> None:
    result = await container.dispatcher.dispatch_morning_insights()
    logger.info("Manual morning dispatch finished", **result.to_dict())


async def run_evening_dispatch(container: ServiceContainer) -> None:
    result = await container.dispatcher.dispatch_evening_insights()
    logger.info("Manual evening dispatch finished", **result.to_dict())


MODE_REGISTRY: dict[str, ModeCoroutine] = {
    "worker": run_workers,
    "reap": run_reaper,
    "dispatch-morning": run_morning_dispatch,
    "dispatch-evening": run_evening_dispatch,
}


def _resolve_mode() -> str:
    """Pick the mode from CLI args or WORKER_MODE env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_MODE", "worker").strip().lower()


async def run_worker(mode: str | None = None, settings: Settings | None = None) -> None:
    """Run the requested mode inside a fully initialized container."""
    name = (mode or _resolve_mode()).strip().lower()
    if name not in MODE_REGISTRY:
        raise ValueError(
            f"Unknown worker mode '{name}'. "
            f"Available modes: {', '.join(sorted(MODE_REGISTRY.keys()))}"
        )

    settings = settings or load_settings()
    setup_logging(log_level=settings.LOG_LEVEL)
    bind_process_mode(name)

    container = ServiceContainer.build(settings)
    await container.initialize()
    logger.info("Starting background worker", mode=name)
    try:
        await MODE_REGISTRY[name](container)
    finally:
        await container.close()


def main() -> None:
    """CLI entrypoint."""
    mode = _resolve_mode()
    try:
        asyncio.run(run_worker(mode))
    except KeyboardInterrupt:
        logger.info("Worker interrupted, shutting down")


if __name__ == "__main__":
    main()
