"""
Startup and shutdown of the authorization service.

On shutdown new requests are refused with 503, in-flight requests are given
``SHUTDOWN_DRAIN_TIMEOUT_SECONDS`` to finish, then the shutdown steps run in
order: the audit recorder drains its queue and closes the cache store, and
only then is the database engine disposed.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, List, Optional, Tuple

from starlette.responses import JSONResponse

logger = logging.getLogger("wfm.shutdown")

ShutdownStep = Callable[[], Awaitable[None]]


class ShutdownCoordinator:
    """Counts in-flight requests and runs named shutdown steps once they have finished."""

    def __init__(self, drain_timeout: float = 30.0):
        self._drain_timeout = drain_timeout
        self._steps: List[Tuple[str, ShutdownStep]] = []
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closing = False

    @property
    def closing(self) -> bool:
        return self._closing

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def add_step(self, name: str, step: ShutdownStep) -> None:
        """Steps run in registration order."""
        self._steps.append((name, step))

    def request_started(self) -> None:
        self._in_flight += 1
        self._idle.clear()

    def request_finished(self) -> None:
        self._in_flight -= 1
        if self._in_flight <= 0:
            self._in_flight = 0
            self._idle.set()

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        logger.info(f"Shutting down with {self._in_flight} request(s) in flight")

        try:
            await asyncio.wait_for(self._idle.wait(), timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Drain timeout reached, {self._in_flight} request(s) still in flight")

        for name, step in self._steps:
            try:
                await step()
                logger.info(f"Shutdown step '{name}' done")
            except Exception as e:
                # Later steps still run so connections are released
                logger.error(f"Shutdown step '{name}' failed: {e}", exc_info=True)

        logger.info("Shutdown complete")


_coordinator: Optional[ShutdownCoordinator] = None


def get_shutdown_coordinator() -> ShutdownCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = ShutdownCoordinator()
    return _coordinator


@asynccontextmanager
async def lifespan_manager(app):
    """FastAPI lifespan: wire the authorization services, then close them in order."""
    from app.core.config import settings
    from app.core.redis_client import RedisClient
    from app.db.session import AsyncSessionLocal, engine
    from app.services.authz import AuthzServices

    global _coordinator

    # Fresh coordinator per lifespan so a previous shutdown does not keep refusing requests
    coordinator = _coordinator = ShutdownCoordinator(settings.SHUTDOWN_DRAIN_TIMEOUT_SECONDS)

    redis_client = RedisClient.from_settings(settings)
    authz = AuthzServices.build(AsyncSessionLocal, redis_client)
    await authz.start()
    app.state.authz = authz

    coordinator.add_step("drain audit recorder and close cache store", authz.stop)
    coordinator.add_step("dispose database engine", engine.dispose)
    logger.info("Authorization services started")

    try:
        yield
    finally:
        await coordinator.close()


class RequestTrackingMiddleware:
    """Refuses requests once shutdown has begun and counts the ones in flight."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        coordinator = get_shutdown_coordinator()
        if coordinator.closing:
            response = JSONResponse(
                {"error": "ServiceUnavailable", "reason": "ShuttingDown", "detail": "Service is shutting down"},
                status_code=503,
                headers={"Retry-After": "5", "Connection": "close"},
            )
            await response(scope, receive, send)
            return

        coordinator.request_started()
        try:
            await self.app(scope, receive, send)
        finally:
            coordinator.request_finished()
