"""
Write gate for the HTTP request path.

Mutating requests (POST, PUT, PATCH, DELETE) are admitted only while
replication is healthy. Each gated request re-queries the replication agent
(one bounded subprocess call) instead of reading the cached flag. Reads are
never gated.

Invariants:
    - A rejected request never reaches its route handler
    - Rejection is 503 with a JSON body carrying a human-readable reason
    - An admitted request is passed through unmodified
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response

from ..replication import HealthSnapshot, ReplicationSupervisor

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class WriteGate:
    """HTTP middleware that blocks writes while replication is unhealthy.

    Attributes:
        supervisor: Source of the on-demand health check
        exempt_paths: Paths never gated (administrative endpoints)
        checkpoint_on_write: Schedule a checkpoint after each admitted write

    Example:
        >>> gate = WriteGate(supervisor)
        >>> app.middleware("http")(gate)
    """

    def __init__(
        self,
        supervisor: ReplicationSupervisor,
        exempt_paths: tuple[str, ...] = ("/api/checkpoint",),
        checkpoint_on_write: bool = False,
    ) -> None:
        self.supervisor = supervisor
        self.exempt_paths = exempt_paths
        self.checkpoint_on_write = checkpoint_on_write

    def is_gated(self, request: Request) -> bool:
        return request.method in MUTATING_METHODS and request.url.path not in self.exempt_paths

    async def evaluate(self) -> HealthSnapshot:
        """Re-query replication health and return the resulting snapshot."""
        await run_in_threadpool(self.supervisor.check_health)
        return self.supervisor.health.snapshot()

    async def __call__(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if not self.is_gated(request):
            return await call_next(request)

        snapshot = await self.evaluate()
        if not snapshot.healthy:
            logger.warning(
                "Rejected write: replication unhealthy",
                extra={"method": request.method, "path": request.url.path, "reason": snapshot.reason},
            )
            return JSONResponse(
                status_code=503,
                content={
                    "error": f"Writes are temporarily unavailable: {snapshot.reason}",
                    "error_code": "REPLICATION_UNHEALTHY",
                },
            )

        response = await call_next(request)
        if self.checkpoint_on_write and response.status_code < 400:
            loop = asyncio.get_running_loop()
            loop.run_in_executor(None, self._checkpoint_after_write, request.url.path)
        return response

    def _checkpoint_after_write(self, path: str) -> None:
        try:
            self.supervisor.checkpoint()
        except Exception as e:
            logger.warning(f"Failed to checkpoint after write: {e}", extra={"path": path})
            return
        logger.debug("Checkpoint completed after write", extra={"path": path})
