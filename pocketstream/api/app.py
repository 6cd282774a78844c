"""
FastAPI application factory for the pocketstream host.

This module creates the app with:
- Replication lifecycle (prepare, start, first health check) in docker profile
- Bucket provisioning when files live in an object store (APP_MODE=s3)
- Superuser provisioning through the web application's CLI
- Launching the web application in the background once storage is ready
- The write gate as HTTP middleware
- Administrative routes, then forwarding of everything else to the application
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from .._version import __version__
from ..config import AppConfig, AppMode, ContainerConfig
from ..errors import CommandError
from ..process import ProcessController
from ..replication import ReplicationSupervisor
from ..storage import ensure_buckets
from .proxy import AppProxy
from .proxy import router as proxy_router
from .routes import router
from .write_gate import WriteGate

logger = logging.getLogger(__name__)


def provision_superuser(controller: ProcessController, app_config: AppConfig) -> bool:
    """Create or update the admin superuser; failures are logged only."""
    command = [
        app_config.binary,
        "superuser",
        "upsert",
        app_config.admin_email,
        app_config.admin_password,
    ]
    try:
        result = controller.run(command)
    except CommandError:
        logger.error("Superuser upsert could not run", extra={"binary": app_config.binary})
        return False

    if not result.ok:
        logger.error("Superuser upsert failed", extra={"returncode": result.returncode})
        return False

    logger.info("Superuser upserted", extra={"email": app_config.admin_email})
    return True


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Bring up storage and replication before serving requests."""
    config: ContainerConfig = app.state.config
    supervisor: ReplicationSupervisor = app.state.supervisor

    if config.app.mode == AppMode.S3:
        await ensure_buckets(config.s3)

    if config.replication_enabled:
        await run_in_threadpool(supervisor.prepare)
        await run_in_threadpool(supervisor.start)
        await run_in_threadpool(supervisor.check_health)
        await run_in_threadpool(provision_superuser, supervisor.controller, config.app)

    app_process = None
    if config.app.launch:
        app_process = await run_in_threadpool(
            supervisor.controller.start_background, config.app.serve_command
        )

    try:
        yield
    finally:
        if app_process is not None:
            await run_in_threadpool(app_process.stop)
        await app.state.proxy.close()


def create_app(
    config: ContainerConfig,
    supervisor: ReplicationSupervisor | None = None,
    proxy: AppProxy | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Container configuration
        supervisor: Replication supervisor (built from config if not provided)
        proxy: Forwarder to the web application (built from config if not provided)
    """
    supervisor = supervisor or ReplicationSupervisor(config.litestream, ProcessController())

    app = FastAPI(
        title="pocketstream",
        description="Single-node service host with replicated SQLite storage.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.supervisor = supervisor
    app.state.proxy = proxy or AppProxy(config.app.upstream_url)

    if config.replication_enabled and config.app.write_gate_enabled:
        gate = WriteGate(supervisor, checkpoint_on_write=config.app.checkpoint_on_write)
        app.middleware("http")(gate)

    app.include_router(router)
    app.include_router(proxy_router)
    return app
