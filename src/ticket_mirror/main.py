"""
Ticket Mirror - Main Application
================================

Hybrid ServiceNow ticket cache with SLA compliance tracking.

Modules:
- Tickets: local-first resolution, change detection, audit trail, table sync
- SLA: business-hours tracking, breach detection, compliance metrics
- Warmup: priority-ordered proactive cache population

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, ServiceNow client, Redis change feed

The lifespan below is the single composition root: every service is built
here and handed to its collaborators explicitly.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ticket_mirror.config import Settings, get_settings
from ticket_mirror.infrastructure.database import Database
from ticket_mirror.services import TicketMirrorService
from ticket_mirror.shared.api import install_middleware
from ticket_mirror.shared.infrastructure.logging import get_logger, setup_logging
from ticket_mirror.shared.infrastructure.scheduler import JobScheduler
from ticket_mirror.sla.application import SLAService
from ticket_mirror.sla.infrastructure import SLAPolicyManager, SQLAlchemySLARecordRepository
from ticket_mirror.sla.interfaces import sla_router
from ticket_mirror.tickets.application import HybridResolver, TicketSyncService, TicketWriter
from ticket_mirror.tickets.infrastructure import (
    CircuitBreaker,
    ServiceNowClient,
    ServiceNowRemoteSource,
    SQLAlchemyTicketStore,
)
from ticket_mirror.tickets.interfaces import tickets_router
from ticket_mirror.warmup.application import WarmupScheduler
from ticket_mirror.warmup.infrastructure import RedisChangeFeed
from ticket_mirror.warmup.interfaces import warmup_router

logger = get_logger(__name__)


@dataclass
class AppContainer:
    """Everything the lifespan starts and later has to stop."""
    mirror: TicketMirrorService
    database: Database
    client: ServiceNowClient
    policy_manager: SLAPolicyManager
    jobs: JobScheduler
    change_feed: Optional[RedisChangeFeed] = None


def build_container(settings: Settings) -> AppContainer:
    """Wire all services for ``settings``."""
    database = Database.from_url(
        settings.database_url,
        echo=settings.debug,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
    store = SQLAlchemyTicketStore(database)

    policy_manager = SLAPolicyManager(default_timezone=settings.business_timezone)
    policy_manager.load(settings.sla_config_path)

    sla_service = SLAService(SQLAlchemySLARecordRepository(database), policy_manager, store)
    writer = TicketWriter(store, policy_manager, sla_tracker=sla_service)

    client = ServiceNowClient(
        settings.servicenow_instance_url,
        username=settings.servicenow_username,
        password=settings.servicenow_password,
        timeout_seconds=settings.servicenow_timeout_seconds,
        max_retries=settings.servicenow_max_retries,
        retry_after_seconds=settings.upstream_retry_after_seconds,
        circuit_breaker=CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.circuit_recovery_seconds,
        ),
    )
    remote = ServiceNowRemoteSource(client)

    resolver = HybridResolver(
        store, remote, writer, retry_after_seconds=settings.upstream_retry_after_seconds
    )
    warmup = WarmupScheduler(
        resolver, remote=remote, chunk_delay_seconds=settings.warmup_chunk_delay_seconds
    )
    sync_service = TicketSyncService(
        remote, writer, page_size=settings.sync_page_size, delta_hours=settings.sync_delta_hours
    )

    mirror = TicketMirrorService(
        store,
        resolver,
        sla_service,
        warmup,
        sync_service,
        remote_timeout_seconds=settings.remote_call_timeout_seconds,
    )

    jobs = JobScheduler()
    jobs.add_interval_job(
        "sla_check",
        mirror.check_slas,
        seconds=policy_manager.get_policy().check_interval_minutes * 60,
        name="SLA Check Job",
    )

    async def drain_warmup() -> None:
        await warmup.drain(timeout=settings.warmup_drain_timeout_seconds)

    jobs.add_interval_job(
        "warmup_drain", drain_warmup, seconds=settings.warmup_interval_seconds, name="Warmup Drain Job"
    )

    async def incremental_sync() -> None:
        await sync_service.sync_tables(settings.sync_tables, incremental=True)

    jobs.add_interval_job(
        "incremental_sync", incremental_sync, seconds=settings.sync_interval_seconds, name="Incremental Sync Job"
    )

    change_feed = None
    if settings.redis_url:
        change_feed = RedisChangeFeed(warmup, redis_url=settings.redis_url, stream=settings.change_stream)

    return AppContainer(
        mirror=mirror,
        database=database,
        client=client,
        policy_manager=policy_manager,
        jobs=jobs,
        change_feed=change_feed,
    )


def create_app(
    settings: Optional[Settings] = None,
    mirror: Optional[TicketMirrorService] = None,
) -> FastAPI:
    """
    Application factory.

    Passing ``mirror`` skips the infrastructure wiring entirely; tests use
    it to run the routes against in-memory fakes.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        STARTUP: logging, database tables, SLA policy watcher, background
        jobs, change feed. SHUTDOWN in reverse order.
        """
        app.state.settings = settings
        if mirror is not None:
            app.state.mirror = mirror
            yield
            return

        setup_logging(settings.log_level, settings.environment, settings.app_name)
        logger.info("Starting Ticket Mirror", extra={
            "version": settings.app_version,
            "environment": settings.environment
        })

        container = build_container(settings)
        await container.database.create_tables()

        container.policy_manager.start_watching()
        await container.jobs.start()
        if container.change_feed is not None:
            container.change_feed.start()

        app.state.mirror = container.mirror
        app.state.container = container
        logger.info("Ticket Mirror started")

        yield

        logger.info("Shutting down Ticket Mirror")
        if container.change_feed is not None:
            await container.change_feed.stop()
        await container.jobs.stop()
        container.policy_manager.stop_watching()
        await container.client.close()
        await container.database.close()
        logger.info("Ticket Mirror shutdown complete")

    app = FastAPI(
        title="Ticket Mirror API",
        description="Local-first ServiceNow ticket cache with SLA compliance tracking.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_middleware(app)

    app.include_router(tickets_router)
    app.include_router(sla_router)
    app.include_router(warmup_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint for load balancers and orchestrators."""
        service: TicketMirrorService = request.app.state.mirror
        container: Optional[AppContainer] = getattr(request.app.state, "container", None)
        sync_health = service.sync_service.health_status()
        checks = {
            "sync": sync_health,
            "warmup_draining": service.warmup.is_draining,
        }
        if container is not None:
            checks["scheduler"] = "running" if container.jobs.is_running else "stopped"
            checks["servicenow_circuit"] = container.client.circuit_breaker.state
            checks["change_feed"] = "enabled" if container.change_feed else "disabled"
        return {
            "status": "healthy" if sync_health == "healthy" else sync_health,
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks,
        }

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
            "health": "/health",
        }

    return app


def run() -> None:
    """Console entry point."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
