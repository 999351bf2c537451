"""Main FastAPI application for SkyAlert."""

import sys
import structlog
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from contextlib import asynccontextmanager

from .api.cron import router as cron_router
from .config.settings import Settings, get_settings
from .agents.flight_monitor_agent import FlightMonitorAgent
from .db.supabase_client import SupabaseDBClient
from .engine.poll_scheduler import PollScheduler
from .services.aeroapi_client import AeroAPIClient
from .services.aviationstack_client import AviationStackClient
from .services.email_client import ResendEmailClient
from .services.flight_cache import FlightCache
from .services.flight_gateway import FlightDataGateway
from .services.notification_dispatcher import NotificationDispatcher
from .services.scheduler_service import SchedulerService
from .services.webhook_client import WebhookClient

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def build_gateway(settings: Settings) -> FlightDataGateway:
    providers = [AeroAPIClient(api_key=settings.aero_api_key, timeout=settings.provider_timeout_seconds)]
    if settings.aviationstack_api_key:
        providers.append(AviationStackClient(
            api_key=settings.aviationstack_api_key,
            timeout=settings.provider_timeout_seconds
        ))
    return FlightDataGateway(providers, FlightCache(enabled=settings.flight_cache_enabled))


def build_monitor_agent(settings: Settings, gateway: FlightDataGateway) -> FlightMonitorAgent:
    """
    Wire the engine together.

    Raises:
        ValueError: Supabase is not configured
    """
    db_client = SupabaseDBClient(settings.supabase_url, settings.supabase_service_key)

    transports = [ResendEmailClient(settings.resend_api_key, settings.email_from)]
    if settings.notification_webhook_url:
        transports.append(WebhookClient(settings.notification_webhook_url))

    return FlightMonitorAgent(
        db_client=db_client,
        gateway=gateway,
        dispatcher=NotificationDispatcher(db_client, transports),
        scheduler=PollScheduler(retention_days=settings.poll_retention_days),
        batch_size=settings.fetch_batch_size,
        batch_delay_seconds=settings.fetch_batch_delay_seconds
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    settings = get_settings()
    app.state.settings = settings

    logger.info("application_starting",
        python_version=sys.version,
        environment=settings.environment,
        port=settings.port,
        deployment_time=datetime.now(timezone.utc).isoformat()
    )

    # Log configuration (safely)
    logger.info("environment_check", env_status=_config_status(settings))

    gateway = build_gateway(settings)
    app.state.gateway = gateway

    try:
        app.state.monitor_agent = build_monitor_agent(settings, gateway)
    except ValueError as e:
        app.state.monitor_agent = None
        logger.error("flight_monitor_not_configured", error=str(e))

    app.state.scheduler_service = None
    if settings.scheduler_enabled and app.state.monitor_agent is not None:
        try:
            scheduler_service = SchedulerService(
                app.state.monitor_agent,
                gateway,
                interval_minutes=settings.engine_interval_minutes
            )
            await scheduler_service.start()
            app.state.scheduler_service = scheduler_service
        except Exception as e:
            # The cron endpoints still work without the in-process scheduler
            logger.error("scheduler_startup_failed", error=str(e), error_type=type(e).__name__)

    logger.info("application_started",
        monitor_configured=app.state.monitor_agent is not None,
        scheduler_running=app.state.scheduler_service is not None
    )

    yield

    # Shutdown
    logger.info("application_shutting_down")

    try:
        if app.state.scheduler_service:
            await app.state.scheduler_service.stop()
        if app.state.monitor_agent:
            await app.state.monitor_agent.db_client.close()
        logger.info("application_shutdown_complete", success=True)
    except Exception as e:
        logger.error("application_shutdown_failed", error=str(e))


def _config_status(settings: Settings) -> dict:
    return {
        "ENVIRONMENT": settings.environment,
        "has_supabase_url": bool(settings.supabase_url),
        "has_supabase_key": bool(settings.supabase_service_key),
        "has_aero_key": bool(settings.aero_api_key),
        "has_aviationstack_key": bool(settings.aviationstack_api_key),
        "has_resend_key": bool(settings.resend_api_key),
        "has_notification_webhook": bool(settings.notification_webhook_url),
        "has_cron_key": bool(settings.cron_api_key or settings.cron_signing_key),
    }


# Create FastAPI application
app = FastAPI(
    title="SkyAlert API",
    description="Adaptive flight polling and change alerts",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(cron_router)


def _scheduler_status(request: Request) -> dict:
    scheduler_service = getattr(request.app.state, "scheduler_service", None)
    return scheduler_service.get_job_status() if scheduler_service else {"status": "not_started"}


@app.get("/")
async def root(request: Request):
    """Root endpoint."""
    return {
        "message": "SkyAlert API - flight change alerts",
        "status": "operational",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "scheduler": _scheduler_status(request)
    }


@app.get("/health")
async def health(request: Request):
    """Health check with scheduler, poll schedule and cache status."""
    settings = getattr(request.app.state, "settings", None) or get_settings()
    gateway = getattr(request.app.state, "gateway", None)
    monitor_agent = getattr(request.app.state, "monitor_agent", None)

    scheduler_status = _scheduler_status(request)

    health_status = "healthy"
    if monitor_agent is None:
        health_status = "degraded"
    elif settings.scheduler_enabled and scheduler_status.get("status") != "running":
        health_status = "warning"

    return {
        "status": health_status,
        "service": "skyalert",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": _config_status(settings),
        "scheduler": scheduler_status,
        "engine": {
            "configured": monitor_agent is not None,
            "running": monitor_agent.is_running if monitor_agent else False,
            "poll_schedule": monitor_agent.scheduler.get_stats() if monitor_agent else None,
        },
        "cache": gateway.cache_stats() if gateway else None
    }


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "skyalert.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
