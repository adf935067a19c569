"""
Space Access - Backend API
FastAPI + SQLModel: issue and redeem single-use access credentials
"""
from dotenv import load_dotenv
load_dotenv()  # Load .env before any other imports

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.deps import AccessServices
from api.v1 import access, audit, unlock
from config import settings
from domain.access import CredentialIssuer, RedemptionEngine, TimeWindowPolicy, TotpGenerator
from domain.clock import Clock, utcnow
from domain.access.expiry import sweep_expired
from infrastructure.audit import AuditLogger
from infrastructure.database import CredentialStore, SqlCredentialStore, dispose_engine, get_session_maker, init_db
from infrastructure.locks import HttpLockActuator, LockActuator, SimulatedLockActuator

# Setup structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ]
)

logger = structlog.get_logger()


def build_actuator() -> LockActuator:
    if settings.lock_backend == "http":
        return HttpLockActuator(
            base_url=settings.lock_base_url,
            username=settings.lock_user,
            password=settings.lock_password,
            timeout=settings.lock_timeout_seconds,
        )
    return SimulatedLockActuator(
        latency_seconds=settings.lock_simulated_latency_seconds,
        success_rate=settings.lock_simulated_success_rate,
    )


def build_services(
    store: CredentialStore,
    *,
    actuator: Optional[LockActuator] = None,
    clock: Clock = utcnow,
) -> AccessServices:
    """Wire the access components around one store handle"""
    audit_logger = AuditLogger(store)
    policy = TimeWindowPolicy(default_timezone=settings.default_timezone)
    totp = TotpGenerator(
        digits=settings.otp_digits,
        step_seconds=settings.otp_step_seconds,
        window=settings.otp_window,
    )

    issuer = CredentialIssuer(
        store,
        audit_logger,
        policy,
        totp=totp,
        clock=clock,
        max_active_per_subject=settings.max_active_credentials_per_subject,
    )
    engine = RedemptionEngine(
        store,
        audit_logger,
        policy,
        actuator or build_actuator(),
        totp=totp,
        clock=clock,
        actuator_timeout=settings.lock_timeout_seconds,
    )
    return AccessServices(store=store, audit=audit_logger, issuer=issuer, engine=engine)


async def _every(seconds: float, name: str, job) -> None:
    """Run ``job`` forever at a fixed interval; exits on cancellation."""
    while True:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("background_job_failed", job=name, error=str(e))
        await asyncio.sleep(seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    owns_engine = app.state.services is None
    if owns_engine:
        await init_db()
        app.state.services = build_services(SqlCredentialStore(get_session_maker()))

    services: AccessServices = app.state.services
    jobs = []
    if settings.expiry_sweep_interval_seconds > 0:
        jobs.append(asyncio.create_task(_every(
            settings.expiry_sweep_interval_seconds,
            "expiry_sweep",
            lambda: sweep_expired(services.store, services.audit),
        )))
    if settings.audit_retry_interval_seconds > 0:
        jobs.append(asyncio.create_task(_every(
            settings.audit_retry_interval_seconds,
            "audit_retry",
            services.audit.flush_pending,
        )))

    logger.info("backend_started", lock_backend=settings.lock_backend, background_jobs=len(jobs))

    yield

    # Shutdown
    for job in jobs:
        job.cancel()
        with suppress(asyncio.CancelledError):
            await job
    await services.audit.flush_pending()
    if owns_engine:
        await dispose_engine()
    logger.info("backend_stopped", pending_audit_events=services.audit.pending_count)


def create_app(services: Optional[AccessServices] = None) -> FastAPI:
    app = FastAPI(
        title="Space Access API",
        description="Temporary single-use access credentials for lockable spaces",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.services = services

    allowed_origins = [o.strip() for o in (settings.allowed_origins or "").split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or [f"http://localhost:{port}" for port in range(3000, 3007)],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": {"error": "Validation error", "reason": "invalid_input", "details": jsonable_encoder(exc.errors())}},
        )

    # Routers
    app.include_router(access.router, prefix="/api/v1/access", tags=["access"])
    app.include_router(unlock.router, prefix="/api/v1/unlock", tags=["unlock"])
    app.include_router(audit.router, prefix="/api/v1/audit", tags=["audit"])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": settings.service_name}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level="info"
    )
