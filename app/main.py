import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from app.config import settings
from app.core.components import build_components
from app.core.exceptions import InfrastructureError, ValidationError
from app.database.supabase_client import SupabaseClient, get_audit_emitter, get_authorization_backend
from app.modules.auth import routes as auth_routes
from app.modules.permissions import routes as permissions_routes
from app.modules.permissions.sweeper import cache_sweeper_loop
from app.modules.tenants import routes as tenants_routes

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.state.authz = None
app.state.sweeper_task = None
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(InfrastructureError)
async def infrastructure_error_handler(request: Request, exc: InfrastructureError):
    logger.error("Authorization backend failure: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "Authorization backend unavailable"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


class SecurityHeadersMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].extend([
                    (b"X-Content-Type-Options", b"nosniff"),
                    (b"X-Frame-Options", b"DENY"),
                    (b"X-XSS-Protection", b"1; mode=block"),
                ])
            await send(message)

        await self.app(scope, receive, send_with_headers)


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include module routes
app.include_router(auth_routes.router, prefix="/api/v1")
app.include_router(permissions_routes.router, prefix="/api/v1")
app.include_router(tenants_routes.router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    logger.info("Application startup")

    if app.state.authz is None:
        if SupabaseClient.is_configured():
            app.state.authz = build_components(get_authorization_backend(), get_audit_emitter())
        else:
            logger.warning("Supabase is not configured; permission endpoints will return 503")

    if app.state.authz is not None and settings.cache_sweep_interval_seconds > 0:
        app.state.sweeper_task = asyncio.create_task(
            cache_sweeper_loop(
                app.state.authz.resolver,
                settings.cache_sweep_interval_seconds,
                sessions=app.state.authz.sessions,
            )
        )
        logger.info(f"Permission cache sweeper started - every {settings.cache_sweep_interval_seconds}s")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Application shutdown")
    task = app.state.sweeper_task
    if task is not None:
        task.cancel()
        app.state.sweeper_task = None
    if app.state.authz is not None:
        await app.state.authz.audit.drain()


@app.get("/")
async def root():
    return {"message": "Welcome to tenant-authz", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness probe: ready once the permission core is built."""
    if app.state.authz is None:
        return JSONResponse(status_code=503, content={"status": "not ready"})
    return {"status": "ready"}
