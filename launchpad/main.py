import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from launchpad.config import settings
from launchpad.core.dependencies import Services
from launchpad.core.errors import LaunchpadError, ValidationError
from launchpad.modules.deployments import process_registry
from launchpad.modules.deployments import routes as deployments_routes
from launchpad.modules.jobs import routes as jobs_routes
from launchpad.modules.jobs.tracker import retention_loop
from launchpad.modules.manifests import routes as manifests_routes
from launchpad.modules.tenants import routes as tenants_routes

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
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(LaunchpadError)
async def launchpad_exception_handler(request: Request, exc: LaunchpadError):
    if exc.status_code >= 500:
        logger.error(f"{exc.kind} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())[1:]), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    error = ValidationError("Invalid request", details={"errors": errors})
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"error": "InternalError", "message": "Internal server error"})
    return JSONResponse(status_code=500, content={"error": "InternalError", "message": str(exc)})


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
app.include_router(tenants_routes.router, prefix="/api")
app.include_router(deployments_routes.router, prefix="/api")
app.include_router(jobs_routes.router, prefix="/api")
app.include_router(manifests_routes.router, prefix="/api")

_background_tasks = set()


@app.on_event("startup")
async def startup_event():
    logger.info("Application startup")

    sweeper = asyncio.create_task(retention_loop(Services.tracker(), settings.job_sweep_interval_seconds))
    _background_tasks.add(sweeper)
    logger.info(f"Job sweeper started - reclaiming finished jobs every {settings.job_sweep_interval_seconds:g}s")

    if settings.auto_connect_on_startup:
        result = await Services.connection().ensure_connection_stack()
        if result.ok:
            logger.info(f"Control-plane account connected: {result.role_arn}")
        else:
            logger.warning(f"Automatic connection setup failed: {result.error}. The service will start, but AWS operations may fail")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Application shutdown")
    for task in _background_tasks:
        task.cancel()
    _background_tasks.clear()
    await process_registry.terminate_all()


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.app_name}", "status": "healthy"}


@app.get("/health")
@app.get("/api/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}
