"""FaultMaven SSO Service

Main FastAPI application entry point.
Organization single sign-on over SAML 2.0 and OpenID Connect.
"""

import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sso_service.api import connections, sso
from sso_service.config.settings import get_settings
from sso_service.database import close_db
from sso_service.errors import SSOError
from sso_service.infrastructure.redis.client import close_redis_client, get_redis_client

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"{settings.service_name}@{settings.service_version}",
        traces_sample_rate=0.1,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info(f"Starting {settings.service_name} v{settings.service_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"SSO state backend: {settings.state_backend}")

    if settings.state_backend == "redis":
        try:
            await get_redis_client()
            logger.info("Redis connection established")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    yield

    # Shutdown
    logger.info("Shutting down SSO Service")
    await close_redis_client()
    await close_db()
    logger.info("Connections closed")


# Create FastAPI application
app = FastAPI(
    title="FaultMaven SSO Service",
    version=settings.service_version,
    description="Organization single sign-on (SAML 2.0 and OIDC)",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


# Health check endpoint
@app.get("/health")
async def root_health_check():
    """Root health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "version": settings.service_version,
        "environment": settings.environment
    }


@app.get("/")
async def root():
    """Root endpoint with service information"""
    return {
        "service": settings.service_name,
        "version": settings.service_version,
        "description": "FaultMaven SSO Service",
        "docs": "/docs",
        "health": "/health"
    }


app.include_router(sso.router)
app.include_router(connections.router)


@app.exception_handler(SSOError)
async def sso_error_handler(request: Request, exc: SSOError):
    """Render SSO failures with their generic message; the reason stays in the log"""
    logger.info(f"SSO request failed on {request.url.path}: {exc.code} ({exc.reason})")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.public_message}
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later."
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "sso_service.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
