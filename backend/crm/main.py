"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crm.config import settings
from crm.database import AsyncSessionLocal, engine, init_models
from crm.exceptions import CRMError
from crm.pipeline_config import get_pipeline_config
from crm.routers import contact_routes, pipeline_config_routes
from crm.services.contact_orchestrator import ContactWriteOrchestrator

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and wire the orchestrator on startup."""
    await init_models(engine)
    app.state.orchestrator = ContactWriteOrchestrator.build(AsyncSessionLocal, get_pipeline_config())
    logger.info(f"✅ Contact engine ready ({settings.ENVIRONMENT})")
    yield
    await engine.dispose()


# Create FastAPI app
app = FastAPI(
    title="Contact Funnel API",
    description="Multi-tenant contact deduplication and pipeline conversion engine",
    version="1.0.0",
    redirect_slashes=False,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CRMError)
async def crm_error_handler(request: Request, exc: CRMError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.error}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ============================================
# ROUTER REGISTRATION
# ============================================

app.include_router(contact_routes.router)
app.include_router(pipeline_config_routes.router)


@app.get("/")
async def root():
    return {
        "message": "Contact Funnel API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
