"""
Ghardaar CRM - FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .database import init_db
from .routers import (
    crm_import_router,
    crm_clients_router,
    crm_sheets_router,
    activity_router,
    realtime_router,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Ghardaar CRM API...")
    init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down Ghardaar CRM API...")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="CRM for property leads: CSV import, inline edits, calling comments and live updates",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]
cors_origins.extend(settings.cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(crm_import_router)
app.include_router(crm_clients_router)
app.include_router(crm_sheets_router)
app.include_router(activity_router)
app.include_router(realtime_router)


@app.get("/api")
def api_root():
    """API root endpoint - API info."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
