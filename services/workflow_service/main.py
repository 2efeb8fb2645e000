# main.py - FastAPI app entry point for the workflow_service
# This file initializes and runs the FastAPI application for task execution and auto-progression.

import logging
import sys
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, project_root)

from services.workflow_service.config import settings
from services.workflow_service.routes import tasks
from services.workflow_service.workflow_engine import create_engine

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info(f"Starting {settings.service_name} on port {settings.service_port}")

    if getattr(app.state, "engine", None) is None:
        app.state.engine = create_engine(settings)

    ping = getattr(app.state.engine.store, "ping", None)
    if ping is not None:
        try:
            ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            raise

    yield

    # Shutdown
    logger.info("Shutting down workflow service...")
    await app.state.engine.close()
    logger.info("Workflow service shutdown complete")

# Create FastAPI app
app = FastAPI(
    title="Practice Workflow Service",
    description="Runs task automation, AI agent review and workflow auto-progression",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(tasks.router)

@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": settings.service_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "health": "/health"
    }

@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    engine = getattr(app.state, "engine", None)
    store_status = "unknown"
    if engine is not None:
        ping = getattr(engine.store, "ping", None)
        try:
            store_status = "healthy" if ping is None or ping() else "unhealthy"
        except Exception:
            store_status = "unhealthy"

    return {
        "status": "healthy" if store_status == "healthy" else "degraded",
        "service": settings.service_name,
        "components": {
            "store": store_status,
            "agents": [d.agent_id for d in engine.agent_gateway.registry.list_agents()] if engine else []
        }
    }

if __name__ == "__main__":
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=settings.service_port,
        reload=False,
        log_level=settings.log_level.lower()
    )
