"""
Graph Engine Backend Server

FastAPI server exposing the graph builder:
- node type catalog
- graph build / validate
- legacy API-format import
"""

import os
import sys
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Add parent directory for imports
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, BASE_DIR)

from settings.settings_manager import SettingsManager
from graph_engine import GraphBuilder, DEFAULT_REGISTRY
from backend.routes import graph

# Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger("ComfyGraph")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting graph engine backend...")
    logger.info(f"Settings: {app.state.settings.settings_path}")
    logger.info(f"Node registry: {len(DEFAULT_REGISTRY)} node types")
    yield
    logger.info("Shutdown complete")


def create_app(settings_manager: Optional[SettingsManager] = None) -> FastAPI:
    """Build the FastAPI app; pass a SettingsManager to override the default one."""
    settings_manager = settings_manager or SettingsManager()
    level = str(settings_manager.get("logging.level", "INFO")).upper()
    logging.getLogger().setLevel(getattr(logging, level, logging.INFO))

    app = FastAPI(
        title="ComfyGraph",
        description="Builds and validates ComfyUI graph documents from intent steps",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store in app state for route access
    app.state.settings = settings_manager
    app.state.graph_builder = GraphBuilder.from_settings(settings_manager)

    app.include_router(graph.router, prefix="/api/graph", tags=["Graph"])

    @app.get("/api/health", tags=["System"])
    async def health():
        return {"status": "ok", "node_types": len(DEFAULT_REGISTRY)}

    return app
