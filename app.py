"""Main FastAPI application hosting the plugin runtime."""

import logging
import os
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

# Configure logging BEFORE importing any modules that use logger
log_level = os.getenv('LOG_LEVEL', 'INFO')
logging.basicConfig(
    level=getattr(logging, log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Import after logging is configured
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from plugin_runtime.dependencies import get_plugin_manager
from plugin_runtime.routers.plugins import router as plugins_router

# Create FastAPI app
app = FastAPI(
    title="Plugin Runtime",
    description="Loads plugins, runs their hooks per organization and bridges MCP tool calls",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(plugins_router)  # /api/plugins endpoints


@app.get("/")
async def root():
    return {"message": "Plugin Runtime API", "docs": "/docs"}


@app.get("/health")
async def health():
    manager = get_plugin_manager()
    return {"status": "ok", "plugins": len(manager.hosts)}


@app.on_event("startup")
async def startup_event():
    """Application startup event."""
    logger.info("Starting Plugin Runtime")
    manager = get_plugin_manager()
    await manager.load_all()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event."""
    logger.info("Shutting down Plugin Runtime")
    await get_plugin_manager().stop_all()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "9090"))
    uvicorn.run("app:app", host="0.0.0.0", port=port, reload=False)
