"""
================================================================================
PROMPTEDIT API v1.0
================================================================================
FastAPI application for prompt-driven video editing.

Endpoints:
- POST /api/process              - Prompt + uploaded videos -> edited outputs
- GET  /api/download/{filename}  - Download an output
- POST /api/upload               - Upload a source video
- POST /api/upload-multiple      - Upload several source videos
- GET  /health                   - Health check
- GET  /metrics                  - Prometheus metrics

================================================================================
Author: PromptEdit | Version: 1.0.0
================================================================================
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from promptedit import __version__
from promptedit import router as editor
from promptedit.config import EditorConfig

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
)
logger = logging.getLogger(__name__)

START_TIME = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    logger.info("Starting PromptEdit API...")

    EditorConfig.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    EditorConfig.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    EditorConfig.WORK_DIR.mkdir(parents=True, exist_ok=True)

    editor.initialize_editor()

    version = await editor.provider.check_version()
    logger.info(f"FFmpeg: {version}")
    logger.info("PromptEdit API ready")

    yield

    logger.info("Shutting down PromptEdit API...")


# Create FastAPI app
app = FastAPI(
    title="PromptEdit API",
    description="""
    Natural-language video editing.

    ## Flow
    1. Upload one or more videos
    2. Describe the edit ("cut the video from 10 to 20 seconds")
    3. Download the outputs
    """,
    version=__version__,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=EditorConfig.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(editor.router)


# =============================================================================
# HEALTH & METRICS
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness check"""
    return {
        "status": "healthy" if editor.executor else "initializing",
        "version": __version__,
        "uptime_seconds": time.time() - START_TIME,
        "interpreter": editor.interpreter.name if editor.interpreter else "none"
    }


@app.get("/metrics", tags=["Observability"])
async def prometheus_metrics():
    """Prometheus metrics endpoint"""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info"""
    return {
        "name": "PromptEdit API",
        "version": __version__,
        "status": "operational",
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics"
    }


# =============================================================================
# RUN SERVER
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "promptedit_api:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True
    )
