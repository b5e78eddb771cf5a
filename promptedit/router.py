"""
================================================================================
PROMPTEDIT - FastAPI Router
================================================================================
HTTP surface of the prompt-to-edit engine.

Endpoints:
- POST /api/process                - Interpret a prompt and run the edit plan
- GET  /api/download/{filename}    - Download an output artifact
- GET  /api/videos/{filename}      - Stream an output artifact inline
- GET  /api/outputs                - List stored output artifacts
- POST /api/upload                 - Upload one source video (field "video")
- POST /api/upload-multiple        - Upload several source videos (field "videos")
- GET  /api/health                 - Editor health with FFmpeg version

Author: PromptEdit | v1.0
================================================================================
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import EditorConfig
from .errors import EditorError, NotFoundError, ValidationError
from .executor import ActionExecutor
from .interpreter import InstructionInterpreter, create_interpreter
from .media_provider import FFmpegMediaProvider, MediaOperationProvider
from .metrics import REQUESTS
from .registry import OutputRegistry
from .uploads import UploadStore
from .validator import PlanValidator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["PromptEdit"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class ProcessRequest(BaseModel):
    """Prompt plus previously uploaded input references"""
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = ""
    file_paths: List[str] = Field(default_factory=list, alias="filePaths")


class EditorHealthResponse(BaseModel):
    status: str
    version: str
    ffmpeg_version: str
    interpreter: str
    active_plans: int
    circuit: Optional[Dict[str, Any]] = None


# Global state (initialized from the application lifespan)
provider: Optional[MediaOperationProvider] = None
interpreter: Optional[InstructionInterpreter] = None
registry: Optional[OutputRegistry] = None
uploads: Optional[UploadStore] = None
executor: Optional[ActionExecutor] = None


def initialize_editor(
    output_dir: Optional[Path] = None,
    upload_dir: Optional[Path] = None,
    work_dir: Optional[Path] = None,
    media_provider: Optional[MediaOperationProvider] = None,
    instruction_interpreter: Optional[InstructionInterpreter] = None,
    plan_timeout: Optional[float] = None,
    default_font: Optional[str] = None,
    font_dir: Optional[Path] = None,
):
    """Initialize editor components (called from the application lifespan)"""
    global provider, interpreter, registry, uploads, executor

    provider = media_provider or FFmpegMediaProvider()
    interpreter = instruction_interpreter or create_interpreter()
    registry = OutputRegistry(output_dir or EditorConfig.OUTPUT_DIR)
    uploads = UploadStore(upload_dir or EditorConfig.UPLOAD_DIR)
    executor = ActionExecutor(
        provider=provider,
        registry=registry,
        validator=PlanValidator(),
        work_dir=work_dir,
        default_font=default_font,
        font_dir=font_dir,
        plan_timeout=plan_timeout
    )

    logger.info(f"PromptEdit initialized (interpreter={interpreter.name}, outputs={registry.root})")


def _require_initialized():
    if executor is None or interpreter is None:
        raise HTTPException(status_code=503, detail="Editor not initialized")


def _failure(error: EditorError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content={"success": False, "error": error.message})


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/process")
async def process_video(request: ProcessRequest):
    """Interpret the prompt, validate it against the inputs, and run the plan."""
    _require_initialized()

    action = "unknown"
    try:
        if not request.prompt.strip():
            raise ValidationError("A prompt is required")

        instruction = await interpreter.interpret(request.prompt)
        action = instruction.action
        logger.info(f"[PromptEdit] Prompt interpreted as {action}: {instruction.model_dump(exclude_none=True)}")

        inputs = [uploads.resolve(ref) for ref in request.file_paths]
        result = await executor.execute(instruction, inputs)
    except EditorError as e:
        REQUESTS.labels(action=action, outcome="error").inc()
        logger.warning(f"[PromptEdit] {action} request failed ({e.status_code}): {e.message}")
        return _failure(e)
    except Exception as e:
        REQUESTS.labels(action=action, outcome="error").inc()
        logger.exception(f"[PromptEdit] Unexpected error processing {action}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    REQUESTS.labels(action=action, outcome="success").inc()
    return {
        "success": True,
        "nlpResponse": result.narrative,
        "outputPaths": result.output_names,
        "planId": result.plan_id
    }


@router.get("/download/{filename}")
async def download_output(filename: str):
    """Download a named output artifact as an attachment"""
    _require_initialized()
    try:
        artifact = registry.resolve(filename)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="File not found")

    return FileResponse(artifact.path, media_type="video/mp4", filename=artifact.name)


@router.get("/videos/{filename}")
async def stream_output(filename: str):
    """Serve a named output artifact inline (for <video> playback)"""
    _require_initialized()
    try:
        artifact = registry.resolve(filename)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="File not found")

    return FileResponse(artifact.path, media_type="video/mp4")


@router.get("/outputs")
async def list_outputs():
    """List stored output artifacts, newest first"""
    _require_initialized()
    outputs = registry.list()
    return {"count": len(outputs), "outputs": outputs}


@router.post("/upload")
async def upload_video(video: Optional[UploadFile] = File(None)):
    """Upload a single source video"""
    _require_initialized()
    if video is None or not video.filename:
        raise HTTPException(status_code=400, detail="No video file uploaded")

    path = await uploads.save(video, field_name="video")
    return {"filename": path.name, "filePath": str(path)}


@router.post("/upload-multiple")
async def upload_videos(videos: Optional[List[UploadFile]] = File(None)):
    """Upload several source videos at once"""
    _require_initialized()
    videos = [v for v in (videos or []) if v.filename]
    if not videos:
        raise HTTPException(status_code=400, detail="No video files uploaded")
    if len(videos) > EditorConfig.MAX_UPLOAD_FILES:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files: {len(videos)} (max {EditorConfig.MAX_UPLOAD_FILES})"
        )

    paths = [await uploads.save(v, field_name="videos") for v in videos]
    return {"filePaths": [str(p) for p in paths]}


@router.get("/health", response_model=EditorHealthResponse)
async def editor_health():
    """Editor health check"""
    version = "unavailable"
    check_version = getattr(provider, "check_version", None)
    if check_version:
        try:
            version = await asyncio.wait_for(check_version(), timeout=5.0)
        except asyncio.TimeoutError:
            version = "unavailable"

    breaker = getattr(provider, "breaker", None)
    return EditorHealthResponse(
        status="healthy" if executor else "initializing",
        version="1.0.0",
        ffmpeg_version=version[:60] if version else "unknown",
        interpreter=interpreter.name if interpreter else "none",
        active_plans=len(executor.active_plans) if executor else 0,
        circuit=breaker.stats() if breaker else None
    )
