"""
================================================================================
PROMPTEDIT - CONFIGURATION
================================================================================
Environment-driven settings for the prompt-to-edit engine.

Author: PromptEdit | v1.0
================================================================================
"""

import os
import tempfile
from pathlib import Path
from typing import List


class EditorConfig:
    """PromptEdit engine configuration"""
    OUTPUT_DIR = Path(os.getenv("EDITOR_OUTPUT_DIR", "./output"))
    UPLOAD_DIR = Path(os.getenv("EDITOR_UPLOAD_DIR", "./uploads"))
    WORK_DIR = Path(os.getenv("EDITOR_WORK_DIR", os.path.join(tempfile.gettempdir(), "promptedit")))
    DEFAULT_FONT = os.getenv("EDITOR_DEFAULT_FONT", "./font/GreatVibes-Regular.otf")
    FONT_DIR = Path(os.getenv("EDITOR_FONT_DIR", "./font"))
    FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
    FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")
    PLAN_TIMEOUT = float(os.getenv("EDITOR_PLAN_TIMEOUT", "0"))  # 0 = no timeout
    FFMPEG_TIMEOUT = float(os.getenv("EDITOR_FFMPEG_TIMEOUT", "0"))  # per command, 0 = none
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
    CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-20250514")
    MAX_UPLOAD_FILES = int(os.getenv("EDITOR_MAX_UPLOAD_FILES", "10"))
    CORS_ORIGINS = os.getenv("EDITOR_CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")

    @classmethod
    def cors_origins(cls) -> List[str]:
        return [o.strip() for o in cls.CORS_ORIGINS.split(",") if o.strip()]
