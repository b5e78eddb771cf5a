"""
PromptEdit - natural-language video editing engine.

Turns a free-form prompt plus uploaded videos into a validated edit plan
and runs it through ffmpeg.
"""

from .errors import (
    EditorError,
    InterpretationError,
    MediaOperationError,
    NotFoundError,
    PlanTimeoutError,
    UnsupportedActionError,
    ValidationError,
)
from .executor import ActionExecutor, ExecutionPlan, ExecutionResult, PlanStep
from .instruction import Action, Instruction, TextPosition
from .interpreter import (
    ClaudeInterpreter,
    InstructionInterpreter,
    KeywordInterpreter,
    create_interpreter,
    parse_instruction,
)
from .media_provider import FFmpegMediaProvider, MediaOperationProvider
from .registry import OutputArtifact, OutputRegistry
from .time_normalizer import normalize_time
from .validator import PlanValidator

__version__ = "1.0.0"

__all__ = [
    "Action",
    "ActionExecutor",
    "ClaudeInterpreter",
    "EditorError",
    "ExecutionPlan",
    "ExecutionResult",
    "FFmpegMediaProvider",
    "Instruction",
    "InstructionInterpreter",
    "InterpretationError",
    "KeywordInterpreter",
    "MediaOperationError",
    "MediaOperationProvider",
    "NotFoundError",
    "OutputArtifact",
    "OutputRegistry",
    "PlanStep",
    "PlanTimeoutError",
    "PlanValidator",
    "TextPosition",
    "UnsupportedActionError",
    "ValidationError",
    "create_interpreter",
    "normalize_time",
    "parse_instruction",
]
