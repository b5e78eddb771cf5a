"""
================================================================================
PROMPTEDIT - INSTRUCTION MODELS
================================================================================
Closed tagged-variant models for the structured editing instruction.

One model per action. Fields irrelevant to an action are ignored, and
time-like fields given as human expressions ("18:40") are normalised to
seconds on the way in.

Author: PromptEdit | v1.0
================================================================================
"""

import logging
from enum import Enum
from typing import Any, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from typing_extensions import Annotated

from .time_normalizer import normalize_time

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS
# =============================================================================

class Action(str, Enum):
    """Supported editing actions"""
    CUT = "cut"
    SPLIT = "split"
    MERGE = "merge"
    TEXT_OVERLAY = "text_overlay"
    ADJUST_SPEED = "adjust_speed"
    MUTE = "mute"
    UNMUTE = "unmute"


class TextPosition(str, Enum):
    """Text overlay layout presets"""
    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"


ACTION_NAMES = {a.value for a in Action}


# =============================================================================
# FIELD COERCION
# =============================================================================

def _coerce_time(value: Any) -> Any:
    if isinstance(value, str):
        return normalize_time(value)
    return value


def _coerce_points(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        value = [value]
    if isinstance(value, (list, tuple)):
        points = [_coerce_time(v) for v in value]
        if all(isinstance(p, (int, float)) and not isinstance(p, bool) for p in points):
            return sorted(points)
        return points
    return value


Seconds = Annotated[Optional[float], BeforeValidator(_coerce_time)]
Points = Annotated[List[float], BeforeValidator(_coerce_points)]


# =============================================================================
# INSTRUCTION VARIANTS
# =============================================================================

class _InstructionBase(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CutInstruction(_InstructionBase):
    """Trim [start, end] out of a single input. No end means "to the end"."""
    action: Literal["cut"] = "cut"
    start: Seconds = None
    end: Seconds = None


class SplitInstruction(_InstructionBase):
    """Split a single input at interior points into len(points) + 1 parts."""
    action: Literal["split"] = "split"
    points: Points = Field(default_factory=list)


class MergeInstruction(_InstructionBase):
    """Concatenate every input in the order supplied."""
    action: Literal["merge"] = "merge"


class TextOverlayInstruction(_InstructionBase):
    """Burn a text caption into a single input."""
    action: Literal["text_overlay"] = "text_overlay"
    text: Optional[str] = None
    font_size: float = Field(24, validation_alias=AliasChoices("fontSize", "font_size"))
    font_color: str = Field("white", validation_alias=AliasChoices("fontColor", "font_color"))
    position: TextPosition = TextPosition.CENTER
    font_file: Optional[str] = Field(None, validation_alias=AliasChoices("fontFile", "font_file"))

    @field_validator("font_size", "font_color", mode="before")
    @classmethod
    def _drop_null(cls, value, info):
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("position", mode="before")
    @classmethod
    def _lenient_position(cls, value):
        if value is None:
            return TextPosition.CENTER
        name = str(value).strip().lower()
        if name not in {p.value for p in TextPosition}:
            logger.info(f"Unknown text position {value!r}, using center")
            return TextPosition.CENTER
        return name


class AdjustSpeedInstruction(_InstructionBase):
    """Play a single input faster (speed > 1) or slower (speed < 1)."""
    action: Literal["adjust_speed"] = "adjust_speed"
    speed: Optional[float] = None


class MuteInstruction(_InstructionBase):
    """Strip the audio track from a single input."""
    action: Literal["mute"] = "mute"


class UnmuteInstruction(_InstructionBase):
    """Make sure a single input carries an audio track."""
    action: Literal["unmute"] = "unmute"


Instruction = Annotated[
    Union[
        CutInstruction,
        SplitInstruction,
        MergeInstruction,
        TextOverlayInstruction,
        AdjustSpeedInstruction,
        MuteInstruction,
        UnmuteInstruction,
    ],
    Field(discriminator="action"),
]
