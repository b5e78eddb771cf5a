"""
================================================================================
PROMPTEDIT - PLAN VALIDATOR
================================================================================
Fail-fast checks run before any media operation starts:

- Arity: how many inputs each action takes (exact or minimum)
- Parameters: per-action legality (positive speed, non-empty text, ...)
- Inputs: every referenced file exists

Split points are checked against the source duration separately, once the
executor has probed it and before any segment is cut.

Author: PromptEdit | v1.0
================================================================================
"""

import logging
import math
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import UnsupportedActionError, ValidationError
from .instruction import (
    ACTION_NAMES,
    Action,
    AdjustSpeedInstruction,
    CutInstruction,
    SplitInstruction,
    TextOverlayInstruction,
)

logger = logging.getLogger(__name__)


# (minimum inputs, maximum inputs or None for unbounded)
ARITY_RULES: Dict[str, Tuple[int, Optional[int]]] = {
    Action.CUT.value: (1, 1),
    Action.SPLIT.value: (1, 1),
    Action.MERGE.value: (2, None),
    Action.TEXT_OVERLAY.value: (1, 1),
    Action.ADJUST_SPEED.value: (1, 1),
    Action.MUTE.value: (1, 1),
    Action.UNMUTE.value: (1, 1),
}

ACTION_LABELS = {
    Action.CUT.value: "Cut action",
    Action.SPLIT.value: "Split action",
    Action.MERGE.value: "Merge action",
    Action.TEXT_OVERLAY.value: "Text overlay",
    Action.ADJUST_SPEED.value: "Speed adjustment",
    Action.MUTE.value: "Mute action",
    Action.UNMUTE.value: "Unmute action",
}


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class PlanValidator:
    """Checks an instruction against its inputs before execution."""

    def __init__(self, check_files: bool = True):
        self.check_files = check_files
        self._param_checks: Dict[str, Callable] = {
            Action.CUT.value: self._check_cut,
            Action.SPLIT.value: self._check_split,
            Action.TEXT_OVERLAY.value: self._check_text_overlay,
            Action.ADJUST_SPEED.value: self._check_speed,
        }

    def validate(self, instruction, inputs: Sequence[str]) -> None:
        action = getattr(instruction, "action", None)
        if action not in ACTION_NAMES:
            raise UnsupportedActionError(action)

        self._check_arity(action, inputs)
        if self.check_files:
            self._check_inputs_exist(inputs)

        check = self._param_checks.get(action)
        if check:
            check(instruction)

    def _check_arity(self, action: str, inputs: Sequence[str]) -> None:
        minimum, maximum = ARITY_RULES[action]
        count = len(inputs)
        label = ACTION_LABELS[action]
        if maximum == 1 and count != 1:
            raise ValidationError(f"{label} requires exactly one input video (got {count})")
        if count < minimum:
            raise ValidationError(
                f"{label} requires at least {minimum} input videos (got {count})"
            )
        if maximum is not None and count > maximum:
            raise ValidationError(
                f"{label} accepts at most {maximum} input videos (got {count})"
            )

    def _check_inputs_exist(self, inputs: Sequence[str]) -> None:
        for ref in inputs:
            if not ref or not Path(ref).is_file():
                raise ValidationError(f"Input file not found: {ref}")

    def _check_cut(self, instruction: CutInstruction) -> None:
        start, end = instruction.start, instruction.end
        if start is None:
            raise ValidationError("Cut action requires a start time")
        if not _is_number(start) or start < 0:
            raise ValidationError(f"Cut start must be a non-negative number of seconds (got {start})")
        if end is None:
            return
        if not _is_number(end):
            raise ValidationError(f"Cut end must be a number of seconds (got {end})")
        if end <= start:
            raise ValidationError(f"Cut end ({end}s) must be after start ({start}s)")

    def _check_split(self, instruction: SplitInstruction) -> None:
        points = instruction.points
        for point in points:
            if not _is_number(point) or point <= 0:
                raise ValidationError(f"Split points must be positive numbers of seconds (got {point})")
        self._check_ascending(points)

    def _check_text_overlay(self, instruction: TextOverlayInstruction) -> None:
        if not instruction.text or not instruction.text.strip():
            raise ValidationError("Text overlay requires non-empty text")
        if not _is_number(instruction.font_size) or instruction.font_size <= 0:
            raise ValidationError(f"Font size must be a positive number (got {instruction.font_size})")

    def _check_speed(self, instruction: AdjustSpeedInstruction) -> None:
        speed = instruction.speed
        if not _is_number(speed) or speed <= 0:
            raise ValidationError(f"Invalid speed value: {speed} (must be a finite positive number)")

    @staticmethod
    def _check_ascending(points: List[float]) -> None:
        for previous, current in zip(points, points[1:]):
            if current <= previous:
                raise ValidationError(
                    f"Split points must be strictly ascending (got {previous} then {current})"
                )

    def check_split_points(self, points: List[float], duration: float) -> None:
        """Points must lie strictly inside (0, duration)."""
        self._check_ascending(points)
        for point in points:
            if not 0 < point < duration:
                raise ValidationError(
                    f"Split point {point}s is outside the video (duration {duration:.2f}s)"
                )
