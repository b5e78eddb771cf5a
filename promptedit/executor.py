"""
================================================================================
PROMPTEDIT - ACTION EXECUTOR
================================================================================
Turns one validated Instruction into an ExecutionPlan and drives it.

Planning derives the concrete operation list per action (a split with k
interior points becomes k+1 trims over [0, p1, ..., pk, D]; an unmute
probes for audio and picks copy vs. silent-track). Execution then runs the
steps strictly one after another inside a per-plan temporary arena.

Failure policy:
- first failing step aborts the plan, no retries
- artifacts already written by the plan are discarded
- the raised MediaOperationError names the failing step ("Step 2/3 (trim)")
- optional whole-plan timeout raises PlanTimeoutError

Author: PromptEdit | v1.0
================================================================================
"""

import asyncio
import logging
import shutil
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import EditorConfig
from .errors import MediaOperationError, PlanTimeoutError
from .instruction import (
    Action,
    AdjustSpeedInstruction,
    CutInstruction,
    SplitInstruction,
    TextOverlayInstruction,
)
from .media_provider import MediaOperationProvider
from .metrics import ACTIVE_PLANS
from .registry import OutputArtifact, OutputRegistry
from .validator import PlanValidator

logger = logging.getLogger(__name__)


# Output name prefix per action
OUTPUT_PREFIXES = {
    Action.CUT.value: "cut",
    Action.SPLIT.value: "split",
    Action.MERGE.value: "merged",
    Action.TEXT_OVERLAY.value: "text_overlay",
    Action.ADJUST_SPEED.value: "speed_adjusted",
    Action.MUTE.value: "muted",
    Action.UNMUTE.value: "unmuted",
}


def format_seconds(value: float) -> str:
    """10.0 -> "10", 12.5 -> "12.5"."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return str(round(value, 3))


def split_boundaries(points: Sequence[float], duration: float) -> List[float]:
    """Canonical boundary list [0, p1, ..., pk, D] for k interior points."""
    return [0.0, *points, duration]


# =============================================================================
# PLAN TYPES
# =============================================================================

class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PlanStep:
    """One provider call. `params` are passed through as keyword arguments."""
    operation: str
    params: Dict[str, Any]
    output: OutputArtifact
    narrative: str = ""
    status: StepStatus = StepStatus.PENDING
    duration_ms: float = 0.0


@dataclass
class ExecutionPlan:
    plan_id: str
    action: str
    inputs: List[str]
    work_dir: Path
    steps: List[PlanStep] = field(default_factory=list)
    narrative: List[str] = field(default_factory=list)
    closing_note: str = ""

    def add_step(self, operation: str, output: OutputArtifact, narrative: str = "", **params) -> PlanStep:
        step = PlanStep(operation=operation, params=params, output=output, narrative=narrative)
        self.steps.append(step)
        return step

    @property
    def artifacts(self) -> List[OutputArtifact]:
        return [s.output for s in self.steps if s.status == StepStatus.DONE]

    @property
    def touched_outputs(self) -> List[OutputArtifact]:
        """Outputs of every step that started, including one killed mid-write."""
        return [s.output for s in self.steps if s.status != StepStatus.PENDING]


@dataclass
class ExecutionResult:
    plan_id: str
    action: str
    artifacts: List[OutputArtifact]
    narrative: str
    steps: List[PlanStep]

    @property
    def output_names(self) -> List[str]:
        return [a.name for a in self.artifacts]


# =============================================================================
# EXECUTOR
# =============================================================================

class ActionExecutor:
    """Plans and runs an Instruction against a MediaOperationProvider."""

    def __init__(
        self,
        provider: MediaOperationProvider,
        registry: OutputRegistry,
        validator: Optional[PlanValidator] = None,
        work_dir: Optional[Path] = None,
        default_font: Optional[str] = None,
        font_dir: Optional[Path] = None,
        plan_timeout: Optional[float] = None,
    ):
        self.provider = provider
        self.registry = registry
        self.validator = validator or PlanValidator()
        self.work_dir = Path(work_dir or EditorConfig.WORK_DIR)
        self.default_font = default_font if default_font is not None else EditorConfig.DEFAULT_FONT
        self.font_dir = Path(font_dir or EditorConfig.FONT_DIR)
        self.plan_timeout = plan_timeout if plan_timeout is not None else EditorConfig.PLAN_TIMEOUT
        self.active_plans: Dict[str, ExecutionPlan] = {}

        self._planners: Dict[str, Callable] = {
            Action.CUT.value: self._plan_cut,
            Action.SPLIT.value: self._plan_split,
            Action.MERGE.value: self._plan_merge,
            Action.TEXT_OVERLAY.value: self._plan_text_overlay,
            Action.ADJUST_SPEED.value: self._plan_speed,
            Action.MUTE.value: self._plan_mute,
            Action.UNMUTE.value: self._plan_unmute,
        }

    async def execute(self, instruction, inputs: Sequence[str]) -> ExecutionResult:
        """Validate, plan and run one instruction. Raises EditorError subclasses."""
        inputs = list(inputs)
        self.validator.validate(instruction, inputs)

        plan_id = uuid.uuid4().hex[:12]
        plan = ExecutionPlan(
            plan_id=plan_id,
            action=instruction.action,
            inputs=inputs,
            work_dir=self.work_dir / plan_id
        )
        plan.work_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[{plan_id}] Executing {instruction.action} on {len(inputs)} input(s)")

        ACTIVE_PLANS.inc()
        self.active_plans[plan_id] = plan
        try:
            if self.plan_timeout and self.plan_timeout > 0:
                await asyncio.wait_for(self._run(plan, instruction), timeout=self.plan_timeout)
            else:
                await self._run(plan, instruction)
        except asyncio.TimeoutError:
            self._discard(plan, "timed out")
            raise PlanTimeoutError(message=f"exceeded {format_seconds(self.plan_timeout)}s") from None
        except asyncio.CancelledError:
            self._discard(plan, "cancelled")
            raise
        except Exception as e:
            self._discard(plan, f"failed: {e}")
            raise
        finally:
            ACTIVE_PLANS.dec()
            self.active_plans.pop(plan_id, None)
            shutil.rmtree(plan.work_dir, ignore_errors=True)

        narrative = "".join(plan.narrative) + plan.closing_note
        logger.info(f"[{plan_id}] Completed with {len(plan.artifacts)} artifact(s)")
        return ExecutionResult(
            plan_id=plan_id,
            action=plan.action,
            artifacts=plan.artifacts,
            narrative=narrative,
            steps=plan.steps
        )

    async def _run(self, plan: ExecutionPlan, instruction) -> None:
        try:
            await self._planners[plan.action](plan, instruction)
        except MediaOperationError as e:
            logger.error(f"[{plan.plan_id}] Planning probe ({e.operation}) failed: {e.detail}")
            raise e.at_step(0, 0) from e
        total = len(plan.steps)
        for number, step in enumerate(plan.steps, start=1):
            await self._run_step(plan, step, number, total)

    async def _run_step(self, plan: ExecutionPlan, step: PlanStep, number: int, total: int) -> None:
        logger.info(f"[{plan.plan_id}] Step {number}/{total}: {step.operation} -> {step.output.name}")
        step.status = StepStatus.RUNNING
        started = time.monotonic()
        operation = getattr(self.provider, step.operation)
        try:
            await operation(output_path=str(step.output.path), **step.params)
        except MediaOperationError as e:
            step.status = StepStatus.FAILED
            logger.error(f"[{plan.plan_id}] Step {number}/{total} ({step.operation}) failed: {e.detail}")
            raise e.at_step(number, total) from e
        except OSError as e:
            step.status = StepStatus.FAILED
            logger.error(f"[{plan.plan_id}] Step {number}/{total} ({step.operation}) failed: {e}")
            raise MediaOperationError(
                step.operation, f"filesystem error: {e.strerror or type(e).__name__}",
                diagnostics=str(e), step=number, total_steps=total
            ) from e
        step.duration_ms = (time.monotonic() - started) * 1000
        step.status = StepStatus.DONE
        plan.narrative.append(step.narrative)

    def _discard(self, plan: ExecutionPlan, reason: str) -> None:
        outputs = plan.touched_outputs
        removed = self.registry.discard(outputs)
        logger.warning(f"[{plan.plan_id}] Plan {reason}; discarded {removed} partial artifact(s)")

    # =========================================================================
    # PLANNERS
    # =========================================================================

    def _allocate(self, action: str, index: Optional[int] = None) -> OutputArtifact:
        return self.registry.allocate(OUTPUT_PREFIXES[action], index=index)

    async def _plan_cut(self, plan: ExecutionPlan, instruction: CutInstruction) -> None:
        start, end = instruction.start, instruction.end
        if end is None:
            narrative = f"Video cut from {format_seconds(start)} seconds to the end."
        else:
            narrative = f"Video cut from {format_seconds(start)} seconds to {format_seconds(end)} seconds."
        plan.add_step(
            "trim", self._allocate(plan.action), narrative,
            input_path=plan.inputs[0], start=start, end=end
        )

    async def _plan_split(self, plan: ExecutionPlan, instruction: SplitInstruction) -> None:
        source = plan.inputs[0]
        duration = await self.provider.probe_duration(source)
        logger.info(f"[{plan.plan_id}] Source duration {duration:.2f}s, {len(instruction.points)} split point(s)")
        self.validator.check_split_points(instruction.points, duration)

        boundaries = split_boundaries(instruction.points, duration)
        for i, (start, end) in enumerate(zip(boundaries, boundaries[1:]), start=1):
            plan.add_step(
                "trim", self._allocate(plan.action, index=i),
                f"Video part {i} cut from {format_seconds(start)} to {format_seconds(end)} seconds.\n",
                input_path=source, start=start, end=end
            )
        plan.closing_note = "All video parts split successfully!"

    async def _plan_merge(self, plan: ExecutionPlan, instruction) -> None:
        plan.add_step(
            "concat", self._allocate(plan.action),
            f"{len(plan.inputs)} videos have been merged successfully.",
            input_paths=list(plan.inputs), work_dir=plan.work_dir
        )

    async def _plan_text_overlay(self, plan: ExecutionPlan, instruction: TextOverlayInstruction) -> None:
        plan.add_step(
            "draw_text", self._allocate(plan.action),
            "Text overlay has been added to the video.",
            input_path=plan.inputs[0],
            text=instruction.text,
            font_size=instruction.font_size,
            color=instruction.font_color,
            position=instruction.position,
            font_file=self.resolve_font(instruction.font_file),
            work_dir=plan.work_dir
        )

    async def _plan_speed(self, plan: ExecutionPlan, instruction: AdjustSpeedInstruction) -> None:
        plan.add_step(
            "change_speed", self._allocate(plan.action),
            f"Video speed adjusted to {format_seconds(instruction.speed)}x.",
            input_path=plan.inputs[0], factor=instruction.speed
        )

    async def _plan_mute(self, plan: ExecutionPlan, instruction) -> None:
        plan.add_step(
            "strip_audio", self._allocate(plan.action),
            "Video audio has been muted.",
            input_path=plan.inputs[0]
        )

    async def _plan_unmute(self, plan: ExecutionPlan, instruction) -> None:
        source = plan.inputs[0]
        has_audio = await self.provider.probe_has_audio(source)
        operation = "copy_streams" if has_audio else "add_silent_audio"
        logger.info(f"[{plan.plan_id}] Input has audio: {has_audio}, using {operation}")
        plan.add_step(
            operation, self._allocate(plan.action),
            "Video audio has been restored.",
            input_path=source
        )

    def resolve_font(self, requested: Optional[str]) -> Optional[str]:
        """
        Pick the font file for a text overlay.

        A caller-named font is used only if it is an existing file inside the
        font directory. Otherwise the configured default applies; if that is
        missing too, None lets ffmpeg fall back to its own default font.
        """
        if requested:
            font_dir = self.font_dir.resolve()
            candidate = (font_dir / requested).resolve()
            if candidate.is_file() and font_dir in candidate.parents:
                return str(candidate)
            logger.warning(f"Font {requested!r} not found in {font_dir}, using default font")

        if self.default_font and Path(self.default_font).is_file():
            return str(self.default_font)
        if self.default_font:
            logger.warning(f"Default font {self.default_font} not found, using ffmpeg default")
        return None
