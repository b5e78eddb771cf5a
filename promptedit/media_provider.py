"""
================================================================================
PROMPTEDIT - MEDIA OPERATION PROVIDER
================================================================================
The engine's only route to actual audio/video work.

MediaOperationProvider is the contract the executor depends on.
FFmpegMediaProvider implements it with non-blocking ffmpeg/ffprobe
subprocesses (asyncio.create_subprocess_exec, never a shell), guarded by a
circuit breaker that trips on spawn failures and timeouts. Every failure
surfaces as MediaOperationError carrying the tail of ffmpeg's stderr.

Author: PromptEdit | v1.0
================================================================================
"""

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import EditorConfig
from .errors import MediaOperationError
from .instruction import TextPosition
from .metrics import OPERATION_FAILURES, OPERATION_SECONDS

logger = logging.getLogger(__name__)

DIAGNOSTIC_TAIL = 2000

# Re-encode settings shared by every operation that touches the video stream
VIDEO_ENCODE_ARGS = ["-c:v", "libx264", "-preset", "medium", "-crf", "23", "-pix_fmt", "yuv420p"]
AUDIO_ENCODE_ARGS = ["-c:a", "aac", "-b:a", "128k"]
CONTAINER_ARGS = ["-movflags", "+faststart"]

SILENT_AUDIO_SOURCE = "anullsrc=channel_layout=stereo:sample_rate=44100"

TEXT_MARGIN = 10
TEXT_BOX_COLOR = "black@0.5"
TEXT_BOX_BORDER = 5

ATEMPO_MIN = 0.5
ATEMPO_MAX = 2.0


# =============================================================================
# PROVIDER CONTRACT
# =============================================================================

class MediaOperationProvider(ABC):
    """Everything the executor needs from a media backend."""

    @abstractmethod
    async def trim(self, input_path: str, output_path: str, start: float, end: Optional[float]) -> str:
        """Keep [start, end) of the input; end=None keeps everything after start."""

    @abstractmethod
    async def concat(self, input_paths: Sequence[str], output_path: str, work_dir: Path) -> str:
        """Join inputs in the given order. Temporary files go in work_dir."""

    @abstractmethod
    async def probe_duration(self, input_path: str) -> float:
        """Duration of the input in seconds."""

    @abstractmethod
    async def probe_has_audio(self, input_path: str) -> bool:
        """Whether the input carries an audio stream with packets."""

    @abstractmethod
    async def strip_audio(self, input_path: str, output_path: str) -> str:
        """Drop audio, copy video untouched."""

    @abstractmethod
    async def add_silent_audio(self, input_path: str, output_path: str) -> str:
        """Attach a silent stereo track, truncated to the video length."""

    @abstractmethod
    async def copy_streams(self, input_path: str, output_path: str) -> str:
        """Copy every stream without re-encoding."""

    @abstractmethod
    async def change_speed(self, input_path: str, output_path: str, factor: float) -> str:
        """Play back `factor` times faster, keeping audio in step with video."""

    @abstractmethod
    async def draw_text(
        self,
        input_path: str,
        output_path: str,
        text: str,
        font_size: float,
        color: str,
        position: TextPosition,
        font_file: Optional[str],
        work_dir: Path,
    ) -> str:
        """Burn text into the video over a semi-opaque box. Temporary files go in work_dir."""


# =============================================================================
# SIMPLE CIRCUIT BREAKER
# =============================================================================

class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class SimpleCircuitBreaker:
    """Lightweight circuit breaker for FFmpeg operations."""

    name: str
    failure_threshold: int = 5
    recovery_timeout: int = 30
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    last_failure_time: Optional[float] = None

    def before_call(self, operation: str) -> None:
        if self.state == CircuitState.OPEN:
            if self.last_failure_time and (time.time() - self.last_failure_time) > self.recovery_timeout:
                self.state = CircuitState.HALF_OPEN
                logger.info(f"[CircuitBreaker:{self.name}] Attempting recovery (HALF_OPEN)")
            else:
                raise MediaOperationError(operation, f"circuit breaker {self.name} is open, media backend unavailable")

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"[CircuitBreaker:{self.name}] Recovered (CLOSED)")
        self.state = CircuitState.CLOSED
        self.failures = 0

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure_time = time.time()
        if self.failures >= self.failure_threshold and self.state != CircuitState.OPEN:
            self.state = CircuitState.OPEN
            logger.warning(f"[CircuitBreaker:{self.name}] OPEN after {self.failures} failures")

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self.failures,
            "threshold": self.failure_threshold
        }


# =============================================================================
# ASYNC FFMPEG RUNNER
# =============================================================================

class AsyncFFmpeg:
    """
    Non-blocking FFmpeg execution using asyncio.create_subprocess_exec().

    A cancelled caller kills the child process before re-raising, so a
    cancelled plan never leaves an encoder running.
    """

    def __init__(self, ffmpeg_path: Optional[str] = None, ffprobe_path: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.ffmpeg_path = ffmpeg_path or EditorConfig.FFMPEG_PATH
        self.ffprobe_path = ffprobe_path or EditorConfig.FFPROBE_PATH
        self.timeout = timeout

    async def run(self, cmd: List[str]) -> Tuple[int, str, str]:
        """
        Execute a command asynchronously.

        Returns:
            Tuple of (return_code, stdout, stderr)
        """
        logger.info(f"AsyncFFmpeg executing: {' '.join(cmd[:12])}...")
        start_time = time.monotonic()

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )

        try:
            if self.timeout:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
            else:
                stdout, stderr = await process.communicate()
        except (asyncio.CancelledError, asyncio.TimeoutError):
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        duration_ms = (time.monotonic() - start_time) * 1000
        logger.info(f"AsyncFFmpeg completed in {duration_ms:.0f}ms, returncode={process.returncode}")

        return process.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")

    async def check_version(self) -> str:
        """Get FFmpeg version string"""
        returncode, stdout, _ = await self.run([self.ffmpeg_path, "-version"])
        if returncode == 0:
            return stdout.split("\n")[0]
        return "unknown"


# =============================================================================
# FILTER HELPERS
# =============================================================================

def escape_filter_value(value: str) -> str:
    """
    Escape an option value so it survives both ffmpeg parse stages.

    The filtergraph parser unescapes first (special: \\ ' [ ] , ;), then the
    filter's option parser unescapes again (special: \\ ' :). Escaping is
    applied in the reverse order.
    """
    option_level = re.sub(r"([\\':])", r"\\\1", value)
    return re.sub(r"([\\'\[\],;])", r"\\\1", option_level)


def text_position_expression(position: TextPosition, margin: int = TEXT_MARGIN) -> Tuple[str, str]:
    """Convert a TextPosition to FFmpeg x,y expressions."""
    positions = {
        TextPosition.TOP: ("(w-text_w)/2", f"{margin}"),
        TextPosition.BOTTOM: ("(w-text_w)/2", f"h-text_h-{margin}"),
        TextPosition.CENTER: ("(w-text_w)/2", "(h-text_h)/2"),
    }
    return positions.get(TextPosition(position), positions[TextPosition.CENTER])


def build_drawtext_filter(
    text_file: str,
    font_size: float,
    color: str,
    position: TextPosition,
    font_file: Optional[str],
) -> str:
    x_expr, y_expr = text_position_expression(position)
    size = int(font_size) if float(font_size).is_integer() else font_size
    parts = []
    if font_file:
        parts.append(f"fontfile={escape_filter_value(font_file)}")
    parts.extend([
        f"fontsize={size}",
        f"fontcolor={escape_filter_value(color)}",
        "box=1",
        f"boxcolor={TEXT_BOX_COLOR}",
        f"boxborderw={TEXT_BOX_BORDER}",
        f"x={x_expr}",
        f"y={y_expr}",
        f"textfile={escape_filter_value(text_file)}",
        "expansion=none",
    ])
    return "drawtext=" + ":".join(parts)


def atempo_chain(factor: float) -> str:
    """atempo only accepts [0.5, 2.0] per instance, so chain as many as needed."""
    stages = []
    remaining = factor
    while remaining > ATEMPO_MAX:
        stages.append(ATEMPO_MAX)
        remaining /= ATEMPO_MAX
    while remaining < ATEMPO_MIN:
        stages.append(ATEMPO_MIN)
        remaining /= ATEMPO_MIN
    stages.append(remaining)
    return ",".join(f"atempo={s:.6g}" for s in stages)


def concat_list_entry(path: str) -> str:
    resolved = str(Path(path).resolve())
    return "file '" + resolved.replace("'", "'\\''") + "'"


def _seconds(value: float) -> str:
    return f"{value:.3f}"


# =============================================================================
# FFMPEG PROVIDER
# =============================================================================

class FFmpegMediaProvider(MediaOperationProvider):
    """MediaOperationProvider backed by the ffmpeg/ffprobe binaries."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        ffmpeg: Optional[AsyncFFmpeg] = None,
        breaker: Optional[SimpleCircuitBreaker] = None,
    ):
        self.ffmpeg = ffmpeg or AsyncFFmpeg(
            ffmpeg_path=ffmpeg_path, ffprobe_path=ffprobe_path, timeout=EditorConfig.FFMPEG_TIMEOUT or None
        )
        self.breaker = breaker or SimpleCircuitBreaker(name="ffmpeg")

    async def _execute(self, operation: str, cmd: List[str]) -> str:
        """Run a command, raising MediaOperationError on any failure. Returns stdout."""
        self.breaker.before_call(operation)
        started = time.monotonic()
        try:
            returncode, stdout, stderr = await self.ffmpeg.run(cmd)
        except asyncio.TimeoutError as e:
            self.breaker.record_failure()
            OPERATION_FAILURES.labels(operation=operation).inc()
            raise MediaOperationError(operation, f"timed out after {self.ffmpeg.timeout}s") from e
        except OSError as e:
            self.breaker.record_failure()
            OPERATION_FAILURES.labels(operation=operation).inc()
            raise MediaOperationError(operation, f"could not start {cmd[0]}: {e}") from e
        finally:
            OPERATION_SECONDS.labels(operation=operation).observe(time.monotonic() - started)

        if returncode != 0:
            # Non-zero exits usually mean bad input and never count toward the breaker
            OPERATION_FAILURES.labels(operation=operation).inc()
            diagnostics = stderr[-DIAGNOSTIC_TAIL:]
            logger.error(f"[{operation}] FFmpeg error (rc={returncode}): {diagnostics[-500:]}")
            raise MediaOperationError(operation, f"exited with code {returncode}", diagnostics=diagnostics)

        self.breaker.record_success()
        return stdout

    def _ffmpeg(self, *args: str) -> List[str]:
        return [self.ffmpeg.ffmpeg_path, "-hide_banner", "-y", *args]

    async def trim(self, input_path: str, output_path: str, start: float, end: Optional[float]) -> str:
        cmd = self._ffmpeg("-ss", _seconds(start), "-i", input_path)
        if end is not None:
            cmd.extend(["-t", _seconds(end - start)])
        cmd.extend([*VIDEO_ENCODE_ARGS, *AUDIO_ENCODE_ARGS, *CONTAINER_ARGS, output_path])
        await self._execute("trim", cmd)
        return output_path

    async def concat(self, input_paths: Sequence[str], output_path: str, work_dir: Path) -> str:
        list_path = work_dir / "concat_list.txt"
        try:
            work_dir.mkdir(parents=True, exist_ok=True)
            list_path.write_text("\n".join(concat_list_entry(p) for p in input_paths) + "\n", encoding="utf-8")
        except OSError as e:
            raise MediaOperationError("concat", "could not write concat list", diagnostics=str(e)) from e
        try:
            cmd = self._ffmpeg(
                "-f", "concat", "-safe", "0", "-i", str(list_path),
                *VIDEO_ENCODE_ARGS, *AUDIO_ENCODE_ARGS, *CONTAINER_ARGS, output_path
            )
            await self._execute("concat", cmd)
        finally:
            list_path.unlink(missing_ok=True)
        return output_path

    async def probe_duration(self, input_path: str) -> float:
        stdout = await self._execute("probe_duration", [
            self.ffmpeg.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            input_path
        ])
        try:
            return float(stdout.strip())
        except ValueError:
            raise MediaOperationError("probe_duration", f"unreadable duration {stdout.strip()!r}", diagnostics=stdout)

    async def probe_has_audio(self, input_path: str) -> bool:
        stdout = await self._execute("probe_has_audio", [
            self.ffmpeg.ffprobe_path,
            "-v", "error",
            "-select_streams", "a:0",
            "-count_packets",
            "-show_entries", "stream=nb_read_packets",
            "-of", "csv=p=0",
            input_path
        ])
        value = stdout.strip().rstrip(",")
        if not value:
            return False
        try:
            return int(value) > 0
        except ValueError:
            raise MediaOperationError("probe_has_audio", f"unreadable packet count {value!r}", diagnostics=stdout)

    async def strip_audio(self, input_path: str, output_path: str) -> str:
        await self._execute("strip_audio", self._ffmpeg("-i", input_path, "-c:v", "copy", "-an", output_path))
        return output_path

    async def add_silent_audio(self, input_path: str, output_path: str) -> str:
        await self._execute("add_silent_audio", self._ffmpeg(
            "-i", input_path,
            "-f", "lavfi", "-i", SILENT_AUDIO_SOURCE,
            "-map", "0:v", "-map", "1:a",
            "-c:v", "copy", *AUDIO_ENCODE_ARGS,
            "-shortest",
            output_path
        ))
        return output_path

    async def copy_streams(self, input_path: str, output_path: str) -> str:
        await self._execute("copy_streams", self._ffmpeg("-i", input_path, "-map", "0", "-c", "copy", output_path))
        return output_path

    async def change_speed(self, input_path: str, output_path: str, factor: float) -> str:
        has_audio = await self.probe_has_audio(input_path)
        cmd = self._ffmpeg("-i", input_path, "-filter:v", f"setpts={1 / factor:.6g}*PTS")
        if has_audio:
            cmd.extend(["-filter:a", atempo_chain(factor), *AUDIO_ENCODE_ARGS])
        else:
            cmd.append("-an")
        cmd.extend([*VIDEO_ENCODE_ARGS, *CONTAINER_ARGS, output_path])
        await self._execute("change_speed", cmd)
        return output_path

    async def draw_text(
        self,
        input_path: str,
        output_path: str,
        text: str,
        font_size: float,
        color: str,
        position: TextPosition,
        font_file: Optional[str],
        work_dir: Path,
    ) -> str:
        text_path = work_dir / f"{Path(output_path).stem}.caption.txt"
        try:
            work_dir.mkdir(parents=True, exist_ok=True)
            text_path.write_text(text, encoding="utf-8")
        except OSError as e:
            raise MediaOperationError("draw_text", "could not write caption file", diagnostics=str(e)) from e

        drawtext = build_drawtext_filter(str(text_path), font_size, color, position, font_file)
        logger.debug(f"[draw_text] Filter: {drawtext[:200]}...")
        try:
            await self._execute("draw_text", self._ffmpeg(
                "-i", input_path,
                "-vf", drawtext,
                *VIDEO_ENCODE_ARGS,
                "-c:a", "copy",
                *CONTAINER_ARGS,
                output_path
            ))
        finally:
            text_path.unlink(missing_ok=True)
        return output_path

    async def check_version(self) -> str:
        try:
            return await self.ffmpeg.check_version()
        except OSError:
            return "unavailable"
