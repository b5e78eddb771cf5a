"""Shared fixtures: an in-memory media provider and per-test directories."""

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from promptedit.errors import MediaOperationError
from promptedit.executor import ActionExecutor
from promptedit.media_provider import MediaOperationProvider
from promptedit.registry import OutputRegistry
from promptedit.validator import PlanValidator


class RecordingMediaProvider(MediaOperationProvider):
    """
    Records every call and writes a small placeholder file per output.

    fail_on=("trim", 2) makes the second trim call fail after writing a
    partial output; delays={"trim": 0.2} slows an operation down.
    """

    def __init__(
        self,
        duration: float = 100.0,
        has_audio: bool = True,
        fail_on: Optional[Tuple[str, int]] = None,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.duration = duration
        self.has_audio = has_audio
        self.fail_on = fail_on
        self.delays = delays or {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    @property
    def operations(self) -> List[str]:
        return [op for op, _ in self.calls]

    def calls_to(self, operation: str) -> List[Dict[str, Any]]:
        return [params for op, params in self.calls if op == operation]

    async def _record(self, operation: str, output_path: Optional[str] = None, **params):
        if output_path is not None:
            params["output_path"] = output_path
        self.calls.append((operation, params))

        delay = self.delays.get(operation)
        if delay:
            await asyncio.sleep(delay)

        if self.fail_on == (operation, len(self.calls_to(operation))):
            if output_path:
                Path(output_path).write_bytes(b"partial")
            raise MediaOperationError(operation, "exited with code 1", diagnostics="simulated failure")

        if output_path:
            Path(output_path).write_bytes(operation.encode())
        return output_path

    async def trim(self, input_path, output_path, start, end):
        return await self._record("trim", output_path, input_path=input_path, start=start, end=end)

    async def concat(self, input_paths, output_path, work_dir):
        return await self._record("concat", output_path, input_paths=list(input_paths), work_dir=work_dir)

    async def probe_duration(self, input_path):
        await self._record("probe_duration", input_path=input_path)
        return self.duration

    async def probe_has_audio(self, input_path):
        await self._record("probe_has_audio", input_path=input_path)
        return self.has_audio

    async def strip_audio(self, input_path, output_path):
        return await self._record("strip_audio", output_path, input_path=input_path)

    async def add_silent_audio(self, input_path, output_path):
        return await self._record("add_silent_audio", output_path, input_path=input_path)

    async def copy_streams(self, input_path, output_path):
        return await self._record("copy_streams", output_path, input_path=input_path)

    async def change_speed(self, input_path, output_path, factor):
        return await self._record("change_speed", output_path, input_path=input_path, factor=factor)

    async def draw_text(self, input_path, output_path, text, font_size, color, position, font_file, work_dir):
        return await self._record(
            "draw_text", output_path,
            input_path=input_path, text=text, font_size=font_size,
            color=color, position=position, font_file=font_file, work_dir=work_dir
        )

    async def check_version(self):
        return "ffmpeg version fake"


@pytest.fixture
def provider():
    return RecordingMediaProvider()


@pytest.fixture
def make_provider():
    return RecordingMediaProvider


@pytest.fixture
def dirs(tmp_path):
    paths = {
        "output": tmp_path / "output",
        "uploads": tmp_path / "uploads",
        "work": tmp_path / "work",
        "fonts": tmp_path / "font",
    }
    for path in paths.values():
        path.mkdir()
    return paths


@pytest.fixture
def make_video(dirs):
    """Create placeholder source videos in the upload directory."""
    def _make(name: str = "video-1.mp4") -> str:
        path = dirs["uploads"] / name
        path.write_bytes(b"source video")
        return str(path)
    return _make


@pytest.fixture
def registry(dirs):
    return OutputRegistry(dirs["output"])


@pytest.fixture
def make_executor(registry, dirs):
    def _make(provider, plan_timeout: float = 0, default_font: str = "") -> ActionExecutor:
        return ActionExecutor(
            provider=provider,
            registry=registry,
            validator=PlanValidator(),
            work_dir=dirs["work"],
            default_font=default_font,
            font_dir=dirs["fonts"],
            plan_timeout=plan_timeout
        )
    return _make
