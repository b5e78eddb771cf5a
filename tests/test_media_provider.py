"""Tests for ffmpeg command construction, using a scripted runner instead of ffmpeg."""

import asyncio
from pathlib import Path

import pytest

from promptedit.errors import MediaOperationError
from promptedit.instruction import TextPosition
from promptedit.media_provider import (
    AsyncFFmpeg,
    CircuitState,
    FFmpegMediaProvider,
    SimpleCircuitBreaker,
    atempo_chain,
    build_drawtext_filter,
    concat_list_entry,
    escape_filter_value,
)


class ScriptedFFmpeg(AsyncFFmpeg):
    """Records commands and replays queued (returncode, stdout, stderr) results."""

    def __init__(self, *results):
        super().__init__(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe")
        self.results = list(results)
        self.commands = []
        self.concat_lists = []
        self.captions = []

    async def run(self, cmd):
        self.commands.append(cmd)
        if "concat" in cmd:
            list_path = Path(cmd[cmd.index("-i") + 1])
            self.concat_lists.append(list_path.read_text())
        if "-vf" in cmd:
            _, options = parse_filter(cmd[cmd.index("-vf") + 1])
            self.captions.append(Path(options["textfile"]).read_text(encoding="utf-8"))
        result = self.results.pop(0) if self.results else (0, "", "")
        if isinstance(result, Exception):
            raise result
        return result


def run(coro):
    return asyncio.run(coro)


def unescape_token(buf, terminators):
    """Read one token the way ffmpeg's av_get_token does: quotes group, backslash escapes."""
    out = []
    i = 0
    while i < len(buf) and buf[i] not in terminators:
        if buf[i] == "\\" and i + 1 < len(buf):
            out.append(buf[i + 1])
            i += 2
        elif buf[i] == "'":
            end = buf.index("'", i + 1)
            out.append(buf[i + 1:end])
            i = end + 1
        else:
            out.append(buf[i])
            i += 1
    return "".join(out), buf[i:]


def parse_filter(description):
    """Split "name=args" through the filtergraph and option parsing stages."""
    name, _, args = description.partition("=")
    args, rest = unescape_token(args, "[],;")
    assert rest == ""
    options = {}
    while args:
        key, _, args = args.partition("=")
        value, args = unescape_token(args, ":")
        options[key] = value
        args = args[1:]
    return name, options


class TestFilters:

    def test_atempo_within_range(self):
        assert atempo_chain(1.5) == "atempo=1.5"
        assert atempo_chain(0.5) == "atempo=0.5"

    def test_atempo_chains_large_and_small_factors(self):
        assert atempo_chain(4) == "atempo=2,atempo=2"
        assert atempo_chain(3) == "atempo=2,atempo=1.5"
        assert atempo_chain(0.25) == "atempo=0.5,atempo=0.5"
        assert atempo_chain(0.3) == "atempo=0.5,atempo=0.6"

    @pytest.mark.parametrize("value", [
        "/tmp/plain.txt",
        "/tmp/it's 10:30.txt",
        "C:\\fonts\\a.ttf",
        "/tmp/[a],b;c=d.ttf",
    ])
    def test_escaped_values_survive_both_parse_stages(self, value):
        _, options = parse_filter(f"drawtext=textfile={escape_filter_value(value)}:expansion=none")
        assert options == {"textfile": value, "expansion": "none"}

    @pytest.mark.parametrize("position,y", [
        (TextPosition.TOP, "10"),
        (TextPosition.BOTTOM, "h-text_h-10"),
        (TextPosition.CENTER, "(h-text_h)/2"),
    ])
    def test_drawtext_positions(self, position, y):
        name, options = parse_filter(build_drawtext_filter("/tmp/caption.txt", 24, "white", position, None))
        assert name == "drawtext"
        assert options["y"] == y
        assert options["x"] == "(w-text_w)/2"
        assert options["box"] == "1"
        assert options["boxcolor"] == "black@0.5"
        assert options["boxborderw"] == "5"
        assert "fontfile" not in options

    def test_drawtext_reads_caption_from_file_without_expansion(self):
        _, options = parse_filter(build_drawtext_filter("/tmp/plan: 1/caption.txt", 24, "white", TextPosition.TOP, None))
        assert options["textfile"] == "/tmp/plan: 1/caption.txt"
        assert options["expansion"] == "none"
        assert "text" not in options

    def test_drawtext_font_and_size(self):
        _, options = parse_filter(build_drawtext_filter(
            "/tmp/caption.txt", 36.0, "yellow", TextPosition.TOP, "C:\\fonts\\it's.ttf"
        ))
        assert options["fontsize"] == "36"
        assert options["fontcolor"] == "yellow"
        assert options["fontfile"] == "C:\\fonts\\it's.ttf"

    def test_concat_list_entry_escapes_quotes(self, tmp_path):
        path = tmp_path / "it's.mp4"
        assert concat_list_entry(str(path)) == "file '" + str(path.resolve()).replace("'", "'\\''") + "'"


class TestCommands:

    def test_trim_window(self):
        ffmpeg = ScriptedFFmpeg()
        run(FFmpegMediaProvider(ffmpeg=ffmpeg).trim("in.mp4", "out.mp4", 10, 20))
        cmd = ffmpeg.commands[0]
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-ss") + 1] == "10.000"
        assert cmd[cmd.index("-t") + 1] == "10.000"
        assert cmd[cmd.index("-i") + 1] == "in.mp4"
        assert cmd[-1] == "out.mp4"

    def test_trim_to_end(self):
        ffmpeg = ScriptedFFmpeg()
        run(FFmpegMediaProvider(ffmpeg=ffmpeg).trim("in.mp4", "out.mp4", 10, None))
        assert "-t" not in ffmpeg.commands[0]

    def test_concat_writes_ordered_list_in_arena(self, tmp_path):
        ffmpeg = ScriptedFFmpeg()
        arena = tmp_path / "plan-1"
        inputs = [str(tmp_path / "b.mp4"), str(tmp_path / "a.mp4")]

        run(FFmpegMediaProvider(ffmpeg=ffmpeg).concat(inputs, "out.mp4", arena))

        cmd = ffmpeg.commands[0]
        assert Path(cmd[cmd.index("-i") + 1]).parent == arena
        assert ffmpeg.concat_lists[0].splitlines() == [
            f"file '{(tmp_path / 'b.mp4').resolve()}'",
            f"file '{(tmp_path / 'a.mp4').resolve()}'",
        ]
        assert "libx264" in cmd and "aac" in cmd
        assert list(arena.iterdir()) == []

    def test_speed_with_audio(self):
        ffmpeg = ScriptedFFmpeg((0, "42\n", ""), (0, "", ""))
        run(FFmpegMediaProvider(ffmpeg=ffmpeg).change_speed("in.mp4", "out.mp4", 4))
        cmd = ffmpeg.commands[1]
        assert cmd[cmd.index("-filter:v") + 1] == "setpts=0.25*PTS"
        assert cmd[cmd.index("-filter:a") + 1] == "atempo=2,atempo=2"

    def test_speed_without_audio(self):
        ffmpeg = ScriptedFFmpeg((0, "", ""), (0, "", ""))
        run(FFmpegMediaProvider(ffmpeg=ffmpeg).change_speed("in.mp4", "out.mp4", 0.5))
        cmd = ffmpeg.commands[1]
        assert cmd[cmd.index("-filter:v") + 1] == "setpts=2*PTS"
        assert "-filter:a" not in cmd
        assert "-an" in cmd

    def test_strip_audio_keeps_video_untouched(self):
        ffmpeg = ScriptedFFmpeg()
        run(FFmpegMediaProvider(ffmpeg=ffmpeg).strip_audio("in.mp4", "out.mp4"))
        cmd = ffmpeg.commands[0]
        assert cmd[cmd.index("-c:v") + 1] == "copy"
        assert "-an" in cmd

    def test_copy_streams(self):
        ffmpeg = ScriptedFFmpeg()
        run(FFmpegMediaProvider(ffmpeg=ffmpeg).copy_streams("in.mp4", "out.mp4"))
        cmd = ffmpeg.commands[0]
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert "libx264" not in cmd

    def test_add_silent_audio(self):
        ffmpeg = ScriptedFFmpeg()
        run(FFmpegMediaProvider(ffmpeg=ffmpeg).add_silent_audio("in.mp4", "out.mp4"))
        cmd = ffmpeg.commands[0]
        assert "anullsrc=channel_layout=stereo:sample_rate=44100" in cmd
        assert "-shortest" in cmd
        assert cmd[cmd.index("-c:v") + 1] == "copy"

    @pytest.mark.parametrize("caption", ["Hello", "It's 10:30", "50% off", "back\\slash [x], y; z"])
    def test_draw_text_passes_caption_verbatim(self, tmp_path, caption):
        ffmpeg = ScriptedFFmpeg()
        arena = tmp_path / "plan-1"
        run(FFmpegMediaProvider(ffmpeg=ffmpeg).draw_text(
            "in.mp4", "out.mp4", caption, 24, "white", TextPosition.BOTTOM, None, arena
        ))
        cmd = ffmpeg.commands[0]
        name, options = parse_filter(cmd[cmd.index("-vf") + 1])
        assert name == "drawtext"
        assert Path(options["textfile"]).parent == arena
        assert ffmpeg.captions == [caption]
        assert cmd[cmd.index("-c:a") + 1] == "copy"
        assert list(arena.iterdir()) == []


class TestProbes:

    def test_duration(self):
        ffmpeg = ScriptedFFmpeg((0, "12.500000\n", ""))
        assert run(FFmpegMediaProvider(ffmpeg=ffmpeg).probe_duration("in.mp4")) == 12.5
        assert ffmpeg.commands[0][0] == "ffprobe"

    def test_unreadable_duration(self):
        ffmpeg = ScriptedFFmpeg((0, "N/A\n", ""))
        with pytest.raises(MediaOperationError):
            run(FFmpegMediaProvider(ffmpeg=ffmpeg).probe_duration("in.mp4"))

    @pytest.mark.parametrize("stdout,expected", [("", False), ("0\n", False), ("125\n", True), ("7,\n", True)])
    def test_has_audio(self, stdout, expected):
        ffmpeg = ScriptedFFmpeg((0, stdout, ""))
        assert run(FFmpegMediaProvider(ffmpeg=ffmpeg).probe_has_audio("in.mp4")) is expected


class TestFailures:

    def test_nonzero_exit_carries_diagnostics(self):
        ffmpeg = ScriptedFFmpeg((1, "", "in.mp4: No such file or directory"))
        with pytest.raises(MediaOperationError) as exc:
            run(FFmpegMediaProvider(ffmpeg=ffmpeg).trim("in.mp4", "out.mp4", 0, 5))
        assert exc.value.operation == "trim"
        assert exc.value.message == "trim failed: exited with code 1"
        assert "No such file" in exc.value.diagnostics

    def test_missing_binary(self):
        ffmpeg = ScriptedFFmpeg(FileNotFoundError("ffmpeg"))
        with pytest.raises(MediaOperationError) as exc:
            run(FFmpegMediaProvider(ffmpeg=ffmpeg).strip_audio("in.mp4", "out.mp4"))
        assert "could not start" in exc.value.message

    def test_circuit_opens_after_repeated_spawn_failures(self):
        ffmpeg = ScriptedFFmpeg(FileNotFoundError("ffmpeg"), FileNotFoundError("ffmpeg"))
        breaker = SimpleCircuitBreaker(name="ffmpeg", failure_threshold=2, recovery_timeout=60)
        provider = FFmpegMediaProvider(ffmpeg=ffmpeg, breaker=breaker)

        for _ in range(2):
            with pytest.raises(MediaOperationError):
                run(provider.strip_audio("in.mp4", "out.mp4"))
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(MediaOperationError) as exc:
            run(provider.strip_audio("in.mp4", "out.mp4"))
        assert "circuit breaker" in exc.value.message
        assert len(ffmpeg.commands) == 2

    def test_bad_inputs_do_not_block_other_callers(self):
        corrupt = [(1, "", "corrupt.mp4: Invalid data found when processing input")] * 5
        ffmpeg = ScriptedFFmpeg(*corrupt)
        breaker = SimpleCircuitBreaker(name="ffmpeg", failure_threshold=5, recovery_timeout=30)
        provider = FFmpegMediaProvider(ffmpeg=ffmpeg, breaker=breaker)

        for _ in range(5):
            with pytest.raises(MediaOperationError):
                run(provider.trim("corrupt.mp4", "out.mp4", 0, 5))

        assert breaker.state == CircuitState.CLOSED
        assert run(provider.strip_audio("good.mp4", "muted.mp4")) == "muted.mp4"

    def test_concat_list_write_failure(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        ffmpeg = ScriptedFFmpeg()

        with pytest.raises(MediaOperationError) as exc:
            run(FFmpegMediaProvider(ffmpeg=ffmpeg).concat(["a.mp4", "b.mp4"], "out.mp4", blocker / "plan"))

        assert exc.value.message == "concat failed: could not write concat list"
        assert ffmpeg.commands == []

    def test_success_closes_circuit(self):
        breaker = SimpleCircuitBreaker(name="ffmpeg", failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()
        breaker.last_failure_time -= 1
        provider = FFmpegMediaProvider(ffmpeg=ScriptedFFmpeg(), breaker=breaker)

        run(provider.copy_streams("in.mp4", "out.mp4"))
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failures == 0

    def test_command_timeout_fails_the_operation(self):
        ffmpeg = ScriptedFFmpeg(asyncio.TimeoutError())
        ffmpeg.timeout = 30
        with pytest.raises(MediaOperationError) as exc:
            run(FFmpegMediaProvider(ffmpeg=ffmpeg).copy_streams("in.mp4", "out.mp4"))
        assert exc.value.message == "copy_streams failed: timed out after 30s"
