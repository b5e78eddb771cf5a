"""
================================================================================
PROMPTEDIT - INSTRUCTION INTERPRETER
================================================================================
Prompt string -> validated Instruction.

- ClaudeInterpreter: asks Claude for a JSON instruction object
- KeywordInterpreter: regex fallback, used when no API key is configured
- parse_instruction: the boundary adapter both of them go through; the
  model's loosely-typed JSON is never trusted as already well-typed

Author: PromptEdit | v1.0
================================================================================
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

import anthropic
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .config import EditorConfig
from .errors import InterpretationError, UnsupportedActionError
from .instruction import ACTION_NAMES, Instruction
from .time_normalizer import normalize_time

logger = logging.getLogger(__name__)


# =============================================================================
# BOUNDARY ADAPTER
# =============================================================================

_INSTRUCTION_ADAPTER = TypeAdapter(Instruction)


def _summarize_errors(error: PydanticValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"][1:]) or "instruction"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def extract_json(text: str) -> Dict[str, Any]:
    """Pull the outermost JSON object out of free-form model text."""
    json_start = text.find("{")
    json_end = text.rfind("}") + 1
    if json_start < 0 or json_end <= json_start:
        raise InterpretationError("Interpreter response contained no JSON object")
    try:
        return json.loads(text[json_start:json_end])
    except json.JSONDecodeError as e:
        raise InterpretationError(f"Interpreter response was not valid JSON: {e}") from e


def parse_instruction(payload: Union[str, bytes, Dict[str, Any]]):
    """
    Build a typed Instruction from interpreter output.

    Raises:
        InterpretationError: not JSON, not an object, no action, or a field
            of the wrong type (e.g. speed "fast")
        UnsupportedActionError: an action outside the seven known tags
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise InterpretationError(f"Interpreter output was not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise InterpretationError("Interpreter output must be a JSON object")

    action = payload.get("action")
    if action is None or action == "":
        raise InterpretationError("Interpreter output has no action")
    if isinstance(action, str):
        action = action.strip().lower()
    if action not in ACTION_NAMES:
        raise UnsupportedActionError(action)

    try:
        return _INSTRUCTION_ADAPTER.validate_python({**payload, "action": action})
    except PydanticValidationError as e:
        raise InterpretationError(f"Malformed {action} instruction: {_summarize_errors(e)}") from e


# =============================================================================
# INTERPRETER CONTRACT
# =============================================================================

class InstructionInterpreter(ABC):
    """interpret(prompt) -> Instruction, or raise InterpretationError."""

    name = "abstract"

    @abstractmethod
    async def interpret(self, prompt: str):
        pass


# =============================================================================
# CLAUDE INTERPRETER
# =============================================================================

INTERPRETER_SYSTEM_PROMPT = """You extract video editing instructions from user prompts.

Convert every time expression to seconds:
- '18s' -> 18
- '18:40' -> 1120
- '18 minutes' -> 1080
- '18 minutes 32 seconds' -> 1112

Respond with a single JSON object and nothing else. Properties, as needed:
- "action": one of "cut", "split", "merge", "text_overlay", "adjust_speed", "mute", "unmute"
- "start": cut start time in seconds
- "end": cut end time in seconds (omit to cut to the end of the video)
- "points": split points in seconds, ascending
- "speed": adjust_speed multiplier (e.g. 1.5 to speed up, 0.5 to slow down)
- "text": text_overlay text to display
- "fontSize": text_overlay font size
- "fontColor": text_overlay font color
- "position": text_overlay position, one of "top", "center", "bottom"
- "fontFile": text_overlay font file, only if the user names one

For "start", "end" and "points" always use seconds."""


class ClaudeInterpreter(InstructionInterpreter):
    """Instruction interpreter backed by the Anthropic Messages API."""

    name = "claude"

    def __init__(
        self,
        client: Optional[anthropic.AsyncAnthropic] = None,
        model: Optional[str] = None,
        max_tokens: int = 1024
    ):
        self.client = client
        if not self.client:
            api_key = EditorConfig.ANTHROPIC_API_KEY
            if api_key:
                self.client = anthropic.AsyncAnthropic(api_key=api_key)

        self.model = model or EditorConfig.CLAUDE_MODEL
        self.max_tokens = max_tokens
        logger.info(f"[Interpreter] Claude interpreter initialized with {self.model}")

    async def interpret(self, prompt: str):
        if not self.client:
            raise InterpretationError("Anthropic client not configured")

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0,
                system=INTERPRETER_SYSTEM_PROMPT,
                messages=[{
                    "role": "user",
                    "content": f'Analyze this prompt and provide the appropriate video editing instructions: "{prompt}"'
                }]
            )
        except anthropic.APIError as e:
            logger.error(f"[Interpreter] Claude request failed: {e}")
            raise InterpretationError(f"Interpreter request failed: {e}") from e

        response_text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not response_text.strip():
            raise InterpretationError("Interpreter returned an empty response")

        logger.debug(f"[Interpreter] Raw response: {response_text[:500]}")
        return parse_instruction(extract_json(response_text))


# =============================================================================
# KEYWORD INTERPRETER
# =============================================================================

_NUM = r"\d+(?:\.\d+)?"
_UNIT = r"(?:hours?|hrs?|h|minutes?|mins?|m|seconds?|secs?|s)"
_CLOCK = r"\d+(?::\d{1,2}(?:\.\d+)?){1,2}"
_WORDED = rf"{_NUM}\s*{_UNIT}\b(?:[\s,]*(?:and\s+)?{_NUM}\s*{_UNIT}\b)*"
_TIME = rf"(?<![\w.:])(?:{_CLOCK}|{_WORDED}|{_NUM})"

_TIME_RE = re.compile(_TIME)
_RANGE_RE = re.compile(rf"(?:from|between)\s+({_TIME})\s*(?:to|until|till|and|-)\s*({_TIME})")
_FIRST_RE = re.compile(rf"first\s+({_TIME})")
_SPEED_RE = re.compile(rf"(?:({_NUM})\s*(?:x|times)\b|\bx\s*({_NUM})\b)")
_QUOTED_RE = re.compile(r'"([^"]+)"|“([^”]+)”|(?<!\w)\'([^\']+)\'(?!\w)')
_PART_COUNT_RE = re.compile(rf"(?:into\s+)?{_NUM}\s*(?:equal\s+)?(?:parts?|pieces?|segments?|sections?|clips?)\b")
_FONT_SIZE_RE = re.compile(r"(?:font\s*size|size)\s*(?:of\s+)?(\d+)")
_COLOR_RE = re.compile(
    r"\b(white|black|red|green|blue|yellow|orange|purple|pink|gray|grey|cyan|magenta)\b"
)
_POSITION_RE = re.compile(r"\b(top|bottom|center|centre|middle)\b")

# Ordered by specificity (first match wins)
_ACTION_PATTERNS = [
    (re.compile(r"\bunmute\b|restore\s+(?:the\s+)?(?:audio|sound)|add\s+(?:back\s+)?(?:the\s+)?(?:audio|sound)"
                r"|(?:audio|sound)\s+back"), "unmute"),
    (re.compile(r"\bmute\b|remove\s+(?:the\s+)?(?:audio|sound)|(?:without|no)\s+(?:audio|sound)"), "mute"),
    (re.compile(r"\b(?:merge|combine|join|concatenate|stitch)\b"), "merge"),
    (re.compile(r"\bsplit\b|\bdivide\b"), "split"),
    (re.compile(r"\b(?:text|caption|title|subtitle|overlay)\b"), "text_overlay"),
    (re.compile(r"\bspeed\b|\bslow\b|\bfaster\b|\bslower\b|\bfast\s+forward\b"), "adjust_speed"),
    (re.compile(r"\b(?:cut|trim|clip|extract|keep)\b"), "cut"),
]


def _times(text: str) -> List[float]:
    return [normalize_time(m.group(0).strip()) for m in _TIME_RE.finditer(text)]


class KeywordInterpreter(InstructionInterpreter):
    """Deterministic keyword/regex interpreter. No network access."""

    name = "keyword"

    async def interpret(self, prompt: str):
        return parse_instruction(self.parse(prompt))

    def parse(self, prompt: str) -> Dict[str, Any]:
        # Quoted captions never select the action
        text = _QUOTED_RE.sub(" ", (prompt or "").strip().lower())
        for pattern, action in _ACTION_PATTERNS:
            if pattern.search(text):
                builder = getattr(self, f"_parse_{action}", None)
                payload = {"action": action}
                if builder:
                    try:
                        payload.update(builder(text, prompt))
                    except ValueError as e:
                        raise InterpretationError(f"Could not read a time in {prompt!r}: {e}") from e
                logger.info(f"[Interpreter] Keyword match: {payload}")
                return payload
        raise InterpretationError(f"Could not understand the editing instruction: {prompt!r}")

    def _parse_cut(self, text: str, prompt: str) -> Dict[str, Any]:
        match = _RANGE_RE.search(text)
        if match:
            return {"start": match.group(1).strip(), "end": match.group(2).strip()}
        match = _FIRST_RE.search(text)
        if match:
            return {"start": 0, "end": match.group(1).strip()}
        times = _times(text)
        if len(times) >= 2:
            return {"start": times[0], "end": times[1]}
        if len(times) == 1:
            return {"start": times[0]}
        return {}

    def _parse_split(self, text: str, prompt: str) -> Dict[str, Any]:
        return {"points": _times(_PART_COUNT_RE.sub(" ", text))}

    def _parse_text_overlay(self, text: str, prompt: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        quoted = _QUOTED_RE.search(prompt)
        if quoted:
            payload["text"] = next(g for g in quoted.groups() if g is not None)
        position = _POSITION_RE.search(text)
        if position:
            word = position.group(1)
            payload["position"] = "center" if word in ("centre", "middle") else word
        size = _FONT_SIZE_RE.search(text)
        if size:
            payload["fontSize"] = int(size.group(1))
        color = _COLOR_RE.search(text)
        if color:
            payload["fontColor"] = color.group(1)
        return payload

    def _parse_adjust_speed(self, text: str, prompt: str) -> Dict[str, Any]:
        match = _SPEED_RE.search(text)
        if match:
            return {"speed": float(match.group(1) or match.group(2))}
        if re.search(r"\bdouble\b|\btwice\b", text):
            return {"speed": 2.0}
        if re.search(r"\bhalf\b", text):
            return {"speed": 0.5}
        if re.search(r"\bslow|\bslower\b", text):
            return {"speed": 0.5}
        return {"speed": 2.0}


def create_interpreter(api_key: Optional[str] = None, model: Optional[str] = None) -> InstructionInterpreter:
    """Claude when an API key is available, keyword matching otherwise."""
    api_key = api_key if api_key is not None else EditorConfig.ANTHROPIC_API_KEY
    if api_key:
        return ClaudeInterpreter(client=anthropic.AsyncAnthropic(api_key=api_key), model=model)
    logger.warning("[Interpreter] ANTHROPIC_API_KEY not set, using keyword interpreter")
    return KeywordInterpreter()
