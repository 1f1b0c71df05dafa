"""
Detection methods that look for tool requests inside the model's prose.

Only tools present in the registry are ever returned.
"""

from typing import Any, Dict, List, Optional, Tuple
import json
import re
import structlog

from agentflow.domain.detection.argument_extraction import extract_arguments, parse_marker_arguments
from agentflow.domain.detection.base import DetectionMethod, DetectionRequest
from agentflow.domain.detection.structured import decode_arguments
from agentflow.domain.models.agent_state import ToolCall
from agentflow.domain.tool.tool_registry import ToolRegistry

logger = structlog.get_logger(__name__)

NAME_KEYS = ("function", "name", "tool_name", "function_name")
ARGUMENT_KEYS = ("arguments", "args", "params", "parameters")

_BRACKET_MARKER = re.compile(r"\[TOOL:\s*(\w+)\s*\(([^)]*)\)\]", re.I)


def _call_from_object(obj: Dict[str, Any]) -> Optional[Tuple[str, Dict[str, Any]]]:
    for key in NAME_KEYS:
        value = obj.get(key)
        if isinstance(value, dict):
            # {"function": {"name": ..., "arguments": ...}}
            nested = _call_from_object(value)
            if nested is not None:
                return nested
        elif isinstance(value, str) and value:
            for arg_key in ARGUMENT_KEYS:
                if arg_key in obj:
                    return value, decode_arguments(obj[arg_key])
            return value, {}
    return None


class EmbeddedJsonMethod(DetectionMethod):
    """JSON objects naming a tool, anywhere in the text"""

    name = "embedded_json"

    def __init__(self, registry: ToolRegistry):
        self.registry = registry
        self._decoder = json.JSONDecoder()

    def detect(self, request: DetectionRequest) -> List[ToolCall]:
        text = request.response.text or ""
        calls: List[ToolCall] = []

        index = text.find("{")
        while index != -1:
            try:
                obj, end = self._decoder.raw_decode(text, index)
            except json.JSONDecodeError:
                index = text.find("{", index + 1)
                continue

            found = _call_from_object(obj) if isinstance(obj, dict) else None
            if found is not None and self.registry.has_tool(found[0]):
                calls.append(ToolCall(name=found[0], arguments=found[1]))
                index = text.find("{", end)
            else:
                # Not a call itself; an inner object might be
                index = text.find("{", index + 1)

        return calls


class BracketMarkerMethod(DetectionMethod):
    """[TOOL: name(key="value", key2=3)] markers"""

    name = "bracket_marker"

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def detect(self, request: DetectionRequest) -> List[ToolCall]:
        calls = []
        for match in _BRACKET_MARKER.finditer(request.response.text or ""):
            tool_name = match.group(1)
            if not self.registry.has_tool(tool_name):
                logger.debug("Ignoring marker for unknown tool", tool_name=tool_name)
                continue
            calls.append(ToolCall(name=tool_name, arguments=parse_marker_arguments(match.group(2))))
        return calls


def _intent_patterns(tool_name: str) -> List["re.Pattern[str]"]:
    spoken = r"\s+".join(re.escape(part) for part in tool_name.split("_"))
    names = rf"(?:{re.escape(tool_name)}|{spoken})"
    return [
        re.compile(rf"\b(?:I will|I'll|I am going to|I'm going to|let me)\s+(?:use|call|invoke|run)\s+(?:the\s+)?{names}\b", re.I),
        re.compile(rf"\b{re.escape(tool_name)}\s*\(", re.I),
        re.compile(rf"\b(?:using|via)\s+(?:the\s+)?{names}\b", re.I),
        re.compile(rf"\b(?:needs?|requires?|should use)\s+(?:to\s+(?:use|call)\s+)?(?:the\s+)?{names}\b", re.I),
    ]


class NaturalLanguageMethod(DetectionMethod):
    """Phrases like "Let me use get_weather for Tokyo" """

    name = "natural_language"

    def __init__(self, registry: ToolRegistry):
        self.registry = registry
        self._patterns: Dict[str, List["re.Pattern[str]"]] = {}

    def _patterns_for(self, tool_name: str) -> List["re.Pattern[str]"]:
        if tool_name not in self._patterns:
            self._patterns[tool_name] = _intent_patterns(tool_name)
        return self._patterns[tool_name]

    def detect(self, request: DetectionRequest) -> List[ToolCall]:
        text = request.response.text or ""
        if not text:
            return []

        calls = []
        for tool in self.registry.get_available_tools():
            if not any(p.search(text) for p in self._patterns_for(tool.name)):
                continue

            required = tool.required_parameters
            args = extract_arguments(text, tool.name, required)
            if not args and request.user_message:
                # The model named the tool but not its input; the user's words usually carry it
                args = extract_arguments(request.user_message, tool.name, required)

            if args or not required:
                calls.append(ToolCall(name=tool.name, arguments=args))
        return calls
