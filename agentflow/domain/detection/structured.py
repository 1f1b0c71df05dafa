"""
Structured tool-call detection: the model service returned calls as data.
"""

from typing import Any, Dict, List, Optional
import json
import structlog

from agentflow.domain.detection.base import DetectionMethod, DetectionRequest
from agentflow.domain.models.agent_state import ToolCall

logger = structlog.get_logger(__name__)


def decode_arguments(arguments: Any) -> Dict[str, Any]:
    """Arguments arrive as a dict or a JSON string; anything undecodable becomes {}"""
    if isinstance(arguments, dict):
        return arguments
    if isinstance(arguments, str) and arguments.strip():
        try:
            decoded = json.loads(arguments)
        except json.JSONDecodeError:
            logger.warning("Undecodable tool arguments", arguments=arguments[:200])
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _to_tool_call(entry: Any) -> Optional[ToolCall]:
    if not isinstance(entry, dict):
        return None

    # OpenAI shape {"type": "function", "function": {"name", "arguments"}} or flat {"name", "arguments"}
    function = entry.get("function") if isinstance(entry.get("function"), dict) else entry
    name = function.get("name")
    if not name or not isinstance(name, str):
        return None
    return ToolCall(name=name, arguments=decode_arguments(function.get("arguments")))


class NativeToolCallsMethod(DetectionMethod):
    """raw["tool_calls"] from a function-calling capable model"""

    name = "native_tool_calls"

    def detect(self, request: DetectionRequest) -> List[ToolCall]:
        entries = request.response.raw.get("tool_calls") or []
        if not isinstance(entries, list):
            return []

        calls = []
        for entry in entries:
            call = _to_tool_call(entry)
            if call is not None:
                calls.append(call)
        return calls


class LegacyFunctionCallMethod(DetectionMethod):
    """raw["function_call"], the pre-tools single call format"""

    name = "legacy_function_call"

    def detect(self, request: DetectionRequest) -> List[ToolCall]:
        call = _to_tool_call(request.response.raw.get("function_call"))
        return [call] if call is not None else []
