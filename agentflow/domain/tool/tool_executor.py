# Turns registry executions into ToolResults; tool failures never escape
from typing import Any, Dict, Optional
import time

from agentflow.domain.errors import ToolExecutionError
from agentflow.domain.models.agent_state import ToolCall, ToolResult
from agentflow.domain.tool.tool_registry import ToolRegistry
from agentflow.infrastructure.observability.logging import agent_logger

LOW_CONFIDENCE_NOTE = "Tool execution failed. Answer based on your knowledge but indicate if you're uncertain."


class ToolCallExecutor:
    """Executes detected ToolCalls against the registry"""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute_tool(self, call: ToolCall, session_id: Optional[str] = None) -> ToolResult:
        started = time.monotonic()

        try:
            payload = await self.registry.execute(call.name, call.arguments)
        except ToolExecutionError as e:
            agent_logger.log_tool_execution(
                tool_name=call.name,
                session_id=session_id,
                input_data=call.arguments,
                duration_ms=(time.monotonic() - started) * 1000,
                success=False,
                error=str(e)
            )
            return ToolResult(
                tool_name=call.name,
                payload=self._failure_payload(call.name, str(e)),
                success=False,
                confidence="low",
            )

        # Executors may report failure without raising
        reported_failure = isinstance(payload, dict) and payload.get("success") is False
        agent_logger.log_tool_execution(
            tool_name=call.name,
            session_id=session_id,
            input_data=call.arguments,
            duration_ms=(time.monotonic() - started) * 1000,
            success=not reported_failure,
            error=payload.get("error") if reported_failure else None
        )

        if reported_failure:
            payload = {**payload, "confidence": "low", "note": LOW_CONFIDENCE_NOTE}
            return ToolResult(tool_name=call.name, payload=payload, success=False, confidence="low")

        return ToolResult(tool_name=call.name, payload=payload, success=True, confidence="high")

    @staticmethod
    def _failure_payload(tool_name: str, error: str) -> Dict[str, Any]:
        return {
            "error": error,
            "success": False,
            "confidence": "low",
            "fallback": True,
            "message": f"Tool {tool_name} failed: {error}. Please provide answer based on your "
                       f"knowledge, but indicate uncertainty.",
            "note": LOW_CONFIDENCE_NOTE,
        }
