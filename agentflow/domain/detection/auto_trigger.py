"""
Auto-trigger: tool calls synthesized from the user's own message.

When the message is obviously about the weather or about current events the
model's own decision is overridden, so a model that answers from stale
training data still gets fresh tool output.
"""

from typing import Callable, List, Optional
from datetime import date
import re
from pydantic import BaseModel, Field

from agentflow.domain.detection.argument_extraction import extract_arguments
from agentflow.domain.detection.base import DetectionMethod, DetectionRequest
from agentflow.domain.detection.intent import detect_year_token, is_weather_query, requires_current_information
from agentflow.domain.models.agent_state import ToolCall
from agentflow.domain.tool.tool_registry import ToolRegistry

_RELATIVE_YEAR = re.compile(r"\b(?:this|current)\s+year\b", re.I)


class AutoTriggerPolicy(BaseModel):
    """Tunable switches for the auto-trigger override"""
    enabled: bool = True
    first_iteration_only: bool = Field(
        True, description="Only fire before any tool has run, so the loop can finish"
    )
    skip_with_retrieved_context: bool = Field(
        False, description="Opt out for sessions where uploaded content should answer everything"
    )
    default_location: str = "San Francisco"


class AutoTriggerMethod(DetectionMethod):
    """Weather and current-information overrides"""

    name = "auto_trigger"

    def __init__(
        self,
        registry: ToolRegistry,
        policy: Optional[AutoTriggerPolicy] = None,
        today: Callable[[], date] = date.today
    ):
        self.registry = registry
        self.policy = policy or AutoTriggerPolicy()
        self._today = today

    def applies(self, request: DetectionRequest) -> bool:
        if not self.policy.enabled or not request.user_message:
            return False
        if self.policy.first_iteration_only and request.iteration > 0:
            return False
        if self.policy.skip_with_retrieved_context and request.has_retrieved_context:
            return False
        return True

    def detect(self, request: DetectionRequest) -> List[ToolCall]:
        if not self.applies(request):
            return []

        message = request.user_message

        if is_weather_query(message) and self.registry.has_tool("get_weather"):
            args = extract_arguments(message, "get_weather")
            args.setdefault("location", self.policy.default_location)
            return [ToolCall(name="get_weather", arguments=args)]

        today = self._today()
        if requires_current_information(message, today) and self.registry.has_tool("search_web"):
            return [ToolCall(name="search_web", arguments={"query": self._search_query(message, today)})]

        return []

    @staticmethod
    def _search_query(message: str, today: date) -> str:
        query = message.strip()

        year = detect_year_token(message, today)
        if year is None and _RELATIVE_YEAR.search(message):
            year = str(today.year)

        if year and year not in query:
            query = f"{query} {year}"
        return query
