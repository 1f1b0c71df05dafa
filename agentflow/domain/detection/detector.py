from typing import List, Optional, Sequence
import structlog

from agentflow.domain.detection.auto_trigger import AutoTriggerMethod, AutoTriggerPolicy
from agentflow.domain.detection.base import DetectionMethod, DetectionRequest, DetectionResult
from agentflow.domain.detection.structured import LegacyFunctionCallMethod, NativeToolCallsMethod
from agentflow.domain.detection.text_methods import BracketMarkerMethod, EmbeddedJsonMethod, NaturalLanguageMethod
from agentflow.domain.tool.tool_registry import ToolRegistry

logger = structlog.get_logger(__name__)


class ToolCallDetector:
    """Runs detection methods in priority order; the first non-empty result wins"""

    def __init__(self, methods: Sequence[DetectionMethod]):
        self.methods: List[DetectionMethod] = list(methods)

    @classmethod
    def default(cls, registry: ToolRegistry, policy: Optional[AutoTriggerPolicy] = None) -> "ToolCallDetector":
        """Full heuristic cascade.

        The auto-trigger runs first: when its policy applies and the user's
        message matches, it overrides whatever the model produced.
        """
        return cls([
            AutoTriggerMethod(registry, policy),
            NativeToolCallsMethod(),
            LegacyFunctionCallMethod(),
            EmbeddedJsonMethod(registry),
            BracketMarkerMethod(registry),
            NaturalLanguageMethod(registry),
        ])

    @classmethod
    def structured_only(cls) -> "ToolCallDetector":
        """Only trust calls the model service returned as data"""
        return cls([NativeToolCallsMethod(), LegacyFunctionCallMethod()])

    def detect(self, request: DetectionRequest) -> DetectionResult:
        for method in self.methods:
            calls = method.detect(request)
            if calls:
                logger.debug("Tool calls detected", method=method.name, count=len(calls))
                return DetectionResult(method=method.name, calls=calls)
        return DetectionResult()
