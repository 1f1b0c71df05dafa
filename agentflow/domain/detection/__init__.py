from agentflow.domain.detection.auto_trigger import AutoTriggerMethod, AutoTriggerPolicy
from agentflow.domain.detection.base import DetectionMethod, DetectionRequest, DetectionResult
from agentflow.domain.detection.detector import ToolCallDetector

__all__ = [
    "AutoTriggerMethod",
    "AutoTriggerPolicy",
    "DetectionMethod",
    "DetectionRequest",
    "DetectionResult",
    "ToolCallDetector",
]
