from abc import ABC, abstractmethod
from typing import List, Optional
from pydantic import BaseModel, Field

from agentflow.domain.models.agent_state import ModelResponse, ToolCall


class DetectionRequest(BaseModel):
    """Everything a detection method may look at"""
    response: ModelResponse
    user_message: str = ""
    iteration: int = 0
    has_retrieved_context: bool = False


class DetectionResult(BaseModel):
    """Calls found by the winning method (empty when nothing matched)"""
    method: Optional[str] = None
    calls: List[ToolCall] = Field(default_factory=list)

    @property
    def has_calls(self) -> bool:
        return bool(self.calls)


class DetectionMethod(ABC):
    """One stage of the tool-call detection cascade"""

    name: str = ""

    @abstractmethod
    def detect(self, request: DetectionRequest) -> List[ToolCall]:
        """Return the calls this method recognises, or an empty list"""
        pass
