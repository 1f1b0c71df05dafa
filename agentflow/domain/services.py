"""
Collaborators the engine talks to but does not implement.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from agentflow.domain.models.agent_state import HistoryEntry, ModelRequest, ModelResponse


class ModelService(ABC):
    """Language-model inference"""

    @abstractmethod
    async def invoke(self, model_id: str, request: ModelRequest) -> ModelResponse:
        """Run one completion. Raises on transport or service failure."""
        pass


class ContextRetriever(ABC):
    """Retrieval over documents and images uploaded to a session"""

    @abstractmethod
    async def retrieve(self, query: str, session_id: str) -> Optional[str]:
        """Context relevant to query, or None"""
        pass


class SessionStore(ABC):
    """Durable per-session conversation history"""

    @abstractmethod
    async def load_history(self, session_id: str) -> List[HistoryEntry]:
        pass

    @abstractmethod
    async def save_history(self, session_id: str, history: List[HistoryEntry]):
        pass
