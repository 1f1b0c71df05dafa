from typing import Dict, List
from collections import defaultdict
import asyncio

from agentflow.domain.models.agent_state import HistoryEntry
from agentflow.domain.services import SessionStore


class InMemorySessionStore(SessionStore):
    """Process-local session history, for tests and single-instance deployments"""

    def __init__(self, max_messages: int = 100):
        self.max_messages = max_messages
        self.conversations: Dict[str, List[HistoryEntry]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def load_history(self, session_id: str) -> List[HistoryEntry]:
        """Get conversation history for a session"""

        async with self._lock:
            return list(self.conversations.get(session_id, []))

    async def save_history(self, session_id: str, history: List[HistoryEntry]):
        """Replace the session's history, keeping the most recent messages"""

        async with self._lock:
            self.conversations[session_id] = list(history[-self.max_messages:])

    async def add_to_conversation(self, session_id: str, entry: HistoryEntry):
        """Add a message to conversation history"""

        async with self._lock:
            self.conversations[session_id].append(entry)

            if len(self.conversations[session_id]) > self.max_messages:
                self.conversations[session_id] = self.conversations[session_id][-self.max_messages:]

    async def clear_session(self, session_id: str):
        async with self._lock:
            self.conversations.pop(session_id, None)
