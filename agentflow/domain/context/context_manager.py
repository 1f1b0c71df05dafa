from typing import Callable, List, Optional
from datetime import date
import structlog

from agentflow.domain.context.prompts import build_system_prompt, is_image_context, merge_retrieved_context
from agentflow.domain.detection.intent import requires_current_information
from agentflow.domain.models.agent_state import ExecutionContext, Message, PreparedContext
from agentflow.domain.tool.tool_registry import ToolRegistry

logger = structlog.get_logger(__name__)


class ContextManager:
    """Assembles the initial message list for the agent loop"""

    def __init__(self, history_window: int = 20, today: Callable[[], date] = date.today):
        self.history_window = history_window
        self._today = today

    async def prepare_context(self, context: ExecutionContext, registry: ToolRegistry) -> PreparedContext:
        """System prompt, windowed prior conversation, then the latest user turn"""

        message: str = context.message
        retrieved = context.retrieved_context if context.retrieved_context and context.retrieved_context.strip() else None
        has_retrieved_context = retrieved is not None
        image_context = is_image_context(retrieved)
        requires_current_info = requires_current_information(message, self._today())

        system_prompt = build_system_prompt(
            tools=registry.get_available_tools(),
            session_id=context.session_id,
            requires_current_info=requires_current_info,
            has_retrieved_context=has_retrieved_context,
            image_context=image_context,
            today=self._today(),
        )

        user_content = merge_retrieved_context(message, retrieved) if has_retrieved_context else message

        messages: List[Message] = [Message(role="system", content=system_prompt)]
        messages.extend(self.get_conversation_context(context.conversation_history))
        messages.append(Message(role="user", content=user_content))

        logger.info(
            "Prepared context",
            session_id=context.session_id,
            history_messages=len(messages) - 2,
            requires_current_info=requires_current_info,
            has_retrieved_context=has_retrieved_context,
            image_context=image_context
        )

        return PreparedContext(
            messages=messages,
            system_prompt=system_prompt,
            conversation_length=len(context.conversation_history),
            requires_current_info=requires_current_info,
            has_retrieved_context=has_retrieved_context,
            is_image_context=image_context,
        )

    def get_conversation_context(self, history: Optional[List[Message]]) -> List[Message]:
        """Last history_window turns, role and content only"""

        if not history:
            return []
        recent = history[-self.history_window:] if len(history) > self.history_window else history
        return [Message(role=m.role, content=m.content) for m in recent]
