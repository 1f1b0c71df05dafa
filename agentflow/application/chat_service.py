from typing import Any, List, Optional, Union
import structlog
from pydantic import BaseModel

from agentflow.domain.context.memory.runtime_memory import InMemorySessionStore
from agentflow.domain.errors import AgentFlowError
from agentflow.domain.models.agent_state import ChatRequest, FinalResult, HistoryEntry, Message
from agentflow.domain.orchestration.core.main_agent import AgentOrchestrator, ServiceBindings
from agentflow.domain.services import ContextRetriever, ModelService, SessionStore
from agentflow.domain.tool.tool_registry import ToolRegistry
from agentflow.infrastructure.config.settings import EngineSettings
from agentflow.infrastructure.llm.openai_service import OpenAIModelService
from agentflow.infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)

DEFAULT_SESSION_ID = "default"


class ChatErrorResponse(BaseModel):
    """User-facing failure: what went wrong and what to do about it"""
    error: str
    details: Optional[str] = None
    remediation: str


class ChatService:
    """Entry point for transports: session history, retrieval, pipeline, persistence"""

    def __init__(
        self,
        orchestrator: AgentOrchestrator,
        bindings: ServiceBindings,
        session_store: SessionStore,
        retriever: Optional[ContextRetriever] = None
    ):
        self.orchestrator = orchestrator
        self.bindings = bindings
        self.session_store = session_store
        self.retriever = retriever

    async def handle_message(
        self,
        message: Any,
        session_id: Optional[str] = None
    ) -> Union[FinalResult, ChatErrorResponse]:
        session_id = session_id or DEFAULT_SESSION_ID

        try:
            stored = await self.session_store.load_history(session_id)
        except Exception as e:
            logger.error("Failed to load session history", session_id=session_id, error=str(e))
            return ChatErrorResponse(
                error="Session unavailable",
                details=str(e),
                remediation="Please try again in a moment.",
            )

        retrieved = await self._retrieve(message, session_id)

        request = ChatRequest(
            message=message,
            session_id=session_id,
            conversation_history=[Message(role=entry.role, content=entry.content) for entry in stored],
            retrieved_context=retrieved,
        )

        try:
            result = await self.orchestrator.execute(request, self.bindings)
        except AgentFlowError as e:
            logger.warning("Request failed", session_id=session_id, error_type=type(e).__name__, error=str(e))
            return ChatErrorResponse(error=type(e).__name__, details=str(e), remediation=e.remediation)
        except Exception as e:
            logger.exception("Unexpected pipeline failure", session_id=session_id)
            return ChatErrorResponse(
                error="InternalError",
                details=str(e),
                remediation=AgentFlowError.remediation,
            )

        await self._persist(session_id, stored, result.conversation_history[-2:])
        return result

    async def _retrieve(self, message: Any, session_id: str) -> Optional[str]:
        if self.retriever is None or not isinstance(message, str) or not message.strip():
            return None

        try:
            return await self.retriever.retrieve(message, session_id)
        except Exception as e:
            logger.warning("Context retrieval failed, continuing without it", session_id=session_id, error=str(e))
            return None

    async def _persist(self, session_id: str, stored: List[HistoryEntry], new_entries: List[HistoryEntry]):
        try:
            await self.session_store.save_history(session_id, stored + list(new_entries))
        except Exception as e:
            logger.error("Failed to persist session history", session_id=session_id, error=str(e))


def build_chat_service(
    settings: Optional[EngineSettings] = None,
    model_service: Optional[ModelService] = None,
    tool_registry: Optional[ToolRegistry] = None,
    session_store: Optional[SessionStore] = None,
    retriever: Optional[ContextRetriever] = None
) -> ChatService:
    """Wire logging, the pipeline and its collaborators from settings"""

    settings = settings or EngineSettings()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    bindings = ServiceBindings(
        model_service=model_service or OpenAIModelService(settings),
        tool_registry=tool_registry or ToolRegistry.with_reference_tools(),
    )

    logger.info(
        "Chat service ready",
        primary_model=settings.primary_model,
        fallback_model=settings.fallback_model,
        tools=bindings.tool_registry.tool_names
    )

    return ChatService(
        orchestrator=AgentOrchestrator(settings=settings),
        bindings=bindings,
        session_store=session_store or InMemorySessionStore(),
        retriever=retriever,
    )
