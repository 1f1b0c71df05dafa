from typing import Any, Dict, List, Optional
import json
import structlog

from agentflow.domain.detection import DetectionRequest, ToolCallDetector
from agentflow.domain.errors import AuthRequired, ModelCallError
from agentflow.domain.models.agent_state import (
    AgentLoopState, AgentOutcome, FunctionCallRecord, Message, ModelRequest,
    ModelResponse, PreparedContext, ToolCall, ToolResult
)
from agentflow.domain.services import ModelService
from agentflow.domain.tool.tool_executor import ToolCallExecutor
from agentflow.domain.tool.tool_registry import ToolRegistry
from agentflow.infrastructure.config.settings import EngineSettings
from agentflow.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)

DIRECT_ANSWER_INSTRUCTION = (
    "CRITICAL: Give ONLY the direct answer to the question. Use the tool results above, but DO NOT "
    "mention searching, tools, or sources. Just provide the answer directly. Example: If asked "
    "\"Who is the president?\", answer with the name and nothing else. No preambles, no explanations "
    "about searching."
)

EMPTY_RESPONSE_MESSAGE = "I apologize, but I couldn't generate a response. Please try rephrasing your question."

MAX_ITERATIONS_MESSAGE = (
    "I apologize, but I'm experiencing technical difficulties processing your request. "
    "I attempted to use tools {iterations} times but couldn't complete the task. "
    "Please try rephrasing your question or contact support."
)

MODEL_UNAVAILABLE_MESSAGE = (
    "I apologize, but the AI service is unavailable right now and I couldn't generate a response. "
    "Please try again in a moment."
)

AUTH_REQUIRED_MESSAGE = (
    "I apologize, but I'm unable to process your request because the AI service requires "
    "authentication.\n\n"
    f"{AuthRequired.remediation} Once authenticated, I'll be able to help you!"
)

AUTH_ERROR_MARKERS = ("not logged in", "authentication", "login", "unauthorized", "api key")


def is_auth_error(error: BaseException) -> bool:
    """Whether a model-service failure means missing or rejected credentials"""
    if getattr(error, "status_code", None) == 401:
        return True
    text = str(error).lower()
    return any(marker in text for marker in AUTH_ERROR_MARKERS)


def format_tool_content(result: ToolResult) -> str:
    """Tool result as the text of a tool-role message"""

    payload = result.payload
    if result.tool_name == "search_web" and isinstance(payload, dict):
        formatted = _format_search_results(payload)
        if formatted:
            return formatted

    if isinstance(payload, dict):
        payload = {**payload, "confidence": result.confidence}
    return json.dumps(payload, default=str)


def _format_search_results(payload: Dict[str, Any]) -> str:
    if payload.get("error"):
        return f"Search Error: {payload['error']}. {payload.get('message', '')}".rstrip()

    formatted = ""
    if payload.get("answer"):
        formatted = f"Search Answer: {payload['answer']}\n\n"

    results = payload.get("results") or []
    if results:
        formatted += "Search Results:\n"
        for idx, item in enumerate(results, start=1):
            item = item if isinstance(item, dict) else {"title": str(item)}
            formatted += f"{idx}. {item.get('title') or 'Result'}\n"
            if item.get("snippet"):
                formatted += f"   {item['snippet']}\n"
            if item.get("url"):
                formatted += f"   Source: {item['url']}\n"
            formatted += "\n"

    return formatted.strip()


class AgentLoop:
    """Bounded model -> detect -> execute -> feed back loop"""

    def __init__(
        self,
        settings: EngineSettings,
        model_service: ModelService,
        registry: ToolRegistry,
        detector: Optional[ToolCallDetector] = None,
        executor: Optional[ToolCallExecutor] = None
    ):
        self.settings = settings
        self.model_service = model_service
        self.registry = registry
        self.detector = detector or ToolCallDetector.default(registry)
        self.executor = executor or ToolCallExecutor(registry)

    def _request(self, messages: List[Message], with_tools: bool) -> ModelRequest:
        tools = self.registry.to_function_schemas() if with_tools else None
        return ModelRequest(
            messages=list(messages),
            max_tokens=self.settings.max_tokens,
            temperature=self.settings.temperature,
            top_p=self.settings.top_p,
            tools=tools or None,
        )

    def _transition(self, session_id: Optional[str], state: AgentLoopState, iteration: int, **data):
        agent_logger.log_agent_event(
            event_type="state_transition",
            session_id=session_id,
            data={"state": state.value, "iteration": iteration, **data}
        )
        return state

    async def run(
        self,
        prepared: PreparedContext,
        user_message: str,
        session_id: Optional[str] = None
    ) -> AgentOutcome:
        """Drive the loop to a terminal state"""

        messages: List[Message] = list(prepared.messages)
        tools_used: List[str] = []
        records: List[FunctionCallRecord] = []
        detection_methods: List[str] = []
        model_calls = 0
        iteration = 0

        while iteration < self.settings.max_iterations:
            self._transition(session_id, AgentLoopState.AWAITING_MODEL, iteration)

            try:
                model_calls += 1
                response = await self.model_service.invoke(
                    self.settings.primary_model, self._request(messages, with_tools=True)
                )
            except Exception as e:
                logger.error(
                    "Agent model call failed",
                    model=self.settings.primary_model,
                    iteration=iteration + 1,
                    error=str(e)
                )

                if is_auth_error(e):
                    return self._auth_required(
                        AuthRequired(self.settings.primary_model, e),
                        session_id, iteration, tools_used, records, detection_methods, model_calls
                    )

                if iteration > 0:
                    raise ModelCallError(self.settings.primary_model, e) from e

                return await self._fallback(messages, session_id, e, model_calls)

            detection = self.detector.detect(DetectionRequest(
                response=response,
                user_message=user_message,
                iteration=iteration,
                has_retrieved_context=prepared.has_retrieved_context,
            ))

            if not detection.has_calls:
                self._transition(session_id, AgentLoopState.NO_TOOLS_DETECTED, iteration)
                return self._finalize(
                    response, session_id, iteration, tools_used, records, detection_methods, model_calls
                )

            self._transition(
                session_id, AgentLoopState.TOOLS_DETECTED, iteration,
                method=detection.method, tools=[call.name for call in detection.calls]
            )
            agent_logger.log_detection(
                session_id=session_id,
                method=detection.method,
                tool_names=[call.name for call in detection.calls],
                iteration=iteration + 1
            )
            detection_methods.append(detection.method)

            self._transition(session_id, AgentLoopState.EXECUTING_TOOLS, iteration)
            results = await self._execute_calls(detection.calls, session_id, tools_used, records)

            # Conversation grows by exactly: assistant call turn, one tool turn per result, instruction
            messages.append(Message(role="assistant", content="", tool_calls=list(detection.calls)))
            for result in results:
                messages.append(Message(role="tool", name=result.tool_name, content=format_tool_content(result)))
            messages.append(Message(role="user", content=DIRECT_ANSWER_INSTRUCTION))

            iteration += 1

        self._transition(session_id, AgentLoopState.MAX_ITERATIONS_REACHED, iteration)
        logger.warning("Max agent iterations reached", iterations=iteration, tools_used=tools_used)

        return AgentOutcome(
            content=MAX_ITERATIONS_MESSAGE.format(iterations=self.settings.max_iterations),
            model=self.settings.primary_model,
            state=AgentLoopState.MAX_ITERATIONS_REACHED,
            error="Max agent iterations reached",
            degraded=True,
            tools_used=tools_used,
            function_calls_executed=records,
            detection_methods=detection_methods,
            iterations=iteration,
            model_calls=model_calls,
        )

    async def _execute_calls(
        self,
        calls: List[ToolCall],
        session_id: Optional[str],
        tools_used: List[str],
        records: List[FunctionCallRecord]
    ) -> List[ToolResult]:
        results = []
        for call in calls:
            result = await self.executor.execute_tool(call, session_id)
            results.append(result)
            tools_used.append(call.name)
            records.append(FunctionCallRecord(name=call.name, arguments=call.arguments, result=result))
        return results

    def _finalize(
        self,
        response: ModelResponse,
        session_id: Optional[str],
        iteration: int,
        tools_used: List[str],
        records: List[FunctionCallRecord],
        detection_methods: List[str],
        model_calls: int
    ) -> AgentOutcome:
        content = (response.text or "").strip()
        if not content:
            logger.warning("Empty response from model, using apology", iteration=iteration + 1)
            content = EMPTY_RESPONSE_MESSAGE

        self._transition(session_id, AgentLoopState.FINALIZED, iteration, tools_used=tools_used)

        return AgentOutcome(
            content=content,
            model=self.settings.primary_model,
            state=AgentLoopState.FINALIZED,
            tools_used=tools_used,
            function_calls_executed=records,
            detection_methods=detection_methods,
            iterations=iteration,
            model_calls=model_calls,
        )

    async def _fallback(
        self,
        messages: List[Message],
        session_id: Optional[str],
        primary_error: BaseException,
        model_calls: int
    ) -> AgentOutcome:
        """One attempt on the fallback model, without tools"""

        fallback_model = self.settings.fallback_model
        logger.info("Trying fallback model", model=fallback_model)

        try:
            response = await self.model_service.invoke(fallback_model, self._request(messages, with_tools=False))
        except Exception as e:
            logger.error("Fallback model also failed", model=fallback_model, error=str(e))

            if is_auth_error(e):
                return self._auth_required(AuthRequired(fallback_model, e), session_id, 0, [], [], [], model_calls)

            self._transition(session_id, AgentLoopState.DEGRADED, 0, error=str(e))
            return AgentOutcome(
                content=MODEL_UNAVAILABLE_MESSAGE,
                model=fallback_model,
                state=AgentLoopState.DEGRADED,
                error=f"Primary model failed: {primary_error}; fallback model failed: {e}",
                degraded=True,
                model_calls=model_calls,
            )

        content = (response.text or "").strip() or EMPTY_RESPONSE_MESSAGE
        self._transition(session_id, AgentLoopState.FINALIZED, 0, model=fallback_model)

        return AgentOutcome(
            content=content,
            model=fallback_model,
            state=AgentLoopState.FINALIZED,
            model_calls=model_calls,
        )

    def _auth_required(
        self,
        error: AuthRequired,
        session_id: Optional[str],
        iteration: int,
        tools_used: List[str],
        records: List[FunctionCallRecord],
        detection_methods: List[str],
        model_calls: int
    ) -> AgentOutcome:
        self._transition(session_id, AgentLoopState.AUTH_REQUIRED, iteration, model=error.model_id)
        return AgentOutcome(
            content=AUTH_REQUIRED_MESSAGE,
            model="error-auth",
            state=AgentLoopState.AUTH_REQUIRED,
            error=str(error),
            degraded=True,
            tools_used=tools_used,
            function_calls_executed=records,
            detection_methods=detection_methods,
            iterations=iteration,
            model_calls=model_calls,
        )
