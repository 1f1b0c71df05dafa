from typing import TypedDict, Any, Dict, List, Optional
from dataclasses import dataclass
from langgraph.graph import StateGraph, END
import asyncio
import time
import uuid
import structlog

from agentflow.domain.context.context_manager import ContextManager
from agentflow.domain.detection import AutoTriggerPolicy, ToolCallDetector
from agentflow.domain.errors import PipelineTimeout, ValidationError
from agentflow.domain.models.agent_state import (
    AgentMetadata, ChatRequest, ExecutionContext, FinalResult, HistoryEntry,
    ProcessedResponse, ValidationResult
)
from agentflow.domain.orchestration.core.agent_loop import AgentLoop, EMPTY_RESPONSE_MESSAGE
from agentflow.domain.orchestration.core.step_runner import Step, StepRetryRunner
from agentflow.domain.response.sanitizer import ResponseSanitizer
from agentflow.domain.services import ModelService
from agentflow.domain.tool.tool_registry import ToolRegistry
from agentflow.infrastructure.config.settings import EngineSettings
from agentflow.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)

UNCERTAINTY_MARKER = "⚠️ Note: Some information may be uncertain as some tools failed to execute.\n\n"

# (step name, attempt budget) in execution order
PIPELINE_STEPS = [
    ("validate_input", 3),
    ("prepare_context", 2),
    ("call_agent", 3),
    ("process_response", 2),
    ("update_state", 2),
]


@dataclass(frozen=True)
class ServiceBindings:
    """External collaborators for one pipeline run"""
    model_service: ModelService
    tool_registry: ToolRegistry
    detector: Optional[ToolCallDetector] = None


class WorkflowState(TypedDict):
    """State for the workflow graph"""
    context: ExecutionContext
    bindings: ServiceBindings


def bound_response_length(text: str, limit: int) -> str:
    """Cut text to at most limit characters, at a word boundary when one is near"""

    if len(text) <= limit:
        return text

    cut = text[:limit - 3]
    space = cut.rfind(" ")
    if space > len(cut) * 0.8:
        cut = cut[:space]
    return cut.rstrip() + "..."


class AgentOrchestrator:
    """Runs the fixed five-step pipeline as a linear LangGraph workflow"""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        runner: Optional[StepRetryRunner] = None,
        sanitizer: Optional[ResponseSanitizer] = None,
        context_manager: Optional[ContextManager] = None,
        auto_trigger_policy: Optional[AutoTriggerPolicy] = None
    ):
        self.settings = settings or EngineSettings()
        self.runner = runner or StepRetryRunner()
        self.sanitizer = sanitizer or ResponseSanitizer()
        self.context_manager = context_manager or ContextManager(history_window=self.settings.history_window)
        self.auto_trigger_policy = auto_trigger_policy
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the pipeline graph: one node per step, no branches"""

        workflow = StateGraph(WorkflowState)

        handlers = {
            "validate_input": self.validate_input,
            "prepare_context": self.prepare_context,
            "call_agent": self.call_agent,
            "process_response": self.process_response,
            "update_state": self.update_state,
        }

        previous = None
        for name, max_attempts in PIPELINE_STEPS:
            workflow.add_node(name, self._step_node(name, handlers[name], max_attempts))
            if previous is None:
                workflow.set_entry_point(name)
            else:
                workflow.add_edge(previous, name)
            previous = name
        workflow.add_edge(previous, END)

        return workflow.compile()

    def _step_node(self, name: str, handler, max_attempts: int):
        async def node(state: WorkflowState) -> Dict[str, Any]:
            context = state["context"]
            bindings = state["bindings"]

            async def run_step(ctx: ExecutionContext):
                await handler(ctx, bindings)

            from_node = context.trace[-1] if context.trace else None
            agent_logger.log_workflow_transition(context.session_id, from_node, name, max_attempts)

            await self.runner.run(Step(name=name, handler=run_step, max_attempts=max_attempts), context)
            context.trace.append(name)
            return {"context": context}

        return node

    async def execute(self, request: ChatRequest, bindings: ServiceBindings) -> FinalResult:
        """Run the pipeline for one request within the configured deadline"""

        context = ExecutionContext.from_request(request, started_at=time.monotonic())
        trace_id = uuid.uuid4().hex

        with structlog.contextvars.bound_contextvars(session_id=context.session_id, trace_id=trace_id):
            logger.info("Pipeline started", deadline_seconds=self.settings.deadline_seconds)

            try:
                final_state = await asyncio.wait_for(
                    self.workflow.ainvoke({"context": context, "bindings": bindings}),
                    timeout=self.settings.deadline_seconds
                )
            except asyncio.TimeoutError:
                logger.error("Pipeline deadline exceeded", completed_steps=context.trace)
                raise PipelineTimeout(self.settings.deadline_seconds) from None

            result = final_state["context"].result
            logger.info(
                "Pipeline completed",
                processing_time_ms=result.processing_time,
                tools_used=result.agent_metadata.tools_used
            )
            return result

    async def validate_input(self, context: ExecutionContext, bindings: ServiceBindings):
        """Reject non-string, blank or over-long messages"""

        message = context.message
        limit = self.settings.max_message_length
        hint = f"Send a non-empty text message of at most {limit} characters."

        if not isinstance(message, str):
            raise ValidationError("Message must be a string", remediation=hint)
        if not message.strip():
            raise ValidationError("Message cannot be empty", remediation=hint)
        if len(message) > limit:
            raise ValidationError(f"Message too long (max {limit} characters)", remediation=hint)

        context.validation = ValidationResult(is_valid=True, message_length=len(message))

    async def prepare_context(self, context: ExecutionContext, bindings: ServiceBindings):
        context.prepared = await self.context_manager.prepare_context(context, bindings.tool_registry)

    async def call_agent(self, context: ExecutionContext, bindings: ServiceBindings):
        detector = bindings.detector or ToolCallDetector.default(bindings.tool_registry, self.auto_trigger_policy)
        loop = AgentLoop(
            settings=self.settings,
            model_service=bindings.model_service,
            registry=bindings.tool_registry,
            detector=detector,
        )
        context.agent_outcome = await loop.run(context.prepared, context.message, context.session_id)

    async def process_response(self, context: ExecutionContext, bindings: ServiceBindings):
        """Sanitize, mark uncertainty, bound length"""

        outcome = context.agent_outcome
        original = outcome.content or ""

        # Fixed degraded messages are ours, not the model's
        content = original if outcome.degraded else self.sanitizer.sanitize(original)
        content = content.strip() or EMPTY_RESPONSE_MESSAGE

        if outcome.has_tool_failures:
            content = UNCERTAINTY_MARKER + content

        content = bound_response_length(content, self.settings.max_response_length)

        context.processed_response = ProcessedResponse(
            content=content,
            original_length=len(original),
            processed_length=len(content),
            sanitized=not outcome.degraded,
        )

    async def update_state(self, context: ExecutionContext, bindings: ServiceBindings):
        """Assemble the FinalResult and the updated conversation history"""

        outcome = context.agent_outcome
        metadata = AgentMetadata(
            tools_used=list(outcome.tools_used),
            function_calls_executed=list(outcome.function_calls_executed),
            iterations=outcome.iterations,
            used_tools=bool(outcome.tools_used),
            detection_methods=list(outcome.detection_methods),
            error=outcome.error,
        )

        history: List[HistoryEntry] = [
            HistoryEntry(role=m.role, content=m.content) for m in context.conversation_history
        ]
        history.append(HistoryEntry(role="user", content=context.message))
        history.append(HistoryEntry(
            role="assistant",
            content=context.processed_response.content,
            agent_metadata=metadata,
        ))

        context.result = FinalResult(
            response=context.processed_response.content,
            session_id=context.session_id or "default",
            conversation_length=len(context.conversation_history) + 1,
            model=outcome.model,
            processing_time=(time.monotonic() - context.started_at) * 1000,
            agent_metadata=metadata,
            conversation_history=history,
        )

        if outcome.tools_used:
            logger.info("Agent completed task using tools", tools_used=outcome.tools_used)
        else:
            logger.info("Agent completed task without using tools")
