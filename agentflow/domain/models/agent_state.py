from typing import Dict, Any, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentLoopState(str, Enum):
    """Agent loop states"""
    AWAITING_MODEL = "awaiting_model"
    TOOLS_DETECTED = "tools_detected"
    EXECUTING_TOOLS = "executing_tools"
    NO_TOOLS_DETECTED = "no_tools_detected"
    FINALIZED = "finalized"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    DEGRADED = "degraded"
    AUTH_REQUIRED = "auth_required"


class ToolCall(BaseModel):
    """A tool invocation the model asked for (or one synthesized for it)"""
    name: str = Field(description="Registered tool name")
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of executing a single ToolCall"""
    tool_name: str
    payload: Any = None
    success: bool = True
    confidence: Literal["high", "low"] = "high"


class Message(BaseModel):
    """One conversation turn sent to the model"""
    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    name: Optional[str] = Field(None, description="Tool name for tool-role messages")
    tool_calls: Optional[List[ToolCall]] = None


class ModelRequest(BaseModel):
    """Request handed to the language-model service"""
    messages: List[Message]
    max_tokens: int = 4000
    temperature: float = 0.7
    top_p: float = 0.9
    tools: Optional[List[Dict[str, Any]]] = None


class ModelResponse(BaseModel):
    """Response from the language-model service; raw stays opaque"""
    text: str = ""
    raw: Dict[str, Any] = Field(default_factory=dict)


class ValidationResult(BaseModel):
    is_valid: bool
    message_length: int
    timestamp: datetime = Field(default_factory=utcnow)


class PreparedContext(BaseModel):
    """Output of the prepare_context step"""
    messages: List[Message]
    system_prompt: str
    conversation_length: int
    requires_current_info: bool = False
    has_retrieved_context: bool = False
    is_image_context: bool = False


class FunctionCallRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result: ToolResult
    timestamp: datetime = Field(default_factory=utcnow)


class AgentOutcome(BaseModel):
    """What the agent loop hands to process_response"""
    content: str
    model: str
    state: AgentLoopState
    error: Optional[str] = None
    degraded: bool = False
    tools_used: List[str] = Field(default_factory=list)
    function_calls_executed: List[FunctionCallRecord] = Field(default_factory=list)
    detection_methods: List[str] = Field(default_factory=list)
    iterations: int = 0
    model_calls: int = 0

    @property
    def has_tool_failures(self) -> bool:
        return any(not record.result.success for record in self.function_calls_executed)


class ProcessedResponse(BaseModel):
    content: str
    original_length: int
    processed_length: int
    sanitized: bool = False
    timestamp: datetime = Field(default_factory=utcnow)


class AgentMetadata(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_agent: bool = True
    tools_used: List[str] = Field(default_factory=list)
    function_calls_executed: List[FunctionCallRecord] = Field(default_factory=list)
    iterations: int = 0
    used_tools: bool = False
    detection_methods: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class HistoryEntry(BaseModel):
    """Conversation history entry handed back for persistence"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    role: Literal["system", "user", "assistant", "tool"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    agent_metadata: Optional[AgentMetadata] = None


class FinalResult(BaseModel):
    """Pipeline result returned to the caller"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    response: str
    session_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    conversation_length: int
    model: str
    processing_time: float = Field(description="Milliseconds from pipeline start")
    agent_metadata: AgentMetadata
    conversation_history: List[HistoryEntry] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        """Camel-cased dict for transport layers"""
        return self.model_dump(mode="json", by_alias=True)


class ChatRequest(BaseModel):
    """Pipeline input"""
    message: Any = Field(description="User message; validated by the pipeline")
    session_id: Optional[str] = None
    conversation_history: List[Message] = Field(default_factory=list)
    retrieved_context: Optional[str] = None


class ExecutionContext(BaseModel):
    """Mutable per-request record threaded through the pipeline steps"""
    message: Any
    session_id: Optional[str] = None
    conversation_history: List[Message] = Field(default_factory=list)
    retrieved_context: Optional[str] = None
    started_at: float = Field(description="time.monotonic() at pipeline start")
    validation: Optional[ValidationResult] = None
    prepared: Optional[PreparedContext] = None
    agent_outcome: Optional[AgentOutcome] = None
    processed_response: Optional[ProcessedResponse] = None
    result: Optional[FinalResult] = None
    trace: List[str] = Field(default_factory=list)

    @classmethod
    def from_request(cls, request: ChatRequest, started_at: float) -> "ExecutionContext":
        return cls(
            message=request.message,
            session_id=request.session_id,
            conversation_history=list(request.conversation_history),
            retrieved_context=request.retrieved_context,
            started_at=started_at,
        )
