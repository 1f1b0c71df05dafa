from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
import inspect
import structlog
from pydantic import BaseModel, ConfigDict, Field

from agentflow.domain.errors import ToolExecutionError
from agentflow.domain.tool.tool_validator import ToolParameterValidator

logger = structlog.get_logger(__name__)

ExecutorFn = Callable[..., Union[Any, Awaitable[Any]]]


class ToolDefinition(BaseModel):
    """Name, description and JSON-schema parameter contract of a tool"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Unique tool name")
    description: str
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    @property
    def required_parameters(self) -> List[str]:
        return list(self.parameters.get("required", []))

    @property
    def optional_parameters(self) -> List[str]:
        required = set(self.required_parameters)
        return [name for name in self.parameters.get("properties", {}) if name not in required]

    def to_function_schema(self) -> Dict[str, Any]:
        """OpenAI function-calling representation"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


REFERENCE_TOOL_DEFINITIONS: List[ToolDefinition] = [
    ToolDefinition(
        name="get_weather",
        description="Get current weather information for a specific location. "
                    "Use this when users ask about weather conditions.",
        parameters={
            "type": "object",
            "properties": {
                "location": {"type": "string", "description": 'The city name or location (e.g., "San Francisco", "London")'},
                "unit": {"type": "string", "enum": ["celsius", "fahrenheit"], "default": "celsius"},
            },
            "required": ["location"],
        },
    ),
    ToolDefinition(
        name="calculate",
        description="Perform mathematical calculations. Use this when users ask to calculate, "
                    "compute, or solve math problems.",
        parameters={
            "type": "object",
            "properties": {
                "expression": {"type": "string", "description": 'The expression to evaluate (e.g., "10 * 5")'},
            },
            "required": ["expression"],
        },
    ),
    ToolDefinition(
        name="get_current_time",
        description="Get the current date and time. Use this when users ask about the current time, "
                    "date, or what day it is.",
        parameters={
            "type": "object",
            "properties": {
                "timezone": {"type": "string", "description": 'Optional timezone (e.g., "Europe/London"). Defaults to UTC.'},
            },
            "required": [],
        },
    ),
    ToolDefinition(
        name="search_web",
        description="Search the web for information. Use this for current events, recent news, "
                    "acquisitions, company deals, or anything that needs up-to-date data.",
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The search query or question to look up"},
            },
            "required": ["query"],
        },
    ),
    ToolDefinition(
        name="convert_currency",
        description="Convert between different currencies. Use this when users ask about currency "
                    "conversion or exchange rates.",
        parameters={
            "type": "object",
            "properties": {
                "amount": {"type": "number", "description": "The amount to convert"},
                "from": {"type": "string", "description": 'Source currency code (e.g., "USD")'},
                "to": {"type": "string", "description": 'Target currency code (e.g., "EUR")'},
            },
            "required": ["amount", "from", "to"],
        },
    ),
]


class ToolRegistry:
    """Ordered registry of tool definitions and their executors"""

    def __init__(self):
        self.tools: Dict[str, ToolDefinition] = {}
        self.executors: Dict[str, ExecutorFn] = {}

    @classmethod
    def with_reference_tools(cls, executors: Optional[Dict[str, ExecutorFn]] = None) -> "ToolRegistry":
        """Registry holding the five reference tool contracts"""

        registry = cls()
        executors = executors or {}
        for definition in REFERENCE_TOOL_DEFINITIONS:
            registry.register_tool(definition, executors.get(definition.name))
        return registry

    def register_tool(self, definition: ToolDefinition, executor: Optional[ExecutorFn] = None):
        """Register a new tool"""

        if definition.name in self.tools:
            raise ValueError(f"Tool {definition.name} is already registered")

        self.tools[definition.name] = definition
        if executor is not None:
            self.executors[definition.name] = executor
        logger.debug("Registered tool", tool_name=definition.name)

    def bind_executor(self, name: str, executor: ExecutorFn):
        """Attach (or replace) the executor of a registered tool"""

        if name not in self.tools:
            raise KeyError(name)
        self.executors[name] = executor

    @property
    def tool_names(self) -> List[str]:
        return list(self.tools)

    def has_tool(self, name: str) -> bool:
        return name in self.tools

    def get_tool_info(self, name: str) -> Optional[ToolDefinition]:
        """Get information about a specific tool"""

        return self.tools.get(name)

    def get_available_tools(self) -> List[ToolDefinition]:
        """Get all available tools in registration order"""

        return list(self.tools.values())

    def to_function_schemas(self) -> List[Dict[str, Any]]:
        return [tool.to_function_schema() for tool in self.tools.values()]

    async def execute(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Validate arguments and run the tool's executor"""

        definition = self.tools.get(name)
        if definition is None:
            raise ToolExecutionError(name, "unknown tool")

        executor = self.executors.get(name)
        if executor is None:
            raise ToolExecutionError(name, "no executor bound")

        validation = ToolParameterValidator.validate_tool_call(definition, arguments)
        if not validation.is_valid:
            raise ToolExecutionError(name, "; ".join(validation.errors))

        try:
            result = executor(**arguments)
            if inspect.isawaitable(result):
                result = await result
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(name, str(e)) from e

        return result
