import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from agentflow.domain.models.agent_state import ModelResponse
from agentflow.domain.services import ModelService
from agentflow.domain.tool.tool_registry import ToolRegistry
from agentflow.infrastructure.config.settings import EngineSettings


@pytest.fixture
def settings():
    return EngineSettings(
        _env_file=None,
        primary_model="primary-model",
        fallback_model="fallback-model",
        deadline_seconds=5,
    )


@pytest.fixture
def registry():
    """Reference tools with deterministic executors"""

    async def search_web(query):
        return {"answer": f"Answer for {query}", "results": [{"title": "Result", "snippet": "Snippet", "url": "http://example.com"}]}

    return ToolRegistry.with_reference_tools({
        "get_weather": lambda location, unit="celsius": {"location": location, "temperature": 21, "unit": unit},
        "calculate": lambda expression: {"expression": expression, "result": 84},
        "get_current_time": lambda timezone="UTC": {"timezone": timezone, "time": "12:00"},
        "search_web": search_web,
        "convert_currency": lambda amount, **kwargs: {"amount": amount, "converted": amount * 0.9},
    })


@pytest.fixture
def make_model():
    """ModelService mock returning (or raising) the given responses in order"""

    def factory(*responses):
        service = MagicMock(spec=ModelService)
        service.invoke = AsyncMock(side_effect=list(responses))
        return service

    return factory


@pytest.fixture
def native_call():
    """ModelResponse carrying OpenAI-style tool_calls"""

    def factory(name, arguments, text=""):
        return ModelResponse(text=text, raw={
            "role": "assistant",
            "tool_calls": [{
                "id": "call_1",
                "type": "function",
                "function": {"name": name, "arguments": json.dumps(arguments)},
            }],
        })

    return factory
