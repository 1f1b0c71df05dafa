import asyncio
import pytest
from unittest.mock import AsyncMock, call

from agentflow.domain.errors import PipelineTimeout, StepExhausted, ValidationError
from agentflow.domain.models.agent_state import ChatRequest, Message, ModelResponse
from agentflow.domain.orchestration.core.agent_loop import AUTH_REQUIRED_MESSAGE
from agentflow.domain.orchestration.core.main_agent import (
    UNCERTAINTY_MARKER, AgentOrchestrator, ServiceBindings, bound_response_length
)
from agentflow.domain.orchestration.core.step_runner import StepRetryRunner
from agentflow.domain.tool.tool_registry import ToolRegistry


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def orchestrator(settings, sleep):
    return AgentOrchestrator(settings=settings, runner=StepRetryRunner(sleep=sleep))


def _execute(orchestrator, model, registry, message, **kwargs):
    request = ChatRequest(message=message, **kwargs)
    return asyncio.run(orchestrator.execute(request, ServiceBindings(model_service=model, tool_registry=registry)))


def test_calculate_end_to_end(orchestrator, registry, make_model, native_call):
    model = make_model(native_call("calculate", {"expression": "12 * 7"}), ModelResponse(text="12 * 7 = 84."))
    result = _execute(orchestrator, model, registry, "Calculate 12 * 7", session_id="s1")

    assert "84" in result.response
    assert model.invoke.await_count == 2

    second = model.invoke.await_args_list[1].args[1].messages
    assert second[-2].role == "tool"
    assert '"result": 84' in second[-2].content

    payload = result.to_payload()
    assert payload["sessionId"] == "s1"
    assert payload["model"] == "primary-model"
    assert payload["agentMetadata"]["toolsUsed"] == ["calculate"]
    assert payload["agentMetadata"]["usedTools"] is True
    assert payload["agentMetadata"]["iterations"] == 1
    assert payload["agentMetadata"]["functionCallsExecuted"][0]["result"]["success"] is True


def test_failing_weather_tool_marks_uncertainty(orchestrator, make_model):
    def down(location, unit="celsius"):
        raise RuntimeError("weather service down")

    registry = ToolRegistry.with_reference_tools({"get_weather": down})
    model = make_model(
        ModelResponse(text="Let me think about that."),
        ModelResponse(text="It is likely mild in Tokyo right now."),
    )
    result = _execute(orchestrator, model, registry, "What's the weather in Tokyo today?")

    assert result.response.startswith(UNCERTAINTY_MARKER)
    assert result.response.endswith("It is likely mild in Tokyo right now.")

    payload = result.to_payload()
    executed = payload["agentMetadata"]["functionCallsExecuted"]
    assert executed[0]["name"] == "get_weather"
    assert executed[0]["arguments"] == {"location": "Tokyo"}
    assert executed[0]["result"]["success"] is False
    assert payload["agentMetadata"]["detectionMethods"] == ["auto_trigger"]


def test_weather_auto_trigger_with_uploaded_document(orchestrator, registry, make_model):
    model = make_model(
        ModelResponse(text="I cannot check live weather."),
        ModelResponse(text="It is 21 degrees in Tokyo."),
    )
    result = _execute(
        orchestrator, model, registry, "What's the weather in Tokyo today?",
        retrieved_context="Quarterly report text.",
    )

    assert result.agent_metadata.tools_used == ["get_weather"]
    assert result.response == "It is 21 degrees in Tokyo."


@pytest.mark.parametrize("message", ["", "   \n ", 123, None, "x" * 2001])
def test_invalid_messages_rejected(orchestrator, registry, make_model, sleep, message):
    model = make_model()

    with pytest.raises(ValidationError):
        _execute(orchestrator, model, registry, message)

    model.invoke.assert_not_awaited()
    sleep.assert_not_awaited()


def test_message_at_length_limit_accepted(orchestrator, registry, make_model):
    model = make_model(ModelResponse(text="That is a lot of x characters."))
    result = _execute(orchestrator, model, registry, "x" * 2000)
    assert result.response == "That is a lot of x characters."


def test_deadline_exceeded(registry, make_model, sleep):
    from agentflow.infrastructure.config.settings import EngineSettings

    async def slow(*args, **kwargs):
        await asyncio.sleep(1)

    model = make_model()
    model.invoke = AsyncMock(side_effect=slow)
    orchestrator = AgentOrchestrator(
        settings=EngineSettings(_env_file=None, deadline_seconds=0.05),
        runner=StepRetryRunner(sleep=sleep),
    )

    with pytest.raises(PipelineTimeout, match="Request timeout"):
        _execute(orchestrator, model, registry, "Hi")


def test_agent_step_exhausted(orchestrator, registry, make_model, native_call, sleep):
    responses = []
    for _ in range(3):
        responses += [native_call("calculate", {"expression": "1 + 1"}), RuntimeError("connection reset")]
    model = make_model(*responses)

    with pytest.raises(StepExhausted) as exc_info:
        _execute(orchestrator, model, registry, "Calculate 1 + 1")

    assert exc_info.value.step_name == "call_agent"
    assert model.invoke.await_count == 6
    assert sleep.await_args_list == [call(2.0), call(4.0)]


def test_history_and_conversation_length(orchestrator, registry, make_model):
    model = make_model(ModelResponse(text="You are very welcome."))
    history = [Message(role="user", content="Hi"), Message(role="assistant", content="Hello!")]
    result = _execute(orchestrator, model, registry, "Thanks a lot", conversation_history=history)

    assert result.conversation_length == 3
    assert [(e.role, e.content) for e in result.conversation_history] == [
        ("user", "Hi"),
        ("assistant", "Hello!"),
        ("user", "Thanks a lot"),
        ("assistant", "You are very welcome."),
    ]
    assert result.conversation_history[-1].agent_metadata is not None
    assert result.session_id == "default"

    sent = model.invoke.await_args.args[1].messages
    assert [m.role for m in sent] == ["system", "user", "assistant", "user"]


def test_history_window(registry, make_model, sleep):
    from agentflow.infrastructure.config.settings import EngineSettings

    orchestrator = AgentOrchestrator(
        settings=EngineSettings(_env_file=None, history_window=1),
        runner=StepRetryRunner(sleep=sleep),
    )
    model = make_model(ModelResponse(text="You are very welcome."))
    history = [Message(role="user", content="Hi"), Message(role="assistant", content="Hello!")]
    _execute(orchestrator, model, registry, "Thanks a lot", conversation_history=history)

    sent = model.invoke.await_args.args[1].messages
    assert [(m.role, m.content) for m in sent[1:]] == [("assistant", "Hello!"), ("user", "Thanks a lot")]


def test_retrieved_image_context_merged(orchestrator, registry, make_model):
    model = make_model(ModelResponse(text="The image shows a cat sleeping on a red sofa."))
    _execute(
        orchestrator, model, registry, "What is in this picture?",
        retrieved_context="[IMAGE DESCRIPTION] A cat sleeping on a red sofa.",
    )

    sent = model.invoke.await_args.args[1].messages
    assert "IMAGE MODE" in sent[0].content
    assert sent[-1].content.startswith("IMAGE CONTENT (from uploaded file):")
    assert "USER REQUEST: What is in this picture?" in sent[-1].content


def test_system_prompt_lists_tools_and_session(orchestrator, registry, make_model):
    model = make_model(ModelResponse(text="Hello there, how can I help?"))
    _execute(orchestrator, model, registry, "Hi", session_id="abc")

    system = model.invoke.await_args.args[1].messages[0].content
    assert "- calculate:" in system
    assert "You are in session: abc." in system


def test_sanitizer_applied_to_answer(orchestrator, registry, make_model):
    model = make_model(ModelResponse(text="As of my knowledge cutoff in 2023, things may differ. The answer is 42."))
    result = _execute(orchestrator, model, registry, "What is the answer?")
    assert result.response == "The answer is 42."


def test_degraded_answer_not_sanitized(orchestrator, registry, make_model):
    model = make_model(RuntimeError("Unauthorized"))
    result = _execute(orchestrator, model, registry, "Hi")

    assert result.response == AUTH_REQUIRED_MESSAGE
    assert result.model == "error-auth"
    assert result.agent_metadata.error == "Authentication required"


def test_long_answer_bounded(registry, make_model, sleep):
    from agentflow.infrastructure.config.settings import EngineSettings

    orchestrator = AgentOrchestrator(
        settings=EngineSettings(_env_file=None, max_response_length=100),
        runner=StepRetryRunner(sleep=sleep),
    )
    model = make_model(ModelResponse(text="word " * 60))
    result = _execute(orchestrator, model, registry, "Say word many times")

    assert len(result.response) <= 100
    assert result.response.endswith("word...")


def test_bound_response_length_short_text_untouched():
    assert bound_response_length("short answer", 100) == "short answer"
