import asyncio
import pytest

from agentflow.domain.detection import AutoTriggerPolicy, ToolCallDetector
from agentflow.domain.errors import AuthRequired, ModelCallError
from agentflow.domain.tool.tool_registry import ToolRegistry
from agentflow.domain.models.agent_state import AgentLoopState, Message, ModelResponse, PreparedContext, ToolResult
from agentflow.domain.orchestration.core.agent_loop import (
    AUTH_REQUIRED_MESSAGE, DIRECT_ANSWER_INSTRUCTION, EMPTY_RESPONSE_MESSAGE, AgentLoop,
    format_tool_content, is_auth_error
)


def _prepared(user_message):
    return PreparedContext(
        messages=[Message(role="system", content="You are helpful."), Message(role="user", content=user_message)],
        system_prompt="You are helpful.",
        conversation_length=0,
    )


def _run(loop, user_message):
    return asyncio.run(loop.run(_prepared(user_message), user_message, "s1"))


def test_answer_without_tools(settings, registry, make_model):
    model = make_model(ModelResponse(text="Hello there, how can I help?"))
    outcome = _run(AgentLoop(settings, model, registry), "Hi")

    assert outcome.state == AgentLoopState.FINALIZED
    assert outcome.content == "Hello there, how can I help?"
    assert outcome.model == "primary-model"
    assert outcome.iterations == 0
    assert outcome.tools_used == []
    assert model.invoke.await_count == 1


def test_tool_round_trip_message_sequence(settings, registry, make_model, native_call):
    model = make_model(native_call("calculate", {"expression": "12 * 7"}), ModelResponse(text="12 * 7 = 84."))
    outcome = _run(AgentLoop(settings, model, registry), "Calculate 12 * 7")

    assert outcome.state == AgentLoopState.FINALIZED
    assert outcome.tools_used == ["calculate"]
    assert outcome.detection_methods == ["native_tool_calls"]
    assert outcome.iterations == 1

    first = model.invoke.await_args_list[0].args[1].messages
    second = model.invoke.await_args_list[1].args[1].messages

    assert second[:len(first)] == first
    added = second[len(first):]
    assert [m.role for m in added] == ["assistant", "tool", "user"]
    assert added[0].content == ""
    assert added[0].tool_calls[0].name == "calculate"
    assert added[1].name == "calculate"
    assert '"result": 84' in added[1].content
    assert added[2].content == DIRECT_ANSWER_INSTRUCTION


def test_tools_sent_to_primary_model(settings, registry, make_model):
    model = make_model(ModelResponse(text="Hello there, how can I help?"))
    _run(AgentLoop(settings, model, registry), "Hi")

    model_id, request = model.invoke.await_args.args
    assert model_id == "primary-model"
    assert [t["function"]["name"] for t in request.tools] == registry.tool_names
    assert request.max_tokens == 4000


def test_multiple_calls_executed_in_detection_order(settings, registry, make_model):
    raw = {"tool_calls": [
        {"function": {"name": "get_current_time", "arguments": "{}"}},
        {"function": {"name": "calculate", "arguments": '{"expression": "1 + 1"}'}},
    ]}
    model = make_model(ModelResponse(raw=raw), ModelResponse(text="Done with both of those."))
    outcome = _run(AgentLoop(settings, model, registry), "Time and sum please")

    assert outcome.tools_used == ["get_current_time", "calculate"]
    second = model.invoke.await_args_list[1].args[1].messages
    assert [m.name for m in second if m.role == "tool"] == ["get_current_time", "calculate"]


def test_failed_tool_recorded_and_loop_continues(settings, make_model, native_call):
    def down(location, unit="celsius"):
        raise RuntimeError("weather service down")

    registry = ToolRegistry.with_reference_tools({"get_weather": down})
    model = make_model(native_call("get_weather", {"location": "Oslo"}), ModelResponse(text="Probably cold in Oslo."))
    outcome = _run(AgentLoop(settings, model, registry), "Is Oslo cold?")

    assert outcome.state == AgentLoopState.FINALIZED
    assert outcome.tools_used == ["get_weather"]
    assert outcome.has_tool_failures
    assert outcome.function_calls_executed[0].result.confidence == "low"


def test_max_iterations(settings, registry, make_model, native_call):
    responses = [native_call("calculate", {"expression": "1 + 1"}) for _ in range(settings.max_iterations)]
    model = make_model(*responses)
    detector = ToolCallDetector.default(registry, AutoTriggerPolicy(enabled=False))
    outcome = _run(AgentLoop(settings, model, registry, detector=detector), "Keep calculating")

    assert outcome.state == AgentLoopState.MAX_ITERATIONS_REACHED
    assert outcome.error == "Max agent iterations reached"
    assert outcome.degraded
    assert outcome.iterations == 5
    assert model.invoke.await_count == 5
    assert len(outcome.tools_used) == 5


def test_empty_answer_replaced(settings, registry, make_model):
    outcome = _run(AgentLoop(settings, make_model(ModelResponse(text="   ")), registry), "Hi")
    assert outcome.content == EMPTY_RESPONSE_MESSAGE


def test_fallback_model_on_first_failure(settings, registry, make_model):
    model = make_model(RuntimeError("model overloaded"), ModelResponse(text="Fallback answer text."))
    outcome = _run(AgentLoop(settings, model, registry), "Hi")

    assert outcome.state == AgentLoopState.FINALIZED
    assert outcome.model == "fallback-model"
    assert outcome.content == "Fallback answer text."

    model_id, request = model.invoke.await_args_list[1].args
    assert model_id == "fallback-model"
    assert request.tools is None


def test_fallback_failure_degrades(settings, registry, make_model):
    model = make_model(RuntimeError("model overloaded"), RuntimeError("fallback overloaded"))
    outcome = _run(AgentLoop(settings, model, registry), "Hi")

    assert outcome.state == AgentLoopState.DEGRADED
    assert outcome.degraded
    assert "fallback overloaded" in outcome.error


def test_auth_error_is_terminal(settings, registry, make_model):
    model = make_model(RuntimeError("401 Unauthorized: invalid API key"))
    outcome = _run(AgentLoop(settings, model, registry), "Hi")

    assert outcome.state == AgentLoopState.AUTH_REQUIRED
    assert outcome.content == AUTH_REQUIRED_MESSAGE
    assert outcome.error == "Authentication required"
    assert model.invoke.await_count == 1


def test_auth_message_carries_remediation():
    error = AuthRequired("primary-model", RuntimeError("401"))

    assert str(error) == "Authentication required"
    assert error.remediation in AUTH_REQUIRED_MESSAGE


def test_auth_error_on_later_iteration(settings, registry, make_model, native_call):
    model = make_model(native_call("calculate", {"expression": "1 + 1"}), RuntimeError("Not logged in"))
    outcome = _run(AgentLoop(settings, model, registry), "Add one and one")

    assert outcome.state == AgentLoopState.AUTH_REQUIRED
    assert outcome.tools_used == ["calculate"]


def test_later_failure_raises(settings, registry, make_model, native_call):
    model = make_model(native_call("calculate", {"expression": "1 + 1"}), RuntimeError("connection reset"))

    with pytest.raises(ModelCallError):
        _run(AgentLoop(settings, model, registry), "Add one and one")


def test_auth_error_detection():
    assert is_auth_error(RuntimeError("Authentication failed"))
    assert not is_auth_error(RuntimeError("connection reset"))


def test_search_results_formatted_for_model():
    result = ToolResult(tool_name="search_web", payload={
        "answer": "Paris",
        "results": [{"title": "Capital of France", "snippet": "Paris is the capital.", "url": "http://example.com"}],
    })
    content = format_tool_content(result)

    assert content.startswith("Search Answer: Paris")
    assert "1. Capital of France" in content
    assert "Source: http://example.com" in content


def test_search_error_formatted_for_model():
    result = ToolResult(tool_name="search_web", success=False, confidence="low",
                        payload={"error": "quota exceeded", "message": "Try later."})
    assert format_tool_content(result) == "Search Error: quota exceeded. Try later."
