import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from agentflow.application.chat_service import ChatErrorResponse, ChatService
from agentflow.domain.context.memory.runtime_memory import InMemorySessionStore
from agentflow.domain.models.agent_state import FinalResult, HistoryEntry, ModelResponse
from agentflow.domain.orchestration.core.main_agent import AgentOrchestrator, ServiceBindings
from agentflow.domain.orchestration.core.step_runner import StepRetryRunner
from agentflow.domain.services import ContextRetriever, SessionStore


@pytest.fixture
def orchestrator(settings):
    return AgentOrchestrator(settings=settings, runner=StepRetryRunner(sleep=AsyncMock()))


def _service(orchestrator, model, registry, store=None, retriever=None):
    return ChatService(
        orchestrator=orchestrator,
        bindings=ServiceBindings(model_service=model, tool_registry=registry),
        session_store=store or InMemorySessionStore(),
        retriever=retriever,
    )


def test_history_persisted_between_messages(orchestrator, registry, make_model, native_call):
    model = make_model(
        native_call("calculate", {"expression": "12 * 7"}),
        ModelResponse(text="12 * 7 = 84."),
        ModelResponse(text="You are welcome!"),
    )
    store = InMemorySessionStore()
    service = _service(orchestrator, model, registry, store=store)

    first = asyncio.run(service.handle_message("Calculate 12 * 7", "s1"))
    assert isinstance(first, FinalResult)

    stored = asyncio.run(store.load_history("s1"))
    assert [(e.role, e.content) for e in stored] == [("user", "Calculate 12 * 7"), ("assistant", "12 * 7 = 84.")]

    second = asyncio.run(service.handle_message("Thanks!", "s1"))
    assert second.conversation_length == 3

    sent = model.invoke.await_args.args[1].messages
    assert [(m.role, m.content) for m in sent[1:]] == [
        ("user", "Calculate 12 * 7"),
        ("assistant", "12 * 7 = 84."),
        ("user", "Thanks!"),
    ]
    assert len(asyncio.run(store.load_history("s1"))) == 4


def test_validation_error_mapped(orchestrator, registry, make_model):
    store = InMemorySessionStore()
    response = asyncio.run(_service(orchestrator, make_model(), registry, store=store).handle_message("   ", "s1"))

    assert isinstance(response, ChatErrorResponse)
    assert response.error == "ValidationError"
    assert response.details == "Message cannot be empty"
    assert "2000 characters" in response.remediation
    assert asyncio.run(store.load_history("s1")) == []


def test_validation_hint_follows_configured_limit(settings, registry, make_model):
    orchestrator = AgentOrchestrator(
        settings=settings.model_copy(update={"max_message_length": 50}),
        runner=StepRetryRunner(sleep=AsyncMock()),
    )
    response = asyncio.run(_service(orchestrator, make_model(), registry).handle_message("x" * 51))

    assert response.details == "Message too long (max 50 characters)"
    assert "at most 50 characters" in response.remediation


def test_step_exhausted_mapped(orchestrator, registry, make_model, native_call):
    responses = []
    for _ in range(3):
        responses += [native_call("calculate", {"expression": "1 + 1"}), RuntimeError("connection reset")]
    response = asyncio.run(_service(orchestrator, make_model(*responses), registry).handle_message("Calculate 1 + 1"))

    assert isinstance(response, ChatErrorResponse)
    assert response.error == "StepExhausted"
    assert "call_agent" in response.details


def test_retrieved_context_used(orchestrator, registry, make_model):
    retriever = MagicMock(spec=ContextRetriever)
    retriever.retrieve = AsyncMock(return_value="Quarterly revenue grew 12 percent year over year.")
    model = make_model(ModelResponse(text="Revenue grew 12 percent."))

    result = asyncio.run(_service(orchestrator, model, registry, retriever=retriever).handle_message("Summarize the report", "s2"))

    assert isinstance(result, FinalResult)
    retriever.retrieve.assert_awaited_once_with("Summarize the report", "s2")
    sent = model.invoke.await_args.args[1].messages
    assert sent[-1].content.startswith("DOCUMENT CONTENT (from uploaded file):")
    assert "Provide a concise summary of the document content." in sent[-1].content


def test_retrieval_failure_is_not_fatal(orchestrator, registry, make_model):
    retriever = MagicMock(spec=ContextRetriever)
    retriever.retrieve = AsyncMock(side_effect=RuntimeError("index offline"))
    model = make_model(ModelResponse(text="Hello there, how can I help?"))

    result = asyncio.run(_service(orchestrator, model, registry, retriever=retriever).handle_message("Hi"))

    assert isinstance(result, FinalResult)
    assert result.session_id == "default"


def test_persistence_failure_is_not_fatal(orchestrator, registry, make_model):
    store = MagicMock(spec=SessionStore)
    store.load_history = AsyncMock(return_value=[HistoryEntry(role="user", content="Earlier question")])
    store.save_history = AsyncMock(side_effect=RuntimeError("disk full"))
    model = make_model(ModelResponse(text="Hello there, how can I help?"))

    result = asyncio.run(_service(orchestrator, model, registry, store=store).handle_message("Hi", "s3"))

    assert isinstance(result, FinalResult)
    saved = store.save_history.await_args.args[1]
    assert [e.content for e in saved] == ["Earlier question", "Hi", "Hello there, how can I help?"]


def test_session_store_keeps_most_recent_messages():
    store = InMemorySessionStore(max_messages=3)
    for i in range(5):
        asyncio.run(store.add_to_conversation("s", HistoryEntry(role="user", content=f"m{i}")))

    assert [e.content for e in asyncio.run(store.load_history("s"))] == ["m2", "m3", "m4"]

    asyncio.run(store.clear_session("s"))
    assert asyncio.run(store.load_history("s")) == []
