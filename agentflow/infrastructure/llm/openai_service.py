from typing import Any, Dict, List, Optional
import json
import structlog
from openai import AsyncOpenAI

from agentflow.domain.models.agent_state import Message, ModelRequest, ModelResponse
from agentflow.domain.services import ModelService
from agentflow.infrastructure.config.settings import EngineSettings

logger = structlog.get_logger(__name__)


def to_openai_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    """Chat-completions wire format; tool turns get ids pairing them with their assistant call"""

    wire: List[Dict[str, Any]] = []
    pending_ids: List[str] = []
    counter = 0

    for message in messages:
        if message.role == "assistant" and message.tool_calls:
            calls = []
            for call in message.tool_calls:
                counter += 1
                call_id = f"call_{counter}"
                pending_ids.append(call_id)
                calls.append({
                    "id": call_id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                })
            wire.append({"role": "assistant", "content": message.content or None, "tool_calls": calls})
        elif message.role == "tool":
            entry: Dict[str, Any] = {"role": "tool", "content": message.content}
            if pending_ids:
                entry["tool_call_id"] = pending_ids.pop(0)
            wire.append(entry)
        else:
            wire.append({"role": message.role, "content": message.content})

    return wire


class OpenAIModelService(ModelService):
    """ModelService over any OpenAI-compatible chat-completions endpoint"""

    def __init__(self, settings: EngineSettings, client: Optional[AsyncOpenAI] = None):
        self.settings = settings
        self.client = client or AsyncOpenAI(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
            timeout=settings.openai_timeout,
        )

    async def invoke(self, model_id: str, request: ModelRequest) -> ModelResponse:
        kwargs: Dict[str, Any] = {
            "model": model_id,
            "messages": to_openai_messages(request.messages),
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "top_p": request.top_p,
        }
        if request.tools:
            kwargs["tools"] = request.tools

        response = await self.client.chat.completions.create(**kwargs)
        message = response.choices[0].message

        logger.debug(
            "Model response",
            model=model_id,
            tool_calls=len(message.tool_calls or []),
            content_length=len(message.content or "")
        )

        # raw keeps tool_calls / function_call for the detectors
        return ModelResponse(text=message.content or "", raw=message.model_dump(exclude_none=True))
