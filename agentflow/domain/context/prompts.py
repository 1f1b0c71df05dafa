"""
Prompt text for the agent: the system prompt and the retrieval-merged user turn.
"""

from typing import List, Optional
from datetime import date

from agentflow.domain.tool.tool_registry import ToolDefinition

IMAGE_TAG = "[IMAGE DESCRIPTION]"
IMAGE_PROCESSING_TAG = "[IMAGE_PROCESSING]"

_IMAGE_PHRASES = ("image shows", "in the image", "the image contains", "picture shows", "photo shows")

IMAGE_MODE_NOTICE = (
    "IMAGE MODE: The user has uploaded an image. An image description is provided in the user "
    "message and tells you what is visible in the image. Answer using only this description, "
    "naturally (\"The image shows...\"). The description IS the image: never say you cannot see images."
)

DOCUMENT_MODE_NOTICE = (
    "DOCUMENT MODE: The user has uploaded a document (PDF, text, or URL). Its content is provided "
    "in the user message. Answer questions about the document using only that content. You can "
    "summarize, explain, analyze, or answer questions about it."
)

NO_CONTEXT_NOTICE = (
    "NO DOCUMENT/IMAGE CONTEXT: If the user asks about an image but no context is provided, the image "
    "may still be processing (this can take 15-30 seconds after upload). Ask them to wait a moment and "
    "try again. For documents, say \"I don't see any uploaded document. Please upload a document first, "
    "then ask me about it.\""
)

CURRENT_INFO_ADDENDUM = """CRITICAL REMINDER: The user's question requires current information. The current year is {year}. \
You MUST use the search_web tool to get it. Do NOT rely on your training data.

ABSOLUTELY FORBIDDEN, do not mention any of these:
- "As of my knowledge in 2023" or "knowledge cutoff"
- "I'm a large language model" or "my training data"
- "I'll use the search_web tool" or "I'll check"
- "According to the latest information" or "According to search results"
- "However" or "please note" disclaimers

DO THIS INSTEAD:
1. Silently use the search_web tool (do not mention it)
2. Use the search results to get the current, accurate answer
3. Provide only the direct answer, with no disclaimers and no tool mentions

The answer must be based on search_web results, not your training data."""

SYSTEM_PROMPT_TEMPLATE = """You are a smart digital helper: a knowledgeable, friendly AI assistant. \
You are conversational, helpful, and capable of assisting with a wide range of tasks.

CURRENT YEAR: {year}
CURRENT DATE: {current_date}

{mode_notice}

AVAILABLE TOOLS (use these when helpful):
{tool_list}

TOOL USAGE RULES:
- Call a tool when the question needs live data (weather, time, exchange rates, news) or exact arithmetic
- For recent news, current events or anything from {recent_years}, ALWAYS use search_web
- Never explain which tool you used or that you searched; give the answer directly
- If a tool fails, answer from your own knowledge and say the information may be uncertain

RESPONSE STYLE:
- Programming, studying, writing, career and general questions are all welcome
- Use markdown headings, lists and code blocks where they help
- Keep answers focused and well structured"""


def is_image_context(retrieved_context: Optional[str]) -> bool:
    if not retrieved_context:
        return False
    lower = retrieved_context.lower()
    return IMAGE_TAG in retrieved_context or any(phrase in lower for phrase in _IMAGE_PHRASES)


def build_system_prompt(
    tools: List[ToolDefinition],
    session_id: Optional[str] = None,
    requires_current_info: bool = False,
    has_retrieved_context: bool = False,
    image_context: bool = False,
    today: Optional[date] = None
) -> str:
    """Assemble the agent's system prompt"""

    today = today or date.today()

    if not has_retrieved_context:
        mode_notice = NO_CONTEXT_NOTICE
    elif image_context:
        mode_notice = IMAGE_MODE_NOTICE
    else:
        mode_notice = DOCUMENT_MODE_NOTICE

    prompt = SYSTEM_PROMPT_TEMPLATE.format(
        year=today.year,
        current_date=f"{today:%B} {today.day}, {today.year}",
        mode_notice=mode_notice,
        tool_list="\n".join(f"- {tool.name}: {tool.description}" for tool in tools) or "- (none)",
        recent_years=f"{today.year - 1} or {today.year}",
    )

    if requires_current_info:
        prompt += "\n\n" + CURRENT_INFO_ADDENDUM.format(year=today.year)

    if session_id:
        prompt += f"\n\nYou are in session: {session_id}. Maintain context throughout this conversation."

    return prompt


def _retrieval_instruction(message: str, image_context: bool) -> str:
    lower = message.lower()

    if image_context:
        if "summarize" in lower or "summary" in lower:
            return ("Provide a concise summary of what is visible in the image based on the image description. "
                    "Highlight the main elements, objects, people, text, or scenes visible in the image.")
        if "explain" in lower or "what is" in lower or "what's" in lower:
            return ("Provide a detailed breakdown of the image. Identify the main subjects, any text found, "
                    "the setting, and the overall composition based on the description.")
        if "analyze" in lower:
            return ("Analyze the image content. Describe what you see, identify key elements, and discuss "
                    "what is visible in the image.")
        if "what" in lower or "describe" in lower or "see" in lower:
            return ("Describe what is visible in the image based on the image description provided. "
                    "Answer questions about what is in the image.")
        return ("Answer the user's question about the image using the image description provided. "
                "Describe what is visible in the image.")

    if "summarize" in lower or "summary" in lower:
        return ("Provide a concise summary of the document content. Highlight the main points, key findings, "
                "and important information.")
    if "explain" in lower:
        return ("Explain the document content in detail. Break down complex concepts and provide clear "
                "explanations.")
    if "analyze" in lower:
        return "Analyze the document content. Provide insights, identify patterns, and discuss implications."
    return ("Answer the user's question using the document content. Provide a direct, comprehensive answer "
            "based on the information in the document.")


def merge_retrieved_context(message: str, retrieved_context: str) -> str:
    """The latest user turn with retrieved document or image content folded in"""

    if IMAGE_PROCESSING_TAG in retrieved_context:
        return (
            f"USER REQUEST: {message}\n\n"
            "NOTE: The image was uploaded but is still being processed by the system. This usually takes "
            "15-30 seconds. Please inform the user that the image may still be processing and suggest they "
            "wait a moment and try again."
        )

    image = is_image_context(retrieved_context)
    source = "image description" if image else "document content"

    if image:
        rules = [
            f"Use ONLY the {source} provided above",
            "Do NOT use search_web or any other tools",
            "Do NOT mention that you used tools",
            "This is an IMAGE DESCRIPTION: you CAN see the image through it. Never say you cannot see images",
            "Answer naturally (\"The image shows...\", \"In the image, I can see...\")",
            "Focus on the image content and what is visible in the image",
            "If the image description is unclear, say so clearly",
            f"Provide a direct answer based on the {source} provided",
        ]
    else:
        rules = [
            f"Use ONLY the {source} provided above",
            "Do NOT use search_web or any other tools",
            "Do NOT mention that you used tools",
            "Do NOT describe the PDF structure, metadata, or format",
            "Do NOT say \"The document contains\" or \"The document includes\"; explain the actual content directly",
            "Focus on the subject matter of the document, not its technical structure",
            "If the content is only metadata or PDF structure, say \"I couldn't find meaningful content in this document\"",
            f"Provide a direct answer based on the {source} provided",
        ]

    numbered = "\n".join(f"{i}. {rule}" for i, rule in enumerate(rules, start=1))
    content_type = "IMAGE CONTENT" if image else "DOCUMENT CONTENT"

    return (
        f"{content_type} (from uploaded file):\n\n{retrieved_context}\n\n"
        f"USER REQUEST: {message}\n\n"
        f"INSTRUCTIONS: {_retrieval_instruction(message, image)}\n\n"
        f"CRITICAL RULES:\n{numbered}"
    )
