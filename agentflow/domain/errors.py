from typing import Optional


class AgentFlowError(Exception):
    """Base class for engine errors surfaced to callers"""

    remediation = "Please try again in a moment."

    def __init__(self, message: str, remediation: Optional[str] = None):
        super().__init__(message)
        if remediation is not None:
            self.remediation = remediation


class ValidationError(AgentFlowError):
    """Raised for bad input. Never retried."""

    remediation = "Send a non-empty text message."


class StepExhausted(AgentFlowError):
    """Raised when a pipeline step failed on every attempt. Always fatal."""

    remediation = "The request could not be completed. Please try again or rephrase your question."

    def __init__(self, step_name: str, last_error: Optional[BaseException], attempts: int):
        self.step_name = step_name
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Step {step_name} failed after {attempts} attempts: {last_error}")


class ModelCallError(AgentFlowError):
    """Raised when the language-model service call fails"""

    remediation = "The AI service is unavailable right now. Please try again shortly."

    def __init__(self, model_id: str, cause: BaseException):
        self.model_id = model_id
        self.cause = cause
        super().__init__(f"Model call to {model_id} failed: {cause}")


class ToolExecutionError(AgentFlowError):
    """Raised by the registry when a tool cannot be executed"""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Tool {tool_name} failed: {message}")


class AuthRequired(AgentFlowError):
    """Model service rejected the request for lack of credentials"""

    remediation = (
        "To fix this, configure valid credentials for the model service (for example "
        "AGENTFLOW_OPENAI_API_KEY) and try again."
    )

    def __init__(self, model_id: str, cause: BaseException):
        self.model_id = model_id
        self.cause = cause
        super().__init__("Authentication required")


class PipelineTimeout(AgentFlowError):
    """Raised when the caller deadline expires before the pipeline returns"""

    remediation = "Please try simplifying your question or try again."

    def __init__(self, deadline_seconds: float):
        self.deadline_seconds = deadline_seconds
        super().__init__(
            "Request timeout: The AI is taking too long to respond. "
            "Please try simplifying your question or try again."
        )
