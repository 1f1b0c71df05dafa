from typing import Literal, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Runtime configuration, read from AGENTFLOW_* environment variables or a .env file"""

    model_config = SettingsConfigDict(
        env_prefix="AGENTFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    primary_model: str = Field("llama-3.3-70b-instruct", description="Model used for the tool loop")
    fallback_model: str = Field("llama-3.1-8b-instruct", description="Called once, without tools, when the primary fails")
    max_tokens: int = 4000
    temperature: float = 0.7
    top_p: float = 0.9

    max_iterations: int = Field(5, ge=1, description="Tool-use iterations per request")
    max_message_length: int = Field(2000, ge=1)
    max_response_length: int = Field(12000, ge=100)
    history_window: int = Field(20, ge=0, description="Prior turns sent to the model")
    deadline_seconds: float = Field(45.0, gt=0)

    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"
    service_name: str = "agentflow"

    openai_base_url: Optional[str] = Field(None, description="OpenAI-compatible endpoint; None means api.openai.com")
    openai_api_key: Optional[str] = None
    openai_timeout: float = 30.0
