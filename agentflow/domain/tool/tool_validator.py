# Parameter validation against the tool's declared JSON schema
from typing import Any, Dict, List, TYPE_CHECKING
import jsonschema
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from agentflow.domain.tool.tool_registry import ToolDefinition


class ParameterValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class ToolParameterValidator:
    @staticmethod
    def validate_tool_call(tool: "ToolDefinition", parameters: Dict[str, Any]) -> ParameterValidationResult:
        validator = jsonschema.Draft7Validator(tool.parameters)
        errors = [
            f"{'.'.join(str(p) for p in error.path) or tool.name}: {error.message}"
            for error in validator.iter_errors(parameters)
        ]
        return ParameterValidationResult(is_valid=not errors, errors=errors)
