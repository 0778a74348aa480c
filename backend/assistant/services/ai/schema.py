"""
Pydantic models for LLM outputs and normalized stream chunks.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from assistant.models.chat import Persona


class IntentOutput(BaseModel):
    """
    Structured output of the intent classifier.

    {"intent": "code | roast | simplify | bible | universal", "confidence": 0.0-1.0}
    """

    intent: Persona
    confidence: float = Field(..., ge=0.0, le=1.0)

    @field_validator("intent", mode="before")
    @classmethod
    def normalize_intent(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower().strip()
        return value


class SchemaValidationError(Exception):
    """Raised when LLM output fails schema validation."""

    def __init__(self, agent: str, message: str, raw_output: Optional[str] = None):
        super().__init__(message)
        self.agent = agent
        self.raw_output = raw_output


def validate_intent_payload(payload: Dict[str, Any]) -> IntentOutput:
    """
    Validate raw JSON payload for intent output.

    Raises:
        SchemaValidationError if validation fails.
    """
    try:
        return IntentOutput.model_validate(payload)
    except ValidationError as exc:
        raise SchemaValidationError(
            agent="intent",
            message=f"Invalid intent payload: {exc}",
        ) from exc


class TextDelta(BaseModel):
    text: str


class ToolCall(BaseModel):
    """A fully assembled tool call requested by the model."""

    id: str
    name: str
    arguments: str = "{}"

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class StreamFinish(BaseModel):
    finish_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
