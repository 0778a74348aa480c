"""
Chat turn types: messages, request body, persona decision, checkpoints
and the events streamed back to the client.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class Persona(str, Enum):
    """Behavioral mode for the assistant's next reply."""

    CODE = "code"
    ROAST = "roast"
    SIMPLIFY = "simplify"
    BIBLE = "bible"
    UNIVERSAL = "universal"


DEFAULT_PERSONA = Persona.UNIVERSAL


class ChatContext(str, Enum):
    WIDGET = "widget"
    FULL_PAGE = "full-page"


class ChatMessage(BaseModel):
    """
    A chat message in OpenAI message shape.

    ``content`` is either plain text or a list of parts
    (``{"type": "text", "text": ...}``, images, files, ...).
    """

    role: str
    content: Union[str, List[Dict[str, Any]], None] = ""
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None

    @property
    def text(self) -> str:
        """Text-only projection; non-text parts are ignored."""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            return " ".join(
                str(part.get("text", ""))
                for part in self.content
                if isinstance(part, dict) and part.get("text")
            )
        return ""

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ChatRequest(BaseModel):
    """Body of POST /chat."""

    messages: List[ChatMessage] = Field(..., min_length=1)
    model_id: Optional[str] = None
    conversation_id: Optional[str] = None
    context: ChatContext = ChatContext.FULL_PAGE
    current_path: str = "/"


class IntentDecision(BaseModel):
    intent: Persona = DEFAULT_PERSONA
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    source: str = Field("fallback", description="command | model | cache | fallback")


class ConversationCheckpoint(BaseModel):
    """Durable snapshot of in-progress streamed output."""

    conversation_id: str
    user_id: Optional[str] = None
    accumulated_text: str = ""
    last_checkpoint_length: int = Field(0, ge=0)
    selected_model_id: Optional[str] = None
    superseded: bool = False
    updated_at: Optional[datetime] = None


class StreamEvent(BaseModel):
    """
    One server-sent event of a chat turn.

    Types: meta, text, tool_call, tool_result, error, done.
    """

    type: str
    data: Dict[str, Any] = Field(default_factory=dict)

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json()}\n\n"
