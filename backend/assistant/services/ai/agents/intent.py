"""
Intent classification agent.

Picks the persona for the next reply:
1. Command fast path (``/code``, ``/roast``, ...) on the latest user message
2. Cache lookup keyed by the classification context
3. Single JSON-mode call against the classifier model
4. Confidence floor; anything below it keeps the default persona

Never raises: every failure degrades to the default persona.
"""
import json
import os
from typing import Iterable, List, Optional

from assistant.core.logging import get_logger
from assistant.core.metrics import record_intent_decision, record_intent_fallback
from assistant.models.chat import DEFAULT_PERSONA, ChatMessage, IntentDecision, Persona
from assistant.services.ai.cache import cache_intent, get_cached_intent
from assistant.services.ai.llm_client import LLMClient, get_llm_client
from assistant.services.ai.schema import IntentOutput, SchemaValidationError, validate_intent_payload

logger = get_logger(__name__)

CONFIDENCE_FLOOR = 0.6
CONTEXT_MESSAGES = 3

COMMAND_PREFIXES = {
    "/code": Persona.CODE,
    "/roast": Persona.ROAST,
    "/simplify": Persona.SIMPLIFY,
    "/bible": Persona.BIBLE,
}

SYSTEM_PROMPT = (
    "You pick the assistant persona for the next reply in a conversation.\n"
    "Personas:\n"
    "- code: programming, debugging, software architecture\n"
    "- roast: the user asks to be roasted or wants playful brutal honesty\n"
    "- simplify: the user wants something explained simply, like to a beginner\n"
    "- bible: scripture, faith or theology questions\n"
    "- universal: anything else\n\n"
    "You MUST respond with a single JSON object only:\n"
    '{"intent": "code | roast | simplify | bible | universal", "confidence": 0.0-1.0}\n'
    "Do not include any explanation or extra fields."
)


def match_command(text: str) -> Optional[Persona]:
    """Persona for a leading command word, e.g. ``/code fix this``."""
    stripped = text.lstrip()
    if not stripped.startswith("/"):
        return None
    head = stripped.split(None, 1)[0].lower()
    return COMMAND_PREFIXES.get(head)


def build_context(messages: Iterable[ChatMessage], count: int = CONTEXT_MESSAGES) -> str:
    """Last ``count`` messages as ``role: text`` lines."""
    recent = [m for m in messages if m.role in ("user", "assistant")][-count:]
    return "\n".join(f"{m.role}: {m.text}" for m in recent)


def _last_user_text(messages: List[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.text
    return ""


class IntentClassifier:
    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        confidence_floor: float = CONFIDENCE_FLOOR,
        use_cache: Optional[bool] = None,
    ):
        self._llm_client = llm_client
        self.confidence_floor = confidence_floor
        if use_cache is None:
            use_cache = os.getenv("ENABLE_INTENT_CACHE", "true").lower() == "true"
        self.use_cache = use_cache

    @property
    def llm_client(self) -> LLMClient:
        return self._llm_client if self._llm_client is not None else get_llm_client()

    def _fallback(self, reason: str) -> IntentDecision:
        record_intent_fallback(reason)
        record_intent_decision(DEFAULT_PERSONA.value, "fallback")
        return IntentDecision(intent=DEFAULT_PERSONA, confidence=0.0, source="fallback")

    def _accept(self, output: IntentOutput, source: str) -> IntentDecision:
        if output.confidence < self.confidence_floor:
            logger.info(
                "intent_below_confidence_floor",
                intent=output.intent.value,
                confidence=output.confidence,
                floor=self.confidence_floor,
            )
            return self._fallback("low_confidence")
        record_intent_decision(output.intent.value, source)
        return IntentDecision(intent=output.intent, confidence=output.confidence, source=source)

    async def classify(self, messages: List[ChatMessage]) -> IntentDecision:
        command = match_command(_last_user_text(messages))
        if command is not None:
            record_intent_decision(command.value, "command")
            return IntentDecision(intent=command, confidence=1.0, source="command")

        context = build_context(messages)
        if not context.strip():
            return self._fallback("empty_context")

        if self.use_cache:
            cached = await get_cached_intent(context)
            if cached is not None:
                try:
                    return self._accept(validate_intent_payload(cached), "cache")
                except SchemaValidationError as exc:
                    logger.warning("intent_cache_schema_invalid", error=str(exc))

        try:
            response = await self.llm_client.chat(
                agent="intent",
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": context},
                ],
                max_tokens=64,
                response_format={"type": "json_object"},
            )
            content = response["choices"][0]["message"]["content"]
            payload = json.loads(content)
            output = validate_intent_payload(payload)
        except (SchemaValidationError, json.JSONDecodeError, KeyError, IndexError, TypeError) as exc:
            logger.warning("intent_llm_invalid_output", error=str(exc), error_type=type(exc).__name__)
            return self._fallback("invalid_output")
        except Exception as exc:
            logger.warning("intent_llm_failed", error=str(exc), error_type=type(exc).__name__)
            return self._fallback("provider_error")

        if self.use_cache:
            await cache_intent(context, output.model_dump(mode="json"))
        return self._accept(output, "model")


_intent_classifier: Optional[IntentClassifier] = None


def get_intent_classifier() -> IntentClassifier:
    global _intent_classifier
    if _intent_classifier is None:
        _intent_classifier = IntentClassifier()
    return _intent_classifier
