"""
Chat orchestration for a single conversational turn.

Idle -> Classifying -> ModelSelecting -> Streaming -> {Checkpointing}* -> Finalizing

- Classification and model selection never fail the request: a failed
  classifier keeps the default persona and a denied or unknown model falls
  back to the context default model.
- Streaming runs at most MAX_STEPS model steps (each step may end in tool
  calls) and retries once on a transient failure, as long as the failed
  attempt emitted nothing.
- Checkpoints are written in the background, in order, every 500
  characters; the final save supersedes them. Persistence failures are
  logged and swallowed.
"""
import asyncio
import json
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict

from assistant.core.exceptions import StreamError
from assistant.core.logging import get_logger, set_conversation_id
from assistant.core.metrics import (
    record_chat_stream,
    record_chat_stream_retry,
    record_checkpoint,
    record_model_fallback,
)
from assistant.core.tracing import start_span
from assistant.models.access import ModelDescriptor, Tier
from assistant.models.chat import (
    ChatMessage,
    ChatRequest,
    ConversationCheckpoint,
    IntentDecision,
    StreamEvent,
)
from assistant.services.access.controller import AccessController, get_access_controller
from assistant.services.ai.agents.intent import IntentClassifier, get_intent_classifier
from assistant.services.ai.checkpoint import CHECKPOINT_INTERVAL_CHARS, CheckpointAccumulator
from assistant.services.ai.llm_client import LLMClient, get_llm_client
from assistant.services.ai.prompts import build_system_prompt
from assistant.services.ai.schema import TextDelta, ToolCall
from assistant.services.ai.tools import TOOL_SCHEMAS, ToolExecutor
from assistant.services.catalog import ModelCatalog, default_model_id, get_model_catalog
from assistant.services.conversations.store import ConversationStore, get_conversation_store
from assistant.services.search.destination import DestinationResolver
from assistant.services.search.knowledge import KnowledgeRetriever

logger = get_logger(__name__)

MAX_STEPS = 5
STREAM_ERROR_MESSAGE = "The assistant could not finish this reply. Please try again."


class PreparedTurn(BaseModel):
    """Everything decided before the first token is requested."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request: ChatRequest
    conversation_id: str
    user_id: Optional[str] = None
    user_tier: Tier = Tier.GUEST
    intent: IntentDecision
    model: ModelDescriptor
    model_fallback: bool = False
    fallback_reason: Optional[str] = None


class _CheckpointWriter:
    """Serializes background checkpoint writes for one turn."""

    def __init__(self, store: ConversationStore):
        self._store = store
        self._pending: Set[asyncio.Task] = set()
        self._last: Optional[asyncio.Task] = None

    def schedule(self, checkpoint: ConversationCheckpoint) -> None:
        previous = self._last

        async def write() -> None:
            if previous is not None:
                await previous
            try:
                await self._store.upsert_checkpoint(checkpoint)
            except Exception as exc:
                record_checkpoint("interval", False)
                logger.warning(
                    "checkpoint_save_failed",
                    conversation_id=checkpoint.conversation_id,
                    length=checkpoint.last_checkpoint_length,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return
            record_checkpoint("interval", True)
            logger.debug(
                "checkpoint_saved",
                conversation_id=checkpoint.conversation_id,
                length=checkpoint.last_checkpoint_length,
            )

        task = asyncio.create_task(write())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        self._last = task

    async def drain(self) -> None:
        if self._last is not None:
            await self._last


class ChatOrchestrator:
    def __init__(
        self,
        classifier: Optional[IntentClassifier] = None,
        access: Optional[AccessController] = None,
        catalog: Optional[ModelCatalog] = None,
        llm_client: Optional[LLMClient] = None,
        conversations: Optional[ConversationStore] = None,
        retriever: Optional[KnowledgeRetriever] = None,
        resolver: Optional[DestinationResolver] = None,
        max_steps: int = MAX_STEPS,
        checkpoint_interval: int = CHECKPOINT_INTERVAL_CHARS,
    ):
        self.classifier = classifier if classifier is not None else get_intent_classifier()
        self.access = access if access is not None else get_access_controller()
        self.catalog = catalog if catalog is not None else get_model_catalog()
        self.llm_client = llm_client if llm_client is not None else get_llm_client()
        self.conversations = conversations if conversations is not None else get_conversation_store()
        self.retriever = retriever
        self.resolver = resolver
        self.max_steps = max_steps
        self.checkpoint_interval = checkpoint_interval

    async def _default_model(self, request: ChatRequest) -> ModelDescriptor:
        try:
            return await self.catalog.default_model(request.context)
        except Exception as exc:
            logger.warning(
                "catalog_default_model_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            model_id = default_model_id(request.context)
            return ModelDescriptor(id=model_id, model_id=model_id, display_name=model_id)

    async def _select_model(self, request: ChatRequest, user_id: Optional[str]):
        """Returns (model, fell_back, reason)."""
        if not request.model_id:
            return await self._default_model(request), False, None

        try:
            model = await self.catalog.get_model(request.model_id)
            if model is None:
                reason = "model unavailable"
            else:
                decision = await self.access.authorize(user_id, model)
                if decision.admitted:
                    return model, False, None
                reason = decision.reason.value
        except Exception as exc:
            logger.warning(
                "model_selection_failed",
                model_id=request.model_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            reason = "access check failed"

        fallback = await self._default_model(request)
        record_model_fallback(reason)
        logger.info(
            "model_fallback",
            requested_model=request.model_id,
            served_model=fallback.id,
            reason=reason,
        )
        return fallback, True, reason

    async def prepare_turn(self, request: ChatRequest, user_id: Optional[str] = None) -> PreparedTurn:
        conversation_id = request.conversation_id or str(uuid.uuid4())
        set_conversation_id(conversation_id)

        with start_span("chat.prepare_turn", context=request.context.value):
            intent = await self.classifier.classify(request.messages)

            user_tier = (await self.access.get_state_or_guest(user_id)).tier

            model, fell_back, reason = await self._select_model(request, user_id)

        logger.info(
            "chat_turn_prepared",
            persona=intent.intent.value,
            intent_source=intent.source,
            intent_confidence=intent.confidence,
            served_model=model.id,
            model_fallback=fell_back,
            user_tier=user_tier.value,
        )
        return PreparedTurn(
            request=request,
            conversation_id=conversation_id,
            user_id=user_id,
            user_tier=user_tier,
            intent=intent,
            model=model,
            model_fallback=fell_back,
            fallback_reason=reason,
        )

    def _meta_event(self, turn: PreparedTurn) -> StreamEvent:
        data: Dict[str, Any] = {
            "conversation_id": turn.conversation_id,
            "model": turn.model.id,
            "model_fallback": turn.model_fallback,
            "persona": turn.intent.intent.value,
        }
        if turn.model_fallback:
            data["requested_model"] = turn.request.model_id
            data["fallback_reason"] = turn.fallback_reason
        return StreamEvent(type="meta", data=data)

    async def _finalize(self, turn: PreparedTurn, generated: List[ChatMessage], text: str) -> None:
        try:
            await self.conversations.save_conversation(
                turn.conversation_id,
                turn.user_id,
                list(turn.request.messages) + generated,
                turn.model.id,
                final_text=text,
            )
        except Exception as exc:
            record_checkpoint("final", False)
            logger.error(
                "conversation_save_failed",
                conversation_id=turn.conversation_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return
        record_checkpoint("final", True)

    async def stream(self, turn: PreparedTurn) -> AsyncIterator[StreamEvent]:
        """Drive one turn; yields meta, text/tool events, then error or done."""
        set_conversation_id(turn.conversation_id)
        request = turn.request
        executor = ToolExecutor(
            retriever=self.retriever,
            resolver=self.resolver,
            current_path=request.current_path,
            user_tier=turn.user_tier,
        )
        accumulator = CheckpointAccumulator(self.checkpoint_interval)
        writer = _CheckpointWriter(self.conversations)
        system = build_system_prompt(turn.intent.intent, request.context, request.current_path)
        history = [m.to_api() for m in request.messages]
        generated: List[ChatMessage] = []

        yield self._meta_event(turn)

        steps = 0
        retried = False
        try:
            while steps < self.max_steps:
                steps += 1
                text_parts: List[str] = []
                tool_calls: List[ToolCall] = []
                try:
                    async for chunk in self.llm_client.stream_chat(
                        agent="chat",
                        model=turn.model.model_id,
                        messages=history + [m.to_api() for m in generated],
                        tools=TOOL_SCHEMAS,
                        system=system,
                    ):
                        if isinstance(chunk, TextDelta):
                            text_parts.append(chunk.text)
                            if accumulator.feed(chunk.text):
                                text = accumulator.text
                                writer.schedule(
                                    ConversationCheckpoint(
                                        conversation_id=turn.conversation_id,
                                        user_id=turn.user_id,
                                        accumulated_text=text,
                                        last_checkpoint_length=accumulator.mark_checkpoint(),
                                        selected_model_id=turn.model.id,
                                    )
                                )
                            yield StreamEvent(type="text", data={"text": chunk.text})
                        elif isinstance(chunk, ToolCall):
                            tool_calls.append(chunk)
                except StreamError as exc:
                    if exc.retryable and not retried and not text_parts and not tool_calls:
                        retried = True
                        steps -= 1
                        record_chat_stream_retry()
                        logger.warning(
                            "chat_stream_retry",
                            step=steps + 1,
                            error=str(exc),
                        )
                        continue
                    raise

                text = "".join(text_parts)
                if not tool_calls:
                    generated.append(ChatMessage(role="assistant", content=text))
                    break

                generated.append(
                    ChatMessage(
                        role="assistant",
                        content=text or None,
                        tool_calls=[call.to_api() for call in tool_calls],
                    )
                )
                for call in tool_calls:
                    yield StreamEvent(
                        type="tool_call",
                        data={"id": call.id, "name": call.name, "arguments": call.arguments},
                    )
                    result = await executor.execute(call.name, call.arguments)
                    generated.append(
                        ChatMessage(role="tool", tool_call_id=call.id, content=json.dumps(result))
                    )
                    yield StreamEvent(
                        type="tool_result",
                        data={"id": call.id, "name": call.name, "result": result},
                    )
            else:
                logger.warning("chat_step_limit_reached", steps=steps)

        except StreamError as exc:
            record_chat_stream("error")
            logger.error(
                "chat_stream_failed",
                steps=steps,
                retried=retried,
                characters=len(accumulator),
                error=str(exc),
            )
            await writer.drain()
            yield StreamEvent(type="error", data={"message": STREAM_ERROR_MESSAGE})
            return
        except (asyncio.CancelledError, GeneratorExit):
            record_chat_stream("cancelled")
            logger.info("chat_stream_cancelled", steps=steps, characters=len(accumulator))
            raise

        await writer.drain()
        await self._finalize(turn, generated, accumulator.text)
        record_chat_stream("completed")
        logger.info(
            "chat_stream_completed",
            steps=steps,
            retried=retried,
            characters=len(accumulator),
        )
        yield StreamEvent(
            type="done",
            data={"conversation_id": turn.conversation_id, "model": turn.model.id, "steps": steps},
        )


_chat_orchestrator: Optional[ChatOrchestrator] = None


def get_chat_orchestrator() -> ChatOrchestrator:
    global _chat_orchestrator
    if _chat_orchestrator is None:
        _chat_orchestrator = ChatOrchestrator()
    return _chat_orchestrator
