"""
Async client for an OpenAI-compatible chat completions API.

No provider SDKs: plain httpx against /chat/completions, guarded by a
circuit breaker.

Environment configuration:
- LLM_API_BASE: Base URL for API (default: https://api.openai.com/v1)
- LLM_API_KEY: API key / bearer token
- LLM_CLASSIFIER_MODEL: Model used for intent classification (default: gpt-4o-mini)
- LLM_TIMEOUT_SECONDS: Non-streaming request timeout (default: 5.0)
- LLM_STREAM_TIMEOUT_SECONDS: Read timeout while streaming (default: 60)
"""
import json
import os
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import httpx

from assistant.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from assistant.core.exceptions import StreamError
from assistant.core.logging import get_logger
from assistant.core.metrics import record_llm_error, record_llm_request, record_llm_tokens
from assistant.services.ai.schema import StreamFinish, TextDelta, ToolCall

logger = get_logger(__name__)

StreamChunk = Union[TextDelta, ToolCall, StreamFinish]


def is_transient(exc: BaseException) -> bool:
    """Network failures, rate limiting and 5xx are worth one retry."""
    if isinstance(exc, CircuitBreakerOpenError):
        return False
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, httpx.TransportError)


class LLMClient:
    """Async HTTP client for classifier calls and streamed chat turns."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        classifier_model: str,
        timeout_seconds: float = 5.0,
        stream_timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.classifier_model = classifier_model
        self.timeout_seconds = timeout_seconds
        self.stream_timeout_seconds = stream_timeout_seconds
        self._transport = transport

        self.circuit_breaker = CircuitBreaker(name="llm")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self, timeout: httpx.Timeout) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def _post(self, path: str, json_payload: Dict[str, Any]) -> httpx.Response:
        url = f"{self.api_base}{path}"
        async with self._client(httpx.Timeout(self.timeout_seconds)) as client:
            response = await client.post(url, headers=self._headers(), json=json_payload)
            response.raise_for_status()
            return response

    async def chat(
        self,
        agent: str,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        max_tokens: int = 256,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Single non-streaming completion.

        Args:
            agent: Logical agent name ("intent", ...)
            messages: OpenAI-style chat messages
            model: Provider model name; defaults to the classifier model
            max_tokens: Max tokens for completion
            response_format: Optional response_format for JSON mode

        Returns:
            Raw JSON response from the API.
        """
        if not self.api_key:
            record_llm_error(agent, "missing_api_key")
            raise RuntimeError("LLM API key not configured")

        model = model or self.classifier_model
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": 0.0,
            "max_tokens": max_tokens,
        }
        if response_format:
            payload["response_format"] = response_format

        start = time.time()
        try:
            response: httpx.Response = await self.circuit_breaker.call_async(
                self._post,
                "/chat/completions",
                json_payload=payload,
            )
        except CircuitBreakerOpenError:
            record_llm_error(agent, "circuit_open")
            logger.warning("llm_circuit_open", agent=agent)
            raise
        except httpx.TimeoutException as exc:
            record_llm_error(agent, "timeout")
            logger.warning("llm_timeout", agent=agent, error=str(exc), error_type=type(exc).__name__)
            raise
        except httpx.HTTPError as exc:
            record_llm_error(agent, "http_error")
            logger.warning("llm_http_error", agent=agent, error=str(exc), error_type=type(exc).__name__)
            raise
        finally:
            record_llm_request(agent, model, time.time() - start)

        data = response.json()
        usage = data.get("usage") or {}
        record_llm_tokens(
            agent,
            model,
            int(usage.get("prompt_tokens") or 0),
            int(usage.get("completion_tokens") or 0),
        )
        return data

    async def stream_chat(
        self,
        agent: str,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        system: Optional[str] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream one model step.

        Yields TextDelta chunks as they arrive, then every assembled
        ToolCall, then a single StreamFinish.

        Raises:
            StreamError: with ``retryable`` set for transient failures.
        """
        if not self.api_key:
            record_llm_error(agent, "missing_api_key")
            raise StreamError("LLM API key not configured")

        try:
            self.circuit_breaker.ensure_closed()
        except CircuitBreakerOpenError as exc:
            record_llm_error(agent, "circuit_open")
            raise StreamError(str(exc)) from exc

        api_messages = list(messages)
        if system:
            api_messages.insert(0, {"role": "system", "content": system})
        payload: Dict[str, Any] = {
            "model": model,
            "messages": api_messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            payload["tools"] = tools

        timeout = httpx.Timeout(self.stream_timeout_seconds, connect=self.timeout_seconds)
        pending_calls: Dict[int, Dict[str, str]] = {}
        finish = StreamFinish()
        start = time.time()

        try:
            async with self._client(timeout) as client:
                async with client.stream(
                    "POST",
                    f"{self.api_base}/chat/completions",
                    headers=self._headers(),
                    json=payload,
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        chunk = _parse_sse_line(line)
                        if chunk is None:
                            continue
                        if chunk == "[DONE]":
                            break
                        for delta in _apply_chunk(chunk, pending_calls, finish):
                            yield delta
        except httpx.HTTPError as exc:
            self.circuit_breaker.record_failure()
            record_llm_error(agent, type(exc).__name__)
            logger.warning(
                "llm_stream_failed",
                agent=agent,
                model=model,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise StreamError(f"Model stream failed: {exc}", retryable=is_transient(exc)) from exc
        finally:
            record_llm_request(agent, model, time.time() - start)

        self.circuit_breaker.record_success()
        record_llm_tokens(agent, model, finish.input_tokens, finish.output_tokens)

        for index in sorted(pending_calls):
            call = pending_calls[index]
            yield ToolCall(
                id=call["id"] or f"call_{index}",
                name=call["name"],
                arguments=call["arguments"] or "{}",
            )
        yield finish


def _parse_sse_line(line: str) -> Optional[Union[str, Dict[str, Any]]]:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data:
        return None
    if data == "[DONE]":
        return data
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        logger.debug("llm_stream_unparseable_line", line=data[:200])
        return None


def _apply_chunk(
    chunk: Dict[str, Any],
    pending_calls: Dict[int, Dict[str, str]],
    finish: StreamFinish,
) -> List[TextDelta]:
    """Fold one completion chunk into the tool-call buffer; return text deltas."""
    usage = chunk.get("usage")
    if usage:
        finish.input_tokens = int(usage.get("prompt_tokens") or 0)
        finish.output_tokens = int(usage.get("completion_tokens") or 0)

    deltas: List[TextDelta] = []
    for choice in chunk.get("choices") or []:
        delta = choice.get("delta") or {}
        content = delta.get("content")
        if content:
            deltas.append(TextDelta(text=content))

        for call in delta.get("tool_calls") or []:
            index = call.get("index", 0)
            entry = pending_calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
            if call.get("id"):
                entry["id"] = call["id"]
            function = call.get("function") or {}
            if function.get("name"):
                entry["name"] += function["name"]
            if function.get("arguments"):
                entry["arguments"] += function["arguments"]

        if choice.get("finish_reason"):
            finish.finish_reason = choice["finish_reason"]
    return deltas


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient(
            api_base=os.getenv("LLM_API_BASE", "https://api.openai.com/v1"),
            api_key=os.getenv("LLM_API_KEY"),
            classifier_model=os.getenv("LLM_CLASSIFIER_MODEL", "gpt-4o-mini"),
            timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "5.0") or "5.0"),
            stream_timeout_seconds=float(os.getenv("LLM_STREAM_TIMEOUT_SECONDS", "60") or "60"),
        )
    return _llm_client
