"""
Tools the chat model may call mid-stream.

- search_knowledge(query): knowledge base passages, formatted for the prompt
- go_to(destination): one navigation action, with the caller's tier check

Tool failures are returned to the model as data; they never abort the
stream.
"""
import json
from typing import Any, Dict, List, Optional

from assistant.core.logging import get_logger
from assistant.core.metrics import record_tool_call
from assistant.models.access import Tier
from assistant.services.search.destination import (
    DestinationResolver,
    can_access_destination,
    get_destination_resolver,
)
from assistant.services.search.knowledge import (
    CONVERSATIONAL_MIN_SIMILARITY,
    DEFAULT_LIMIT,
    KnowledgeRetriever,
    format_passages,
    get_knowledge_retriever,
)

logger = get_logger(__name__)

SEARCH_KNOWLEDGE = "search_knowledge"
GO_TO = "go_to"

TOOL_SCHEMAS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": SEARCH_KNOWLEDGE,
            "description": "Search the site's knowledge base (services, pricing, portfolio, blog).",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "What to look up"},
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": GO_TO,
            "description": "Navigate the user to a page or scroll to a section of the site.",
            "parameters": {
                "type": "object",
                "properties": {
                    "destination": {
                        "type": "string",
                        "description": "Natural-language description, e.g. 'pricing section'",
                    },
                },
                "required": ["destination"],
            },
        },
    },
]


class ToolExecutor:
    """Runs tool calls for one chat turn."""

    def __init__(
        self,
        retriever: Optional[KnowledgeRetriever] = None,
        resolver: Optional[DestinationResolver] = None,
        current_path: str = "/",
        user_tier: Tier = Tier.GUEST,
    ):
        self.retriever = retriever if retriever is not None else get_knowledge_retriever()
        self.resolver = resolver if resolver is not None else get_destination_resolver()
        self.current_path = current_path
        self.user_tier = user_tier

    async def search_knowledge(self, query: str) -> Dict[str, Any]:
        passages = await self.retriever.search(
            query,
            limit=DEFAULT_LIMIT,
            min_similarity=CONVERSATIONAL_MIN_SIMILARITY,
        )
        return {"results": format_passages(passages), "count": len(passages)}

    async def go_to(self, destination: str) -> Dict[str, Any]:
        match = await self.resolver.resolve(destination, self.current_path, self.user_tier)
        if match is None:
            return {"found": False, "message": f"No page or section matches '{destination}'."}

        granted = can_access_destination(self.user_tier, match)
        result = match.model_dump(mode="json", exclude_none=True)
        result.update(
            {
                "found": True,
                "access_granted": granted,
                "requires_login": not granted and self.user_tier == Tier.GUEST,
            }
        )
        return result

    async def execute(self, name: str, arguments: str) -> Dict[str, Any]:
        """Run a tool by name with its JSON-encoded arguments."""
        try:
            args = json.loads(arguments or "{}")
        except json.JSONDecodeError as exc:
            record_tool_call(name, False)
            logger.warning("tool_arguments_invalid", tool=name, error=str(exc))
            return {"error": f"Invalid arguments for {name}"}
        if not isinstance(args, dict):
            record_tool_call(name, False)
            return {"error": f"Invalid arguments for {name}"}

        if name == SEARCH_KNOWLEDGE:
            handler = self.search_knowledge
            value = str(args.get("query", ""))
        elif name == GO_TO:
            handler = self.go_to
            value = str(args.get("destination", ""))
        else:
            record_tool_call(name, False)
            logger.warning("tool_unknown", tool=name)
            return {"error": f"Unknown tool: {name}"}

        try:
            result = await handler(value)
        except Exception as exc:
            record_tool_call(name, False)
            logger.error(
                "tool_execution_failed",
                tool=name,
                current_path=self.current_path,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return {"error": f"{name} is unavailable right now"}

        record_tool_call(name, True)
        logger.info("tool_executed", tool=name, current_path=self.current_path)
        return result
