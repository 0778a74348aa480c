"""
HTTP tests for the routing core endpoints.

Module-level ``get_*`` accessors are monkeypatched with in-memory
collaborators; startup events are not run, so Redis and the database are
never contacted.
"""
import json

import pytest
from fastapi.testclient import TestClient

from assistant.main import app
from assistant.models.access import ModelDescriptor, Tier, UserAccessState
from assistant.models.chat import IntentDecision, Persona
from assistant.models.destinations import PageDestination, SectionDestination
from assistant.routes import chat as chat_route
from assistant.routes import knowledge as knowledge_route
from assistant.routes import models as models_route
from assistant.routes import navigation as navigation_route
from assistant.services.access.controller import AccessController
from assistant.services.access.store import InMemoryQuotaStore
from assistant.services.ai.orchestration import ChatOrchestrator
from assistant.services.ai.schema import StreamFinish, TextDelta
from assistant.services.catalog import InMemoryModelCatalog
from assistant.services.conversations.store import InMemoryConversationStore
from assistant.services.search.destination import DestinationResolver, index_destinations
from assistant.services.search.knowledge import KnowledgeRetriever
from assistant.services.search.similarity import PASSAGES

MODELS = [
    ModelDescriptor(id="gpt-4o", model_id="gpt-4o", display_name="GPT-4o", sort_order=1),
    ModelDescriptor(
        id="claude-opus",
        model_id="claude-opus",
        display_name="Claude Opus",
        min_tier=Tier.TIER1,
        is_premium=True,
        sort_order=2,
    ),
]


class EchoLLM:
    async def stream_chat(self, agent, model, messages, tools=None, system=None):
        yield TextDelta(text="Hello ")
        yield TextDelta(text="there")
        yield StreamFinish(finish_reason="stop")


class FixedClassifier:
    async def classify(self, messages):
        return IntentDecision(intent=Persona.CODE, confidence=1.0, source="command")


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def access():
    return AccessController(
        InMemoryQuotaStore({"member": UserAccessState(user_id="member", tier=Tier.TIER1)})
    )


def parse_sse(body: str):
    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


def test_basic_health_check(client):
    response = client.get("/health/")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_dependencies_health_reports_degraded(client):
    response = client.get("/health/dependencies")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["redis"]["available"] is False
    assert data["database"]["available"] is False
    assert "circuit_breaker" in data["llm"]


def test_trace_id_is_echoed(client):
    response = client.get("/health/", headers={"X-Trace-ID": "trace-abc"})

    assert response.headers["X-Trace-ID"] == "trace-abc"
    assert "X-Request-ID" in response.headers


def test_metrics_endpoint(client):
    client.get("/health/")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_chat_streams_events(client, access, monkeypatch):
    conversations = InMemoryConversationStore()
    orchestrator = ChatOrchestrator(
        classifier=FixedClassifier(),
        access=access,
        catalog=InMemoryModelCatalog(MODELS),
        llm_client=EchoLLM(),
        conversations=conversations,
        retriever=KnowledgeRetriever(),
        resolver=DestinationResolver(),
    )
    monkeypatch.setattr(chat_route, "get_chat_orchestrator", lambda: orchestrator)
    monkeypatch.delenv("LLM_DEFAULT_MODEL", raising=False)

    response = client.post(
        "/chat",
        json={
            "messages": [{"role": "user", "content": "/code fix this"}],
            "model_id": "claude-opus",
            "conversation_id": "conv-http",
        },
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["X-Served-Model"] == "gpt-4o"
    assert response.headers["X-Model-Fallback"] == "true"
    assert response.headers["X-Conversation-ID"] == "conv-http"

    events = parse_sse(response.text)
    assert events[0]["type"] == "meta"
    assert events[0]["data"]["persona"] == "code"
    assert "".join(e["data"]["text"] for e in events if e["type"] == "text") == "Hello there"
    assert events[-1]["type"] == "done"
    assert len(conversations.history["conv-http"]) == 1


def test_chat_rejects_empty_messages(client):
    response = client.post("/chat", json={"messages": []})

    assert response.status_code == 422


def test_models_listing_for_member(client, access, monkeypatch):
    monkeypatch.setattr(models_route, "get_access_controller", lambda: access)
    monkeypatch.setattr(models_route, "get_model_catalog", lambda: InMemoryModelCatalog(MODELS))

    response = client.get("/models", headers={"X-User-ID": "member"})

    assert response.status_code == 200
    data = response.json()
    assert data["user_tier"] == "TIER1"
    assert data["can_use_premium"] is True
    assert data["daily_limit"]["max"] == 10
    assert [m["id"] for m in data["models"]] == ["gpt-4o", "claude-opus"]
    assert all(m["is_accessible"] for m in data["models"])


def test_models_listing_for_guest(client, access, monkeypatch):
    monkeypatch.setattr(models_route, "get_access_controller", lambda: access)
    monkeypatch.setattr(models_route, "get_model_catalog", lambda: InMemoryModelCatalog(MODELS))

    data = client.get("/models").json()

    assert data["user_tier"] == "GUEST"
    assert data["can_use_premium"] is False
    assert data["daily_limit"] is None
    premium = next(m for m in data["models"] if m["id"] == "claude-opus")
    assert premium["is_accessible"] is False
    assert premium["reason"] == "tier insufficient"


def test_models_listing_catalog_failure(client, access, monkeypatch):
    class BrokenCatalog(InMemoryModelCatalog):
        async def list_models(self):
            raise ConnectionError("database unavailable")

    monkeypatch.setattr(models_route, "get_access_controller", lambda: access)
    monkeypatch.setattr(models_route, "get_model_catalog", lambda: BrokenCatalog())

    response = client.get("/models")

    assert response.status_code == 503


@pytest.fixture
def navigation_index(index, embeddings, similarity_vector):
    index_destinations(
        index,
        [
            PageDestination(url="/", title="Home", embedding=similarity_vector(0.3)),
            PageDestination(
                url="/dashboard",
                title="Dashboard",
                required_tier=Tier.TIER2,
                embedding=similarity_vector(0.5),
            ),
        ],
        [
            SectionDestination(
                element_id="usage",
                title="Usage",
                page_url="/dashboard",
                embedding=similarity_vector(0.7),
            ),
        ],
    )
    return DestinationResolver(embeddings=embeddings, index=index)


def test_navigation_requires_login_for_guest(client, access, navigation_index, monkeypatch):
    monkeypatch.setattr(navigation_route, "get_access_controller", lambda: access)
    monkeypatch.setattr(navigation_route, "get_destination_resolver", lambda: navigation_index)

    response = client.post("/navigation/resolve", json={"query": "usage stats", "current_path": "/"})

    assert response.status_code == 200
    data = response.json()
    assert data["match"]["type"] == "page_and_section"
    assert data["match"]["section_id"] == "usage"
    assert data["match"]["required_tier"] == "TIER2"
    assert data["access_granted"] is False
    assert data["requires_login"] is True


def test_navigation_no_match(client, access, index, embeddings, monkeypatch):
    monkeypatch.setattr(navigation_route, "get_access_controller", lambda: access)
    monkeypatch.setattr(
        navigation_route,
        "get_destination_resolver",
        lambda: DestinationResolver(embeddings=embeddings, index=index),
    )

    data = client.post("/navigation/resolve", json={"query": "anything"}).json()

    assert data == {"match": None, "access_granted": False, "requires_login": False}


def test_navigation_empty_query(client):
    response = client.post("/navigation/resolve", json={"query": "  "})

    assert response.status_code == 400


def test_knowledge_search_uses_strict_floor(client, index, embeddings, similarity_vector, monkeypatch):
    index.add(
        PASSAGES,
        "p1",
        similarity_vector(0.8),
        {"source_url": "/pricing", "source_title": "Pricing", "content": "Plans start at $10."},
    )
    index.add(
        PASSAGES,
        "p2",
        similarity_vector(0.4),
        {"source_url": "/blog", "source_title": "Blog", "content": "Loosely related post."},
    )
    monkeypatch.setattr(
        knowledge_route,
        "get_knowledge_retriever",
        lambda: KnowledgeRetriever(embeddings=embeddings, index=index),
    )

    response = client.post("/knowledge/search", json={"query": "how much does it cost"})

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    assert "Plans start at $10." in data["results"]
    assert "Loosely related post." not in data["results"]


def test_knowledge_search_empty_query(client):
    response = client.post("/knowledge/search", json={"query": ""})

    assert response.status_code == 400
