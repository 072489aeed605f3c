"""
Tests for the HTTP API.

Services are built on a temporary data directory and injected with
dependency overrides; completions come from a fake provider.
"""
import json

import pytest
from fastapi.testclient import TestClient

from src.ai.provider import ProviderError
from src.ai.registry import ProviderRegistry, ProviderType
from src.api.dependencies import build_services, get_services
from src.config_loader import load_model_catalog
from src.main import app
from src.models.chat import TurnRole
from src.services.llm_config import LLMConfigStore

AUTH = {"Authorization": "Bearer user-1"}
OTHER_AUTH = {"Authorization": "Bearer user-2"}


def parse_sse(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


@pytest.fixture
def provider(fake_provider):
    return fake_provider(["2", "+2", "=4"])


@pytest.fixture
def services(make_settings, provider, monkeypatch):
    settings = make_settings(anthropic_api_key="sk-ant-test")
    registry = ProviderRegistry(
        settings,
        load_model_catalog(settings.models_config_path),
        LLMConfigStore(settings.llm_config_path),
    )
    monkeypatch.setattr(registry, "for_model", lambda model_id: provider)
    return build_services(settings, providers=registry)


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_chat(client) -> str:
    response = client.post("/chats", json={}, headers=AUTH)
    assert response.status_code == 201
    return response.json()["id"]


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "activeStreams": 0,
            "runningGenerations": 0,
        }


class TestAuth:
    """Tests for resolving the calling user."""

    def test_missing_header_rejected(self, client):
        response = client.get("/chats")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_allowed_users_enforced(self, make_settings):
        services = build_services(make_settings(allowed_users="alice, bob"))
        app.dependency_overrides[get_services] = lambda: services
        try:
            client = TestClient(app)
            assert client.get("/chats", headers={"Authorization": "alice"}).status_code == 200
            assert client.get("/chats", headers=AUTH).status_code == 401
        finally:
            app.dependency_overrides.clear()


class TestChatCrud:
    """Tests for chat management endpoints."""

    def test_create_and_list(self, client):
        chat_id = create_chat(client)

        response = client.get("/chats", headers=AUTH)

        assert response.status_code == 200
        chats = response.json()["chats"]
        assert [c["id"] for c in chats] == [chat_id]
        assert chats[0]["title"] == "New Chat"
        assert chats[0]["modelId"] == "claude-sonnet-4-20250514"

    def test_create_with_model(self, client):
        response = client.post("/chats", json={"modelId": "gpt-4o"}, headers=AUTH)
        chat_id = response.json()["id"]

        chat = client.get(f"/chats/{chat_id}", headers=AUTH).json()
        assert chat["modelId"] == "gpt-4o"

    def test_get_chat(self, client):
        chat_id = create_chat(client)

        chat = client.get(f"/chats/{chat_id}", headers=AUTH).json()

        assert chat["id"] == chat_id
        assert chat["userId"] == "user-1"
        assert chat["messages"] == []
        assert chat["streamStatus"] is None
        assert chat["partialContent"] is None
        assert chat["unsaved"] is False

    def test_get_missing_chat(self, client):
        response = client.get("/chats/missing", headers=AUTH)
        assert response.status_code == 404
        assert response.json() == {"error": "Chat not found"}

    def test_other_users_chat_forbidden(self, client):
        chat_id = create_chat(client)
        response = client.get(f"/chats/{chat_id}", headers=OTHER_AUTH)
        assert response.status_code == 403

    def test_lists_are_per_user(self, client):
        create_chat(client)
        assert client.get("/chats", headers=OTHER_AUTH).json() == {"chats": []}

    def test_rename(self, client):
        chat_id = create_chat(client)

        response = client.patch(f"/chats/{chat_id}", json={"title": " Trip "}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["title"] == "Trip"

    def test_rename_empty_title_rejected(self, client):
        chat_id = create_chat(client)
        response = client.patch(f"/chats/{chat_id}", json={"title": "  "}, headers=AUTH)
        assert response.status_code == 400

    def test_delete(self, client):
        chat_id = create_chat(client)

        assert client.delete(f"/chats/{chat_id}", headers=AUTH).status_code == 204
        assert client.get(f"/chats/{chat_id}", headers=AUTH).status_code == 404

    def test_delete_while_generating_conflicts(self, client, services):
        chat_id = create_chat(client)
        services.registry.start_stream(chat_id, "t1")

        response = client.delete(f"/chats/{chat_id}", headers=AUTH)

        assert response.status_code == 409
        assert client.get(f"/chats/{chat_id}", headers=AUTH).status_code == 200


class TestStreaming:
    """Tests for the SSE streaming endpoint."""

    def test_send_message_streams_answer(self, client):
        """Test a message produces connected, text deltas and done."""
        chat_id = create_chat(client)

        response = client.post(
            f"/chats/{chat_id}/stream",
            json={"message": "What is 2+2?"},
            headers=AUTH,
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = parse_sse(response.text)
        assert [e["type"] for e in events] == ["connected", "text", "text", "text", "done"]
        assert "".join(e["content"] for e in events if e["type"] == "text") == "2+2=4"
        assert events[-1]["messageId"] == events[0]["messageId"]

        chat = client.get(f"/chats/{chat_id}", headers=AUTH).json()
        assert [(m["role"], m["content"]) for m in chat["messages"]] == [
            ("user", "What is 2+2?"),
            ("assistant", "2+2=4"),
        ]
        assert chat["messages"][1]["id"] == events[0]["messageId"]
        assert chat["title"] == "What is 2+2?"
        assert chat["streamStatus"] is None

    def test_model_override_is_used(self, client, provider):
        chat_id = create_chat(client)

        client.post(
            f"/chats/{chat_id}/stream",
            json={"message": "Hi", "modelId": "gpt-4o"},
            headers=AUTH,
        )

        assert provider.calls[0]["model_id"] == "gpt-4o"

    def test_failure_streams_error_and_keeps_partial(self, client, provider):
        provider.fragments = ["Hello", " wor"]
        provider.error = ProviderError("connection reset")
        chat_id = create_chat(client)

        response = client.post(
            f"/chats/{chat_id}/stream", json={"message": "Say hello world"}, headers=AUTH
        )

        events = parse_sse(response.text)
        assert [e["type"] for e in events] == ["connected", "text", "text", "error"]
        assert events[-1]["error"] == "connection reset"

        chat = client.get(f"/chats/{chat_id}", headers=AUTH).json()
        assert chat["messages"][-1]["content"] == "Hello wor"
        assert chat["title"] == "New Chat"

    def test_empty_message_rejected(self, client):
        chat_id = create_chat(client)
        response = client.post(
            f"/chats/{chat_id}/stream", json={"message": "   "}, headers=AUTH
        )
        assert response.status_code == 400

    def test_non_string_message_is_bad_request(self, client, provider):
        """Test a malformed body is reported as a 400 with an error message."""
        chat_id = create_chat(client)
        response = client.post(
            f"/chats/{chat_id}/stream", json={"message": 123}, headers=AUTH
        )

        assert response.status_code == 400
        assert "message" in response.json()["error"]
        assert provider.calls == []

    def test_invalid_rename_body_is_bad_request(self, client):
        chat_id = create_chat(client)
        response = client.patch(f"/chats/{chat_id}", json={}, headers=AUTH)

        assert response.status_code == 400
        assert "title" in response.json()["error"]

    def test_message_while_generating_conflicts(self, client, services):
        chat_id = create_chat(client)
        services.registry.start_stream(chat_id, "t1")

        response = client.post(
            f"/chats/{chat_id}/stream", json={"message": "Hi"}, headers=AUTH
        )

        assert response.status_code == 409

    def test_stream_missing_chat(self, client):
        response = client.post("/chats/missing/stream", json={"message": "Hi"}, headers=AUTH)
        assert response.status_code == 404

    def test_continue_answered_chat_is_no_content(self, client):
        chat_id = create_chat(client)
        client.post(f"/chats/{chat_id}/stream", json={"message": "Hi"}, headers=AUTH)

        response = client.post(f"/chats/{chat_id}/stream", json={}, headers=AUTH)

        assert response.status_code == 204

    def test_continue_pending_user_turn(self, client, services):
        """Test continue generates the answer to a stored user turn."""
        chat_id = create_chat(client)
        services.store.append_turn(chat_id, TurnRole.USER, "What is 2+2?", persist=True)

        response = client.post(f"/chats/{chat_id}/stream", headers=AUTH)

        events = parse_sse(response.text)
        assert [e["type"] for e in events] == ["connected", "text", "text", "text", "done"]
        chat = client.get(f"/chats/{chat_id}", headers=AUTH).json()
        assert chat["messages"][-1]["content"] == "2+2=4"

    def test_active_stream_visible_on_chat(self, client, services):
        chat_id = create_chat(client)
        services.registry.start_stream(chat_id, "t1")
        services.registry.append_delta(chat_id, "Partial")

        chat = client.get(f"/chats/{chat_id}", headers=AUTH).json()

        assert chat["streamStatus"] == "active"
        assert chat["partialContent"] == "Partial"


class TestModels:
    """Tests for the models and provider configuration endpoints."""

    def test_lists_configured_models(self, client):
        response = client.get("/models", headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert {m["provider"] for m in data["models"]} == {"anthropic"}
        assert data["defaultModelId"] == "claude-sonnet-4-20250514"
        statuses = {s["provider"]: s["isConfigured"] for s in data["providerStatuses"]}
        assert statuses["anthropic"] is True
        assert statuses["openai"] is False

    def test_save_api_key_enables_provider(self, client, services):
        """Test a key set at runtime lists the provider's models and is stored."""
        response = client.post(
            "/models/providers/openai", json={"apiKey": "sk-x"}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "provider": "openai",
            "message": "API key for openai has been saved",
        }
        data = client.get("/models", headers=AUTH).json()
        statuses = {s["provider"]: s["isConfigured"] for s in data["providerStatuses"]}
        assert statuses["openai"] is True
        assert "gpt-4o" in {m["id"] for m in data["models"]}

        stored = json.loads(services.settings.llm_config_path.read_text(encoding="utf-8"))
        assert stored["openai"] == "sk-x"

    def test_missing_api_key_rejected(self, client):
        response = client.post("/models/providers/openai", json={}, headers=AUTH)

        assert response.status_code == 400
        assert response.json() == {"error": "API key is required"}

    def test_unknown_provider_rejected(self, client):
        response = client.post(
            "/models/providers/acme", json={"apiKey": "k"}, headers=AUTH
        )

        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid provider")

    def test_delete_hides_environment_key(self, client):
        """Test removing a provider configured from the environment."""
        response = client.delete("/models/providers/anthropic", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["message"] == "Configuration for anthropic has been removed"
        data = client.get("/models", headers=AUTH).json()
        statuses = {s["provider"]: s["isConfigured"] for s in data["providerStatuses"]}
        assert statuses["anthropic"] is False
        assert data["models"] == []
        assert data["defaultModelId"] == ""

    def test_saving_key_after_delete_enables_again(self, client):
        client.delete("/models/providers/anthropic", headers=AUTH)
        client.post("/models/providers/anthropic", json={"apiKey": "sk-new"}, headers=AUTH)

        data = client.get("/models", headers=AUTH).json()
        assert {m["provider"] for m in data["models"]} == {"anthropic"}

    def test_configure_custom_provider(self, client):
        response = client.post(
            "/models/providers/custom",
            json={
                "apiKey": "ollama",
                "baseUrl": "http://localhost:11434/v1",
                "modelId": "llama3",
                "modelName": "Llama 3",
                "customHeaders": '{"X-Team": "chat"}',
            },
            headers=AUTH,
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Custom provider has been configured"
        data = client.get("/models", headers=AUTH).json()
        assert data["customProvider"] == {
            "baseUrl": "http://localhost:11434/v1",
            "modelId": "llama3",
            "modelName": "Llama 3",
            "isConfigured": True,
            "hasCustomHeaders": True,
        }
        llama = {"id": "llama3", "name": "Llama 3", "provider": "custom", "maxTokens": 4096}
        assert llama in data["models"]

    @pytest.mark.parametrize(
        "overrides, error",
        [
            ({"baseUrl": None}, "Base URL is required for custom provider"),
            ({"modelId": " "}, "Model ID is required for custom provider"),
            ({"modelName": None}, "Model name is required for custom provider"),
            ({"baseUrl": "not a url"}, "Invalid base URL format"),
            ({"baseUrl": "ftp://llm.local/v1"}, "Invalid base URL format"),
            ({"customHeaders": "{bad"}, "Custom headers must be valid JSON"),
            ({"customHeaders": "[1]"}, "Custom headers must be valid JSON"),
        ],
    )
    def test_invalid_custom_provider_rejected(self, client, overrides, error):
        body = {
            "apiKey": "k",
            "baseUrl": "http://llm.local/v1",
            "modelId": "m",
            "modelName": "M",
        }
        body.update(overrides)

        response = client.post("/models/providers/custom", json=body, headers=AUTH)

        assert response.status_code == 400
        assert response.json() == {"error": error}
        assert client.get("/models", headers=AUTH).json()["customProvider"] is None

    def test_selection_updates_default_model(self, client):
        response = client.post(
            "/models/selection",
            json={"provider": "anthropic", "modelId": "claude-opus-4-20250514"},
            headers=AUTH,
        )

        assert response.status_code == 200
        data = client.get("/models", headers=AUTH).json()
        assert data["selectedProvider"] == "anthropic"
        assert data["selectedModelId"] == "claude-opus-4-20250514"
        assert data["defaultModelId"] == "claude-opus-4-20250514"

    def test_selection_requires_provider_and_model(self, client):
        response = client.post(
            "/models/selection", json={"provider": "anthropic"}, headers=AUTH
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Provider and modelId are required"}

    def test_configuration_survives_restart(self, client, services):
        """Test a registry built from the same data directory sees stored keys."""
        client.post("/models/providers/gemini", json={"apiKey": "g-key"}, headers=AUTH)
        client.delete("/models/providers/anthropic", headers=AUTH)

        restarted = build_services(services.settings)

        assert restarted.providers.is_configured(ProviderType.GEMINI)
        assert not restarted.providers.is_configured(ProviderType.ANTHROPIC)

    def test_models_require_auth(self, client):
        response = client.post("/models/providers/openai", json={"apiKey": "sk-x"})
        assert response.status_code == 401
