"""
End-to-end tests for the FastAPI application.
Tests the HTTP surface with a real test client and a scripted completion API.
"""

from branchchat.client.sse import EventStreamParser


def parse_stream(response):
    return EventStreamParser().feed(response.content)


def new_conversation(client, **body):
    response = client.post("/api/conversations", json=body or None)
    assert response.status_code == 201
    return response.json()["conversationId"]


def get_messages(client, conversation_id):
    response = client.get(f"/api/conversations/{conversation_id}/messages")
    assert response.status_code == 200
    return response.json()["messages"]


class TestHealthEndpoint:
    """Tests for GET /health endpoint."""

    def test_health(self, client):
        response = client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["upstream_configured"] is True

    def test_models(self, client):
        data = client.get("/api/models").json()

        assert data["default"] == "gpt-4o-mini"
        assert "gpt-4o" in [m["id"] for m in data["models"]]
        assert all("maxContextTokens" in m for m in data["models"])


class TestConversationEndpoints:
    """Tests for conversation CRUD."""

    def test_create_defaults(self, client):
        response = client.post("/api/conversations")
        data = response.json()

        assert response.status_code == 201
        assert data["title"] == "New Chat"
        assert data["model"] == "gpt-4o-mini"

    def test_create_with_system_prompt(self, client):
        conversation_id = new_conversation(client, title="Ops", systemPrompt="Answer in haiku.")
        messages = get_messages(client, conversation_id)

        assert len(messages) == 1
        assert messages[0]["role"] == "SYSTEM"
        assert messages[0]["content"] == "Answer in haiku."

    def test_list(self, client):
        first = new_conversation(client, title="first")
        second = new_conversation(client, title="second")

        ids = [c["conversationId"] for c in client.get("/api/conversations").json()]
        assert ids.index(second) < ids.index(first)

    def test_get_and_update(self, client):
        conversation_id = new_conversation(client)

        response = client.patch(f"/api/conversations/{conversation_id}", json={"title": "Renamed"})
        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"

        data = client.get(f"/api/conversations/{conversation_id}").json()
        assert data["conversation"]["title"] == "Renamed"
        assert data["messages"] == []

    def test_unknown_conversation(self, client):
        assert client.get("/api/conversations/missing").status_code == 404
        assert client.get("/api/conversations/missing/messages").status_code == 404
        assert client.patch("/api/conversations/missing", json={"title": "x"}).status_code == 404
        assert client.delete("/api/conversations/missing").status_code == 404

    def test_delete(self, client):
        conversation_id = new_conversation(client)
        client.post("/api/stream", json={"conversationId": conversation_id, "userMessage": "Hello"})

        response = client.delete(f"/api/conversations/{conversation_id}")
        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert client.get(f"/api/conversations/{conversation_id}").status_code == 404


class TestStreamEndpoint:
    """Tests for POST /api/stream and /api/chat/{id}/stream."""

    def test_send_message(self, client):
        conversation_id = new_conversation(client)

        response = client.post("/api/stream", json={"conversationId": conversation_id, "userMessage": "Hello"})
        events = parse_stream(response)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert [e.event for e in events] == ["start", "token", "token", "token", "finish", "title", "end"]
        assert events[-1].status == "complete"

        messages = get_messages(client, conversation_id)
        assert [m["role"] for m in messages] == ["USER", "ASSISTANT"]
        assert messages[1]["status"] == "COMPLETE"
        assert messages[1]["content"] == "Hello there"
        assert messages[1]["parentId"] == messages[0]["messageId"]
        assert events[0].message_id == messages[1]["messageId"]

    def test_chat_path_variant(self, client):
        conversation_id = new_conversation(client)

        response = client.post(f"/api/chat/{conversation_id}/stream", json={"userMessage": "Hello"})
        events = parse_stream(response)

        assert events[0].conversation_id == conversation_id
        assert events[-1].event == "end"

    def test_missing_credential(self, client, llm):
        """A single error frame and nothing persisted."""
        llm.configured = False
        conversation_id = new_conversation(client)

        response = client.post("/api/stream", json={"conversationId": conversation_id, "userMessage": "Hello"})
        events = parse_stream(response)

        assert response.status_code == 500
        assert [e.event for e in events] == ["error"]
        assert "not configured" in events[0].message
        assert get_messages(client, conversation_id) == []

    def test_unknown_conversation(self, client):
        response = client.post("/api/stream", json={"conversationId": "missing", "userMessage": "Hello"})
        events = parse_stream(response)

        assert response.status_code == 404
        assert [e.event for e in events] == ["error"]

    def test_unknown_parent(self, client):
        conversation_id = new_conversation(client)
        response = client.post("/api/stream", json={
            "conversationId": conversation_id,
            "userMessage": "",
            "isRegeneration": True,
            "parentUserMessageId": "missing",
        })

        assert response.status_code == 404
        assert get_messages(client, conversation_id) == []

    def test_regenerate_from_assistant_message(self, client):
        conversation_id = new_conversation(client)
        client.post("/api/stream", json={"conversationId": conversation_id, "userMessage": "Hello"})
        assistant_id = get_messages(client, conversation_id)[1]["messageId"]

        response = client.post("/api/stream", json={
            "conversationId": conversation_id,
            "userMessage": "",
            "isRegeneration": True,
            "parentUserMessageId": assistant_id,
        })
        events = parse_stream(response)

        assert response.status_code == 400
        assert [e.event for e in events] == ["error"]
        assert "not a user message" in events[0].message
        assert len(get_messages(client, conversation_id)) == 2

    def test_validation(self, client):
        conversation_id = new_conversation(client)

        empty = client.post("/api/stream", json={"conversationId": conversation_id, "userMessage": "   "})
        assert empty.status_code == 422

        regenerate_without_parent = client.post("/api/stream", json={
            "conversationId": conversation_id, "userMessage": "", "isRegeneration": True
        })
        assert regenerate_without_parent.status_code == 422

        missing_body = client.post(f"/api/chat/{conversation_id}/stream", json={})
        assert missing_body.status_code == 422

    def test_regenerate_with_deprecated_parent_id(self, client):
        conversation_id = new_conversation(client)
        client.post("/api/stream", json={"conversationId": conversation_id, "userMessage": "Hello"})
        user_id = get_messages(client, conversation_id)[0]["messageId"]

        response = client.post("/api/stream", json={
            "conversationId": conversation_id,
            "userMessage": "",
            "isRegeneration": True,
            "parentId": user_id,
            "variantIndex": 1,
        })
        assert parse_stream(response)[-1].event == "end"

        answers = [m for m in get_messages(client, conversation_id) if m["role"] == "ASSISTANT"]
        assert [a["parentId"] for a in answers] == [user_id, user_id]
        assert sorted(a["variantIndex"] for a in answers) == [0, 1]

    def test_edit_with_deprecated_parent_id(self, client):
        conversation_id = new_conversation(client)
        client.post("/api/stream", json={"conversationId": conversation_id, "userMessage": "Hello"})
        user_id = get_messages(client, conversation_id)[0]["messageId"]

        client.post("/api/stream", json={
            "conversationId": conversation_id,
            "userMessage": "Hello again",
            "parentId": user_id,
        })

        users = [m for m in get_messages(client, conversation_id) if m["role"] == "USER"]
        assert [u["content"] for u in users] == ["Hello", "Hello again"]
        assert users[1]["parentId"] == user_id


class TestStopEndpoint:
    """Tests for POST /api/stop."""

    def test_missing_conversation_id(self, client):
        response = client.post("/api/stop", json={})

        assert response.status_code == 400
        assert response.json() == {"ok": False}

    def test_nothing_to_stop(self, client):
        conversation_id = new_conversation(client)
        response = client.post("/api/stop", json={"conversationId": conversation_id})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "stopped": False}


class TestMessageEndpoints:
    """Tests for DELETE /api/messages/{id}."""

    def test_delete_message(self, client):
        conversation_id = new_conversation(client)
        client.post("/api/stream", json={"conversationId": conversation_id, "userMessage": "Hello"})
        assistant = get_messages(client, conversation_id)[1]

        assert client.delete(f"/api/messages/{assistant['messageId']}").json() == {"ok": True}
        assert len(get_messages(client, conversation_id)) == 1
        assert client.delete(f"/api/messages/{assistant['messageId']}").status_code == 404
