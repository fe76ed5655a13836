"""
REST API のテスト（依存性を差し替えた TestClient を使用）
"""

import json

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

from companion.domain.entity.participant import ParticipantProfile, Persona
from companion.domain.entity.turn_message import ConversationSpace, ConversationTurnMessage, Role
from companion.domain.exception.chat_exceptions import TransportError
from companion.infra.config import Settings
from companion.infra.rest_api.dependencies import (
    get_attachment_store_dependency,
    get_chat_interaction_dependency,
    get_profile_repository_dependency,
    get_settings_dependency,
)
from companion.infra.rest_api.main import app
from companion.port.attachment_store import AttachmentStore
from companion.port.profile_repository import ProfileRepository
from companion.usecase.chat_interaction.context_assembler import ContextAssembler
from companion.usecase.chat_interaction.delivery_scheduler import DeliveryScheduler
from companion.usecase.chat_interaction.main import ChatInteraction
from companion.usecase.chat_interaction.session import SessionRegistry


class ScriptedCompletionClient:
    def __init__(self):
        self.responses = []

    async def open_stream(self, payload):
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        for line in response:
            yield line


def envelope_lines(envelope):
    content = json.dumps(envelope, ensure_ascii=False)
    return ["data: " + json.dumps({"type": "reply", "payload": {"content": content, "is_final": True}})]


def sse_events(body):
    return [line[len("data: "):] for line in body.splitlines() if line.startswith("data: ")]


class TestApiEndpoints:

    @pytest.fixture
    def profile_repo(self):
        repo = AsyncMock(spec=ProfileRepository)
        repo.get_profile.return_value = ParticipantProfile(participant_id="p1", persona=Persona(name="Mio"))
        return repo

    @pytest.fixture
    def attachment_store(self):
        store = AsyncMock(spec=AttachmentStore)
        store.save.return_value = "ref-123"
        store.resolve.return_value = None
        return store

    @pytest.fixture
    def completion_client(self):
        return ScriptedCompletionClient()

    @pytest.fixture
    def client(self, conversation_log, profile_repo, attachment_store, completion_client, no_sleep):
        """依存性を差し替えたテストクライアント"""
        interaction = ChatInteraction(
            conversation_log=conversation_log,
            profile_repo=profile_repo,
            completion_client=completion_client,
            assembler=ContextAssembler(attachment_store),
            scheduler=DeliveryScheduler(conversation_log, sleep=no_sleep),
            sessions=SessionRegistry(),
        )
        app.dependency_overrides[get_chat_interaction_dependency] = lambda: interaction
        app.dependency_overrides[get_profile_repository_dependency] = lambda: profile_repo
        app.dependency_overrides[get_attachment_store_dependency] = lambda: attachment_store
        app.dependency_overrides[get_settings_dependency] = lambda: Settings(default_memory_rounds=6)
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_health_check(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    # === 設定系 ===

    def test_upsert_participant_uses_default_memory_rounds(self, client, profile_repo):
        response = client.put(
            "/api/v1/participants/p1",
            json={"persona": {"name": "Mio", "description": "barista"}, "style_directives": ["short", "  "]}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["memory_rounds"] == 6
        assert data["style_directives"] == ["short"]
        saved = profile_repo.save_profile.await_args.args[0]
        assert saved.participant_id == "p1"
        assert saved.persona.description == "barista"

    def test_upsert_participant_rejects_negative_rounds(self, client):
        response = client.put("/api/v1/participants/p1", json={"persona": {"name": "Mio"}, "memory_rounds": -1})

        assert response.status_code == 422
        assert response.json()["error_type"] == "validation_error"

    def test_upsert_lore_world_mask(self, client, profile_repo):
        assert client.put("/api/v1/lore/l1", json={"title": "Town", "content": "seaside"}).status_code == 200
        assert client.put("/api/v1/worlds/w1", json={"name": "Harbor", "lore_ids": ["l1"]}).status_code == 200
        assert client.put("/api/v1/masks/m1", json={"name": "Cat", "description": "nya"}).status_code == 200

        assert profile_repo.save_lore_entry.await_args.args[0].content == "seaside"
        assert profile_repo.save_world.await_args.args[0].lore_ids == ("l1",)
        assert profile_repo.save_mask.await_args.args[0].name == "Cat"

    def test_upload_attachment(self, client, attachment_store):
        response = client.post(
            "/api/v1/attachments",
            json={"kind": "image", "mime_type": "image/png", "data_base64": "iVBORw0KGgo="}
        )

        assert response.status_code == 200
        assert response.json() == {"payload_ref": "ref-123"}
        assert attachment_store.save.await_args.args[0].data == b"\x89PNG\r\n\x1a\n"

    def test_upload_attachment_requires_one_payload(self, client):
        response = client.post("/api/v1/attachments", json={"kind": "document", "mime_type": "text/plain"})

        assert response.status_code == 422

    def test_upload_attachment_rejects_bad_base64(self, client):
        response = client.post(
            "/api/v1/attachments",
            json={"kind": "image", "mime_type": "image/png", "data_base64": "not base64!"}
        )

        assert response.status_code == 400

    # === 会話 ===

    def test_post_message_and_history(self, client):
        response = client.post("/api/v1/participants/p1/spaces/primary/messages", json={"content": "hi"})

        assert response.status_code == 200
        assert response.json()["position"] == 0

        history = client.get("/api/v1/participants/p1/spaces/primary/history", params={"limit": 10})
        assert history.status_code == 200
        assert [m["text"] for m in history.json()["messages"]] == ["hi"]

    def test_post_empty_message_is_400(self, client):
        response = client.post("/api/v1/participants/p1/spaces/primary/messages", json={"content": "  "})

        assert response.status_code == 400
        assert response.json()["error_type"] == "INVALID_MESSAGE"

    def test_unknown_space_is_422(self, client):
        response = client.get("/api/v1/participants/p1/spaces/tertiary/history")

        assert response.status_code == 422

    def test_reply_stream_emits_segments_status_and_done(self, client, completion_client, conversation_log):
        # Given
        completion_client.responses.append(envelope_lines({
            "reply": 'hey---/red-packet/{"amount":"5.20","greeting":"for you"}/',
            "status": {"mood": "playful"},
        }))

        # When
        response = client.post("/api/v1/participants/p1/spaces/primary/reply/stream", json={"content": "hello"})

        # Then
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = sse_events(response.text)
        assert events[-1] == "[DONE]"
        payloads = [json.loads(e) for e in events[:-1]]
        assert [p["type"] for p in payloads] == ["segment", "segment", "status"]
        assert payloads[0] == {"type": "segment", "position": 1, "kind": "text", "text": "hey"}
        assert payloads[1]["event"] == {"type": "red-packet", "amount": "5.20", "greeting": "for you"}
        assert payloads[2]["status"] == {"mood": "playful"}

    def test_reply_stream_without_body(self, client, completion_client, conversation_log):
        completion_client.responses.append(envelope_lines({"reply": "miss you"}))

        response = client.post("/api/v1/participants/p1/spaces/secondary/reply/stream")

        events = sse_events(response.text)
        assert json.loads(events[0])["text"] == "miss you"
        assert events[-1] == "[DONE]"

    def test_reply_stream_transport_error_event(self, client, completion_client):
        completion_client.responses.append(TransportError("completion endpoint returned 502", status_code=502))

        response = client.post("/api/v1/participants/p1/spaces/primary/reply/stream", json={"content": "hi"})

        events = sse_events(response.text)
        error = json.loads(events[0])
        assert error["type"] == "error"
        assert error["error_type"] == "TRANSPORT_ERROR"
        assert error["retry_available"] is True
        assert events[-1] == "[DONE]"

    def test_reply_stream_unknown_participant_is_404(self, client, profile_repo):
        profile_repo.get_profile.return_value = None

        response = client.post("/api/v1/participants/ghost/spaces/primary/reply/stream", json={})

        assert response.status_code == 404
        assert response.json()["error_type"] == "PARTICIPANT_NOT_FOUND"

    def test_cancel_reply_without_turn(self, client):
        response = client.delete("/api/v1/participants/p1/reply")

        assert response.status_code == 200
        assert response.json() == {"cancelled": False}
