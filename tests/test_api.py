from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import FailingStore
from messenger.api.routes import debug
from messenger.config import settings
from messenger.dependencies import get_document_store, get_media_storage
from messenger.errors import MediaUploadFailed, MediaUrlFailed
from messenger.main import app
from messenger.services.memory_store import MemoryStore

client = TestClient(app)

TOKENS = {
    "token-alice": {"email": "a@x.com", "name": "Alice A"},
    "token-bob": {"email": "b@x.com", "name": "Bob B"},
    "token-eve": {"email": "e@x.com", "name": "Eve E"},
    "token-anonymous": {"uid": "anon"},
}

ALICE = {"Authorization": "Bearer token-alice"}
BOB = {"Authorization": "Bearer token-bob"}
EVE = {"Authorization": "Bearer token-eve"}


def fake_verify_id_token(id_token):
    if id_token not in TOKENS:
        raise ValueError("Invalid Firebase ID token")
    return TOKENS[id_token]


@pytest.fixture
def store(monkeypatch):
    store = MemoryStore(write_retry_backoff_seconds=0)
    monkeypatch.setattr("messenger.services.auth_service.verify_id_token", fake_verify_id_token)
    app.dependency_overrides[get_document_store] = lambda: store
    yield store
    app.dependency_overrides = {}


@pytest.fixture
def media_storage(store):
    media = MagicMock()
    media.upload_profile_picture = AsyncMock(return_value="https://cdn.example.com/images/a.png")
    media.upload_message_photo = AsyncMock(return_value="https://cdn.example.com/message_images/p.png")
    media.upload_message_video = AsyncMock(return_value="https://cdn.example.com/message_videos/v.mov")
    media.download_url = AsyncMock(return_value="https://cdn.example.com/images/a.png")
    app.dependency_overrides[get_media_storage] = lambda: media
    return media


def register(headers, first, last):
    response = client.post(
        "/api/v1/users/register", json={"firstName": first, "lastName": last}, headers=headers
    )
    assert response.status_code == 201
    return response.json()


def start_conversation(headers, recipient, name, text, message_id=None):
    message = {"kind": "text", "text": text}
    if message_id:
        message["messageId"] = message_id
    return client.post(
        "/api/v1/conversations",
        json={"recipientEmail": recipient, "recipientName": name, "message": message},
        headers=headers,
    )


class TestAuth:
    def test_missing_token(self, store):
        assert client.get("/api/v1/conversations").status_code == 401

    def test_invalid_token(self, store):
        response = client.get("/api/v1/conversations", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_token_without_email(self, store):
        response = client.get(
            "/api/v1/conversations", headers={"Authorization": "Bearer token-anonymous"}
        )
        assert response.status_code == 401


class TestUsers:
    def test_register_and_me(self, store):
        data = register(ALICE, "Alice", "A")
        assert data == {
            "email": "a-x-com",
            "firstName": "Alice",
            "lastName": "A",
            "displayName": "Alice A",
        }

        response = client.get("/api/v1/users/me", headers=ALICE)
        assert response.status_code == 200
        assert response.json()["displayName"] == "Alice A"

    def test_me_before_registering(self, store):
        assert client.get("/api/v1/users/me", headers=ALICE).status_code == 404

    def test_exists(self, store):
        assert client.get("/api/v1/users/exists/a@x.com").json() == {"exists": False}
        register(ALICE, "Alice", "A")
        assert client.get("/api/v1/users/exists/a@x.com").json() == {"exists": True}

    def test_list_and_search(self, store):
        assert client.get("/api/v1/users", headers=ALICE).json() == []
        register(ALICE, "Alice", "A")
        register(BOB, "Bob", "B")

        everyone = client.get("/api/v1/users", headers=ALICE).json()
        assert [user["email"] for user in everyone] == ["a-x-com", "b-x-com"]

        found = client.get("/api/v1/users", params={"q": "b"}, headers=ALICE).json()
        assert found == [{"name": "Bob B", "email": "b-x-com"}]

        # The caller is left out of search results
        assert client.get("/api/v1/users", params={"q": "ali"}, headers=ALICE).json() == []


class TestConversations:
    def test_full_exchange(self, store):
        register(ALICE, "Alice", "A")
        register(BOB, "Bob", "B")

        response = start_conversation(ALICE, "b@x.com", "Bob B", "hi", message_id="m1")
        assert response.status_code == 200
        assert response.json() == {"conversationId": "conversation_m1", "created": True}

        [summary] = client.get("/api/v1/conversations", headers=BOB).json()
        assert summary["id"] == "conversation_m1"
        assert summary["other_user_email"] == "a-x-com"
        assert summary["latest_message"]["message"] == "hi"

        response = client.post(
            "/api/v1/conversations/conversation_m1/messages",
            json={"message": {"kind": "text", "text": "hello", "messageId": "m2"}},
            headers=BOB,
        )
        assert response.status_code == 201
        assert response.json() == {"ok": True, "messageId": "m2"}

        messages = client.get("/api/v1/conversations/conversation_m1/messages", headers=ALICE).json()
        assert [m["content"] for m in messages] == ["hi", "hello"]
        assert [m["senderEmail"] for m in messages] == ["a-x-com", "b-x-com"]

        [summary] = client.get("/api/v1/conversations", headers=ALICE).json()
        assert summary["latest_message"]["message"] == "hello"

    def test_second_start_reuses_the_conversation(self, store):
        register(ALICE, "Alice", "A")
        register(BOB, "Bob", "B")
        start_conversation(ALICE, "b@x.com", "Bob B", "hi", message_id="m1")

        response = start_conversation(BOB, "a@x.com", "Alice A", "oh hello")

        assert response.json() == {"conversationId": "conversation_m1", "created": False}
        messages = client.get("/api/v1/conversations/conversation_m1/messages", headers=BOB).json()
        assert [m["content"] for m in messages] == ["hi", "oh hello"]
        assert len(client.get("/api/v1/conversations", headers=BOB).json()) == 1

    def test_lookup(self, store):
        register(ALICE, "Alice", "A")
        register(BOB, "Bob", "B")
        assert client.get("/api/v1/conversations/with/b@x.com", headers=ALICE).status_code == 404

        start_conversation(ALICE, "b@x.com", "Bob B", "hi", message_id="m1")

        response = client.get("/api/v1/conversations/with/b@x.com", headers=ALICE)
        assert response.json() == {"conversationId": "conversation_m1"}

    def test_unregistered_sender(self, store):
        response = start_conversation(ALICE, "b@x.com", "Bob B", "hi")
        assert response.status_code == 404

    def test_cannot_message_yourself(self, store):
        register(ALICE, "Alice", "A")
        response = start_conversation(ALICE, "a@x.com", "Alice A", "hi")
        assert response.status_code == 400

    def test_media_message_needs_url(self, store):
        register(ALICE, "Alice", "A")
        response = client.post(
            "/api/v1/conversations",
            json={"recipientEmail": "b@x.com", "recipientName": "Bob B", "message": {"kind": "photo"}},
            headers=ALICE,
        )
        assert response.status_code == 422

    def test_location_message(self, store):
        register(ALICE, "Alice", "A")
        start_conversation(ALICE, "b@x.com", "Bob B", "hi", message_id="m1")
        client.post(
            "/api/v1/conversations/conversation_m1/messages",
            json={"message": {"kind": "location", "location": {"longitude": 2.35, "latitude": 48.85}}},
            headers=ALICE,
        )

        messages = client.get("/api/v1/conversations/conversation_m1/messages", headers=ALICE).json()
        assert messages[-1]["kind"] == "location"
        assert messages[-1]["content"] == "2.35,48.85"
        assert messages[-1]["location"] == {"longitude": 2.35, "latitude": 48.85}

    def test_empty_reads(self, store):
        register(ALICE, "Alice", "A")
        assert client.get("/api/v1/conversations", headers=ALICE).json() == []
        response = client.get("/api/v1/conversations/conversation_nope/messages", headers=ALICE)
        assert response.status_code == 403

    def test_send_to_unknown_conversation(self, store):
        register(ALICE, "Alice", "A")
        response = client.post(
            "/api/v1/conversations/conversation_nope/messages",
            json={"message": {"text": "hi"}},
            headers=ALICE,
        )
        assert response.status_code == 403

    def test_delete(self, store):
        register(ALICE, "Alice", "A")
        register(BOB, "Bob", "B")
        start_conversation(ALICE, "b@x.com", "Bob B", "hi", message_id="m1")

        assert client.delete("/api/v1/conversations/conversation_m1", headers=ALICE).json() == {"ok": True}
        assert client.get("/api/v1/conversations", headers=ALICE).json() == []
        assert len(client.get("/api/v1/conversations", headers=BOB).json()) == 1
        assert client.delete("/api/v1/conversations/conversation_m1", headers=ALICE).status_code == 404


@pytest.fixture
def failing_store(store):
    failing = FailingStore()
    app.dependency_overrides[get_document_store] = lambda: failing
    return failing


class TestParticipants:
    @pytest.fixture
    def conversation(self, store):
        register(ALICE, "Alice", "A")
        register(BOB, "Bob", "B")
        register(EVE, "Eve", "E")
        start_conversation(ALICE, "b@x.com", "Bob B", "secret", message_id="m1")
        return "conversation_m1"

    def test_outsider_cannot_read(self, conversation):
        response = client.get(f"/api/v1/conversations/{conversation}/messages", headers=EVE)
        assert response.status_code == 403

    def test_outsider_cannot_stream(self, conversation):
        response = client.get(f"/api/v1/conversations/{conversation}/messages/stream", headers=EVE)
        assert response.status_code == 403

    def test_outsider_cannot_send(self, store, conversation):
        response = client.post(
            f"/api/v1/conversations/{conversation}/messages",
            json={"message": {"text": "let me in"}},
            headers=EVE,
        )

        assert response.status_code == 403
        messages = client.get(f"/api/v1/conversations/{conversation}/messages", headers=ALICE).json()
        assert [m["content"] for m in messages] == ["secret"]
        assert store.snapshot("user/e-x-com/conversations") is None

    def test_recipient_comes_from_the_conversation(self, store, conversation):
        response = client.post(
            f"/api/v1/conversations/{conversation}/messages",
            json={"recipientEmail": "e@x.com", "recipientName": "Eve E", "message": {"text": "hey"}},
            headers=BOB,
        )

        assert response.status_code == 201
        assert store.snapshot("user/e-x-com/conversations") is None
        [summary] = client.get("/api/v1/conversations", headers=ALICE).json()
        assert summary["latest_message"]["message"] == "hey"


class TestUnfinishedCreate:
    def test_start_again_after_the_log_write_failed(self, failing_store):
        register(ALICE, "Alice", "A")
        register(BOB, "Bob", "B")
        failing_store.fail_writes("conversation/")

        assert start_conversation(ALICE, "b@x.com", "Bob B", "hi", message_id="m1").status_code == 502

        response = start_conversation(ALICE, "b@x.com", "Bob B", "hi again")
        assert response.json() == {"conversationId": "conversation_m1", "created": False}
        response = start_conversation(BOB, "a@x.com", "Alice A", "hello")
        assert response.json() == {"conversationId": "conversation_m1", "created": False}

        messages = client.get("/api/v1/conversations/conversation_m1/messages", headers=BOB).json()
        assert [m["content"] for m in messages] == ["hi again", "hello"]

    def test_start_again_after_the_counterpart_summary_failed(self, failing_store):
        register(ALICE, "Alice", "A")
        register(BOB, "Bob", "B")
        failing_store.fail_writes("user/b-x-com/conversations")

        assert start_conversation(ALICE, "b@x.com", "Bob B", "hi", message_id="m1").status_code == 502

        response = start_conversation(ALICE, "b@x.com", "Bob B", "hi again")
        assert response.json() == {"conversationId": "conversation_m1", "created": False}
        [summary] = client.get("/api/v1/conversations", headers=BOB).json()
        assert summary["id"] == "conversation_m1"
        assert summary["other_user_email"] == "a-x-com"
        assert len(client.get("/api/v1/conversations", headers=ALICE).json()) == 1


class TestDebugStore:
    def test_not_mounted_by_default(self, store):
        response = client.get("/api/debug/store", params={"path": "user"}, headers=ALICE)
        assert response.status_code == 404

    def test_requires_a_signed_in_caller(self, store, monkeypatch):
        monkeypatch.setattr(settings, "DEBUG", True)
        debug_app = FastAPI()
        debug_app.include_router(debug.router)
        debug_app.dependency_overrides[get_document_store] = lambda: store
        debug_client = TestClient(debug_app)
        register(ALICE, "Alice", "A")

        assert debug_client.get("/api/debug/store", params={"path": "user"}).status_code == 401
        response = debug_client.get("/api/debug/store", params={"path": "user/a-x-com"}, headers=ALICE)
        assert response.status_code == 200
        assert response.json()["value"] == {"first_name": "Alice", "last_name": "A"}

class TestMedia:
    def test_profile_picture(self, media_storage):
        response = client.post(
            "/api/v1/media/profile-picture",
            files={"file": ("me.png", b"png-bytes", "image/png")},
            headers=ALICE,
        )

        assert response.status_code == 200
        assert response.json() == {"url": "https://cdn.example.com/images/a.png"}
        media_storage.upload_profile_picture.assert_awaited_once_with(
            b"png-bytes", "a-x-com_profile_picture.png"
        )

    def test_wrong_content_type(self, media_storage):
        response = client.post(
            "/api/v1/media/messages/video",
            files={"file": ("clip.png", b"png-bytes", "image/png")},
            headers=ALICE,
        )
        assert response.status_code == 400
        media_storage.upload_message_video.assert_not_awaited()

    def test_message_photo_file_name(self, media_storage):
        response = client.post(
            "/api/v1/media/messages/photo",
            files={"file": ("holiday.jpg", b"jpg-bytes", "image/jpeg")},
            headers=ALICE,
        )

        assert response.status_code == 200
        data, file_name = media_storage.upload_message_photo.await_args.args
        assert data == b"jpg-bytes"
        assert file_name.startswith("a-x-com_")
        assert file_name.endswith(".jpg")

    def test_upload_failure(self, media_storage):
        media_storage.upload_message_photo.side_effect = MediaUploadFailed("bucket unavailable")
        response = client.post(
            "/api/v1/media/messages/photo",
            files={"file": ("p.png", b"img", "image/png")},
            headers=ALICE,
        )
        assert response.status_code == 502

    def test_download_url(self, media_storage):
        response = client.get("/api/v1/media/url", params={"path": "images/a.png"}, headers=ALICE)
        assert response.json() == {"url": "https://cdn.example.com/images/a.png"}

        media_storage.download_url.side_effect = MediaUrlFailed("missing")
        response = client.get("/api/v1/media/url", params={"path": "images/x.png"}, headers=ALICE)
        assert response.status_code == 404


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
