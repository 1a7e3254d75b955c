"""Tests for direct-message chat over WebSocket and the polling endpoints.

Frames sent by one socket are processed in order, so a message that is
observed by a connected receiver proves every earlier frame from the same
sender has already been handled. Tests use that to wait for messages to
offline users without sleeping.
"""
import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from starlette.testclient import WebSocketDenialResponse

from app.auth.service import TokenClaims
from app.chat.registry import ConnectionRegistry
from app.chat.schemas import ChatMessage
from app.chat.session import ChatSession, SessionState
from app.errors import StorageError
from app.users.schemas import UserRole


def _headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _frame(receiver_id: str, content: str, image_url=None) -> dict:
    return {"receiver_id": receiver_id, "content": content, "image_url": image_url}


# =============================================================================
# WebSocket connection
# =============================================================================


class TestSocketAuthentication:
    def test_missing_token_rejected_with_401(self, api_client):
        with pytest.raises(WebSocketDenialResponse) as exc_info:
            with api_client.websocket_connect("/ws/chat"):
                pass
        assert exc_info.value.status_code == 401

    def test_invalid_token_rejected_with_401(self, api_client):
        with pytest.raises(WebSocketDenialResponse) as exc_info:
            with api_client.websocket_connect("/ws/chat?token=not-a-jwt"):
                pass
        assert exc_info.value.status_code == 401

    def test_expired_token_rejected(self, api_client, test_app, make_user):
        user, _ = make_user(UserRole.RECEPTIONIST)
        stale = test_app.state.auth_service.issue_token(
            user, now=datetime.now(timezone.utc) - timedelta(hours=9)
        )
        with pytest.raises(WebSocketDenialResponse) as exc_info:
            with api_client.websocket_connect(f"/ws/chat?token={stale}"):
                pass
        assert exc_info.value.status_code == 401

    def test_connect_registers_and_disconnect_unregisters(self, api_client, test_app, make_user):
        user, token = make_user(UserRole.RECEPTIONIST)
        registry = test_app.state.registry

        with api_client.websocket_connect(f"/ws/chat?token={token}"):
            assert registry.is_connected(user.id)

        assert not registry.is_connected(user.id)

    def test_closing_one_of_two_sockets_orphans_the_other(self, api_client, test_app, make_user):
        recep, recep_token = make_user(UserRole.RECEPTIONIST)
        recep2, recep2_token = make_user(UserRole.RECEPTIONIST)
        guest, guest_token = make_user(UserRole.GUEST)
        registry = test_app.state.registry

        with api_client.websocket_connect(f"/ws/chat?token={recep2_token}") as recep2_ws, \
             api_client.websocket_connect(f"/ws/chat?token={guest_token}") as guest_ws, \
             api_client.websocket_connect(f"/ws/chat?token={recep_token}"):

            with api_client.websocket_connect(f"/ws/chat?token={recep_token}"):
                assert registry.get_channel(recep.id).subscriber_count == 2

            # The surviving socket is still open but no longer reachable.
            assert not registry.is_connected(recep.id)

            guest_ws.send_json(_frame(recep.id, "lost"))
            guest_ws.send_json(_frame(recep2.id, "sync"))
            assert recep2_ws.receive_json()["content"] == "sync"

            with api_client.websocket_connect(f"/ws/chat?token={recep_token}"):
                assert registry.get_channel(recep.id).subscriber_count == 1

        history = test_app.state.message_store.history(guest.id, recep.id)
        assert [m.content for m in history] == ["lost"]


# =============================================================================
# Session teardown (unit)
# =============================================================================


class _BrokenWriteSocket:
    """Socket whose writes fail; receive blocks until the socket is closed."""

    def __init__(self, disconnect_immediately: bool = False) -> None:
        self.closed = asyncio.Event()
        if disconnect_immediately:
            self.closed.set()

    async def accept(self) -> None:
        pass

    async def send_text(self, data: str) -> None:
        raise RuntimeError("peer went away")

    async def close(self, code: int = 1000, reason=None) -> None:
        self.closed.set()

    async def receive(self) -> dict:
        await self.closed.wait()
        return {"type": "websocket.disconnect", "code": 1006}


class TestSessionTeardown:
    @staticmethod
    def _session(socket, registry):
        now = datetime.now(timezone.utc)
        claims = TokenClaims(
            user_id="guest-1", role=UserRole.GUEST, issued_at=now, expires_at=now + timedelta(hours=1)
        )
        return ChatSession(socket, claims, registry=registry, users=MagicMock(), store=MagicMock())

    @pytest.mark.asyncio
    async def test_failed_write_closes_socket_and_unregisters(self):
        registry = ConnectionRegistry()
        socket = _BrokenWriteSocket()
        session = self._session(socket, registry)

        task = asyncio.create_task(session.run())
        await asyncio.sleep(0)
        assert registry.is_connected("guest-1")
        assert session.state == SessionState.ACTIVE

        registry.deliver_if_present("guest-1", '{"content": "hello"}')
        await asyncio.wait_for(task, timeout=1)
        await asyncio.sleep(0)

        assert socket.closed.is_set()
        assert not registry.is_connected("guest-1")
        assert session.state == SessionState.CLOSED
        assert session._outbound.done()

    @pytest.mark.asyncio
    async def test_client_disconnect_stops_outbound_loop(self):
        registry = ConnectionRegistry()
        session = self._session(_BrokenWriteSocket(disconnect_immediately=True), registry)

        await asyncio.wait_for(session.run(), timeout=1)
        await asyncio.sleep(0)

        assert not registry.is_connected("guest-1")
        assert session.state == SessionState.CLOSED
        assert session._outbound.done()


# =============================================================================
# Live delivery
# =============================================================================


class TestLiveDelivery:
    def test_guest_to_receptionist_delivered(self, api_client, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        recep, recep_token = make_user(UserRole.RECEPTIONIST)

        with api_client.websocket_connect(f"/ws/chat?token={recep_token}") as recep_ws, \
             api_client.websocket_connect(f"/ws/chat?token={guest_token}") as guest_ws:

            guest_ws.send_json(_frame(recep.id, "Need more towels"))
            data = recep_ws.receive_json()

        assert data["sender_id"] == guest.id
        assert data["receiver_id"] == recep.id
        assert data["content"] == "Need more towels"
        assert data["image_url"] is None
        assert data["is_read"] is False
        assert "id" in data
        assert "created_at" in data
        assert "persisted" not in data

    def test_reply_goes_back_to_sender(self, api_client, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        recep, recep_token = make_user(UserRole.RECEPTIONIST)

        with api_client.websocket_connect(f"/ws/chat?token={recep_token}") as recep_ws, \
             api_client.websocket_connect(f"/ws/chat?token={guest_token}") as guest_ws:

            guest_ws.send_json(_frame(recep.id, "Hello?"))
            assert recep_ws.receive_json()["content"] == "Hello?"

            recep_ws.send_json(_frame(guest.id, "On the way"))
            reply = guest_ws.receive_json()

        assert reply["sender_id"] == recep.id
        assert reply["content"] == "On the way"

    def test_image_only_message_delivered(self, api_client, make_user):
        admin, admin_token = make_user(UserRole.ADMIN)
        cleaner, cleaner_token = make_user(UserRole.CLEANER)

        with api_client.websocket_connect(f"/ws/chat?token={admin_token}") as admin_ws, \
             api_client.websocket_connect(f"/ws/chat?token={cleaner_token}") as cleaner_ws:

            cleaner_ws.send_json(_frame(admin.id, "", "http://minio.test/chat-images/broken-lamp.jpg"))
            data = admin_ws.receive_json()

        assert data["content"] == ""
        assert data["image_url"] == "http://minio.test/chat-images/broken-lamp.jpg"

    def test_offline_receiver_gets_message_in_history(self, api_client, make_user):
        recep, recep_token = make_user(UserRole.RECEPTIONIST)
        guest, guest_token = make_user(UserRole.GUEST)
        admin, admin_token = make_user(UserRole.ADMIN)

        with api_client.websocket_connect(f"/ws/chat?token={admin_token}") as admin_ws, \
             api_client.websocket_connect(f"/ws/chat?token={recep_token}") as recep_ws:

            recep_ws.send_json(_frame(guest.id, "Your room is ready"))
            recep_ws.send_json(_frame(admin.id, "sync"))
            assert admin_ws.receive_json()["content"] == "sync"

        response = api_client.get(
            "/chat/history", params={"other_user_id": recep.id}, headers=_headers(guest_token)
        )
        assert response.status_code == 200
        history = response.json()
        assert [m["content"] for m in history] == ["Your room is ready"]
        assert history[0]["is_read"] is True


class TestDroppedFrames:
    def test_rbac_denied_message_not_stored_or_delivered(self, api_client, test_app, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        cleaner, cleaner_token = make_user(UserRole.CLEANER)
        recep, recep_token = make_user(UserRole.RECEPTIONIST)

        with api_client.websocket_connect(f"/ws/chat?token={recep_token}") as recep_ws, \
             api_client.websocket_connect(f"/ws/chat?token={cleaner_token}") as cleaner_ws, \
             api_client.websocket_connect(f"/ws/chat?token={guest_token}") as guest_ws:

            guest_ws.send_json(_frame(cleaner.id, "Can you clean my room?"))
            guest_ws.send_json(_frame(recep.id, "sync"))
            assert recep_ws.receive_json()["content"] == "sync"

        assert test_app.state.message_store.history(guest.id, cleaner.id) == []

    def test_malformed_frames_ignored_and_session_survives(self, api_client, test_app, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        recep, recep_token = make_user(UserRole.RECEPTIONIST)

        with api_client.websocket_connect(f"/ws/chat?token={recep_token}") as recep_ws, \
             api_client.websocket_connect(f"/ws/chat?token={guest_token}") as guest_ws:

            guest_ws.send_text("this is not json")
            guest_ws.send_json({"content": "no receiver"})
            guest_ws.send_json(_frame("not-a-uuid", "bad receiver"))
            guest_ws.send_json(_frame(recep.id, "   "))
            guest_ws.send_json(_frame(str(uuid.uuid4()), "unknown receiver"))
            guest_ws.send_json(_frame(guest.id, "note to self"))
            guest_ws.send_json(_frame(recep.id, "valid"))

            data = recep_ws.receive_json()

        assert data["content"] == "valid"
        history = test_app.state.message_store.history(guest.id, recep.id)
        assert [m.content for m in history] == ["valid"]

    def test_storage_failure_still_delivers(self, api_client, test_app, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        recep, recep_token = make_user(UserRole.RECEPTIONIST)
        store = test_app.state.message_store

        with patch.object(store, "append", side_effect=StorageError("disk full")):
            with api_client.websocket_connect(f"/ws/chat?token={recep_token}") as recep_ws, \
                 api_client.websocket_connect(f"/ws/chat?token={guest_token}") as guest_ws:

                guest_ws.send_json(_frame(recep.id, "still arrives"))
                data = recep_ws.receive_json()

        assert data["content"] == "still arrives"
        assert data["sender_id"] == guest.id
        assert store.history(guest.id, recep.id) == []


# =============================================================================
# Frame handling (unit)
# =============================================================================


class TestHandleFrame:
    @pytest.fixture
    def session(self, test_app, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        claims = test_app.state.auth_service.validate_token(guest_token)
        registry = MagicMock()
        return ChatSession(
            MagicMock(),
            claims,
            registry=registry,
            users=test_app.state.users,
            store=test_app.state.message_store,
        )

    def test_valid_frame_persisted_and_delivered(self, session, make_user):
        recep, _ = make_user(UserRole.RECEPTIONIST)

        message = session.handle_frame(json.dumps(_frame(recep.id, "hi")))

        assert message.persisted is True
        session._registry.deliver_if_present.assert_called_once_with(recep.id, message.to_frame())

    def test_fallback_message_is_marked_unpersisted(self, session, make_user):
        recep, _ = make_user(UserRole.RECEPTIONIST)

        with patch.object(session._store, "append", side_effect=StorageError("down")):
            message = session.handle_frame(json.dumps(_frame(recep.id, "hi")))

        assert isinstance(message, ChatMessage)
        assert message.persisted is False
        assert message.sender_id == session.user_id
        assert message.receiver_id == recep.id
        session._registry.deliver_if_present.assert_called_once()

    def test_denied_pair_returns_none(self, session, make_user):
        admin, _ = make_user(UserRole.ADMIN)

        assert session.handle_frame(json.dumps(_frame(admin.id, "hi"))) is None
        session._registry.deliver_if_present.assert_not_called()

    def test_receiver_lookup_failure_returns_none(self, session, make_user):
        recep, _ = make_user(UserRole.RECEPTIONIST)

        with patch.object(session._users, "get", side_effect=StorageError("down")):
            assert session.handle_frame(json.dumps(_frame(recep.id, "hi"))) is None
        session._registry.deliver_if_present.assert_not_called()

    def test_invalid_json_returns_none(self, session):
        assert session.handle_frame("{broken") is None
        assert session.handle_frame("[]") is None


# =============================================================================
# Contacts
# =============================================================================


class TestContacts:
    def test_requires_auth(self, api_client):
        assert api_client.get("/chat/contacts").status_code == 401

    def test_guest_sees_only_receptionists(self, api_client, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        recep, _ = make_user(UserRole.RECEPTIONIST, name="frontdesk")
        make_user(UserRole.ADMIN)
        make_user(UserRole.CLEANER)
        make_user(UserRole.GUEST)

        response = api_client.get("/chat/contacts", headers=_headers(guest_token))

        assert response.status_code == 200
        assert response.json() == [
            {"id": recep.id, "name": "frontdesk", "role": "receptionist", "unread_count": 0}
        ]

    def test_receptionist_sees_guests_and_admins_sorted_by_name(self, api_client, make_user):
        recep, recep_token = make_user(UserRole.RECEPTIONIST)
        make_user(UserRole.ADMIN, name="zoe")
        make_user(UserRole.GUEST, full_name="Alice Smith")
        make_user(UserRole.RECEPTIONIST)
        make_user(UserRole.CLEANER)

        contacts = api_client.get("/chat/contacts", headers=_headers(recep_token)).json()

        assert [(c["name"], c["role"]) for c in contacts] == [
            ("Alice Smith", "guest"),
            ("zoe", "admin"),
        ]

    def test_unread_count_reflects_unread_messages(self, api_client, test_app, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        recep, _ = make_user(UserRole.RECEPTIONIST)
        store = test_app.state.message_store
        store.append(recep.id, guest.id, "one")
        store.append(recep.id, guest.id, "two")
        store.append(guest.id, recep.id, "mine")

        contacts = api_client.get("/chat/contacts", headers=_headers(guest_token)).json()
        assert contacts[0]["unread_count"] == 2

        api_client.get("/chat/history", params={"other_user_id": recep.id}, headers=_headers(guest_token))

        contacts = api_client.get("/chat/contacts", headers=_headers(guest_token)).json()
        assert contacts[0]["unread_count"] == 0

    def test_unread_count_failure_degrades_to_zero(self, api_client, test_app, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        recep, _ = make_user(UserRole.RECEPTIONIST)
        test_app.state.message_store.append(recep.id, guest.id, "hello")

        with patch.object(test_app.state.message_store, "unread_count", side_effect=StorageError("down")):
            response = api_client.get("/chat/contacts", headers=_headers(guest_token))

        assert response.status_code == 200
        assert response.json()[0]["unread_count"] == 0

    def test_deactivated_users_hidden(self, api_client, test_app, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        recep, _ = make_user(UserRole.RECEPTIONIST)
        test_app.state.users.deactivate(recep.id)

        assert api_client.get("/chat/contacts", headers=_headers(guest_token)).json() == []


# =============================================================================
# History
# =============================================================================


class TestHistory:
    def test_history_ordered_and_marks_only_incoming_read(self, api_client, test_app, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        recep, recep_token = make_user(UserRole.RECEPTIONIST)
        store = test_app.state.message_store
        store.append(guest.id, recep.id, "first")
        store.append(recep.id, guest.id, "second")
        store.append(guest.id, recep.id, "third")

        response = api_client.get(
            "/chat/history", params={"other_user_id": recep.id}, headers=_headers(guest_token)
        )

        assert response.status_code == 200
        history = response.json()
        assert [m["content"] for m in history] == ["first", "second", "third"]
        assert [m["is_read"] for m in history] == [False, True, False]
        assert set(history[0].keys()) == {
            "id", "sender_id", "receiver_id", "content", "image_url", "is_read", "created_at"
        }

        # The receptionist's own view marks the guest's messages read.
        history = api_client.get(
            "/chat/history", params={"other_user_id": guest.id}, headers=_headers(recep_token)
        ).json()
        assert all(m["is_read"] for m in history)

    def test_history_forbidden_for_denied_pair(self, api_client, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        cleaner, _ = make_user(UserRole.CLEANER)

        response = api_client.get(
            "/chat/history", params={"other_user_id": cleaner.id}, headers=_headers(guest_token)
        )
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "FORBIDDEN"

    def test_history_with_self_forbidden(self, api_client, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        response = api_client.get(
            "/chat/history", params={"other_user_id": guest.id}, headers=_headers(guest_token)
        )
        assert response.status_code == 403

    def test_history_unknown_user_not_found(self, api_client, make_user):
        _, guest_token = make_user(UserRole.GUEST)
        response = api_client.get(
            "/chat/history", params={"other_user_id": str(uuid.uuid4())}, headers=_headers(guest_token)
        )
        assert response.status_code == 404

    def test_history_requires_other_user_id(self, api_client, make_user):
        _, guest_token = make_user(UserRole.GUEST)
        response = api_client.get("/chat/history", headers=_headers(guest_token))
        assert response.status_code == 422

    def test_history_malformed_user_id_rejected(self, api_client, make_user):
        _, guest_token = make_user(UserRole.GUEST)
        response = api_client.get(
            "/chat/history", params={"other_user_id": "not-a-uuid"}, headers=_headers(guest_token)
        )
        assert response.status_code == 422


# =============================================================================
# Image upload
# =============================================================================


class TestImageUpload:
    def test_upload_returns_url(self, api_client, test_app, make_user):
        guest, guest_token = make_user(UserRole.GUEST)
        storage = test_app.state.image_storage

        with patch.object(storage, "upload_image", return_value="http://minio.test/chat-images/x.png") as upload:
            response = api_client.post(
                "/chat/upload",
                files={"file": ("photo.PNG", b"\x89PNG-bytes", "image/png")},
                headers=_headers(guest_token),
            )

        assert response.status_code == 200
        assert response.json() == {"url": "http://minio.test/chat-images/x.png"}
        upload.assert_called_once_with(b"\x89PNG-bytes", "png", guest.id)

    def test_upload_requires_auth(self, api_client):
        response = api_client.post(
            "/chat/upload", files={"file": ("photo.png", b"data", "image/png")}
        )
        assert response.status_code == 401

    def test_upload_too_large_rejected(self, api_client, test_app, make_user):
        _, token = make_user(UserRole.GUEST)
        test_app.state.config.chat.max_image_bytes = 4

        response = api_client.post(
            "/chat/upload",
            files={"file": ("photo.png", b"12345", "image/png")},
            headers=_headers(token),
        )
        assert response.status_code == 413

    def test_upload_storage_failure_returns_500(self, api_client, test_app, make_user):
        _, token = make_user(UserRole.GUEST)

        with patch.object(test_app.state.image_storage, "upload_image", side_effect=StorageError("minio down")):
            response = api_client.post(
                "/chat/upload",
                files={"file": ("photo.png", b"data", "image/png")},
                headers=_headers(token),
            )
        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "STORAGE_ERROR"
