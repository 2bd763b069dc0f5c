from typing import Dict
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from coach_messaging.database import engine
from coach_messaging.errors import TransientServiceError
from coach_messaging.services.list_conversations_service import (
    ListConversationsService,
)

CLIENT = {"X-User-Id": "C1", "X-User-Role": "client"}
COACH = {"X-User-Id": "K1", "X-User-Role": "coach"}
OTHER_CLIENT = {"X-User-Id": "C2", "X-User-Role": "client"}
ADMIN = {"X-User-Id": "A1", "X-User-Role": "admin"}


def bootstrap(client: TestClient, headers: Dict[str, str] = CLIENT) -> str:
    response = client.post(
        "/api/conversations",
        json={"client_id": "C1", "counterpart_id": "K1", "counterpart_name": "Sam"},
        headers=headers,
    )
    assert response.status_code == 200
    return response.json()["conversation_id"]


class TestCallerIdentity:
    def test_identity_headers_required(self, client: TestClient) -> None:
        response = client.get("/api/conversations")
        assert response.status_code == 422

    def test_unknown_role_rejected(self, client: TestClient) -> None:
        response = client.get(
            "/api/conversations", headers={"X-User-Id": "C1", "X-User-Role": "guest"}
        )
        assert response.status_code == 401


class TestBootstrapEndpoint:
    def test_bootstrap_is_idempotent(self, client: TestClient) -> None:
        first = bootstrap(client)
        second = bootstrap(client)
        from_coach = bootstrap(client, COACH)

        assert first == second == from_coach

    def test_bootstrap_seeds_welcome(self, client: TestClient) -> None:
        conversation_id = bootstrap(client)

        response = client.get(
            f"/api/conversations/{conversation_id}/messages", headers=CLIENT
        )

        assert response.status_code == 200
        messages = response.json()
        assert len(messages) == 1
        assert messages[0]["sender_id"] == "K1"
        assert messages[0]["sender_role"] == "coach"
        assert messages[0]["text"].startswith("Hi! I'm Sam")

    def test_bootstrap_for_someone_else_is_forbidden(self, client: TestClient) -> None:
        response = client.post(
            "/api/conversations",
            json={"client_id": "C1", "counterpart_id": "K1"},
            headers=OTHER_CLIENT,
        )
        assert response.status_code == 403

    def test_bootstrap_with_self_is_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/api/conversations",
            json={
                "client_id": "A1",
                "counterpart_id": "A1",
                "counterpart_role": "admin",
            },
            headers=ADMIN,
        )
        assert response.status_code == 400

    def test_bootstrap_validates_body(self, client: TestClient) -> None:
        response = client.post(
            "/api/conversations",
            json={"client_id": "C1", "counterpart_id": "K1", "counterpart_role": "x"},
            headers=CLIENT,
        )
        assert response.status_code == 422


class TestDirectoryEndpoints:
    def test_list_conversations_with_unread_badge(self, client: TestClient) -> None:
        conversation_id = bootstrap(client)

        as_client = client.get("/api/conversations", headers=CLIENT).json()
        as_coach = client.get("/api/conversations", headers=COACH).json()
        as_other = client.get("/api/conversations", headers=OTHER_CLIENT).json()

        assert [s["conversation"]["id"] for s in as_client] == [conversation_id]
        assert as_client[0]["unread_count"] == 1
        assert as_client[0]["latest_message"]["sender_role"] == "coach"
        assert as_coach[0]["unread_count"] == 0
        assert as_other == []

    def test_get_conversation_summary(self, client: TestClient) -> None:
        conversation_id = bootstrap(client)

        response = client.get(f"/api/conversations/{conversation_id}", headers=COACH)

        assert response.status_code == 200
        assert response.json()["conversation"]["client_id"] == "C1"

    def test_transient_failure_maps_to_503(self, client: TestClient) -> None:
        with patch.object(
            ListConversationsService,
            "list_conversations",
            new_callable=AsyncMock,
            side_effect=TransientServiceError("database unreachable"),
        ):
            response = client.get("/api/conversations", headers=CLIENT)

        assert response.status_code == 503


class TestConversationAccess:
    def test_unknown_conversation(self, client: TestClient) -> None:
        response = client.get(f"/api/conversations/{uuid4()}/messages", headers=CLIENT)
        assert response.status_code == 404

    def test_invalid_conversation_id(self, client: TestClient) -> None:
        response = client.get("/api/conversations/not-a-uuid", headers=CLIENT)
        assert response.status_code == 422

    @pytest.mark.parametrize(
        "headers",
        [OTHER_CLIENT, {"X-User-Id": "K2", "X-User-Role": "coach"}],
    )
    def test_outsiders_cannot_see_conversation(
        self, client: TestClient, headers: Dict[str, str]
    ) -> None:
        conversation_id = bootstrap(client)

        response = client.get(
            f"/api/conversations/{conversation_id}/messages", headers=headers
        )

        assert response.status_code == 404

    def test_admin_sees_every_conversation(self, client: TestClient) -> None:
        conversation_id = bootstrap(client)

        response = client.get(
            f"/api/conversations/{conversation_id}/messages", headers=ADMIN
        )

        assert response.status_code == 200


class TestMessagesAndReceipts:
    def test_messages_pagination_validation(self, client: TestClient) -> None:
        conversation_id = bootstrap(client)
        url = f"/api/conversations/{conversation_id}/messages"

        assert client.get(f"{url}?limit=0", headers=CLIENT).status_code == 422
        assert client.get(f"{url}?limit=1001", headers=CLIENT).status_code == 422
        assert client.get(f"{url}?offset=-1", headers=CLIENT).status_code == 422
        assert client.get(f"{url}?limit=1&offset=1", headers=CLIENT).json() == []

    def test_mark_read(self, client: TestClient) -> None:
        conversation_id = bootstrap(client)
        url = f"/api/conversations/{conversation_id}/read"

        first = client.post(url, headers=CLIENT)
        second = client.post(url, headers=CLIENT)

        assert first.status_code == 200
        assert first.json() == {"updated": 1}
        assert second.json() == {"updated": 0}
        summary = client.get(f"/api/conversations/{conversation_id}", headers=CLIENT)
        assert summary.json()["unread_count"] == 0
        messages = client.get(
            f"/api/conversations/{conversation_id}/messages", headers=CLIENT
        ).json()
        assert messages[0]["read_at"] is not None

    def test_coach_mark_read_leaves_own_messages(self, client: TestClient) -> None:
        conversation_id = bootstrap(client)

        response = client.post(
            f"/api/conversations/{conversation_id}/read", headers=COACH
        )

        assert response.json() == {"updated": 0}


class TestConversationStream:
    def test_stream_sends_snapshots_and_accepts_messages(
        self, client: TestClient
    ) -> None:
        conversation_id = bootstrap(client)
        url = f"/api/conversations/{conversation_id}/stream"

        with client.websocket_connect(url, headers=CLIENT) as websocket:
            snapshot = websocket.receive_json()
            assert snapshot["conversation_id"] == conversation_id
            assert snapshot["state"] == "ready"
            assert snapshot["connection"] == "connected"
            # Opening the session read the welcome message
            assert snapshot["unread_count"] == 0

            websocket.send_json({"type": "send", "text": "Hello coach"})
            for _ in range(20):
                snapshot = websocket.receive_json()
                if any(m["text"] == "Hello coach" for m in snapshot["messages"]):
                    break
            assert snapshot["messages"][-1]["sender_role"] == "client"

            websocket.send_json({"type": "wave"})
            for _ in range(20):
                frame = websocket.receive_json()
                if frame.get("type") == "error":
                    break
            assert "wave" in frame["detail"]

        messages = client.get(
            f"/api/conversations/{conversation_id}/messages", headers=COACH
        ).json()
        assert [m["text"] for m in messages][-1] == "Hello coach"

    def test_stream_reports_send_validation_errors(self, client: TestClient) -> None:
        conversation_id = bootstrap(client)
        url = f"/api/conversations/{conversation_id}/stream"

        with client.websocket_connect(url, headers=CLIENT) as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "send", "text": "   "})
            for _ in range(20):
                frame = websocket.receive_json()
                if frame.get("type") == "error":
                    break
            assert frame["type"] == "error"

    def test_open_stream_holds_no_database_connection(
        self, client: TestClient
    ) -> None:
        conversation_id = bootstrap(client)
        url = f"/api/conversations/{conversation_id}/stream"

        with client.websocket_connect(url, headers=CLIENT) as websocket:
            websocket.receive_json()
            assert engine.sync_engine.pool.checkedout() == 0

    def test_stream_unknown_conversation(self, client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect(
                f"/api/conversations/{uuid4()}/stream", headers=CLIENT
            ):
                pass

        assert excinfo.value.code == 4404

    def test_stream_forbidden_for_outsider(self, client: TestClient) -> None:
        conversation_id = bootstrap(client)

        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect(
                f"/api/conversations/{conversation_id}/stream", headers=OTHER_CLIENT
            ):
                pass

        assert excinfo.value.code == 4403
