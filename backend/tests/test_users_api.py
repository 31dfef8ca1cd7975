"""Tests for the users and health HTTP endpoints."""
from unittest.mock import patch

from app.errors import PersistenceError


class TestUsersEndpoints:

    def test_get_registered_user(self, api_client, relay):
        relay.users.register("42", "builder")

        response = api_client.get("/users/42")

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == "42"
        assert body["username"] == "builder"
        assert body["banned"] is False

    def test_get_unknown_user_is_404(self, api_client):
        response = api_client.get("/users/nobody")
        assert response.status_code == 404

    def test_ban_and_unban(self, api_client, relay):
        relay.users.register("42")

        response = api_client.put("/users/42/ban", json={"banned": True})
        assert response.status_code == 200
        assert response.json()["banned"] is True
        assert relay.users.is_banned("42") is True

        response = api_client.put("/users/42/ban", json={"banned": False})
        assert response.json()["banned"] is False

    def test_ban_unknown_user_is_404(self, api_client):
        response = api_client.put("/users/nobody/ban", json={"banned": True})
        assert response.status_code == 404

    def test_ban_requires_flag(self, api_client, relay):
        relay.users.register("42")
        response = api_client.put("/users/42/ban", json={})
        assert response.status_code == 422

    def test_storage_failure_is_503(self, api_client, relay):
        with patch.object(relay.users, "get", side_effect=PersistenceError("db offline")):
            response = api_client.get("/users/42")

        assert response.status_code == 503
        assert response.json()["detail"] == "db offline"


class TestHealthEndpoints:

    def test_health_reports_online_count(self, api_client, relay, make_channel):
        relay.presence.register("a", make_channel())

        response = api_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "online": 1}

    def test_failures_endpoint_lists_reports(self, api_client, relay):
        relay.reporter.report("drain.mark_delivered", "row locked", user_id="b", message_id=3)
        relay.reporter.report("submit.insert", "disk full", user_id="a")

        response = api_client.get("/health/failures", params={"limit": 1})

        assert response.status_code == 200
        body = response.json()
        assert [f["operation"] for f in body["failures"]] == ["submit.insert"]
        assert body["counts"] == {"drain.mark_delivered": 1, "submit.insert": 1}
