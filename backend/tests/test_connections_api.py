"""Connection management endpoint tests"""
import pytest

from app.models.account import Account
from app.models.social_connection import SocialConnection


@pytest.fixture
def facebook_connection(db_session, vault, test_account):
    connection = SocialConnection(
        account_id=test_account.id, network="facebook", auth_method="oauth",
        access_token=vault.protect("secret-access-token"), connection_status="connected", health_status="ok",
        external_username="Brand Page",
    )
    db_session.add(connection)
    db_session.commit()
    return connection


@pytest.mark.high
class TestListConnections:
    def test_lists_without_credentials(self, authenticated_client, test_account, facebook_connection):
        response = authenticated_client.get("/api/connections", params={"accountId": test_account.id})

        assert response.status_code == 200
        body = response.json()
        assert [c["network"] for c in body] == ["facebook"]
        assert body[0]["external_username"] == "Brand Page"
        assert "access_token" not in body[0]
        assert "secret-access-token" not in response.text

    def test_foreign_account_is_hidden(self, authenticated_client, db_session, other_user):
        foreign = Account(user_id=other_user.id, name="Not Mine")
        db_session.add(foreign)
        db_session.commit()

        response = authenticated_client.get("/api/connections", params={"accountId": foreign.id})
        assert response.status_code == 404

    def test_requires_login(self, client, test_account):
        assert client.get("/api/connections", params={"accountId": test_account.id}).status_code == 401


@pytest.mark.high
class TestApiKeyConnection:
    def test_stores_encrypted_x_credentials(self, authenticated_client, db_session, vault, test_account):
        response = authenticated_client.post("/api/connections/x/api-key", json={
            "account_id": test_account.id,
            "api_key": "ck",
            "api_secret": "cs",
            "access_token": "at",
            "access_token_secret": "ats",
        })

        assert response.status_code == 200
        assert response.json()["auth_method"] == "api_key"
        connection = db_session.query(SocialConnection).one()
        assert connection.network == "x"
        assert connection.api_key != "ck"
        assert vault.unprotect(connection.api_secret) == "cs"
        assert vault.unprotect(connection.access_token_secret) == "ats"
        assert connection.token_expires_at is None

    def test_blank_fields_are_rejected(self, authenticated_client, test_account):
        response = authenticated_client.post("/api/connections/x/api-key", json={
            "account_id": test_account.id, "api_key": "", "api_secret": "cs",
            "access_token": "at", "access_token_secret": "ats",
        })
        assert response.status_code == 422


@pytest.mark.medium
class TestEnableDisable:
    def test_disable_then_enable(self, authenticated_client, db_session, facebook_connection):
        response = authenticated_client.post(f"/api/connections/{facebook_connection.id}/disable")
        assert response.status_code == 200
        assert response.json()["is_enabled"] is False

        response = authenticated_client.post(f"/api/connections/{facebook_connection.id}/enable")
        assert response.json()["is_enabled"] is True
        db_session.refresh(facebook_connection)
        assert facebook_connection.is_enabled is True

    def test_unknown_connection(self, authenticated_client):
        assert authenticated_client.post("/api/connections/999/disable").status_code == 404
