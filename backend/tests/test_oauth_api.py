"""OAuth connect / callback / disconnect endpoint tests"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.api.oauth import safe_return_url
from app.db.helpers import as_utc
from app.models.account import Account
from app.models.notification import Notification
from app.models.oauth_state import OAuthState
from app.models.social_connection import SocialConnection
from app.services.oauth_state_store import create_state, generate_code_challenge


class FakeMeta:
    """Graph API double for the Facebook code exchange and profile calls"""

    def __init__(self, short_status=200):
        self.short_status = short_status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = dict(request.url.params)
        if path.endswith("/oauth/access_token"):
            if params.get("grant_type") == "fb_exchange_token":
                return httpx.Response(200, json={"access_token": "long-token", "token_type": "bearer"})
            if self.short_status != 200:
                return httpx.Response(self.short_status, json={
                    "error": {"message": "This authorization code has been used.", "code": 100}
                })
            return httpx.Response(200, json={"access_token": "short-token", "expires_in": 3600})
        if path.endswith("/me/accounts"):
            return httpx.Response(200, json={"data": [{"id": "page-1", "name": "Brand Page", "access_token": "pt"}]})
        if path.endswith("/me"):
            return httpx.Response(200, json={"id": "fb-user-1", "name": "Brand Owner"})
        if path.endswith("/oauth2/revoke"):
            return httpx.Response(200, json={"revoked": True})
        return httpx.Response(404, json={"error": {"message": "unexpected"}})


@pytest.fixture
def fake_meta():
    return FakeMeta()


@pytest.fixture(autouse=True)
def provider_registry(make_registry, fake_meta):
    registry = make_registry(fake_meta)
    with patch("app.api.oauth.get_provider_registry", return_value=registry):
        yield registry


def location(response) -> tuple:
    parsed = urlparse(response.headers["location"])
    return parsed, {k: v[0] for k, v in parse_qs(parsed.query).items()}


def issue_state(db_session, account, user, network="facebook", **kwargs):
    return create_state(
        account_id=account.id,
        user_id=user.id,
        network=network,
        redirect_uri=f"http://backend.test/oauth/callback/{network}",
        db=db_session,
        **kwargs
    )


@pytest.mark.critical
class TestConnect:
    """Test the authorization redirect"""

    def test_requires_login(self, client, test_account):
        response = client.get("/oauth/connect/facebook", params={"accountId": test_account.id},
                              follow_redirects=False)
        assert response.status_code == 401

    def test_facebook_redirects_to_dialog(self, authenticated_client, db_session, test_account):
        response = authenticated_client.get(
            "/oauth/connect/facebook",
            params={"accountId": test_account.id, "returnUrl": "/channels?tab=social"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        parsed, query = location(response)
        assert parsed.netloc == "www.facebook.com"
        assert query["client_id"] == "facebook-client-id"
        assert query["redirect_uri"] == "http://backend.test/oauth/callback/facebook"
        assert "code_challenge" not in query

        record = db_session.query(OAuthState).filter(OAuthState.state == query["state"]).one()
        assert record.account_id == test_account.id
        assert record.return_url == "/channels?tab=social"
        assert record.code_verifier is None

    def test_x_sends_pkce_challenge_for_stored_verifier(self, authenticated_client, db_session, test_account):
        response = authenticated_client.get("/oauth/connect/x", params={"accountId": test_account.id},
                                            follow_redirects=False)

        assert response.status_code == 302
        _, query = location(response)
        record = db_session.query(OAuthState).filter(OAuthState.state == query["state"]).one()
        assert record.code_verifier
        assert query["code_challenge"] == generate_code_challenge(record.code_verifier)
        assert query["code_challenge_method"] == "S256"

    def test_twitter_alias_maps_to_x(self, authenticated_client, db_session, test_account):
        response = authenticated_client.get("/oauth/connect/twitter", params={"accountId": test_account.id},
                                            follow_redirects=False)
        assert response.status_code == 302
        assert db_session.query(OAuthState).one().network == "x"

    def test_unknown_provider(self, authenticated_client, test_account):
        response = authenticated_client.get("/oauth/connect/myspace", params={"accountId": test_account.id},
                                            follow_redirects=False)
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_provider"

    def test_missing_account(self, authenticated_client):
        response = authenticated_client.get("/oauth/connect/facebook", follow_redirects=False)
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "missing_account"

    def test_foreign_account_is_forbidden(self, authenticated_client, db_session, other_user):
        foreign = Account(user_id=other_user.id, name="Not Mine")
        db_session.add(foreign)
        db_session.commit()

        response = authenticated_client.get("/oauth/connect/facebook", params={"accountId": foreign.id},
                                            follow_redirects=False)

        assert response.status_code == 403
        assert db_session.query(OAuthState).count() == 0

    def test_reconnect_starts_a_new_authorization(self, authenticated_client, db_session, test_account):
        response = authenticated_client.get("/oauth/reconnect/tiktok", params={"accountId": test_account.id},
                                            follow_redirects=False)
        assert response.status_code == 302
        _, query = location(response)
        assert query["client_key"] == "tiktok-client-id"
        assert "code_challenge" in query


@pytest.mark.critical
class TestCallback:
    """Test the provider redirect target"""

    def test_facebook_flow_creates_connected_channel(self, client, db_session, test_account, test_user, vault):
        record = issue_state(db_session, test_account, test_user, return_url="/channels")

        response = client.get("/oauth/callback/facebook", params={"code": "auth-code", "state": record.state},
                              follow_redirects=False)

        assert response.status_code == 302
        parsed, query = location(response)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "http://frontend.test/channels"
        assert query == {"success": "true", "provider": "facebook"}

        connection = db_session.query(SocialConnection).one()
        assert connection.account_id == test_account.id
        assert connection.network == "facebook"
        assert connection.connection_status == "connected"
        assert connection.health_status == "ok"
        assert connection.external_user_id == "fb-user-1"
        assert connection.extra_data["page_id"] == "page-1"
        assert vault.unprotect(connection.access_token) == "long-token"
        expected = datetime.now(timezone.utc) + timedelta(days=60)
        assert abs((as_utc(connection.token_expires_at) - expected).total_seconds()) < 60

    def test_callback_reuses_state_only_once(self, client, db_session, test_account, test_user):
        record = issue_state(db_session, test_account, test_user)
        params = {"code": "auth-code", "state": record.state}

        client.get("/oauth/callback/facebook", params=params, follow_redirects=False)
        response = client.get("/oauth/callback/facebook", params=params, follow_redirects=False)

        _, query = location(response)
        assert query["error"] == "invalid_state"
        assert db_session.query(SocialConnection).count() == 1

    def test_reconnect_clears_needs_reauth_and_alert(self, client, db_session, test_account, test_user):
        connection = SocialConnection(account_id=test_account.id, network="facebook",
                                      connection_status="needs_reauth", health_status="ko",
                                      last_oauth_error_code="190")
        db_session.add(connection)
        db_session.commit()
        db_session.add(Notification(user_id=test_user.id, account_id=test_account.id, connection_id=connection.id,
                                    type="reauth_required", title="Reconnection required: Facebook", message="m"))
        db_session.commit()
        record = issue_state(db_session, test_account, test_user)

        client.get("/oauth/callback/facebook", params={"code": "auth-code", "state": record.state},
                   follow_redirects=False)

        db_session.refresh(connection)
        assert connection.connection_status == "connected"
        assert connection.health_status == "ok"
        assert connection.last_oauth_error_code is None
        assert db_session.query(Notification).one().is_dismissed is True

    def test_unknown_state(self, client, db_session):
        response = client.get("/oauth/callback/facebook", params={"code": "c", "state": "forged"},
                              follow_redirects=False)
        parsed, query = location(response)
        assert parsed.path == "/channels"
        assert query["error"] == "invalid_state"
        assert db_session.query(SocialConnection).count() == 0

    def test_provider_mismatch(self, client, db_session, test_account, test_user, fake_meta):
        record = issue_state(db_session, test_account, test_user, network="x", use_pkce=True)

        response = client.get("/oauth/callback/facebook", params={"code": "c", "state": record.state},
                              follow_redirects=False)

        _, query = location(response)
        assert query["error"] == "provider_mismatch"
        assert fake_meta.requests == []
        assert db_session.query(SocialConnection).count() == 0

    def test_provider_error_is_forwarded(self, client):
        response = client.get("/oauth/callback/facebook",
                              params={"error": "access_denied", "error_description": "User cancelled"},
                              follow_redirects=False)
        _, query = location(response)
        assert query == {"error": "access_denied", "error_description": "User cancelled"}

    def test_missing_code(self, client):
        response = client.get("/oauth/callback/facebook", params={"state": "s"}, follow_redirects=False)
        _, query = location(response)
        assert query["error"] == "missing_params"

    def test_exchange_failure_uses_provider_code(self, client, db_session, test_account, test_user, fake_meta):
        fake_meta.short_status = 400
        record = issue_state(db_session, test_account, test_user)

        response = client.get("/oauth/callback/facebook", params={"code": "used", "state": record.state},
                              follow_redirects=False)

        _, query = location(response)
        assert query["error"] == "100"
        assert "has been used" in query["error_description"]
        assert db_session.query(SocialConnection).count() == 0


@pytest.mark.high
class TestDisconnect:
    """Test disconnecting a channel"""

    def _x_connection(self, db_session, vault, account):
        connection = SocialConnection(
            account_id=account.id, network="x", auth_method="oauth",
            access_token=vault.protect("x-access"), refresh_token=vault.protect("x-refresh"),
            connection_status="connected", health_status="ok",
        )
        db_session.add(connection)
        db_session.commit()
        return connection

    def test_disconnect_revokes_and_deletes(self, authenticated_client, db_session, vault, test_account, fake_meta):
        self._x_connection(db_session, vault, test_account)

        response = authenticated_client.post("/oauth/disconnect/x", params={"accountId": test_account.id})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Disconnected x"}
        assert db_session.query(SocialConnection).count() == 0
        revokes = [r for r in fake_meta.requests if r.url.path.endswith("/oauth2/revoke")]
        assert len(revokes) == 1

    def test_revoke_failure_still_deletes(self, authenticated_client, db_session, vault, test_account):
        self._x_connection(db_session, vault, test_account)
        connection = db_session.query(SocialConnection).one()
        connection.access_token = "not-decryptable"
        db_session.commit()

        response = authenticated_client.post("/oauth/disconnect/x", params={"accountId": test_account.id})

        assert response.status_code == 200
        assert db_session.query(SocialConnection).count() == 0

    def test_missing_connection(self, authenticated_client, test_account):
        response = authenticated_client.post("/oauth/disconnect/linkedin", params={"accountId": test_account.id})
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    def test_requires_csrf_token(self, authenticated_client, db_session, vault, test_account):
        self._x_connection(db_session, vault, test_account)
        authenticated_client.headers.pop("X-CSRF-Token")

        response = authenticated_client.post("/oauth/disconnect/x", params={"accountId": test_account.id})

        assert response.status_code == 403
        assert db_session.query(SocialConnection).count() == 1


@pytest.mark.medium
class TestReturnUrl:
    @pytest.mark.parametrize("value,expected", [
        (None, "/channels"),
        ("", "/channels"),
        ("/settings/channels", "/settings/channels"),
        ("https://evil.example.com", "/channels"),
        ("//evil.example.com", "/channels"),
        ("/\\evil.example.com", "/channels"),
    ])
    def test_only_relative_paths_are_kept(self, value, expected):
        assert safe_return_url(value) == expected
