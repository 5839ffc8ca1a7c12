# Tests for the OAuth2 HTTP surface: dispatcher, flow, token, metadata, CORS, /mcp.
# Created: 2026-10-19

from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from mcpgate.api.oauth2 import continuation, pkce
from mcpgate.api.oauth2.models import OAuthClient
from mcpgate.api.oauth2.server import AuthorizationServer
from mcpgate.api.oauth2.storage import OAuthStorage
from mcpgate.api.serve import create_app, public_url
from mcpgate.config import Settings
from mcpgate.host.session import SESSION_COOKIE, create_session_value

VERIFIER = "verifier123"
CHALLENGE = pkce.s256_challenge(VERIFIER)
REDIRECT = "https://x/cb"

AUTHORIZE_PARAMS = {
    "response_type": "code",
    "client_id": "demo",
    "redirect_uri": REDIRECT,
    "code_challenge": CHALLENGE,
    "code_challenge_method": "S256",
    "state": "xyz",
}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'oauth.db'}",
        secret_key="test-secret",
        host_users={"alice": "wonderland"},
    )


@pytest.fixture
def server(settings):
    srv = AuthorizationServer(OAuthStorage(settings.database_url))
    srv.storage.save_client(
        OAuthClient(client_id="demo", client_name="Demo", redirect_uris=[REDIRECT])
    )
    return srv


@pytest.fixture
def client(settings, server):
    return TestClient(create_app(settings=settings, server=server))


def _login(client):
    resp = client.post(
        "/login",
        data={"username": "alice", "password": "wonderland"},
        follow_redirects=False,
    )
    assert resp.status_code == 303
    return resp


def _set_cookies(resp):
    return resp.headers.get_list("set-cookie")


def _cookie_cleared(resp, name):
    return any(c.startswith(f"{name}=") and "Max-Age=0" in c for c in _set_cookies(resp))


# ===================== End to end =====================


class TestEndToEnd:
    def test_full_flow(self, client):
        # 1. Unauthenticated: continuation cookie + redirect to login
        resp = client.get("/mcp_oauth/authorize", params=AUTHORIZE_PARAMS, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        set_cookie = next(
            c for c in _set_cookies(resp) if c.startswith(continuation.COOKIE_NAME + "=")
        )
        assert "HttpOnly" in set_cookie
        assert "Max-Age=600" in set_cookie
        assert "SameSite=lax" in set_cookie or "SameSite=Lax" in set_cookie

        # 2. Log in to the host
        _login(client)

        # 3. Home path picks the pending request back up
        resp = client.get("/", follow_redirects=False)
        assert resp.status_code == 302
        location = resp.headers["location"]
        assert location.startswith("/mcp_oauth/authorize?")
        query = {k: v[0] for k, v in parse_qs(urlsplit(location).query).items()}
        for key, value in AUTHORIZE_PARAMS.items():
            assert query[key] == value
        assert _cookie_cleared(resp, continuation.COOKIE_NAME)

        # 4. Authenticated authorize issues a code
        resp = client.get(location, follow_redirects=False)
        assert resp.status_code == 302
        callback = urlsplit(resp.headers["location"])
        assert f"{callback.scheme}://{callback.netloc}{callback.path}" == REDIRECT
        cb_query = parse_qs(callback.query)
        assert cb_query["state"] == ["xyz"]
        code = cb_query["code"][0]

        # 5. Exchange
        token_form = {
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": VERIFIER,
            "client_id": "demo",
            "redirect_uri": REDIRECT,
        }
        resp = client.post("/mcp_oauth/token", data=token_form)
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        body = resp.json()
        assert body["token_type"] == "bearer"
        token = body["access_token"]

        # 6. Protected endpoint accepts the bearer token
        resp = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 200
        assert resp.json()["result"]["serverInfo"]["name"] == "mcpgate"

        # 7. Replayed code is rejected
        resp = client.post("/mcp_oauth/token", data=token_form)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_grant"


# ===================== Authorize =====================


class TestAuthorize:
    def test_unknown_client_is_json_error(self, client):
        params = {**AUTHORIZE_PARAMS, "client_id": "ghost"}
        resp = client.get("/mcp_oauth/authorize", params=params, follow_redirects=False)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_client"

    def test_unregistered_redirect_is_not_followed(self, client):
        params = {**AUTHORIZE_PARAMS, "redirect_uri": "https://evil/cb"}
        resp = client.get("/mcp_oauth/authorize", params=params, follow_redirects=False)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"
        assert "location" not in resp.headers

    def test_missing_challenge(self, client):
        params = {k: v for k, v in AUTHORIZE_PARAMS.items() if k != "code_challenge"}
        resp = client.get("/mcp_oauth/authorize", params=params)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_unsupported_response_type(self, client):
        params = {**AUTHORIZE_PARAMS, "response_type": "token"}
        resp = client.get("/mcp_oauth/authorize", params=params)
        assert resp.status_code == 400
        assert resp.json()["error"] == "unsupported_response_type"

    def test_logged_in_user_gets_code_directly(self, client):
        _login(client)
        resp = client.get("/mcp_oauth/authorize", params=AUTHORIZE_PARAMS, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"].startswith(REDIRECT + "?code=")
        assert _cookie_cleared(resp, continuation.COOKIE_NAME)

    def test_post_form(self, client):
        _login(client)
        resp = client.post("/mcp_oauth/authorize", data=AUTHORIZE_PARAMS, follow_redirects=False)
        assert resp.status_code == 302
        assert "code=" in resp.headers["location"]

    def test_redirect_with_existing_query_uses_ampersand(self, client, server):
        server.storage.save_client(
            OAuthClient(client_id="q", client_name="Q", redirect_uris=["https://x/cb?tenant=1"])
        )
        _login(client)
        params = {**AUTHORIZE_PARAMS, "client_id": "q", "redirect_uri": "https://x/cb?tenant=1"}
        resp = client.get("/mcp_oauth/authorize", params=params, follow_redirects=False)
        assert resp.headers["location"].startswith("https://x/cb?tenant=1&code=")

    def test_state_omitted_when_empty(self, client):
        _login(client)
        params = {k: v for k, v in AUTHORIZE_PARAMS.items() if k != "state"}
        resp = client.get("/mcp_oauth/authorize", params=params, follow_redirects=False)
        assert "state=" not in resp.headers["location"]

    def test_client_name_from_referer(self, client, server):
        _login(client)
        resp = client.get(
            "/mcp_oauth/authorize",
            params=AUTHORIZE_PARAMS,
            headers={"Referer": "https://claude.example.com/settings"},
            follow_redirects=False,
        )
        code = parse_qs(urlsplit(resp.headers["location"]).query)["code"][0]
        grant, _ = server.redeem_code(code, VERIFIER)
        assert grant.client_name == "claude.example.com"

    def test_client_name_param_wins(self, client, server):
        _login(client)
        params = {**AUTHORIZE_PARAMS, "client_name": "My Agent"}
        resp = client.get(
            "/mcp_oauth/authorize",
            params=params,
            headers={"Referer": "https://claude.example.com/"},
            follow_redirects=False,
        )
        code = parse_qs(urlsplit(resp.headers["location"]).query)["code"][0]
        grant, _ = server.redeem_code(code, VERIFIER)
        assert grant.client_name == "My Agent"


# ===================== Continuation =====================


class TestContinuation:
    def test_home_without_cookie_is_host_page(self, client):
        resp = client.get("/", follow_redirects=False)
        assert resp.status_code == 200
        assert "mcpgate" in resp.text

    def test_cookie_ignored_until_logged_in(self, client):
        client.get("/mcp_oauth/authorize", params=AUTHORIZE_PARAMS, follow_redirects=False)
        resp = client.get("/", follow_redirects=False)
        assert resp.status_code == 200
        assert continuation.COOKIE_NAME in client.cookies

    def test_tampered_cookie_falls_through(self, client):
        _login(client)
        client.cookies.set(continuation.COOKIE_NAME, "eyJjbGllbnRfaWQiOiJkZW1vIn0.deadbeef")
        resp = client.get("/", follow_redirects=False)
        assert resp.status_code == 200

    def test_non_ascii_cookie_falls_through(self, client, settings):
        session = create_session_value("alice", settings.secret_key)
        raw = f"{SESSION_COOKIE}={session}; {continuation.COOKIE_NAME}=abc.\xe9"
        resp = client.get(
            "/", headers=[(b"cookie", raw.encode("latin-1"))], follow_redirects=False
        )
        assert resp.status_code == 200
        assert "Signed in as <strong>alice</strong>" in resp.text

    def test_revalidation_failure_clears_cookie(self, client, settings):
        _login(client)
        forged = continuation.ContinuationState(
            client_id="ghost",
            client_name="Ghost",
            redirect_uri=REDIRECT,
            code_challenge=CHALLENGE,
            code_challenge_method="S256",
        )
        client.cookies.set(
            continuation.COOKIE_NAME, continuation.encode(forged, settings.secret_key)
        )
        resp = client.get("/", follow_redirects=False)
        assert resp.status_code == 200
        assert _cookie_cleared(resp, continuation.COOKIE_NAME)

    def test_post_to_home_is_not_intercepted(self, client):
        resp = client.post("/", follow_redirects=False)
        assert resp.status_code == 405
        assert resp.json() == {"detail": "Method Not Allowed"}


# ===================== Token endpoint =====================


class TestTokenEndpoint:
    def _code(self, client):
        _login(client)
        resp = client.get("/mcp_oauth/authorize", params=AUTHORIZE_PARAMS, follow_redirects=False)
        return parse_qs(urlsplit(resp.headers["location"]).query)["code"][0]

    def test_json_body(self, client):
        code = self._code(client)
        resp = client.post(
            "/mcp_oauth/token",
            json={
                "grant_type": "authorization_code",
                "code": code,
                "code_verifier": VERIFIER,
                "client_id": "demo",
            },
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["access_token"].startswith("mcp_at_")
        assert set(body) == {"access_token", "token_type", "expires_in"}
        assert body["token_type"] == "bearer"
        assert resp.headers["cache-control"] == "no-store"

    def test_wrong_verifier_is_generic(self, client):
        code = self._code(client)
        resp = client.post(
            "/mcp_oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "code_verifier": "wrong",
                "client_id": "demo",
            },
        )
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "invalid_grant",
            "error_description": "Invalid or expired authorization code",
        }

    def test_unknown_client_is_401(self, client):
        resp = client.post(
            "/mcp_oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": "x",
                "code_verifier": VERIFIER,
                "client_id": "ghost",
            },
        )
        assert resp.status_code == 401
        assert resp.json()["error"] == "invalid_client"

    def test_unsupported_grant(self, client):
        resp = client.post("/mcp_oauth/token", data={"grant_type": "password"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "unsupported_grant_type"

    def test_missing_code(self, client):
        resp = client.post(
            "/mcp_oauth/token",
            data={"grant_type": "authorization_code", "code_verifier": VERIFIER, "client_id": "demo"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_malformed_json(self, client):
        resp = client.post(
            "/mcp_oauth/token",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_storage_failure_is_generic_500(self, client, server, monkeypatch):
        def boom(**kwargs):
            raise OperationalError("UPDATE mcp_oauth_codes", {}, Exception("disk I/O error"))

        monkeypatch.setattr(server, "exchange", boom)
        resp = client.post("/mcp_oauth/token", data={"grant_type": "authorization_code"})
        assert resp.status_code == 500
        assert resp.json() == {
            "error": "server_error",
            "error_description": "Internal server error",
        }
        assert "disk" not in resp.text


# ===================== Registration & revocation =====================


class TestRegister:
    def test_register(self, client):
        resp = client.post(
            "/mcp_oauth/register",
            json={
                "client_name": "MCP Inspector",
                "redirect_uris": ["http://localhost:6274/oauth/callback"],
                "token_endpoint_auth_method": "none",
            },
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["client_id"].startswith("mcp_client_")
        assert body["client_name"] == "MCP Inspector"
        assert body["redirect_uris"] == ["http://localhost:6274/oauth/callback"]
        assert body["grant_types"] == ["authorization_code"]
        assert body["response_types"] == ["code"]
        assert body["token_endpoint_auth_method"] == "none"
        assert resp.headers["cache-control"] == "no-store"

    def test_registered_client_can_authorize(self, client):
        body = client.post(
            "/mcp_oauth/register", json={"redirect_uris": ["http://localhost:6274/cb"]}
        ).json()
        _login(client)
        params = {
            **AUTHORIZE_PARAMS,
            "client_id": body["client_id"],
            "redirect_uri": "http://localhost:6274/cb",
        }
        resp = client.get("/mcp_oauth/authorize", params=params, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("http://localhost:6274/cb?code=")

    def test_invalid_redirect(self, client):
        resp = client.post("/mcp_oauth/register", json={"redirect_uris": ["not a uri"]})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_client_metadata"

    def test_missing_redirects(self, client):
        resp = client.post("/mcp_oauth/register", json={"client_name": "x"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_client_metadata"

    def test_invalid_json(self, client):
        resp = client.post(
            "/mcp_oauth/register", content=b"[", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"


class TestRevokeEndpoint:
    def test_revoke_then_mcp_rejects(self, client, server):
        (_, token), _ = server.issue_direct("alice", "n8n token")
        resp = client.post("/mcp_oauth/revoke", data={"token": token})
        assert resp.status_code == 200
        resp = client.get("/mcp", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_unknown_token_still_200(self, client):
        resp = client.post("/mcp_oauth/revoke", data={"token": "mcp_at_unknown"})
        assert resp.status_code == 200


# ===================== Metadata & CORS =====================


class TestMetadata:
    @pytest.mark.parametrize(
        "path", ["/mcp_oauth/metadata", "/.well-known/oauth-authorization-server"]
    )
    def test_authorization_server_metadata(self, client, path):
        resp = client.get(path)
        assert resp.status_code == 200
        body = resp.json()
        assert body["issuer"] == "http://testserver"
        assert body["authorization_endpoint"] == "http://testserver/mcp_oauth/authorize"
        assert body["token_endpoint"] == "http://testserver/mcp_oauth/token"
        assert body["registration_endpoint"] == "http://testserver/mcp_oauth/register"
        assert body["code_challenge_methods_supported"] == ["S256", "plain"]
        assert body["token_endpoint_auth_methods_supported"] == ["none"]
        assert resp.headers["cache-control"] == "public, max-age=300"
        assert resp.headers["vary"] == "Origin"

    @pytest.mark.parametrize(
        "path", ["/mcp_oauth/resource", "/.well-known/oauth-protected-resource"]
    )
    def test_protected_resource_metadata(self, client, path):
        body = client.get(path).json()
        assert body["resource"] == "http://testserver/mcp"
        assert body["authorization_servers"] == ["http://testserver"]
        assert body["bearer_methods_supported"] == ["header", "query"]
        assert body["revocation_endpoint"] == "http://testserver/mcp_oauth/revoke"

    def test_configured_base_url(self, settings, server):
        settings.base_url = "https://mcp.example.com/"
        client = TestClient(create_app(settings=settings, server=server))
        body = client.get("/.well-known/oauth-authorization-server").json()
        assert body["token_endpoint"] == "https://mcp.example.com/mcp_oauth/token"

    def test_non_default_port_kept(self, settings, server):
        client = TestClient(
            create_app(settings=settings, server=server), base_url="http://gateway:8443"
        )
        body = client.get("/mcp_oauth/metadata").json()
        assert body["issuer"] == "http://gateway:8443"

    def test_ipv6_host_is_bracketed(self, settings, server):
        client = TestClient(
            create_app(settings=settings, server=server), base_url="http://[::1]:8080"
        )
        body = client.get("/.well-known/oauth-authorization-server").json()
        assert body["issuer"] == "http://[::1]:8080"
        assert body["token_endpoint"] == "http://[::1]:8080/mcp_oauth/token"

        resp = client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
        assert (
            'resource_metadata="http://[::1]:8080/.well-known/oauth-protected-resource"'
            in resp.headers["www-authenticate"]
        )

    def test_public_url(self, settings):
        assert public_url(settings, "0.0.0.0", 8080) == "http://localhost:8080"
        assert public_url(settings, "gateway", 9000) == "http://gateway:9000"
        configured = settings.model_copy(update={"base_url": "https://mcp.example.com/"})
        assert public_url(configured, "0.0.0.0", 8080) == "https://mcp.example.com"


class TestCors:
    def test_allow_listed_origin_is_echoed(self, client):
        resp = client.get("/mcp_oauth/metadata", headers={"Origin": "http://localhost:6274"})
        assert resp.headers["access-control-allow-origin"] == "http://localhost:6274"
        assert resp.headers["access-control-allow-credentials"] == "true"

    def test_other_origin_gets_base_url(self, client):
        resp = client.get("/mcp_oauth/metadata", headers={"Origin": "https://evil.example"})
        assert resp.headers["access-control-allow-origin"] == "http://testserver"

    def test_preflight(self, client):
        resp = client.options(
            "/mcp_oauth/token",
            headers={
                "Origin": "http://localhost:6274",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:6274"
        assert resp.headers["access-control-max-age"] == "86400"
        assert "POST" in resp.headers["access-control-allow-methods"]

    def test_preflight_does_not_invoke_handler(self, client, server, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("handler should not run")

        monkeypatch.setattr(server, "register_client", fail)
        resp = client.options("/mcp_oauth/register")
        assert resp.status_code == 200


# ===================== Dispatcher =====================


class TestDispatcher:
    def test_method_not_allowed(self, client):
        resp = client.get("/mcp_oauth/token")
        assert resp.status_code == 405
        assert resp.json()["error"] == "invalid_request"
        assert resp.headers["allow"] == "POST"

    def test_unknown_path_falls_through(self, client):
        resp = client.get("/mcp_oauth/unknown")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Not Found"}

    def test_custom_endpoint_can_be_registered(self, client):
        from fastapi.responses import PlainTextResponse

        from mcpgate.api.oauth2.endpoints import Endpoint

        class Hello(Endpoint):
            async def handle(self, request, ctx):
                return PlainTextResponse("hi")

        client.app.state.dispatcher.register("/hello", Hello())
        assert client.get("/hello").text == "hi"


# ===================== Protected MCP endpoint =====================


class TestMcpEndpoint:
    def test_missing_token(self, client):
        resp = client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "invalid_token"
        assert 'resource_metadata="http://testserver/.well-known/oauth-protected-resource"' in (
            resp.headers["www-authenticate"]
        )

    def test_query_token(self, client, server):
        (_, token), _ = server.issue_direct("alice", "mcp-remote token")
        resp = client.post(
            "/mcp", params={"token": token}, json={"jsonrpc": "2.0", "id": 3, "method": "tools/list"}
        )
        assert resp.status_code == 200
        assert resp.json()["result"] == {"tools": []}

    def test_unknown_method(self, client, server):
        (_, token), _ = server.issue_direct("alice", "mcp-remote token")
        resp = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 4, "method": "tools/call"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.json()["error"]["code"] == -32601

    def test_notification_is_accepted(self, client, server):
        (_, token), _ = server.issue_direct("alice", "mcp-remote token")
        resp = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "method": "notifications/initialized"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 202

    def test_custom_handler(self, settings, server):
        from fastapi.responses import JSONResponse

        async def handler(request, token):
            return JSONResponse({"user": token.user_id})

        client = TestClient(create_app(settings=settings, server=server, mcp_handler=handler))
        (_, token), _ = server.issue_direct("bob", "n8n token")
        resp = client.get("/mcp", headers={"Authorization": f"Bearer {token}"})
        assert resp.json() == {"user": "bob"}
