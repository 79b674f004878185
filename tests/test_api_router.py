# FILE: tests/test_api_router.py
"""
Tests for converter/api/router.py and converter/audit/router.py
Admission rejections, SSE streaming and the localhost-only history endpoints.
"""

import sys
from pathlib import Path
from types import SimpleNamespace

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fakes import (
    SOLIDITY_SOURCE,
    MarkerValidationOracle,
    RecordingAuditSink,
    ScriptedCompletionOracle,
)

from converter.api.admission import ConcurrencyLimiter, RateLimiter, get_limiter, get_rate_limiter
from converter.api.router import client_ip, router
from converter.audit import service
from converter.audit.router import require_local_client, router as history_router
from converter.client.sse import SSEParserState, parse_sse_chunk
from converter.db import Base, get_db


@pytest.fixture
def limiter():
    return ConcurrencyLimiter(max_active=2, retry_after=5)


@pytest.fixture
def rate_limiter():
    return RateLimiter(max_requests=20, window_seconds=300)


@pytest.fixture
def oracle():
    return ScriptedCompletionOracle()


@pytest.fixture
def app(limiter, rate_limiter, oracle):
    """Create a test FastAPI application with fake collaborators."""
    app = FastAPI()
    app.include_router(router)
    app.state.completion_oracle = oracle
    app.state.validation_oracle = MarkerValidationOracle()
    app.state.audit_sink = RecordingAuditSink()
    app.state.knowledge_base = ""
    app.dependency_overrides[get_limiter] = lambda: limiter
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def _events(body):
    return parse_sse_chunk(body, SSEParserState())


class TestConvertStream:
    """Test cases for POST /api/convert-stream."""

    def test_streams_events_to_done(self, client, limiter, app):
        """Test a valid source streams every phase and releases its slot."""
        response = client.post("/api/convert-stream", json={"contract": SOLIDITY_SOURCE})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        evts = _events(response.text)
        assert evts[0].type == "phase1_start"
        assert evts[-1].type == "done"
        assert [e.type for e in evts].count("done") == 1
        assert evts[-1].data["contracts"][0]["name"] == "Ballot"
        assert limiter.active == 0

        started = app.state.audit_sink.named("session_started")
        assert started[0][2]["ip_address"] == "testclient"

    def test_error_stream_ends_with_single_error(self, client, oracle):
        """Test a phase failure closes the stream with one error event."""
        oracle.queues["phase1"].clear()
        oracle.queues["phase1"].append({"domain": "", "entities": [], "transitions": []})

        evts = _events(client.post("/api/convert-stream", json={"contract": SOLIDITY_SOURCE}).text)

        assert [e.type for e in evts] == ["phase1_start", "error"]
        assert evts[-1].data["phase"] == 1

    @pytest.mark.parametrize(
        "payload,status,error",
        [
            ({"contract": 42}, 400, "Invalid input"),
            ({"contract": "   "}, 400, "Invalid input"),
            ({"contract": "short"}, 400, "Invalid input"),
            ({}, 400, "Invalid input"),
            ({"contract": "x" * 50001}, 413, "Contract too large"),
        ],
    )
    def test_rejected_input(self, client, oracle, payload, status, error):
        """Test invalid sources are rejected before any oracle call."""
        response = client.post("/api/convert-stream", json=payload)

        assert response.status_code == status
        assert response.json()["error"] == error
        assert oracle.calls == []

    def test_non_json_body(self, client):
        response = client.post(
            "/api/convert-stream", content=b"not json", headers={"content-type": "application/json"}
        )
        assert response.status_code == 400

    def test_busy_at_ceiling(self, client, limiter, oracle):
        """Test a request at the concurrency ceiling gets 503 with Retry-After."""
        held = [limiter.acquire(), limiter.acquire()]

        response = client.post("/api/convert-stream", json={"contract": SOLIDITY_SOURCE})

        assert response.status_code == 503
        assert response.headers["retry-after"] == "5"
        body = response.json()
        assert body["error"] == "Server busy"
        assert body["retryAfter"] == 5
        assert oracle.calls == []
        for lease in held:
            lease.release()

    def test_rate_limited(self, app, oracle):
        """Test the request past the window budget gets 429."""
        strict = RateLimiter(max_requests=1, window_seconds=300)
        app.dependency_overrides[get_rate_limiter] = lambda: strict
        client = TestClient(app)

        client.post("/api/convert-stream", json={"contract": SOLIDITY_SOURCE})
        response = client.post("/api/convert-stream", json={"contract": SOLIDITY_SOURCE})

        assert response.status_code == 429
        assert response.json()["retryAfter"] >= 1
        assert "retry-after" in response.headers

    def test_forwarded_header_does_not_change_rate_key(self, app):
        """Test a client rotating X-Forwarded-For still hits its own window."""
        strict = RateLimiter(max_requests=2, window_seconds=300)
        app.dependency_overrides[get_rate_limiter] = lambda: strict
        client = TestClient(app)

        statuses = [
            client.post(
                "/api/convert-stream",
                json={"contract": SOLIDITY_SOURCE},
                headers={"X-Forwarded-For": f"10.0.0.{i}"},
            ).status_code
            for i in range(5)
        ]

        assert statuses == [200, 200, 429, 429, 429]
        assert list(strict._hits) == ["testclient"]


class TestClientIp:
    """Test rate-limit key selection."""

    def _request(self, peer, headers=None):
        return SimpleNamespace(client=SimpleNamespace(host=peer), headers=headers or {})

    def test_untrusted_peer_ignores_headers(self):
        request = self._request("203.0.113.9", {"x-forwarded-for": "1.1.1.1", "x-real-ip": "2.2.2.2"})
        assert client_ip(request, trusted_proxies=[]) == "203.0.113.9"

    def test_trusted_proxy_forwards_client(self):
        """Test the rightmost hop that is not a trusted proxy is the client."""
        request = self._request("10.0.0.1", {"x-forwarded-for": "6.6.6.6, 198.51.100.7, 10.0.0.2"})
        assert client_ip(request, trusted_proxies=["10.0.0.1", "10.0.0.2"]) == "198.51.100.7"

    def test_trusted_proxy_real_ip(self):
        request = self._request("10.0.0.1", {"x-real-ip": " 198.51.100.7 "})
        assert client_ip(request, trusted_proxies=["10.0.0.1"]) == "198.51.100.7"

    def test_trusted_proxy_without_headers(self):
        assert client_ip(self._request("10.0.0.1"), trusted_proxies=["10.0.0.1"]) == "10.0.0.1"

    def test_no_client(self):
        assert client_ip(SimpleNamespace(client=None, headers={}), trusted_proxies=[]) == "unknown"


class TestMiscEndpoints:
    """Test health and client error reporting."""

    def test_health(self, client, limiter):
        lease = limiter.acquire()
        data = client.get("/health").json()
        lease.release()

        assert data == {"status": "ok", "service": "converter", "activeConversions": 1}

    def test_log_error(self, client):
        response = client.post("/api/log-error", json={"message": "render failed", "stack": "at x"})
        assert response.json() == {"logged": True}


class TestHistory:
    """Test the localhost-only history endpoints."""

    @pytest.fixture
    def history_client(self):
        engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
        Base.metadata.create_all(bind=engine)
        factory = sessionmaker(bind=engine)

        db = factory()
        service.record_conversion_start(db, "abc", SOLIDITY_SOURCE)
        service.record_conversion_end(db, "abc", "success", attempts=1, duration_ms=10)
        db.close()

        def override_db():
            session = factory()
            try:
                yield session
            finally:
                session.close()

        app = FastAPI()
        app.include_router(history_router)
        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[require_local_client] = lambda: None
        yield TestClient(app)
        engine.dispose()

    def test_list_and_detail(self, history_client):
        listing = history_client.get("/api/conversions").json()
        assert listing["total"] == 1
        assert listing["conversions"][0]["id"] == "abc"

        detail = history_client.get("/api/conversions/abc").json()
        assert detail["sourceCode"] == SOLIDITY_SOURCE
        assert detail["finalStatus"] == "success"

    def test_unknown_conversion(self, history_client):
        assert history_client.get("/api/conversions/nope").status_code == 404

    def test_stats(self, history_client):
        assert history_client.get("/api/stats").json()["totalConversions"] == 1

    def test_non_loopback_host_refused_by_default(self, history_client):
        """Test only loopback addresses are allowed without an override."""
        del history_client.app.dependency_overrides[require_local_client]

        assert history_client.get("/api/stats").status_code == 403

    def test_remote_client_forbidden(self):
        """Test non-local callers are refused."""
        request = SimpleNamespace(client=SimpleNamespace(host="203.0.113.9"))

        with pytest.raises(HTTPException) as exc_info:
            require_local_client(request)

        assert exc_info.value.status_code == 403
        require_local_client(SimpleNamespace(client=SimpleNamespace(host="127.0.0.1")))
