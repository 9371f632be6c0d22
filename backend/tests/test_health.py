"""Tests for /health and / endpoints."""

from unittest.mock import patch

from filedrive.exceptions import BlobStoreIOError


class TestHealth:

    def test_health_returns_200(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["db"] == "ok"
        assert data["blob_store"] == "ok"
        assert "uptime_seconds" in data
        assert "version" in data
        assert data["node_count"] == 0

    def test_health_counts_nodes(self, client, owner_headers):
        client.post("/api/folders", json={"name": "Docs"}, headers=owner_headers)
        assert client.get("/health").json()["node_count"] == 1

    def test_health_needs_no_identity(self, client):
        assert client.get("/health").status_code == 200

    def test_root_returns_api_info(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["name"] == "filedrive API"


class TestResponseHeaders:

    def test_response_includes_middleware_headers(self, client):
        resp = client.get("/health")
        assert "x-request-id" in resp.headers
        assert "x-response-time" in resp.headers

    def test_request_id_is_propagated(self, client):
        resp = client.get("/", headers={"X-Request-ID": "req-123"})
        assert resp.headers["x-request-id"] == "req-123"

    def test_error_responses_carry_request_id(self, client):
        resp = client.get("/api/nodes")
        assert resp.status_code == 401
        assert "x-request-id" in resp.headers


class TestBlobStoreHealth:

    def test_unreachable_blob_store_reports_degraded(self, client):
        store = client.app.state.blob_store
        with patch.object(store, "exists", side_effect=BlobStoreIOError("unreachable")):
            data = client.get("/health").json()
        assert data["status"] == "degraded"
        assert data["blob_store"] == "error"
        assert data["db"] == "ok"
