"""Tests for the FastAPI REST and WebSocket endpoints."""

from __future__ import annotations

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from pricehunt.api.app import create_app
from pricehunt.config.settings import PriceHuntConfig, StorageConfig
from pricehunt.health.circuit import CircuitState
from pricehunt.orchestrator.engine import SelfHealingOrchestrator
from pricehunt.orchestrator.factory import build_core
from pricehunt.retrieval.protocols import ApiSuccess

from tests.test_orchestrator.fakes import (
    FakeEscalation,
    FakeNativeApi,
    FakeRenderer,
    FakeStaticFetcher,
    make_candidate,
    make_source,
)


@pytest.fixture(autouse=True)
def no_auth(monkeypatch):
    monkeypatch.delenv("PRICEHUNT_API_TOKEN", raising=False)
    monkeypatch.delenv("VERTEX_PROJECT_ID", raising=False)


@pytest.fixture
def core(tmp_path):
    config = PriceHuntConfig(
        default_locale="560001", storage=StorageConfig(data_dir=tmp_path, sources_file=None)
    )
    core = build_core(config, persistent=False)
    core.sources = [make_source("a"), make_source("b")]
    native = FakeNativeApi({"a": ApiSuccess([make_candidate("Amul Taaza Toned Milk 500 ml")])})
    core.orchestrator = SelfHealingOrchestrator(
        health=core.health,
        extractor=core.extractor,
        native_api=native,
        static_fetcher=FakeStaticFetcher(),
        renderer=FakeRenderer(),
        escalation=FakeEscalation(),
        cache=core.cache,
        config=config,
    )
    return core


@pytest.fixture
def client(core):
    return TestClient(create_app(core=core))


class TestHealthCheck:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "pricehunt", "version": "1.0.0"}

    def test_lifespan_without_vertex(self, core):
        with TestClient(create_app(core=core)) as client:
            assert client.get("/health").status_code == 200
        assert core.escalation.is_available is False


class TestSources:
    def test_list_sources(self, client, core):
        core.health.record_outcome("a", True, 3)
        response = client.get("/api/v1/sources")
        assert response.status_code == 200
        data = {s["id"]: s for s in response.json()}
        assert set(data) == {"a", "b"}
        assert data["a"]["health"]["circuit_state"] == "CLOSED"
        assert data["b"]["health"] is None
        assert data["a"]["has_native_api"] is False

    def test_disabled_and_reset(self, client, core):
        for _ in range(3):
            core.health.record_outcome("a", False, 0)
        assert client.get("/api/v1/sources/disabled").json() == {"disabled": ["a"]}

        response = client.post("/api/v1/sources/a/reset")
        assert response.status_code == 200
        assert response.json() == {"source_id": "a", "status": "reset"}
        assert core.health.current_state("a") == CircuitState.CLOSED
        assert client.get("/api/v1/sources/disabled").json() == {"disabled": []}

    def test_reset_unknown_source(self, client):
        assert client.post("/api/v1/sources/nope/reset").status_code == 404


class TestSearch:
    def test_search_collects_events(self, client):
        response = client.post("/api/v1/search", json={"query": "milk"})
        assert response.status_code == 200
        body = response.json()
        kinds = [e["kind"] for e in body["events"]]
        assert kinds[0] == "started"
        assert kinds[-1] == "completed"
        assert all(e["run_id"] == body["run_id"] for e in body["events"])
        results = {e["source"]: e for e in body["events"] if e["kind"] == "result"}
        assert results["a"]["items"][0]["name"] == "Amul Taaza Toned Milk 500 ml"
        failed = [e for e in body["events"] if e["kind"] == "failed"]
        assert [e["source"] for e in failed] == ["b"]

    def test_search_selected_sources(self, client):
        body = client.post("/api/v1/search", json={"query": "milk", "sources": ["a"]}).json()
        assert body["events"][0]["source_count"] == 1

    def test_unknown_source_rejected(self, client):
        response = client.post("/api/v1/search", json={"query": "milk", "sources": ["zzz"]})
        assert response.status_code == 400

    @pytest.mark.parametrize("query", ["", "   ", "x" * 201])
    def test_invalid_query_rejected(self, client, query):
        assert client.post("/api/v1/search", json={"query": query}).status_code == 422


class TestAuth:
    def test_token_required_when_configured(self, client, monkeypatch):
        monkeypatch.setenv("PRICEHUNT_API_TOKEN", "secret-token")
        assert client.get("/api/v1/sources").status_code == 401
        assert client.get("/api/v1/sources", headers={"Authorization": "Bearer wrong"}).status_code == 401
        response = client.get("/api/v1/sources", headers={"Authorization": "Bearer secret-token"})
        assert response.status_code == 200

    def test_health_is_public(self, client, monkeypatch):
        monkeypatch.setenv("PRICEHUNT_API_TOKEN", "secret-token")
        assert client.get("/health").status_code == 200


class TestWebSocket:
    def test_streams_events(self, client):
        with client.websocket_connect("/api/v1/search/ws") as ws:
            ws.send_json({"query": "milk"})
            events = []
            while True:
                event = ws.receive_json()
                events.append(event)
                if event["kind"] == "completed":
                    break
        assert events[0]["kind"] == "started"
        assert [e["sequence"] for e in events] == list(range(1, len(events) + 1))
        assert events[-1]["total_count"] == 2

    def test_rejects_bad_token(self, client, monkeypatch):
        monkeypatch.setenv("PRICEHUNT_API_TOKEN", "secret-token")
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect("/api/v1/search/ws?token=wrong") as ws:
                ws.receive_json()
        assert excinfo.value.code == 4001

    def test_accepts_query_token(self, client, monkeypatch):
        monkeypatch.setenv("PRICEHUNT_API_TOKEN", "secret-token")
        with client.websocket_connect("/api/v1/search/ws?token=secret-token") as ws:
            ws.send_json({"query": "milk", "sources": ["a"]})
            assert ws.receive_json()["kind"] == "started"

    def test_invalid_request_closes(self, client):
        with client.websocket_connect("/api/v1/search/ws") as ws:
            ws.send_json({"query": "   "})
            with pytest.raises(WebSocketDisconnect) as excinfo:
                ws.receive_json()
        assert excinfo.value.code == 4400
