"""Tests for the HTTP API."""
import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient  # noqa: E402

from sgm import server  # noqa: E402
from sgm.settings import Settings  # noqa: E402

pytestmark = pytest.mark.integration


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(server, "STATE", server.make_state(Settings(store_backend="memory")))
    return TestClient(server.app)


@pytest.fixture
def events_json(cross_system_events):
    return [e.to_dict() for e in cross_system_events]


class TestEndpoints:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["ok"] is True
        assert r.json()["store_backend"] == "memory"

    def test_graph(self, client, events_json):
        r = client.post("/graph", json={"events": events_json})
        assert r.status_code == 200
        assert r.json()["stats"]["nodeCount"] == 12

    def test_mine_then_compile(self, client, events_json):
        mined = client.post("/mine", json={"events": events_json}).json()
        assert len(mined["patterns"]) == 1
        assert mined["patterns"][0]["frequency"] == 4

        r = client.post("/compile", json={"patterns": mined["patterns"]})
        assert r.status_code == 200
        (skill,) = r.json()["skills"]
        assert [n["type"] for n in skill["nodes"]] == ["trigger", "action", "wait", "action"]

    def test_discover_and_list_versions(self, client, events_json):
        r = client.post("/discover/ws_1", json={"events": events_json})
        assert r.status_code == 200
        body = r.json()
        assert body["totalEvents"] == 12
        assert len(body["skills"]) == 1
        assert body["progress"][-1]["stage"] == "complete"

        versions = client.get("/skills/ws_1").json()["versions"]
        assert [v["version"] for v in versions] == [1]
        assert versions[0]["workspaceId"] == "ws_1"


class TestErrors:
    """Bad input comes back as 422 with the error type."""

    def test_bad_config(self, client, events_json):
        r = client.post("/mine", json={"events": events_json, "config": {"minConfidence": 7}})
        assert r.status_code == 422
        assert r.json()["error"] == "ConfigurationError"

    def test_malformed_event(self, client):
        r = client.post("/graph", json={"events": [{"source": "github"}]})
        assert r.status_code == 422
        assert r.json()["error"] == "UpstreamDataError"

    def test_events_must_be_a_list(self, client):
        r = client.post("/graph", json={"events": "nope"})
        assert r.status_code == 422

    @pytest.mark.parametrize("value", ["high", None, [0.5]])
    def test_non_numeric_min_confidence(self, client, value):
        r = client.post("/compile", json={"patterns": [], "minConfidence": value})
        assert r.status_code == 422
        assert r.json()["error"] == "ConfigurationError"

    def test_non_numeric_min_confidence_on_discover(self, client, events_json):
        r = client.post("/discover/ws_1", json={"events": events_json, "minConfidence": "high"})
        assert r.status_code == 422
        assert r.json()["error"] == "ConfigurationError"

    def test_malformed_pattern(self, client, events_json):
        (pattern,) = client.post("/mine", json={"events": events_json}).json()["patterns"]
        del pattern["anchorEvent"]
        r = client.post("/compile", json={"patterns": [pattern]})
        assert r.status_code == 422
        assert r.json()["error"] == "UpstreamDataError"

    def test_patterns_must_be_a_list(self, client):
        r = client.post("/compile", json={"patterns": {"id": "p"}})
        assert r.status_code == 422
