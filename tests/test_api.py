import pytest
from fastapi.testclient import TestClient

from adaptation.engine import AdaptationDecisionEngine
from adaptation.errors import PersistenceError
from adaptation.simulation import SimulationRunner
from main import app
from services.adaptation_store import InMemoryAdaptationStore
from services.engine_factory import build_engine, get_engine

OUTCOME = {"adherence_change": 0.6, "motivation_change": 0.6, "performance_change": 0.6}


class ReadOnlyStore(InMemoryAdaptationStore):
    def append_record(self, record):
        raise PersistenceError("read-only replica")


@pytest.fixture
def api_engine(store, clock):
    return AdaptationDecisionEngine(store, clock=clock, simulation=SimulationRunner(iterations=5))


@pytest.fixture
def client(api_engine):
    app.dependency_overrides[get_engine] = lambda: api_engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def _snapshot_json(snapshot):
    return snapshot.model_dump(mode="json")


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").json() == {"status": "ok"}


def test_analyze(client, critical_snapshot):
    res = client.post("/api/adaptation/analyze", json=_snapshot_json(critical_snapshot))

    assert res.status_code == 200
    body = res.json()
    assert [r["priority"] for r in body] == ["critical", "medium"]
    assert body[0]["type"] == "recovery"


def test_analyze_accepts_minimal_snapshot(client):
    res = client.post("/api/adaptation/analyze", json={"user_id": "new-user"})

    assert res.status_code == 200
    assert res.json() == []


def test_invalid_snapshot_is_rejected(client):
    res = client.post(
        "/api/adaptation/analyze",
        json={"user_id": "u1", "lifestyle": {"sleep_quality": 42}},
    )

    assert res.status_code == 422
    assert res.json()["detail"][0]["loc"][-1] == "sleep_quality"


def test_explain(client, critical_snapshot):
    res = client.post("/api/adaptation/explain?seed=3", json=_snapshot_json(critical_snapshot))

    assert res.status_code == 200
    body = res.json()
    assert body["simulation"]["seed"] == 3
    assert body["explanation"]["primary_reason"].startswith("Your recovery index (12%)")
    assert body["narrative"]


def test_apply_then_outcome(client, critical_snapshot):
    analyze = client.post("/api/adaptation/analyze", json=_snapshot_json(critical_snapshot)).json()

    applied = client.post(
        "/api/adaptation/apply",
        json={"snapshot": _snapshot_json(critical_snapshot), "recommendation": analyze[0]},
    )
    assert applied.status_code == 200
    adaptation_id = applied.json()["id"]

    payload = {"user_id": "u1", "adaptation_id": adaptation_id, "outcome": OUTCOME}
    first = client.post("/api/adaptation/outcome", json=payload).json()
    second = client.post("/api/adaptation/outcome", json=payload).json()

    assert first["status"] == "recorded"
    assert first["effectiveness"] == pytest.approx(0.6)
    assert second == {"status": "ignored"}

    insights = client.get("/api/adaptation/insights", params={"user_id": "u1"}).json()
    assert [h["id"] for h in insights["recent_history"]] == [adaptation_id]


def test_outcome_for_unknown_adaptation_is_ignored(client):
    payload = {"user_id": "u1", "adaptation_id": "nope", "outcome": OUTCOME}
    assert client.post("/api/adaptation/outcome", json=payload).json() == {"status": "ignored"}


def test_storage_failure_on_apply_is_503(clock, critical_snapshot, make_recommendation):
    engine = AdaptationDecisionEngine(ReadOnlyStore(), clock=clock)
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        res = TestClient(app).post(
            "/api/adaptation/apply",
            json={
                "snapshot": _snapshot_json(critical_snapshot),
                "recommendation": make_recommendation().model_dump(mode="json"),
            },
        )
    finally:
        app.dependency_overrides.clear()

    assert res.status_code == 503


def test_deploy_and_retire_rule_set(client, api_engine):
    for i in range(4):
        api_engine.learning.get_profile(f"user{i}")

    deployed = client.post(
        "/api/admin/rule-sets",
        json={
            "version": {"version_id": "v2", "version_name": "v2", "rules": ["sleep", "fatigue"]},
            "test_group_percent": 50,
            "seed": 0,
        },
    )
    assert deployed.status_code == 200
    assert len(deployed.json()["assigned_users"]) == 2

    retired = client.post("/api/admin/rule-sets/v2/retire")
    assert retired.status_code == 200
    assert retired.json()["retired_at"] is not None


def test_retire_unknown_rule_set_is_404(client):
    assert client.post("/api/admin/rule-sets/v9/retire").status_code == 404


def test_retire_baseline_is_400(client):
    assert client.post("/api/admin/rule-sets/v1.0.0/retire").status_code == 400


def test_build_engine_without_optional_parts():
    engine = build_engine(InMemoryAdaptationStore(), with_llm=False, refiner_path=None)

    assert engine.refiner is None
    assert engine.text_generator is None
    assert engine.simulation is not None
