import time

import pytest
from conftest import FakeEndpoint, RecordingNotifier
from fastapi.testclient import TestClient

import server
from ideagen.backend import Backend
from ideagen.errors import GenerationInProgress

ARTIFACT = {"analysis": {"tam": "2B", "segments": ["dog owners"]}}


@pytest.fixture
def backend(session_factory):
    return Backend(
        session_factory,
        endpoint=FakeEndpoint(default=ARTIFACT),
        notifier_factory=lambda user_id, feature: RecordingNotifier(),
        retry_delay=0,
    )


@pytest.fixture
def client(backend):
    server.app.dependency_overrides[server.get_backend] = lambda: backend
    with TestClient(server.app) as c:
        yield c
    server.app.dependency_overrides.clear()


def headers(user_id="alice"):
    return {"X-User-Id": user_id}


@pytest.fixture
def account(client):
    resp = client.post("/accounts", json={"plan": "entrepreneur"}, headers=headers())
    assert resp.status_code == 200
    return resp.json()


@pytest.fixture
def idea_id(client, account):
    resp = client.post(
        "/ideas",
        json={"title": "Pet-sitting app", "description": "Sitters on demand"},
        headers=headers(),
    )
    assert resp.status_code == 200
    return resp.json()["id"]


def test_open_account_grants_plan_credits(client, account):
    assert account == {"user_id": "alice", "plan": "entrepreneur", "balance": 50}

    # opening twice keeps the existing account
    again = client.post("/accounts", json={"plan": "business"}, headers=headers()).json()
    assert again["balance"] == 50
    assert again["plan"] == "entrepreneur"


def test_unknown_plan_rejected(client):
    resp = client.post("/accounts", json={"plan": "platinum"}, headers=headers())
    assert resp.status_code == 422


def test_missing_or_unknown_user_is_401(client):
    assert client.get("/credits").status_code == 401
    assert client.get("/credits", headers=headers("ghost")).status_code == 401
    assert client.get("/generations/market-analysis", headers=headers("ghost")).status_code == 401


def test_features_are_priced_for_the_caller_plan(client):
    client.post("/accounts", json={"plan": "business"}, headers=headers("bob"))

    features = {f["name"]: f for f in client.get("/features", headers=headers("bob")).json()}
    assert features["pdf-export"]["cost"] == 0

    anonymous = {f["name"]: f for f in client.get("/features").json()}
    assert anonymous["pdf-export"]["cost"] == 1


def test_generate_and_read_back(client, idea_id):
    resp = client.post(
        "/generations/market-analysis",
        json={"idea_id": idea_id, "params": {"region": "EU"}},
        headers=headers(),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["state"] == "success"
    assert body["result"]["artifact"] == ARTIFACT["analysis"]
    assert body["idea"]["id"] == idea_id
    assert body["balance"] == 46
    assert body["progress"]["percent"] == 100.0

    assert client.get("/credits", headers=headers()).json()["balance"] == 46

    debits = [e for e in client.get("/credits/transactions", headers=headers()).json() if e["kind"] == "debit"]
    assert len(debits) == 1
    assert debits[0]["feature"] == "market-analysis"
    assert debits[0]["item_id"] == idea_id

    state = client.get("/generations/market-analysis", headers=headers()).json()
    assert state["state"] == "success"

    content = client.get("/content/market-analysis", headers=headers()).json()
    assert content["content_data"] == ARTIFACT["analysis"]
    assert content["title"] == "Market Analysis - Pet-sitting app"


def test_insufficient_credits_is_a_failed_generation(client, idea_id):
    resp = client.post("/generations/business-plan", json={"idea_id": idea_id}, headers=headers())
    assert resp.status_code == 200
    for _ in range(4):
        client.post("/generations/business-plan", json={"idea_id": idea_id}, headers=headers())

    body = client.get("/generations/business-plan", headers=headers()).json()
    assert body["state"] == "error"
    assert body["result"]["error_message"].startswith("Insufficient credits: Business Plan requires 12 credits")
    assert client.get("/credits", headers=headers()).json()["balance"] == 2


def test_unknown_feature_is_404(client, account):
    resp = client.post("/generations/time-machine", json={"custom_text": "x", "use_custom": True}, headers=headers())
    assert resp.status_code == 404
    assert client.get("/generations/time-machine", headers=headers()).status_code == 404


def test_missing_idea_is_422(client, account):
    assert client.post("/generations/market-analysis", json={}, headers=headers()).status_code == 422
    assert client.post(
        "/generations/market-analysis",
        json={"use_custom": True, "custom_text": "  "},
        headers=headers(),
    ).status_code == 422
    assert client.post(
        "/generations/market-analysis",
        json={"idea_id": "does-not-exist"},
        headers=headers(),
    ).status_code == 422
    assert client.get("/credits", headers=headers()).json()["balance"] == 50


def test_view_reset_and_detach(client, account):
    client.post(
        "/generations/market-analysis",
        json={"use_custom": True, "custom_text": "Drone delivery for islands"},
        headers=headers(),
    )

    view = client.patch(
        "/generations/market-analysis/view",
        json={"active_tab": "segments", "extra": {"chart": "bar"}},
        headers=headers(),
    ).json()["view"]
    assert view["active_tab"] == "segments"
    assert view["extra"] == {"chart": "bar"}

    assert client.post("/generations/market-analysis/detach", headers=headers()).status_code == 200

    first = client.post("/generations/market-analysis/reset", headers=headers()).json()
    assert first["reset"] is True
    assert first["state"] == "idle"
    assert first["result"] is None

    second = client.post("/generations/market-analysis/reset", headers=headers()).json()
    assert second["reset"] is False


def test_in_progress_is_409(client, backend, account, monkeypatch):
    def busy(user_id, feature):
        raise GenerationInProgress("Cannot reset while a generation is running")

    monkeypatch.setattr(backend, "reset", busy)

    assert client.post("/generations/market-analysis/reset", headers=headers()).status_code == 409


def test_background_generation(client, backend, account):
    resp = client.post(
        "/generations/market-analysis",
        json={"use_custom": True, "custom_text": "Drone delivery for islands", "wait": False},
        headers=headers(),
    )
    assert resp.status_code == 200

    # the in-memory database is a single shared connection, so wait without querying it
    orch = backend._orchestrators[("alice", "market-analysis")]
    for _ in range(250):
        if orch.state.value == "success":
            break
        time.sleep(0.02)

    body = client.get("/generations/market-analysis", headers=headers()).json()
    assert body["state"] == "success"
    assert body["result"]["artifact"] == ARTIFACT["analysis"]


def test_no_saved_content_is_404(client, account):
    assert client.get("/content/pitch-deck", headers=headers()).status_code == 404


def test_plan_gated_feature_is_403(client):
    client.post("/accounts", json={"plan": "free"}, headers=headers("dave"))
    body = {"use_custom": True, "custom_text": "Drone delivery for islands"}

    resp = client.post("/generations/pdf-export", json=body, headers=headers("dave"))
    assert resp.status_code == 403
    assert "entrepreneur" in resp.json()["detail"]

    resp = client.post("/generations/pdf-export", json={**body, "wait": False}, headers=headers("dave"))
    assert resp.status_code == 403

    assert client.get("/credits", headers=headers("dave")).json()["balance"] == 3
    features = {f["name"]: f for f in client.get("/features", headers=headers("dave")).json()}
    assert features["pdf-export"]["available"] is False
    assert features["market-analysis"]["available"] is True


def test_first_basic_analysis_is_free(client, account):
    body = {"use_custom": True, "custom_text": "Drone delivery for islands"}
    features = {f["name"]: f for f in client.get("/features", headers=headers()).json()}
    assert features["basic-analysis"]["cost"] == 0

    assert client.post("/generations/basic-analysis", json=body, headers=headers()).json()["state"] == "success"
    assert client.get("/credits", headers=headers()).json()["balance"] == 50

    assert client.post("/generations/basic-analysis", json=body, headers=headers()).json()["state"] == "success"
    credits = client.get("/credits", headers=headers()).json()
    assert credits["balance"] == 49
    assert credits["monthly_credits"] == 50

    features = {f["name"]: f for f in client.get("/features", headers=headers()).json()}
    assert features["basic-analysis"]["cost"] == 1


def test_expired_stores_are_swept_while_serving(session_factory, monkeypatch):
    monkeypatch.setattr(server.settings, "STORE_SWEEP_INTERVAL", 0.01)
    backend = Backend(session_factory, endpoint=FakeEndpoint(default=ARTIFACT), store_ttl=0, retry_delay=0)
    backend.ledger.grant("carol", 5, "test credits")
    server.app.dependency_overrides[server.get_backend] = lambda: backend
    try:
        with TestClient(server.app) as c:
            assert c.get("/generations/market-analysis", headers=headers("carol")).status_code == 200

            # no explicit sweep() call: the lifespan task does it
            for _ in range(250):
                if not backend._orchestrators:
                    break
                time.sleep(0.02)

            assert backend.stores.peek("carol", "market-analysis") is None
            assert backend._orchestrators == {}
    finally:
        server.app.dependency_overrides.clear()
