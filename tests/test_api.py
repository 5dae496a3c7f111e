"""Tests for the review API."""

import asyncio
import pytest
from fastapi.testclient import TestClient

from kaspa_curator.api import app, get_db, get_pipeline
from kaspa_curator.config import settings
from kaspa_curator.services.database import Database
from kaspa_curator.tools.calibration import ConversationMemoryMode
from kaspa_curator.tools.evaluator import TweetJudge
from kaspa_curator.workflows.pipeline import Pipeline
from helpers import RecordingSleep, StubOracle

APPROVE = "Approved.\nQT: kip-9 storage mass\nPercentile: 64"
REJECT = "Rejected: price talk."


@pytest.fixture
def store(db_path):
    database = Database(db_path)
    asyncio.run(database.init())
    asyncio.run(database.upsert_decision("1", "approved tweet", "https://x.com/alice/status/1", APPROVE, True, 64))
    asyncio.run(database.upsert_decision("2", "rejected tweet", "https://x.com/bob/status/2", REJECT, False, 0))
    asyncio.run(database.upsert_raw("3", "pending tweet", "https://x.com/carol/status/3", "carol"))
    return database


@pytest.fixture
def oracle():
    return StubOracle()


@pytest.fixture
def client(store, oracle):
    pipeline = Pipeline(
        store,
        TweetJudge(oracle, sleep=RecordingSleep()),
        memory_mode=ConversationMemoryMode.OFF,
        quick_filter_enabled=False,
        call_delay=0,
    )
    app.dependency_overrides[get_db] = lambda: store
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestListing:

    def test_status(self, client):
        assert client.get("/api/status").json()["status"] == "ok"

    def test_list_all(self, client):
        body = client.get("/api/tweets").json()
        assert body["total"] == 3
        assert body["hasNextPage"] is False
        assert {t["id"] for t in body["tweets"]} == {"1", "2", "3"}

    def test_filter_and_page(self, client):
        body = client.get("/api/tweets", params={"hasModelDecision": "false"}).json()
        assert [t["id"] for t in body["tweets"]] == ["3"]

        body = client.get("/api/tweets", params={"pageSize": 1, "page": 2, "sort": "createdAt", "order": "asc"}).json()
        assert body["pageSize"] == 1
        assert body["hasNextPage"] is True
        assert len(body["tweets"]) == 1

    def test_legacy_boolean_approved_filter(self, client):
        body = client.get("/api/tweets", params={"approved": "false"}).json()
        assert [t["id"] for t in body["tweets"]] == ["2"]

    @pytest.mark.parametrize("params", [
        {"approved": "maybe"},
        {"sort": "likes"},
        {"hasGoldExample": "perhaps"},
        {"page": "two"},
    ])
    def test_invalid_params_are_400(self, client, params):
        assert client.get("/api/tweets", params=params).status_code == 400

    def test_public_approved_listing(self, client):
        body = client.get("/api/approved", params={"approved": "REJECTED"}).json()
        assert [t["id"] for t in body["tweets"]] == ["1"]

    def test_get_one(self, client):
        assert client.get("/api/tweets/1").json()["score"] == 64
        assert client.get("/api/tweets/missing").status_code == 404


class TestReview:

    def test_human_decision(self, client, store):
        resp = client.post("/api/tweets/1/human-decision", json={"decision": "REJECTED"})
        assert resp.status_code == 200
        assert resp.json()["human_decision"] == "REJECTED"

        resp = client.post("/api/tweets/1/human-decision", json={"decision": None})
        assert resp.json()["human_decision"] is None

    def test_invalid_decision(self, client):
        resp = client.post("/api/tweets/1/human-decision", json={"decision": "MAYBE"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid decision. Use APPROVED or REJECTED."

    def test_decision_on_missing_post(self, client):
        resp = client.post("/api/tweets/missing/human-decision", json={"decision": "APPROVED"})
        assert resp.status_code == 404

    def test_bad_gold_example_needs_correction(self, client):
        assert client.post("/api/tweets/2/gold-example", json={"type": "BAD"}).status_code == 400
        resp = client.post("/api/tweets/2/gold-example", json={"type": "BAD", "correction": "  fine actually  "})
        assert resp.status_code == 200
        assert resp.json()["gold_example_correction"] == "fine actually"

    def test_good_gold_example_drops_correction(self, client):
        resp = client.post("/api/tweets/1/gold-example", json={"type": "GOOD", "correction": "x"})
        assert resp.json()["gold_example_type"] == "GOOD"
        assert resp.json()["gold_example_correction"] is None

        examples = client.get("/api/gold-examples", params={"type": "GOOD"}).json()["examples"]
        assert [e["id"] for e in examples] == ["1"]
        assert client.get("/api/gold-examples", params={"type": "MEH"}).status_code == 400

    def test_author_frequency(self, client):
        body = client.get("/api/authors/ALICE/frequency").json()
        assert body["postsLast7Days"] == 0
        assert body["frequencyState"] == "fresh"


class TestReevaluate:

    def test_approved_rescored(self, client, oracle):
        oracle.replies = ["Approved.\nQT: z\nPercentile: 88"]
        resp = client.post("/api/tweets/1/reevaluate", json={})
        assert resp.status_code == 200
        assert resp.json()["score"] == 88

    def test_rejected_post_conflicts(self, client):
        assert client.post("/api/tweets/2/reevaluate", json={}).status_code == 409

    def test_approved_turning_rejected_conflicts(self, client, oracle):
        oracle.replies = [REJECT]
        assert client.post("/api/tweets/1/reevaluate", json={}).status_code == 409
        assert client.get("/api/tweets/1").json()["model_approved"] is True

    def test_malformed_reply_is_502(self, client, oracle):
        oracle.replies = ["Maybe?"]
        assert client.post("/api/tweets/1/reevaluate", json={}).status_code == 502

    def test_missing_post(self, client):
        assert client.post("/api/tweets/missing/reevaluate", json={}).status_code == 404


class TestAdminPassword:

    @pytest.fixture(autouse=True)
    def require_password(self, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_PASSWORD", "hunter2")

    def test_admin_routes_need_password(self, client):
        assert client.get("/api/tweets").status_code == 401
        assert client.get("/api/tweets", params={"password": "wrong"}).status_code == 401
        assert client.get("/api/tweets", params={"password": "hunter2"}).status_code == 200

    def test_review_writes_need_password(self, client):
        resp = client.post("/api/tweets/1/human-decision", json={"decision": "APPROVED"})
        assert resp.status_code == 401
        resp = client.post("/api/tweets/1/human-decision", json={"decision": "APPROVED", "password": "hunter2"})
        assert resp.status_code == 200

    def test_public_routes_stay_open(self, client):
        assert client.get("/api/approved").status_code == 200
        assert client.get("/api/authors/alice/frequency").status_code == 200
