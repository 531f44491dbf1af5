"""
HTTP contract tests for the research API.

The app is built around a ResearchRuntime wired with in-memory fakes: no provider,
source or Redis calls are made. Processing runs in background tasks on the TestClient
event loop, so tests poll the query endpoint until it settles.
"""

import time
from datetime import date

import pytest
from fastapi.testclient import TestClient

from config.registry import ResearchRegistry
from conftest import DEFAULT_REFINEMENT, FakeModelClient, FakeSourceAdapter, make_items
from models.identifiers import ModelId, SourceId
from server.app import create_app
from server.dependencies import Principal, get_principal
from server.runtime import ResearchRuntime

pytestmark = pytest.mark.integration

RESEARCHER = {"X-API-Key": "res-key"}
OTHER_RESEARCHER = {"X-API-Key": "res2-key"}
MANAGER = {"X-API-Key": "mgr-key"}
ADMIN = {"X-API-Key": "adm-key"}

QUERY = {
    "text": "CAR-T cell exhaustion in solid tumors",
    "sources": ["openalex", "pubmed"],
    "models": ["claude", "gpt4"],
}


def build_runtime(config, store, cache, claude=None) -> ResearchRuntime:
    return ResearchRuntime.assemble(
        config,
        registry=ResearchRegistry.from_yaml(),
        store=store,
        cache=cache,
        adapters={
            SourceId.OPENALEX: FakeSourceAdapter(SourceId.OPENALEX, make_items("openalex", 3)),
            SourceId.PUBMED: FakeSourceAdapter(SourceId.PUBMED, make_items("pubmed", 2)),
        },
        model_clients={
            ModelId.CLAUDE: claude or FakeModelClient(provider_name="anthropic"),
            ModelId.GPT4: FakeModelClient(provider_name="openai"),
        },
    )


@pytest.fixture()
def runtime(test_config, store, cache):
    return build_runtime(test_config, store, cache)


@pytest.fixture()
def client(runtime):
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


def wait_for_query(client, query_id, headers, timeout_s=5.0) -> dict:
    deadline = time.monotonic() + timeout_s
    while True:
        body = client.get(f"/v1/queries/{query_id}", headers=headers).json()
        if body["query"]["status"] in ("completed", "failed") or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


class TestHealth:
    def test_health_needs_no_key(self, client):
        r = client.get("/health", headers={"X-Request-ID": "req-42"})

        assert r.status_code == 200
        assert r.json()["cache_backend"] == "memory"
        assert r.json()["cache_healthy"] is True
        assert r.headers["X-Request-ID"] == "req-42"


class TestAuthentication:
    def test_missing_key_is_rejected(self, client):
        r = client.post("/v1/queries", json=QUERY)

        assert r.status_code == 401
        assert r.json()["error"]["code"] == "unauthenticated"

    def test_unknown_key_is_rejected(self, client):
        r = client.get("/v1/queries", headers={"X-API-Key": "nope"})
        assert r.status_code == 401

    def test_unconfigured_keys_are_a_server_error(self, test_config, store, cache):
        test_config.API_KEYS = ""
        with TestClient(create_app(build_runtime(test_config, store, cache))) as c:
            r = c.get("/v1/queries", headers=RESEARCHER)

        assert r.status_code == 500
        assert r.json()["error"]["code"] == "internal_error"

    def test_principal_can_be_overridden(self, runtime):
        app = create_app(runtime)
        app.dependency_overrides[get_principal] = lambda: Principal(user_id="dana")

        with TestClient(app) as c:
            r = c.get("/v1/queries")

        assert r.status_code == 200
        assert r.json() == {"queries": [], "count": 0}


class TestQueries:
    def test_submit_then_poll_until_completed(self, client):
        r = client.post("/v1/queries", json=QUERY, headers=RESEARCHER)

        assert r.status_code == 202
        submitted = r.json()
        assert submitted["remaining_quota"] == 19

        body = wait_for_query(client, submitted["query_id"], RESEARCHER)
        assert body["query"]["status"] == "completed"
        assert body["query"]["user_id"] == "alice"
        assert body["query"]["refined_query"].startswith("CAR-T cell exhaustion mechanisms")
        assert body["response_count"] == len(body["responses"]) > 0
        assert {resp["model"] for resp in body["responses"]} <= {"claude", "gpt4"}
        counts = {sr["source"]: sr["item_count"] for sr in body["source_results"]}
        assert counts == {"openalex": 3, "pubmed": 2}

        history = client.get("/v1/queries", headers=RESEARCHER).json()
        assert [q["id"] for q in history["queries"]] == [submitted["query_id"]]

    def test_queries_are_private_to_their_owner(self, client):
        query_id = client.post("/v1/queries", json=QUERY, headers=RESEARCHER).json()["query_id"]

        r = client.get(f"/v1/queries/{query_id}", headers=OTHER_RESEARCHER)

        assert r.status_code == 404
        assert r.json()["error"]["code"] == "not_found"
        cost = client.get(f"/v1/queries/{query_id}/cost", headers=OTHER_RESEARCHER)
        assert cost.status_code == 404

    def test_cost_estimate(self, client):
        query_id = client.post("/v1/queries", json=QUERY, headers=RESEARCHER).json()["query_id"]

        r = client.get(f"/v1/queries/{query_id}/cost", headers=RESEARCHER)

        assert r.status_code == 200
        lines = r.json()["lines"]
        assert [line["service"] for line in lines] == ["openalex", "pubmed", "claude", "gpt4"]
        assert r.json()["total_cost"] > 0

    @pytest.mark.parametrize(
        "payload",
        [
            {**QUERY, "text": "   "},
            {**QUERY, "text": "x" * 2001},
            {**QUERY, "sources": ["scopus"]},
            {**QUERY, "models": ["gemini"]},
            {**QUERY, "sources": []},
            {"text": "missing lists"},
        ],
    )
    def test_invalid_submissions_are_400(self, client, payload):
        r = client.post("/v1/queries", json=payload, headers=RESEARCHER)

        assert r.status_code == 400
        assert r.json()["error"]["code"] == "validation_failed"

    def test_repeated_identifiers_do_not_count_against_limits(self, client):
        payload = {**QUERY, "sources": ["pubmed", "pubmed", "PubMed", "openalex"]}

        r = client.post("/v1/queries", json=payload, headers=RESEARCHER)

        assert r.status_code == 202
        body = wait_for_query(client, r.json()["query_id"], RESEARCHER)
        assert body["query"]["sources"] == ["pubmed", "openalex"]

    def test_rate_limit_returns_retry_after(self, test_config, store, cache):
        test_config.RATE_LIMIT_PER_HOUR = 1
        with TestClient(create_app(build_runtime(test_config, store, cache))) as c:
            first = c.post("/v1/queries", json=QUERY, headers=RESEARCHER)
            second = c.post("/v1/queries", json=QUERY, headers=RESEARCHER)

        assert first.status_code == 202
        assert first.json()["remaining_quota"] == 0
        assert second.status_code == 429
        assert second.json()["error"]["code"] == "rate_limited"
        assert int(second.headers["Retry-After"]) > 0


class TestRefinePreview:
    REQUEST = {
        "query": "CAR-T exhaustion",
        "user_context": {"interests": ["TOX biology"], "expertise_level": "expert"},
    }

    def test_returns_refined_text_without_creating_a_query(self, test_config, store, cache):
        claude = FakeModelClient(provider_name="anthropic")
        with TestClient(create_app(build_runtime(test_config, store, cache, claude))) as c:
            r = c.post("/v1/queries/refine", json=self.REQUEST, headers=RESEARCHER)
            history = c.get("/v1/queries", headers=RESEARCHER).json()

        assert r.status_code == 200
        body = r.json()
        assert body["original_query"] == "CAR-T exhaustion"
        assert body["refined_query"] == DEFAULT_REFINEMENT["refinedQuery"]
        assert body["reasoning"] == DEFAULT_REFINEMENT["reasoning"]
        assert body["status"] == "refined"
        assert body["model"] == "claude"
        assert history["count"] == 0
        prompt = claude.calls[0]["prompt"]
        assert "Primary research interests: TOX biology" in prompt
        assert "Expertise level: expert" in prompt

    def test_unusable_reply_falls_back_to_original_text(self, test_config, store, cache):
        claude = FakeModelClient(provider_name="anthropic", refinement_reply="Sorry, no JSON.")
        with TestClient(create_app(build_runtime(test_config, store, cache, claude))) as c:
            r = c.post("/v1/queries/refine", json=self.REQUEST, headers=RESEARCHER)

        assert r.status_code == 200
        assert r.json()["refined_query"] == "CAR-T exhaustion"
        assert r.json()["reasoning"] == "refinement unavailable"
        assert r.json()["status"] == "fallback"

    def test_blank_query_is_rejected(self, client):
        r = client.post("/v1/queries/refine", json={"query": "  "}, headers=RESEARCHER)

        assert r.status_code == 400
        assert r.json()["error"]["code"] == "validation_failed"


class TestAdmin:
    def test_researchers_cannot_read_cost_reports(self, client):
        r = client.get("/v1/admin/cost-report", headers=RESEARCHER)

        assert r.status_code == 403
        assert r.json()["error"]["code"] == "forbidden"

    def test_manager_cost_report_and_rate_limits(self, client):
        client.post("/v1/queries", json=QUERY, headers=RESEARCHER)

        report = client.get("/v1/admin/cost-report?days=7", headers=MANAGER)
        limits = client.get("/v1/admin/rate-limits/alice", headers=MANAGER)

        assert report.status_code == 200
        assert report.json()["summary"]["query_count"] == 1
        assert "alice" in report.json()["by_user"]
        assert limits.json()["hourly"]["used"] == 1

    def test_cost_report_window_is_validated(self, client):
        r = client.get("/v1/admin/cost-report?days=0", headers=MANAGER)
        assert r.status_code == 400

    def test_only_admins_trigger_the_nightly_agent(self, client):
        denied = client.post("/v1/admin/nightly", json={"action": "trigger"}, headers=MANAGER)
        allowed = client.post("/v1/admin/nightly", json={"action": "trigger"}, headers=ADMIN)

        assert denied.status_code == 403
        assert allowed.status_code == 200
        assert allowed.json()["job"]["name"] == "collect-research"

        deadline = time.monotonic() + 5.0
        status = client.get("/v1/admin/nightly", headers=MANAGER).json()
        while status["counts"]["completed"] == 0 and time.monotonic() < deadline:
            time.sleep(0.02)
            status = client.get("/v1/admin/nightly", headers=MANAGER).json()
        assert status["counts"]["completed"] == 1
        assert status["recent"][0]["result"] == {"status": "skipped", "reason": "no topics"}
        assert status["schedule"]["scheduled"] is False


class TestDigests:
    def test_digests_are_listed_newest_first(self, client, store):
        store.create_digest(date(2024, 6, 1), ["PubMed"], 3, ["TOX"], [], "completed")
        store.create_digest(date(2024, 6, 2), ["PubMed"], 5, ["CAR-T"], [], "completed")

        r = client.get("/v1/digests", headers=RESEARCHER)

        assert r.status_code == 200
        assert [d["digest_date"] for d in r.json()] == ["2024-06-02", "2024-06-01"]
        assert r.json()[0]["top_topics"] == ["CAR-T"]
