"""
Lean Future-State Studio
Tests for the HTTP surface.

Covers:
    - Health probes
    - Design agent endpoint: fresh run 201, cached rerun 200, unknown session 404
    - Node PATCH optimistic concurrency (409 with current revision)
    - Edge create / self-loop 422 / locked version 409
    - Version duplicate, status and delete rules
    - Sequencing run, read and manual reassignment
    - Observations, synthesis themes and generated solution cards
    - Solution cards, information flows, stats and flow comparison
    - Agent run lookup
    - Malformed bodies answer 400
"""

import pytest
from flask import Blueprint, Flask, abort

from leanflow.utils.errors import register_error_handlers


def _design(client, session_id, **body):
    return client.post(f"/api/v1/sessions/{session_id}/future-state/design", json=body)


@pytest.fixture()
def designed(client, workshop):
    """A workshop with one stub-designed future-state version."""
    res = _design(client, workshop.session.id)
    assert res.status_code == 201
    fs = client.get(f"/api/v1/future-states/{res.get_json()['future_state_id']}").get_json()
    return workshop, fs


# ═════════════════════════════════════════════════════════════════════════════
# HEALTH
# ═════════════════════════════════════════════════════════════════════════════

class TestHealth:
    def test_live(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"


# ═════════════════════════════════════════════════════════════════════════════
# DESIGN AGENT
# ═════════════════════════════════════════════════════════════════════════════

class TestDesignEndpoint:
    def test_fresh_then_cached(self, client, workshop):
        first = _design(client, workshop.session.id)
        assert first.status_code == 201
        body = first.get_json()
        assert body["cached"] is False
        assert body["future_state_id"]
        assert body["model"] == "local-stub"

        second = _design(client, workshop.session.id)
        assert second.status_code == 200
        assert second.get_json()["cached"] is True
        assert second.get_json()["future_state_id"] is None

        versions = client.get(f"/api/v1/sessions/{workshop.session.id}/future-states").get_json()
        assert versions["total"] == 1

    def test_force_rerun_creates_next_version(self, client, workshop):
        _design(client, workshop.session.id)
        res = _design(client, workshop.session.id, force_rerun=True)

        assert res.status_code == 201
        fs = client.get(f"/api/v1/future-states/{res.get_json()['future_state_id']}").get_json()
        assert fs["version"] == 2

    def test_unknown_session(self, client):
        res = _design(client, "missing")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_graph_persisted_in_order(self, designed):
        _, fs = designed
        assert [n["name"] for n in fs["nodes"]] == ["Start", "Streamlined Step", "End"]
        assert len(fs["edges"]) == 2


# ═════════════════════════════════════════════════════════════════════════════
# GRAPH EDITS
# ═════════════════════════════════════════════════════════════════════════════

class TestNodeEdits:
    def test_stale_revision_conflict(self, client, designed):
        _, fs = designed
        node_id = fs["nodes"][1]["id"]

        ok = client.patch(f"/api/v1/future-state-nodes/{node_id}",
                          json={"name": "Auto-approve", "revision": 1})
        assert ok.status_code == 200
        assert ok.get_json()["revision"] == 2

        stale = client.patch(f"/api/v1/future-state-nodes/{node_id}",
                             json={"name": "Manual approve", "revision": 1})
        assert stale.status_code == 409
        body = stale.get_json()
        assert body["code"] == "ERR_CONFLICT_REVISION"
        assert body["details"]["current_revision"] == 2
        assert client.get(f"/api/v1/future-state-nodes/{node_id}").get_json()["name"] == "Auto-approve"

    def test_missing_body(self, client, designed):
        _, fs = designed
        res = client.patch(f"/api/v1/future-state-nodes/{fs['nodes'][0]['id']}",
                           data="not json", content_type="text/plain")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_non_integer_revision(self, client, designed):
        _, fs = designed
        res = client.patch(f"/api/v1/future-state-nodes/{fs['nodes'][0]['id']}",
                           json={"name": "X", "revision": "1"})
        assert res.status_code == 400

    def test_invalid_action(self, client, designed):
        _, fs = designed
        res = client.patch(f"/api/v1/future-state-nodes/{fs['nodes'][0]['id']}",
                           json={"action": "teleport"})
        assert res.status_code == 422


class TestEdges:
    def test_create_and_self_loop(self, client, designed):
        _, fs = designed
        first, _, last = (n["id"] for n in fs["nodes"])

        res = client.post(f"/api/v1/future-states/{fs['id']}/edges",
                          json={"source_node_id": first, "target_node_id": last, "label": "skip"})
        assert res.status_code == 201
        assert res.get_json()["order_index"] == 1

        loop = client.post(f"/api/v1/future-states/{fs['id']}/edges",
                           json={"source_node_id": first, "target_node_id": first})
        assert loop.status_code == 422

        dup = client.post(f"/api/v1/future-states/{fs['id']}/edges",
                          json={"source_node_id": first, "target_node_id": last})
        assert dup.status_code == 409

    def test_update_and_delete(self, client, designed):
        _, fs = designed
        edge_id = fs["edges"][0]["id"]

        res = client.patch(f"/api/v1/future-state-edges/{edge_id}", json={"label": "yes"})
        assert res.get_json()["label"] == "yes"
        assert client.patch(f"/api/v1/future-state-edges/{edge_id}", json={}).status_code == 400
        assert client.delete(f"/api/v1/future-state-edges/{edge_id}").status_code == 204

    def test_locked_version_rejects_edits(self, client, designed):
        _, fs = designed
        res = client.patch(f"/api/v1/future-states/{fs['id']}/status", json={"status": "locked"})
        assert res.status_code == 200
        assert res.get_json()["is_locked"] is True

        node = client.patch(f"/api/v1/future-state-nodes/{fs['nodes'][0]['id']}",
                            json={"name": "Begin"})
        assert node.status_code == 409
        assert node.get_json()["code"] == "ERR_CONFLICT_LOCKED"


class TestVersions:
    def test_duplicate_and_delete(self, client, designed):
        _, fs = designed

        only = client.delete(f"/api/v1/future-states/{fs['id']}")
        assert only.status_code == 422

        copy = client.post(f"/api/v1/future-states/{fs['id']}/versions", json={"name": "Variant"})
        assert copy.status_code == 201
        copied = copy.get_json()
        assert copied["version"] == 2
        assert copied["parent_version_id"] == fs["id"]
        assert len(copied["nodes"]) == 3
        assert len(copied["edges"]) == 2

        assert client.delete(f"/api/v1/future-states/{fs['id']}").status_code == 204
        assert client.get(f"/api/v1/future-states/{fs['id']}").status_code == 404

    def test_unknown_status(self, client, designed):
        _, fs = designed
        res = client.patch(f"/api/v1/future-states/{fs['id']}/status", json={"status": "final"})
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════════
# SEQUENCING
# ═════════════════════════════════════════════════════════════════════════════

class TestSequencing:
    def test_run_read_and_reassign(self, client, workshop):
        sid = workshop.session.id

        res = client.post(f"/api/v1/sessions/{sid}/sequencing", json={})
        assert res.status_code == 200
        body = res.get_json()
        assert body["cached"] is False
        wave = body["plan"]["waves"][0]
        assert wave["name"] == "Immediate / Quick Wins"

        moved = client.patch(f"/api/v1/sessions/{sid}/sequencing/assignments",
                             json={"solution_id": workshop.solutions[0].id, "wave_id": wave["id"]})
        assert moved.status_code == 200
        assert moved.get_json()["solution_ids"] == [workshop.solutions[0].id]

        plan = client.get(f"/api/v1/sessions/{sid}/sequencing").get_json()
        assert plan["waves"][0]["solution_ids"] == [workshop.solutions[0].id]

    def test_implementation_items(self, client, workshop):
        sid = workshop.session.id
        wave_id = client.post(f"/api/v1/sessions/{sid}/sequencing").get_json()["plan"]["waves"][0]["id"]

        a = client.post(f"/api/v1/sessions/{sid}/implementation-items",
                        json={"wave_id": wave_id, "title": "Configure routing"})
        b = client.post(f"/api/v1/sessions/{sid}/implementation-items",
                        json={"wave_id": wave_id, "title": "Train AP team"})
        assert a.status_code == b.status_code == 201

        dep = client.post(f"/api/v1/implementation-items/{b.get_json()['id']}/dependencies",
                          json={"depends_on_item_id": a.get_json()["id"]})
        assert dep.status_code == 201
        missing = client.post(f"/api/v1/implementation-items/{b.get_json()['id']}/dependencies",
                              json={})
        assert missing.status_code == 400

    def test_requires_accepted_solutions(self, client, workshop):
        for card in workshop.solutions:
            client.patch(f"/api/v1/solutions/{card.id}/status", json={"status": "rejected"})

        res = client.post(f"/api/v1/sessions/{workshop.session.id}/sequencing")
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════════
# SOLUTIONS
# ═════════════════════════════════════════════════════════════════════════════

class TestSolutions:
    def test_create_list_and_status(self, client, workshop):
        sid = workshop.session.id
        res = client.post(f"/api/v1/sessions/{sid}/solutions",
                          json={"bucket": "create", "title": "Vendor portal"})
        assert res.status_code == 201
        card = res.get_json()
        assert card["status"] == "draft"

        accepted = client.patch(f"/api/v1/solutions/{card['id']}/status",
                                json={"status": "accepted"})
        assert accepted.get_json()["status"] == "accepted"

        listing = client.get(f"/api/v1/sessions/{sid}/solutions?status=accepted").get_json()
        assert listing["total"] == 3

    def test_invalid_bucket(self, client, workshop):
        res = client.post(f"/api/v1/sessions/{workshop.session.id}/solutions",
                          json={"bucket": "outsource", "title": "X"})
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════════
# INFORMATION FLOWS & COMPARISON
# ═════════════════════════════════════════════════════════════════════════════

class TestFlowsAndComparison:
    def test_flow_lifecycle(self, client, workshop):
        res = client.post("/api/v1/information-flows", json={
            "process_id": workshop.process.id, "name": "Invoice Approval",
            "flow_type": "approval", "timeliness_score": 1,
            "waste_type_ids": [workshop.waiting.id],
        })
        assert res.status_code == 201
        flow = res.get_json()
        assert flow["quality_score"] == 7

        listing = client.get(f"/api/v1/information-flows?process_id={workshop.process.id}")
        assert listing.get_json()["total"] == 1

        patched = client.patch(f"/api/v1/information-flows/{flow['id']}",
                               json={"timeliness_score": 4, "revision": 1})
        assert patched.get_json()["quality_score"] == 10
        stale = client.patch(f"/api/v1/information-flows/{flow['id']}",
                             json={"frequency": "daily", "revision": 1})
        assert stale.status_code == 409

        stats = client.get(f"/api/v1/processes/{workshop.process.id}/information-flows/stats")
        assert stats.get_json()["by_type"]["approval"] == 1

        assert client.delete(f"/api/v1/information-flows/{flow['id']}").status_code == 204

    def test_list_without_scope(self, client):
        assert client.get("/api/v1/information-flows").status_code == 422

    def test_comparison(self, client, designed):
        workshop, fs = designed
        sid = workshop.session.id
        client.post("/api/v1/information-flows", json={
            "process_id": workshop.process.id, "name": "Paper invoice",
        })
        client.post("/api/v1/information-flows", json={
            "future_state_id": fs["id"], "state_type": "future", "name": "E-invoice feed",
            "source_node_id": fs["nodes"][0]["id"], "target_node_id": fs["nodes"][1]["id"],
        })

        missing = client.get(f"/api/v1/sessions/{sid}/flow-comparisons/{fs['id']}")
        assert missing.status_code == 404

        res = client.post(f"/api/v1/sessions/{sid}/flow-comparisons",
                          json={"future_state_id": fs["id"]})
        assert res.status_code == 201
        snap = res.get_json()
        assert snap["eliminated_flows"] == 1
        assert snap["added_flows"] == 1
        assert snap["avg_quality_improvement"] == 0.0

        again = client.get(f"/api/v1/sessions/{sid}/flow-comparisons/{fs['id']}")
        assert again.get_json()["id"] == snap["id"]

    def test_comparison_requires_future_state(self, client, workshop):
        res = client.post(f"/api/v1/sessions/{workshop.session.id}/flow-comparisons", json={})
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# AGENT RUNS
# ═════════════════════════════════════════════════════════════════════════════

class TestAgentRuns:
    def test_run_lookup_hides_payload_by_default(self, client, workshop):
        run_id = _design(client, workshop.session.id).get_json()["run_id"]

        res = client.get(f"/api/v1/agent-runs/{run_id}")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "succeeded"
        assert body["agent_type"] == "design"
        assert "outputs" not in body

        full = client.get(f"/api/v1/agent-runs/{run_id}?include_payload=true").get_json()
        assert len(full["outputs"]["future_state"]["nodes"]) == 3

    def test_unknown_run(self, client):
        res = client.get("/api/v1/agent-runs/missing")
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# OBSERVATIONS, SYNTHESIS & GENERATED SOLUTIONS
# ═════════════════════════════════════════════════════════════════════════════

class TestSynthesisAndSolutions:
    def _observe(self, client, workshop):
        return client.post(f"/api/v1/sessions/{workshop.session.id}/observations", json={
            "step_id": workshop.steps[0].id, "notes": "Invoices wait for a clerk",
            "priority_score": 6, "waste_type_ids": [workshop.waiting.id],
        })

    def test_observation_create_and_list(self, client, workshop):
        res = self._observe(client, workshop)
        assert res.status_code == 201
        assert res.get_json()["waste_type_ids"] == [workshop.waiting.id]

        listing = client.get(f"/api/v1/sessions/{workshop.session.id}/observations").get_json()
        assert listing["total"] == 1

    def test_observation_on_unknown_step(self, client, workshop):
        res = client.post(f"/api/v1/sessions/{workshop.session.id}/observations",
                          json={"step_id": "nowhere"})
        assert res.status_code == 422

    def test_synthesis_then_generated_solutions(self, client, workshop):
        sid = workshop.session.id
        self._observe(client, workshop)

        res = client.post(f"/api/v1/sessions/{sid}/synthesis", json={})
        assert res.status_code == 200
        body = res.get_json()
        assert body["cached"] is False
        [theme] = body["themes"]
        assert theme["name"] == "Waiting between lanes"
        assert theme["observation_ids"] == []

        confirmed = client.patch(f"/api/v1/themes/{theme['id']}/status",
                                 json={"status": "confirmed"})
        assert confirmed.get_json()["status"] == "confirmed"
        themes = client.get(f"/api/v1/sessions/{sid}/themes?status=confirmed").get_json()
        assert themes["total"] == 1

        res = client.post(f"/api/v1/sessions/{sid}/solutions/generate")
        assert res.status_code == 200
        drafts = [c for c in res.get_json()["solutions"] if c["status"] == "draft"]
        assert [c["title"] for c in drafts] == ["Standardise hand-offs"]

    def test_synthesis_without_observations(self, client, workshop):
        res = client.post(f"/api/v1/sessions/{workshop.session.id}/synthesis")
        assert res.status_code == 422

    def test_generate_without_themes(self, client, workshop):
        res = client.post(f"/api/v1/sessions/{workshop.session.id}/solutions/generate")
        assert res.status_code == 422

    def test_theme_status_requires_value(self, client):
        res = client.patch("/api/v1/themes/any/status", json={})
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# ERROR MAPPING
# ═════════════════════════════════════════════════════════════════════════════

class TestErrorMapping:
    def test_limiter_breach_answers_rate_limited(self):
        app = Flask(__name__)
        bp = Blueprint("limited", __name__)
        register_error_handlers(bp)

        @bp.route("/limited")
        def limited():
            abort(429, description="10 per 1 minute")

        app.register_blueprint(bp)

        res = app.test_client().get("/limited")

        assert res.status_code == 429
        body = res.get_json()
        assert body["code"] == "ERR_RATE_LIMITED"
        assert body["details"]["retry_after"] == "10 per 1 minute"
