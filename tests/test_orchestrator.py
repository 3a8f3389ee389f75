"""Tests for the agent orchestrator.

Coverage:
  1. Fresh run: one AgentRun row ending in succeeded, outputs validated
  2. Identical inputs are served from cache with no second gateway call
  3. force_rerun bypasses the cache and records a new run
  4. Gateway failures and malformed output end in failed runs, never cached
  5. Fenced / prose-wrapped JSON is repaired
"""

import json

import pytest
from sqlalchemy import func, select

from leanflow.ai.gateway import GatewayError
from leanflow.ai.orchestrator import AgentOrchestrator, run_agent
from leanflow.ai.prompts import build_sequencing_prompt
from leanflow.models import db
from leanflow.models.ai import AgentRun

_PLAN = {
    "waves": [{"name": "Immediate / Quick Wins", "order_index": 0, "solution_ids": ["s1"]}],
    "dependencies": [],
}


def _reply(payload, model="gpt-4o-mini", provider="openai"):
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return {"content": content, "model": model, "provider": provider}


def _inputs():
    return {"solutions": [{"id": "s1", "title": "Auto-route invoices", "bucket": "modify",
                           "effort_level": "low", "step_ids": []}]}


def _run_count(session_id):
    return db.session.execute(
        select(func.count(AgentRun.id)).where(AgentRun.session_id == session_id)
    ).scalar()


class TestFreshRun:
    def test_records_succeeded_run(self, workshop, orchestrator, fake_gateway):
        fake_gateway.chat.return_value = _reply(_PLAN)

        result = orchestrator.run(workshop.session.id, "sequencing", _inputs(),
                                  build_sequencing_prompt, user_id="u-1")

        assert result.success is True
        assert result.cached is False
        assert result.data["waves"][0]["solution_ids"] == ["s1"]
        run = db.session.get(AgentRun, result.run_id)
        assert run.status == "succeeded"
        assert run.outputs == result.data
        assert run.model == "gpt-4o-mini"
        assert run.provider == "openai"
        assert run.created_by == "u-1"
        assert run.started_at is not None and run.completed_at is not None
        assert run.input_hash == result.fingerprint

    def test_prompt_is_rendered_through_registry(self, workshop, orchestrator, fake_gateway):
        fake_gateway.chat.return_value = _reply(_PLAN)

        orchestrator.run(workshop.session.id, "sequencing", _inputs(), build_sequencing_prompt)

        messages = fake_gateway.chat.call_args.args[0]
        assert messages[0]["role"] == "system"
        assert "implementation waves" in messages[1]["content"]
        assert fake_gateway.chat.call_args.kwargs["purpose"] == "sequencing"
        assert fake_gateway.chat.call_args.kwargs["max_retries"] == 1

    def test_unknown_agent_type_rejected(self, workshop, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.run(workshop.session.id, "haiku", {}, lambda _: "")


class TestCaching:
    def test_second_identical_call_is_cached(self, workshop, orchestrator, fake_gateway):
        fake_gateway.chat.return_value = _reply(_PLAN)
        sid = workshop.session.id

        first = orchestrator.run(sid, "sequencing", _inputs(), build_sequencing_prompt)
        second = orchestrator.run(sid, "sequencing", _inputs(), build_sequencing_prompt)

        assert second.cached is True
        assert second.run_id == first.run_id
        assert second.data == first.data
        assert fake_gateway.chat.call_count == 1
        assert _run_count(sid) == 1

    def test_force_rerun_creates_new_run(self, workshop, orchestrator, fake_gateway):
        fake_gateway.chat.return_value = _reply(_PLAN)
        sid = workshop.session.id

        first = orchestrator.run(sid, "sequencing", _inputs(), build_sequencing_prompt)
        again = orchestrator.run(sid, "sequencing", _inputs(), build_sequencing_prompt,
                                 force_rerun=True)

        assert again.cached is False
        assert again.run_id != first.run_id
        assert fake_gateway.chat.call_count == 2
        assert _run_count(sid) == 2

    def test_changed_inputs_miss_the_cache(self, workshop, orchestrator, fake_gateway):
        fake_gateway.chat.return_value = _reply(_PLAN)
        sid = workshop.session.id
        changed = _inputs()
        changed["solutions"][0]["title"] = "Auto-route all invoices"

        orchestrator.run(sid, "sequencing", _inputs(), build_sequencing_prompt)
        result = orchestrator.run(sid, "sequencing", changed, build_sequencing_prompt)

        assert result.cached is False
        assert fake_gateway.chat.call_count == 2


class TestFailures:
    def test_gateway_error_records_failed_run(self, workshop, orchestrator, fake_gateway):
        fake_gateway.chat.side_effect = GatewayError("timed out")

        result = orchestrator.run(workshop.session.id, "sequencing", _inputs(),
                                  build_sequencing_prompt)

        assert result.success is False
        assert "timed out" in result.error
        run = db.session.get(AgentRun, result.run_id)
        assert run.status == "failed"
        assert run.error == result.error
        assert run.outputs is None

    def test_failure_is_not_cached(self, workshop, orchestrator, fake_gateway):
        sid = workshop.session.id
        fake_gateway.chat.side_effect = [GatewayError("boom"), _reply(_PLAN)]

        failed = orchestrator.run(sid, "sequencing", _inputs(), build_sequencing_prompt)
        retried = orchestrator.run(sid, "sequencing", _inputs(), build_sequencing_prompt)

        assert failed.success is False
        assert retried.success is True
        assert retried.cached is False
        assert fake_gateway.chat.call_count == 2

    def test_schema_violation_fails_the_run(self, workshop, orchestrator, fake_gateway):
        fake_gateway.chat.return_value = _reply({"waves": []})

        result = orchestrator.run(workshop.session.id, "sequencing", _inputs(),
                                  build_sequencing_prompt)

        assert result.success is False
        assert "schema validation" in result.error

    def test_non_json_fails_the_run(self, workshop, orchestrator, fake_gateway):
        fake_gateway.chat.return_value = _reply("I cannot help with that.")

        result = orchestrator.run(workshop.session.id, "sequencing", _inputs(),
                                  build_sequencing_prompt)

        assert result.success is False
        assert db.session.get(AgentRun, result.run_id).status == "failed"


class TestRepair:
    def test_fenced_json_is_accepted(self, workshop, orchestrator, fake_gateway):
        fake_gateway.chat.return_value = _reply(
            "Here is the plan:\n```json\n" + json.dumps(_PLAN) + "\n```"
        )

        result = orchestrator.run(workshop.session.id, "sequencing", _inputs(),
                                  build_sequencing_prompt)

        assert result.success is True
        assert result.data["waves"][0]["name"] == "Immediate / Quick Wins"


class TestRunAgent:
    def test_uses_supplied_orchestrator(self, workshop, fake_gateway):
        fake_gateway.chat.return_value = _reply(_PLAN)

        result = run_agent(workshop.session.id, "sequencing", _inputs(), build_sequencing_prompt,
                           orchestrator=AgentOrchestrator(gateway=fake_gateway))

        assert result.success is True
        assert result.to_dict()["data"] == result.data

    def test_default_orchestrator_uses_local_stub(self, workshop):
        result = run_agent(workshop.session.id, "sequencing", _inputs(), build_sequencing_prompt)

        assert result.success is True
        assert result.provider == "local"
        assert result.model == "local-stub"
