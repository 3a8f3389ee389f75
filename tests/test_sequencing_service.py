"""Tests for the sequencing planner.

Coverage:
  1. Waves are stored in order_index order with ordered solution links
  2. Unknown, duplicate and self references in agent output are skipped
  3. A rerun (fresh or cached) rebuilds the plan, discarding manual edits
  4. Manual reassignment and implementation items
"""

import json

import pytest

from leanflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from leanflow.models import db
from leanflow.services import sequencing_service as seq


def _reply(payload):
    return {"content": json.dumps(payload), "model": "gpt-4o-mini", "provider": "openai"}


def _plan(s1, s2):
    return {
        "waves": [
            {"name": "0-30 Days", "order_index": 1, "solution_ids": [s2]},
            {"name": "Immediate / Quick Wins", "order_index": 0, "solution_ids": [s1]},
        ],
        "dependencies": [{"solution_id": s2, "depends_on_solution_id": s1}],
    }


def _ids(workshop):
    return [s.id for s in workshop.solutions]


class TestRebuild:
    def test_waves_sorted_with_links(self, workshop):
        s1, s2 = _ids(workshop)

        seq.rebuild_sequencing_plan(workshop.session.id, _plan(s1, s2))
        plan = seq.get_sequencing_plan(workshop.session.id)

        assert [w["name"] for w in plan["waves"]] == ["Immediate / Quick Wins", "0-30 Days"]
        assert plan["waves"][0]["solution_ids"] == [s1]
        assert plan["waves"][1]["solution_ids"] == [s2]
        assert plan["dependencies"] == [
            {"id": plan["dependencies"][0]["id"], "solution_id": s2, "depends_on_solution_id": s1},
        ]

    def test_invalid_references_skipped(self, workshop, make_solution):
        s1, s2 = _ids(workshop)
        draft = make_solution(workshop.session.id, "Not accepted", status="draft")
        output = {
            "waves": [
                {"name": "W0", "order_index": 0, "solution_ids": [s1, "ghost", draft.id, s1]},
                {"name": "W1", "order_index": 1, "solution_ids": [s1, s2]},
            ],
            "dependencies": [
                {"solution_id": s1, "depends_on_solution_id": s1},
                {"solution_id": s2, "depends_on_solution_id": "ghost"},
                {"solution_id": s2, "depends_on_solution_id": s1},
                {"solution_id": s2, "depends_on_solution_id": s1},
            ],
        }

        seq.rebuild_sequencing_plan(workshop.session.id, output)
        plan = seq.get_sequencing_plan(workshop.session.id)

        assert plan["waves"][0]["solution_ids"] == [s1]
        assert plan["waves"][1]["solution_ids"] == [s2]
        assert len(plan["dependencies"]) == 1

    def test_malformed_output(self, workshop):
        with pytest.raises(ValidationError):
            seq.rebuild_sequencing_plan(workshop.session.id, {"waves": "soon"})


class TestRunSequencingAgent:
    def test_rerun_discards_manual_reassignment(self, workshop, orchestrator, fake_gateway):
        s1, s2 = _ids(workshop)
        sid = workshop.session.id
        fake_gateway.chat.return_value = _reply(_plan(s1, s2))

        seq.run_sequencing_agent(sid, orchestrator=orchestrator)
        quick_wins = seq.get_sequencing_plan(sid)["waves"][0]
        seq.reassign_solution(sid, s2, quick_wins["id"])
        assert seq.get_sequencing_plan(sid)["waves"][0]["solution_ids"] == [s1, s2]

        result = seq.run_sequencing_agent(sid, orchestrator=orchestrator)

        assert result["cached"] is True
        assert fake_gateway.chat.call_count == 1
        waves = seq.get_sequencing_plan(sid)["waves"]
        assert [w["solution_ids"] for w in waves] == [[s1], [s2]]

    def test_rebuild_drops_implementation_items(self, workshop, orchestrator, fake_gateway):
        s1, s2 = _ids(workshop)
        sid = workshop.session.id
        fake_gateway.chat.return_value = _reply(_plan(s1, s2))
        seq.run_sequencing_agent(sid, orchestrator=orchestrator)
        wave_id = seq.get_sequencing_plan(sid)["waves"][0]["id"]
        seq.create_implementation_item(sid, wave_id, "Configure routing rules", solution_id=s1)

        seq.run_sequencing_agent(sid, force_rerun=True, orchestrator=orchestrator)

        assert seq.get_sequencing_plan(sid)["items"] == []

    def test_requires_accepted_solutions(self, workshop, orchestrator):
        for card in workshop.solutions:
            card.status = "rejected"
        db.session.commit()

        with pytest.raises(ValidationError):
            seq.run_sequencing_agent(workshop.session.id, orchestrator=orchestrator)


class TestManualEdits:
    def _seeded(self, workshop):
        s1, s2 = _ids(workshop)
        seq.rebuild_sequencing_plan(workshop.session.id, _plan(s1, s2))
        return seq.get_sequencing_plan(workshop.session.id)["waves"]

    def test_reassign_appends_to_target(self, workshop):
        waves = self._seeded(workshop)
        s1, s2 = _ids(workshop)

        target = seq.reassign_solution(workshop.session.id, s1, waves[1]["id"])

        assert target.solution_ids == [s2, s1]
        assert seq.get_sequencing_plan(workshop.session.id)["waves"][0]["solution_ids"] == []

    def test_reassign_unknown_wave(self, workshop):
        self._seeded(workshop)
        with pytest.raises(NotFoundError):
            seq.reassign_solution(workshop.session.id, _ids(workshop)[0], "missing")

    def test_item_dependencies(self, workshop):
        waves = self._seeded(workshop)
        sid = workshop.session.id
        a = seq.create_implementation_item(sid, waves[0]["id"], "Build rules", owner="AP lead")
        b = seq.create_implementation_item(sid, waves[1]["id"], "Retire approval step")

        seq.add_implementation_dependency(b.id, a.id)

        plan = seq.get_sequencing_plan(sid)
        assert plan["item_dependencies"][0]["depends_on_item_id"] == a.id
        with pytest.raises(ConflictError):
            seq.add_implementation_dependency(b.id, a.id)
        with pytest.raises(ValidationError):
            seq.add_implementation_dependency(a.id, a.id)

    def test_item_validation(self, workshop):
        waves = self._seeded(workshop)
        with pytest.raises(ValidationError):
            seq.create_implementation_item(workshop.session.id, waves[0]["id"], "  ")
        with pytest.raises(ValidationError):
            seq.create_implementation_item(workshop.session.id, None, "X", status="someday")
