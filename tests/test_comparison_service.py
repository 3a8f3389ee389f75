"""Tests for the current vs future information-flow comparison engine.

Coverage:
  1. compare_flows classification (eliminated / added / modified / unchanged)
  2. Case-insensitive name matching, last duplicate wins
  3. Summary metrics: average quality change over modified flows, waste reduction
  4. generate_flow_comparison persistence, pair replacement and scoping errors
"""

import pytest
from sqlalchemy import func, select

from leanflow.core.exceptions import NotFoundError, ValidationError
from leanflow.models import db
from leanflow.models.information_flow import FlowComparisonSnapshot
from leanflow.services import comparison_service as cmp
from leanflow.services import future_state_service as fss
from leanflow.services import information_flow_service as ifs


def _flow(fid, name, quality=9, flow_type="data", waste=()):
    return {"id": fid, "name": name, "quality_score": quality, "flow_type": flow_type,
            "waste_types": [{"id": w.lower(), "name": w} for w in waste]}


class TestCompareFlows:
    def test_quality_gain_and_removed_waste_is_modified(self):
        result = cmp.compare_flows(
            [_flow("c1", "Invoice Approval", 9, waste=["Waiting"])],
            [_flow("f1", "Invoice Approval", 12)],
        )

        assert result["modified_flows"] == 1
        item = result["comparison_data"]["modified"][0]
        assert item["current_flow_id"] == "c1"
        assert item["future_flow_id"] == "f1"
        assert item["quality_change"] == 3
        assert item["waste_changes"] == {"removed": ["Waiting"], "added": []}
        assert result["avg_quality_improvement"] == 3
        assert result["waste_reduction_count"] == 1

    def test_eliminated_added_unchanged(self):
        result = cmp.compare_flows(
            [_flow("c1", "Paper Invoice"), _flow("c2", "Payment File")],
            [_flow("f1", "payment file"), _flow("f2", "E-Invoice Feed")],
        )

        assert (result["eliminated_flows"], result["added_flows"],
                result["modified_flows"], result["unchanged_flows"]) == (1, 1, 0, 1)
        data = result["comparison_data"]
        assert data["eliminated"] == [
            {"current_flow_id": "c1", "name": "Paper Invoice", "change_type": "eliminated"},
        ]
        assert data["added"] == [
            {"future_flow_id": "f2", "name": "E-Invoice Feed", "change_type": "added"},
        ]
        assert data["unchanged"][0]["future_flow_id"] == "f1"
        assert result["avg_quality_improvement"] == 0.0

    def test_surrounding_whitespace_breaks_the_match(self):
        result = cmp.compare_flows([_flow("c1", "Invoice Approval ")],
                                   [_flow("f1", "invoice approval")])

        assert (result["eliminated_flows"], result["added_flows"],
                result["unchanged_flows"]) == (1, 1, 0)

    def test_flow_type_change_alone_is_modified(self):
        result = cmp.compare_flows([_flow("c1", "Approval", flow_type="document")],
                                   [_flow("f1", "Approval", flow_type="system")])

        item = result["comparison_data"]["modified"][0]
        assert item["quality_change"] == 0
        assert item["flow_type_change"] == {"from": "document", "to": "system"}

    def test_average_covers_every_modified_flow(self):
        result = cmp.compare_flows(
            [_flow("c1", "A", 6), _flow("c2", "B", 9, waste=["Defects"])],
            [_flow("f1", "A", 12), _flow("f2", "B", 9)],
        )
        assert result["modified_flows"] == 2
        assert result["avg_quality_improvement"] == 3.0

    def test_added_waste_reported(self):
        result = cmp.compare_flows([_flow("c1", "A")], [_flow("f1", "A", waste=["Motion"])])
        assert result["comparison_data"]["modified"][0]["waste_changes"]["added"] == ["Motion"]
        assert result["waste_reduction_count"] == 0

    def test_last_duplicate_future_name_wins(self):
        result = cmp.compare_flows([_flow("c1", "A", 9)],
                                   [_flow("f1", "A", 3), _flow("f2", "a", 9)])
        assert result["comparison_data"]["unchanged"][0]["future_flow_id"] == "f2"

    def test_missing_quality_counts_as_zero(self):
        result = cmp.compare_flows([_flow("c1", "A", None)], [_flow("f1", "A", 9)])
        assert result["comparison_data"]["modified"][0]["quality_change"] == 9

    def test_empty_inputs(self):
        result = cmp.compare_flows([], [])
        assert result["current_flows_count"] == 0
        assert result["avg_quality_improvement"] == 0.0


class TestGenerateFlowComparison:
    def _future_state(self, workshop):
        return fss.persist_design_output(workshop.session, {"future_state": {
            "name": "FS",
            "nodes": [{"name": "Auto-approve", "lane": "Finance", "position_x": 0,
                       "position_y": 0, "action": "new"},
                      {"name": "Pay", "lane": "AP", "position_x": 1, "position_y": 0,
                       "action": "keep"}],
        }})

    def _seed(self, workshop):
        fs = self._future_state(workshop)
        nodes = sorted(fs.nodes, key=lambda n: n.sequence)
        ifs.create_information_flow({
            "process_id": workshop.process.id, "name": "Invoice Approval",
            "completeness_score": 3, "accuracy_score": 3, "timeliness_score": 3,
            "waste_type_ids": [workshop.waiting.id],
        })
        ifs.create_information_flow({
            "process_id": workshop.process.id, "name": "Paper copy",
        })
        ifs.create_information_flow({
            "future_state_id": fs.id, "state_type": "future", "name": "invoice approval",
            "source_node_id": nodes[0].id, "target_node_id": nodes[1].id,
            "completeness_score": 4, "accuracy_score": 4, "timeliness_score": 4,
        })
        return fs

    def test_snapshot_persisted(self, workshop):
        fs = self._seed(workshop)

        snap = cmp.generate_flow_comparison(workshop.session.id, fs.id)

        d = snap.to_dict()
        assert d["current_flows_count"] == 2
        assert d["future_flows_count"] == 1
        assert d["eliminated_flows"] == 1
        assert d["modified_flows"] == 1
        assert d["added_flows"] == 0
        assert d["avg_quality_improvement"] == 3
        assert d["waste_reduction_count"] == 1
        assert d["comparison_data"]["modified"][0]["waste_changes"]["removed"] == ["Waiting"]

    def test_regeneration_replaces_pair_snapshot(self, workshop):
        fs = self._seed(workshop)
        cmp.generate_flow_comparison(workshop.session.id, fs.id)
        ifs.create_information_flow({"process_id": workshop.process.id, "name": "Late fee"})

        latest = cmp.generate_flow_comparison(workshop.session.id, fs.id)

        count = db.session.execute(select(func.count(FlowComparisonSnapshot.id))).scalar()
        assert count == 1
        assert latest.eliminated_flows == 2
        assert cmp.get_flow_comparison(workshop.session.id, fs.id).id == latest.id

    def test_future_state_from_other_session(self, workshop):
        from leanflow.models.process import WasteWalkSession
        other = WasteWalkSession(process_id=workshop.process.id, name="Second walk")
        db.session.add(other)
        db.session.commit()
        fs = self._future_state(workshop)

        with pytest.raises(ValidationError):
            cmp.generate_flow_comparison(other.id, fs.id)

    def test_unknown_ids(self, workshop):
        with pytest.raises(NotFoundError):
            cmp.generate_flow_comparison("missing", "also-missing")
        with pytest.raises(NotFoundError):
            cmp.generate_flow_comparison(workshop.session.id, "missing")
        with pytest.raises(NotFoundError):
            cmp.get_flow_comparison(workshop.session.id, "missing")
