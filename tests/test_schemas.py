"""Tests for agent output schemas and JSON repair."""

import json

import pytest

from leanflow.ai.schemas import AgentOutputError, extract_json, parse_agent_output


def _node(**overrides):
    node = {"name": "Review", "lane": "AP", "position_x": 10, "position_y": 20, "action": "keep"}
    node.update(overrides)
    return node


class TestExtractJson:
    def test_plain_json(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_code_fence_stripped(self):
        assert extract_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_prose_around_object(self):
        assert extract_json('Sure! {"a": {"b": 2}} Hope this helps.') == {"a": {"b": 2}}

    def test_garbage_raises(self):
        with pytest.raises(AgentOutputError):
            extract_json("no json here")


class TestDesignSchema:
    def test_action_aliases_are_normalised(self):
        content = json.dumps({"future_state": {"name": "FS", "nodes": [
            _node(action="keep"), _node(action="REMOVE"), _node(action="new"),
            _node(action="modify"),
        ]}})

        data = parse_agent_output("design", content)

        assert [n["action"] for n in data["future_state"]["nodes"]] == [
            "unchanged", "eliminate", "create", "modify",
        ]

    def test_defaults_are_filled(self):
        data = parse_agent_output("design", json.dumps(
            {"future_state": {"name": "FS", "nodes": [_node(modified_fields=None)]}}
        ))
        node = data["future_state"]["nodes"][0]
        assert node["step_type"] == "action"
        assert node["modified_fields"] == {}
        assert data["future_state"]["edges"] == []

    def test_unknown_action_rejected(self):
        with pytest.raises(AgentOutputError):
            parse_agent_output("design", json.dumps(
                {"future_state": {"name": "FS", "nodes": [_node(action="teleport")]}}
            ))

    def test_negative_edge_index_rejected(self):
        with pytest.raises(AgentOutputError):
            parse_agent_output("design", json.dumps({"future_state": {
                "name": "FS", "nodes": [_node()],
                "edges": [{"source_node_index": -1, "target_node_index": 0}],
            }}))


class TestOtherSchemas:
    def test_sequencing_requires_a_wave(self):
        with pytest.raises(AgentOutputError):
            parse_agent_output("sequencing", '{"waves": []}')

    def test_synthesis_theme_needs_observations(self):
        with pytest.raises(AgentOutputError):
            parse_agent_output("synthesis", json.dumps({"themes": [{
                "name": "Waiting", "summary": "Queues", "confidence": "high",
                "observation_ids": [],
            }]}))

    def test_solutions_bucket_validated(self):
        payload = {"solutions": [{
            "bucket": "automate", "title": "T", "description": "D",
            "expected_impact": "I", "effort_level": "low",
        }]}
        with pytest.raises(AgentOutputError):
            parse_agent_output("solutions", json.dumps(payload))

    def test_unknown_agent_type(self):
        with pytest.raises(AgentOutputError):
            parse_agent_output("haiku", "{}")
