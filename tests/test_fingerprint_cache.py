"""Tests for the agent input fingerprint and cache lookup.

Coverage:
  1. Fingerprint is deterministic, 32 hex chars, and agent-type scoped
  2. Order of set-like lists and id-keyed records does not matter
  3. Volatile and non-output-affecting keys are ignored
  4. find_cached_run only returns succeeded runs with outputs, newest first
"""

from datetime import datetime, timedelta, timezone

from leanflow.ai.cache import (
    FINGERPRINT_LENGTH, compute_fingerprint, find_cached_run, fingerprint_projection,
)
from leanflow.models import db
from leanflow.models.ai import AgentRun


def _solutions(*ids):
    return {"solutions": [{"id": i, "title": f"S{i}", "step_ids": ["a", "b"]} for i in ids]}


def _make_run(session_id, fingerprint, status="succeeded", outputs=None, completed_at=None):
    run = AgentRun(session_id=session_id, agent_type="sequencing", input_hash=fingerprint,
                   status=status, completed_at=completed_at)
    if outputs is not None:
        run.outputs = outputs
    db.session.add(run)
    db.session.commit()
    return run


class TestComputeFingerprint:
    def test_deterministic_and_truncated(self):
        fp = compute_fingerprint("sequencing", _solutions("1", "2"))
        assert fp == compute_fingerprint("sequencing", _solutions("1", "2"))
        assert len(fp) == FINGERPRINT_LENGTH
        int(fp, 16)

    def test_agent_type_is_part_of_the_key(self):
        inputs = _solutions("1")
        assert compute_fingerprint("sequencing", inputs) != compute_fingerprint("design", inputs)

    def test_record_order_is_irrelevant(self):
        assert compute_fingerprint("sequencing", _solutions("1", "2")) == \
            compute_fingerprint("sequencing", _solutions("2", "1"))

    def test_set_like_list_order_is_irrelevant(self):
        a = {"solutions": [{"id": "1", "step_ids": ["x", "y"]}]}
        b = {"solutions": [{"id": "1", "step_ids": ["y", "x"]}]}
        assert compute_fingerprint("sequencing", a) == compute_fingerprint("sequencing", b)

    def test_volatile_keys_ignored(self):
        a = {"solutions": [{"id": "1", "title": "T", "updated_at": "2024-01-01"}]}
        b = {"solutions": [{"id": "1", "title": "T", "updated_at": "2025-06-30", "revision": 7}]}
        assert compute_fingerprint("sequencing", a) == compute_fingerprint("sequencing", b)

    def test_unrelated_input_keys_ignored(self):
        base = _solutions("1")
        noisy = {**base, "request_id": "abc"}
        assert compute_fingerprint("sequencing", base) == compute_fingerprint("sequencing", noisy)

    def test_content_change_changes_fingerprint(self):
        a = {"solutions": [{"id": "1", "title": "Old"}]}
        b = {"solutions": [{"id": "1", "title": "New"}]}
        assert compute_fingerprint("sequencing", a) != compute_fingerprint("sequencing", b)

    def test_projection_keeps_only_declared_fields(self):
        projected = fingerprint_projection("design", {
            "lanes": ["B", "A"], "solutions": [], "extra": 1,
        })
        assert projected == {"lanes": ["A", "B"], "solutions": []}


class TestFindCachedRun:
    def test_returns_latest_succeeded_run(self, workshop):
        sid = workshop.session.id
        now = datetime.now(timezone.utc)
        _make_run(sid, "fp", outputs={"waves": []}, completed_at=now - timedelta(minutes=5))
        newer = _make_run(sid, "fp", outputs={"waves": [1]}, completed_at=now)

        found = find_cached_run(sid, "sequencing", "fp")

        assert found is not None
        assert found.id == newer.id

    def test_failed_runs_never_hit(self, workshop):
        _make_run(workshop.session.id, "fp", status="failed")
        assert find_cached_run(workshop.session.id, "sequencing", "fp") is None

    def test_succeeded_run_without_outputs_never_hits(self, workshop):
        _make_run(workshop.session.id, "fp")
        assert find_cached_run(workshop.session.id, "sequencing", "fp") is None

    def test_scoped_to_session_and_type(self, workshop):
        _make_run(workshop.session.id, "fp", outputs={"waves": []},
                  completed_at=datetime.now(timezone.utc))
        assert find_cached_run(workshop.session.id, "design", "fp") is None
        assert find_cached_run("other-session", "sequencing", "fp") is None
