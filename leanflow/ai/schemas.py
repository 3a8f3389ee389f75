"""
leanflow.ai.schemas
===================
Pydantic models that define the **only valid shape** of each agent's output:

• synthesis   – {"themes": [...]}
• solutions   – {"solutions": [...]}
• sequencing  – {"waves": [...], "dependencies": [...]}
• design      – {"future_state": {"name", "nodes": [...], "edges": [...]}}

Ids coming back from a model are accepted as plain strings; callers resolve
them against persisted rows and drop what does not match.
"""
from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Confidence = Literal["high", "medium", "low"]
EffortLevel = Literal["low", "medium", "high"]
Bucket = Literal["eliminate", "modify", "create"]
StepType = Literal["action", "decision", "start", "end", "subprocess"]
NodeAction = Literal["eliminate", "modify", "create", "unchanged"]

# agent vocabulary → stored node action
_ACTION_ALIASES = {"keep": "unchanged", "remove": "eliminate", "new": "create"}


class AgentOutputError(ValueError):
    """Model output was not JSON or did not match the agent's schema."""


# ─────────────────────────────── synthesis ──────────────────────────────
class SynthesisTheme(BaseModel):
    name: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    confidence: Confidence
    root_cause_hypotheses: List[str] = Field(default_factory=list)
    observation_ids: List[str] = Field(min_length=1)
    step_ids: List[str] = Field(default_factory=list)
    waste_type_ids: List[str] = Field(default_factory=list)


class SynthesisOutput(BaseModel):
    themes: List[SynthesisTheme] = Field(min_length=1)


# ─────────────────────────────── solutions ──────────────────────────────
class SolutionProposal(BaseModel):
    bucket: Bucket
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    expected_impact: str = Field(min_length=1)
    effort_level: EffortLevel
    risks: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    recommended_wave: Optional[str] = None
    theme_ids: List[str] = Field(default_factory=list)
    step_ids: List[str] = Field(default_factory=list)
    observation_ids: List[str] = Field(default_factory=list)


class SolutionsOutput(BaseModel):
    solutions: List[SolutionProposal] = Field(min_length=1)


# ─────────────────────────────── sequencing ─────────────────────────────
class WavePlan(BaseModel):
    name: str = Field(min_length=1)
    order_index: int = Field(ge=0)
    start_estimate: Optional[str] = None
    end_estimate: Optional[str] = None
    solution_ids: List[str] = Field(default_factory=list)


class DependencyPlan(BaseModel):
    solution_id: str
    depends_on_solution_id: str


class SequencingOutput(BaseModel):
    waves: List[WavePlan] = Field(min_length=1)
    dependencies: List[DependencyPlan] = Field(default_factory=list)


# ──────────────────────────────── design ────────────────────────────────
class DesignNode(BaseModel):
    source_step_id: Optional[str] = None
    name: str = Field(min_length=1)
    description: Optional[str] = None
    lane: str = Field(min_length=1)
    step_type: StepType = "action"
    lead_time_minutes: Optional[int] = None
    cycle_time_minutes: Optional[int] = None
    position_x: float
    position_y: float
    action: NodeAction
    modified_fields: Dict[str, Any] = Field(default_factory=dict)
    linked_solution_id: Optional[str] = None
    explanation: Optional[str] = None

    @field_validator("action", mode="before")
    @classmethod
    def _alias_action(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return _ACTION_ALIASES.get(v, v)
        return v

    @field_validator("modified_fields", mode="before")
    @classmethod
    def _null_fields(cls, v):
        return {} if v is None else v


class DesignEdge(BaseModel):
    source_node_index: int = Field(ge=0)
    target_node_index: int = Field(ge=0)
    label: Optional[str] = None


class FutureStateDraft(BaseModel):
    name: str = Field(min_length=1)
    nodes: List[DesignNode] = Field(min_length=1)
    edges: List[DesignEdge] = Field(default_factory=list)


class DesignOutput(BaseModel):
    future_state: FutureStateDraft


OUTPUT_SCHEMAS: Dict[str, type[BaseModel]] = {
    "synthesis": SynthesisOutput,
    "solutions": SolutionsOutput,
    "sequencing": SequencingOutput,
    "design": DesignOutput,
}


# ──────────────────────────── response parsing ──────────────────────────
def extract_json(content: str) -> Any:
    """Parse model text as JSON, tolerating code fences and surrounding prose."""
    text = (content or "").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    text = re.sub(r"^```(?:json)?\s*", "", text)
    text = re.sub(r"\s*```$", "", text).strip()
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        text = match.group(0)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise AgentOutputError(f"Response is not valid JSON: {exc}") from exc


def parse_agent_output(agent_type: str, content: str) -> dict:
    """
    Parse and validate raw model output for ``agent_type``.

    Returns the validated payload as plain JSON-compatible data (defaults
    filled, aliases normalised). Raises AgentOutputError on any failure.
    """
    schema = OUTPUT_SCHEMAS.get(agent_type)
    if schema is None:
        raise AgentOutputError(f"Unknown agent type: {agent_type}")

    payload = extract_json(content)
    try:
        model = schema.model_validate(payload)
    except ValueError as exc:
        raise AgentOutputError(f"Response failed {agent_type} schema validation: {exc}") from exc
    return model.model_dump(mode="json")


__all__ = [
    "AgentOutputError",
    "OUTPUT_SCHEMAS",
    "DesignOutput",
    "SequencingOutput",
    "SolutionsOutput",
    "SynthesisOutput",
    "extract_json",
    "parse_agent_output",
]
