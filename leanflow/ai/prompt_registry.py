"""
Lean Future-State Studio
Prompt Registry.

One system + user template per agent type. ``{{name}}`` placeholders are
filled at render time; placeholders without a value stay in the text.
YAML files in the prompts directory replace built-ins of the same
(name, version) or add new versions::

    # prompts/design.yaml
    name: design
    version: v2
    system: You are ...
    user: "{{body}}"

Usage:
    from leanflow.ai.prompt_registry import PromptRegistry
    registry = PromptRegistry()
    messages = registry.render("design", body="Design a future state process map ...")
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

# LEANFLOW_PROMPTS_DIR, else <repo>/prompts
_PROMPTS_DIR = os.getenv(
    "LEANFLOW_PROMPTS_DIR",
    str(Path(__file__).resolve().parents[2] / "prompts"),
)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")
_JSON_ONLY = "Respond with valid JSON only, no other text."


@dataclass(frozen=True)
class PromptTemplate:
    name: str
    version: str
    system: str
    user: str
    description: str = ""

    def render(self, **variables) -> list[dict]:
        """Chat messages for this template; empty parts are omitted."""
        messages = []
        for role, text in (("system", self.system), ("user", self.user)):
            content = fill_placeholders(text, variables)
            if content.strip():
                messages.append({"role": role, "content": content})
        return messages

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "system_preview": self.system[:200],
            "user_preview": self.user[:200],
        }


def fill_placeholders(text: str, variables: dict) -> str:
    def _value(match):
        key = match.group(1)
        return str(variables[key]) if key in variables else match.group(0)
    return _PLACEHOLDER.sub(_value, text)


def load_yaml_templates(directory: str) -> list[PromptTemplate]:
    """Templates from ``*.yaml`` in ``directory``. Unreadable files are logged and skipped."""
    path = Path(directory)
    if not path.is_dir():
        logger.debug("No prompts directory at %s; built-in templates only", directory)
        return []

    templates = []
    for file in sorted(path.glob("*.yaml")):
        try:
            data = yaml.safe_load(file.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            logger.error("Skipping prompt file %s: %s", file.name, exc)
            continue
        if not isinstance(data, dict):
            continue
        templates.append(PromptTemplate(
            name=data.get("name", file.stem),
            version=str(data.get("version", "v1")),
            system=data.get("system", ""),
            user=data.get("user", "{{body}}"),
            description=data.get("description", ""),
        ))
        logger.info("Prompt template %s %s loaded from %s",
                    templates[-1].name, templates[-1].version, file.name)
    return templates


class PromptRegistry:
    """Agent prompt templates keyed by (name, version)."""

    def __init__(self, prompts_dir: str | None = None):
        self._templates: dict[tuple[str, str], PromptTemplate] = {}
        for tpl in _DEFAULT_TEMPLATES + load_yaml_templates(prompts_dir or _PROMPTS_DIR):
            self._templates[(tpl.name, tpl.version)] = tpl

    def get(self, name: str, version: str = "v1") -> PromptTemplate | None:
        return self._templates.get((name, version))

    def render(self, name: str, version: str = "v1", **variables) -> list[dict]:
        """
        Render a template into chat messages.

        Raises:
            KeyError: No template for (name, version).
        """
        tpl = self.get(name, version)
        if tpl is None:
            raise KeyError(f"Prompt template not found: {name} {version}")
        return tpl.render(**variables)

    def list_templates(self) -> list[dict]:
        return [tpl.to_dict() for tpl in self._templates.values()]


# ── Built-in Agent Templates ──────────────────────────────────────────────────

_DEFAULT_TEMPLATES = [
    PromptTemplate(
        name="synthesis",
        version="v1",
        description="Cluster waste walk observations into evidence-anchored themes",
        system=(
            "You are a Lean process improvement expert specializing in waste analysis synthesis.\n"
            "Your task is to analyze waste walk observations and cluster them into meaningful themes.\n"
            "Each theme should represent a coherent pattern of waste or inefficiency.\n"
            "You must provide evidence-anchored outputs linking each theme to specific observations.\n"
            "Do NOT propose solutions - focus only on identifying and describing the problems.\n"
            "Always respond with valid JSON matching the expected schema exactly."
        ),
        user="{{body}}\n\n" + _JSON_ONLY,
    ),
    PromptTemplate(
        name="solutions",
        version="v1",
        description="Generate eliminate/modify/create solutions for identified themes",
        system=(
            "You are a Lean process improvement expert specializing in solution design.\n"
            "Your task is to generate actionable solutions based on identified waste themes.\n"
            "Categorize solutions into three buckets:\n"
            "- ELIMINATE: Completely remove wasteful steps or processes\n"
            "- MODIFY: Improve or streamline existing processes\n"
            "- CREATE: Introduce new capabilities or processes\n\n"
            "Each solution must be linked to the themes and observations it addresses.\n"
            "Consider effort level, risks, and dependencies for each solution.\n"
            "Always respond with valid JSON matching the expected schema exactly."
        ),
        user="{{body}}\n\n" + _JSON_ONLY,
    ),
    PromptTemplate(
        name="sequencing",
        version="v1",
        description="Sequence accepted solutions into implementation waves",
        system=(
            "You are a Lean process improvement expert specializing in implementation planning.\n"
            "Your task is to sequence accepted solutions into implementation waves:\n"
            "- Immediate / Quick Wins: Can be done now with minimal effort\n"
            "- 0-30 Days: Short-term improvements\n"
            "- 30-90 Days: Medium-term initiatives\n"
            "- 90+ Days: Long-term strategic changes\n\n"
            "Consider dependencies between solutions and bundle related changes.\n"
            "Identify and flag any dependency conflicts or circular dependencies.\n"
            "Always respond with valid JSON matching the expected schema exactly."
        ),
        user="{{body}}\n\n" + _JSON_ONLY,
    ),
    PromptTemplate(
        name="design",
        version="v1",
        description="Design a future state process map from accepted solutions",
        system=(
            "You are a Lean process improvement expert specializing in future state design.\n"
            "Your task is to generate a future state process map based on accepted solutions.\n"
            "For each step in the current process, determine if it should be:\n"
            "- KEEP: Unchanged from current state\n"
            "- MODIFY: Changed in some way (describe what changes)\n"
            "- REMOVE: Eliminated entirely\n"
            "- NEW: A new step being added\n\n"
            "Preserve the lane structure and provide clear explanations for each change.\n"
            "Link changes to the solutions that drive them.\n"
            "Position nodes logically to maintain flow clarity.\n"
            "Always respond with valid JSON matching the expected schema exactly."
        ),
        user="{{body}}\n\n" + _JSON_ONLY,
    ),
]
