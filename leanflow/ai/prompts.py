"""
Prompt builders for the four pipeline agents.

Each builder takes the agent's input payload (the same dict that is
fingerprinted) and returns the user prompt body. The orchestrator wraps the
body in the agent's registered template.
"""


def _na(value):
    return "N/A" if value is None else value


def format_workflow_context(context: dict | None) -> str:
    """Render optional workflow context (purpose, constraints, stakeholders...) as markdown."""
    if not context:
        return "No workflow context provided."

    lines = []
    scalar_fields = (
        ("purpose", "Purpose"),
        ("business_value", "Business Value"),
        ("volume_frequency", "Volume/Frequency"),
        ("sla_targets", "SLA Targets"),
    )
    list_fields = (
        ("trigger_events", "Triggers", ", "),
        ("end_outcomes", "Target Outcomes", ", "),
        ("compliance_requirements", "Compliance", ", "),
        ("constraints", "Constraints", "; "),
        ("assumptions", "Assumptions", "; "),
    )
    for key, label in scalar_fields:
        if context.get(key):
            lines.append(f"- **{label}**: {context[key]}")
    for key, label, sep in list_fields:
        if context.get(key):
            lines.append(f"- **{label}**: {sep.join(context[key])}")

    stakeholders = context.get("stakeholders") or []
    if stakeholders:
        lines.append("\n### Key Stakeholders")
        for s in stakeholders:
            line = f"- **{s.get('role')}**: {s.get('responsibilities') or 'N/A'}"
            if s.get("pain_points"):
                line += f" (Pain points: {s['pain_points']})"
            lines.append(line)

    systems = context.get("systems") or []
    if systems:
        lines.append("\n### Systems Involved")
        for s in systems:
            line = f"- **{s.get('name')}**: {s.get('role') or 'N/A'}"
            if s.get("integration_notes"):
                line += f" ({s['integration_notes']})"
            lines.append(line)

    return "\n".join(lines) or "No workflow context details provided."


def build_synthesis_prompt(inputs: dict) -> str:
    observations = inputs.get("observations", [])
    steps = inputs.get("steps", [])
    waste_types = inputs.get("waste_types", [])

    obs_lines = []
    for o in observations:
        codes = ", ".join(w.get("code", "") for w in o.get("waste_types", [])) or "None"
        obs_lines.append(
            f"### Observation {o['id']}\n"
            f"- Step: {o.get('step_name')} (Lane: {o.get('lane')})\n"
            f"- Priority Score: {_na(o.get('priority_score'))}\n"
            f"- Waste Types: {codes}\n"
            f"- Notes: {o.get('notes') or 'No notes'}"
        )

    return (
        "Analyze the following waste walk observations and cluster them into meaningful themes.\n\n"
        f"## Workflow Context\n{format_workflow_context(inputs.get('workflow_context'))}\n\n"
        "## Available Process Steps\n"
        + "\n".join(f"- {s['id']}: {s['step_name']} (Lane: {s.get('lane')})" for s in steps)
        + "\n\n## Available Waste Types\n"
        + "\n".join(f"- {w['id']}: {w.get('code')} - {w.get('name')}" for w in waste_types)
        + f"\n\n## Observations ({len(observations)} total)\n"
        + "\n\n".join(obs_lines)
        + "\n\n## Instructions\n"
        "1. Group related observations into themes based on root causes, affected areas, or waste patterns.\n"
        "2. Each theme should have at least one observation linked to it.\n"
        "3. Provide a clear name and summary for each theme.\n"
        "4. Suggest root cause hypotheses for each theme.\n"
        "5. Assign a confidence level (high/medium/low) based on evidence strength.\n\n"
        "## Output Schema\n"
        '{"themes": [{"name": "...", "summary": "...", "confidence": "high|medium|low", '
        '"root_cause_hypotheses": ["..."], "observation_ids": ["..."], "step_ids": ["..."], '
        '"waste_type_ids": ["..."]}]}'
    )


def build_solutions_prompt(inputs: dict) -> str:
    themes = inputs.get("themes", [])
    steps = inputs.get("steps", [])
    observations = inputs.get("observations", [])

    theme_lines = [
        f"### Theme: {t['name']} (ID: {t['id']})\n"
        f"- Summary: {t.get('summary')}\n"
        f"- Root Causes: {', '.join(t.get('root_cause_hypotheses') or []) or 'Not identified'}\n"
        f"- Affected Steps: {len(t.get('step_ids') or [])} steps\n"
        f"- Evidence: {len(t.get('observation_ids') or [])} observations"
        for t in themes
    ]

    return (
        "Generate solutions for the identified waste themes.\n\n"
        f"## Workflow Context\n{format_workflow_context(inputs.get('workflow_context'))}\n\n"
        "## Identified Themes\n" + "\n\n".join(theme_lines)
        + "\n\n## Process Steps\n"
        + "\n".join(f"- {s['id']}: {s['step_name']} (Lane: {s.get('lane')})" for s in steps)
        + "\n\n## Sample Observations for Context\n"
        + "\n".join(
            f"- [{o['id']}] {o.get('step_name')}: {o.get('notes') or 'No notes'} "
            f"(Priority: {_na(o.get('priority_score'))})"
            for o in observations[:10]
        )
        + "\n\n## Instructions\n"
        "Generate solutions in three buckets:\n"
        "1. ELIMINATE: Remove wasteful steps or processes entirely\n"
        "2. MODIFY: Improve or streamline existing processes\n"
        "3. CREATE: Add new capabilities or processes\n\n"
        "For each solution link the themes and steps it addresses, assess effort and risks, "
        "and suggest an implementation wave (Immediate, 0-30 days, 30-90 days, 90+ days).\n\n"
        "## Output Schema\n"
        '{"solutions": [{"bucket": "eliminate|modify|create", "title": "...", "description": "...", '
        '"expected_impact": "...", "effort_level": "low|medium|high", "risks": ["..."], '
        '"dependencies": ["..."], "recommended_wave": "...", "theme_ids": ["..."], '
        '"step_ids": ["..."], "observation_ids": ["..."]}]}'
    )


def build_sequencing_prompt(inputs: dict) -> str:
    solutions = inputs.get("solutions", [])
    blocks = [
        f"### {s['title']} (ID: {s['id']})\n"
        f"- Bucket: {s.get('bucket')}\n"
        f"- Effort: {s.get('effort_level')}\n"
        f"- Recommended Wave: {s.get('recommended_wave') or 'None'}\n"
        f"- Description: {s.get('description') or ''}\n"
        f"- Dependencies: {', '.join(s.get('dependencies') or []) or 'None'}\n"
        f"- Steps Affected: {len(s.get('step_ids') or [])}"
        for s in solutions
    ]

    return (
        "Sequence the following accepted solutions into implementation waves.\n\n"
        f"## Accepted Solutions ({len(solutions)} total)\n" + "\n\n".join(blocks)
        + "\n\n## Instructions\n"
        "1. Group solutions into implementation waves:\n"
        "   - Immediate / Quick Wins (order_index: 0)\n"
        "   - 0-30 Days (order_index: 1)\n"
        "   - 30-90 Days (order_index: 2)\n"
        "   - 90+ Days (order_index: 3)\n"
        "2. Identify dependencies between solutions (which must be completed before others).\n"
        "3. Consider effort levels, logical ordering, quick wins and bundling related changes.\n\n"
        "## Output Schema\n"
        '{"waves": [{"name": "Immediate / Quick Wins", "order_index": 0, "start_estimate": "Week 1", '
        '"end_estimate": "Week 2", "solution_ids": ["..."]}], '
        '"dependencies": [{"solution_id": "...", "depends_on_solution_id": "..."}]}'
    )


def build_design_prompt(inputs: dict) -> str:
    steps = inputs.get("current_steps", [])
    edges = inputs.get("current_edges", [])
    solutions = inputs.get("solutions", [])
    lanes = inputs.get("lanes", [])

    step_blocks = [
        f"- ID: {s['id']}\n"
        f"  Name: {s['step_name']}\n"
        f"  Lane: {s.get('lane')}\n"
        f"  Type: {s.get('step_type')}\n"
        f"  Position: ({s.get('position_x')}, {s.get('position_y')})\n"
        f"  Lead Time: {_na(s.get('lead_time_minutes'))} min\n"
        f"  Cycle Time: {_na(s.get('cycle_time_minutes'))} min"
        for s in steps
    ]
    edge_lines = [
        f"- {e['source_step_id']} -> {e['target_step_id']}"
        + (f" ({e['label']})" if e.get("label") else "")
        for e in edges
    ]
    solution_blocks = [
        f"### {s['title']} (ID: {s['id']})\n"
        f"- Action: {str(s.get('bucket', '')).upper()}\n"
        f"- Description: {s.get('description') or ''}\n"
        f"- Target Steps: {', '.join(s.get('step_ids') or []) or 'General'}"
        for s in solutions
    ]

    return (
        "Design a future state process map based on the accepted solutions.\n\n"
        f"## Workflow Context\n{format_workflow_context(inputs.get('workflow_context'))}\n\n"
        "## Current Process Steps\n" + "\n".join(step_blocks)
        + "\n\n## Current Connections\n" + "\n".join(edge_lines)
        + "\n\n## Available Lanes\n" + "\n".join(f"- {lane}" for lane in lanes)
        + "\n\n## Solutions to Implement\n" + "\n\n".join(solution_blocks)
        + "\n\n## Instructions\n"
        "1. For each current step, determine the appropriate action:\n"
        "   - KEEP: Unchanged from current state\n"
        "   - MODIFY: Changed based on solutions (describe changes in modified_fields)\n"
        "   - REMOVE: Eliminated entirely\n"
        "2. Add NEW steps where solutions require new capabilities.\n"
        "3. Preserve logical flow and lane organization.\n"
        "4. Maintain proper positioning for visual clarity.\n"
        "5. Link each change to the solution that drives it.\n"
        "6. Edges refer to nodes by their zero-based position in the nodes list.\n\n"
        "## Output Schema\n"
        '{"future_state": {"name": "Future State", "nodes": [{"source_step_id": "... or null", '
        '"name": "...", "description": "...", "lane": "...", '
        '"step_type": "action|decision|start|end|subprocess", "lead_time_minutes": 30, '
        '"cycle_time_minutes": 15, "position_x": 100, "position_y": 200, '
        '"action": "keep|modify|remove|new", "modified_fields": {}, '
        '"linked_solution_id": "... or null", "explanation": "..."}], '
        '"edges": [{"source_node_index": 0, "target_node_index": 1, "label": "..."}]}}'
    )


PROMPT_BUILDERS = {
    "synthesis": build_synthesis_prompt,
    "solutions": build_solutions_prompt,
    "sequencing": build_sequencing_prompt,
    "design": build_design_prompt,
}
