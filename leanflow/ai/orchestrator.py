"""
Lean Future-State Studio
Agent Orchestrator.

Wraps one external generation call with:
    - fingerprint caching (cache hit → no new AgentRun row)
    - AgentRun lifecycle bookkeeping (queued → running → succeeded | failed)
    - bounded timeout, single attempt (a failure is a cache miss next time)
    - structured-output validation per agent type

The orchestrator knows nothing about how outputs are persisted into domain
tables; that is the calling service's job.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from leanflow.ai.cache import compute_fingerprint, find_cached_run
from leanflow.ai.gateway import GatewayError, LLMGateway
from leanflow.ai.prompt_registry import PromptRegistry
from leanflow.ai.schemas import AgentOutputError, parse_agent_output
from leanflow.core.exceptions import NotFoundError
from leanflow.models import db
from leanflow.models.ai import AGENT_TYPES, AgentRun
from leanflow.models.base import utcnow

logger = logging.getLogger(__name__)


@dataclass
class AgentResult:
    """Outcome of one orchestrator invocation."""
    success: bool
    cached: bool
    run_id: str | None
    data: dict | None = None
    error: str | None = None
    model: str | None = None
    provider: str | None = None
    fingerprint: str | None = field(default=None, repr=False)

    def to_dict(self) -> dict:
        d = {"success": self.success, "cached": self.cached, "run_id": self.run_id,
             "model": self.model, "provider": self.provider}
        if self.success:
            d["data"] = self.data
        else:
            d["error"] = self.error
        return d


class AgentOrchestrator:
    """
    Runs agents against the LLM gateway with fingerprint caching.

    Args:
        gateway: LLMGateway (or anything with the same ``chat`` signature).
        registry: PromptRegistry holding one template per agent type.
        model: Model override; defaults to LLM_DEFAULT_CHAT_MODEL.
    """

    def __init__(self, gateway=None, registry: PromptRegistry | None = None,
                 model: str | None = None):
        self.gateway = gateway or LLMGateway(
            default_model=current_app.config.get("LLM_DEFAULT_CHAT_MODEL"),
        )
        self.registry = registry or PromptRegistry()
        self.model = model

    def _settings(self) -> dict:
        cfg = current_app.config
        return {
            "timeout": cfg.get("AGENT_TIMEOUT_SECONDS", 90),
            "max_tokens": cfg.get("AGENT_MAX_TOKENS", 4000),
            "temperature": cfg.get("AGENT_TEMPERATURE", 0.7),
        }

    def run(
        self,
        session_id: str,
        agent_type: str,
        inputs: dict,
        build_prompt: Callable[[dict], str],
        force_rerun: bool = False,
        user_id: str | None = None,
    ) -> AgentResult:
        """
        Invoke ``agent_type`` for a session.

        A cached result is returned when an identical (by fingerprint) run
        already succeeded, unless ``force_rerun``. Every non-cached call
        leaves exactly one AgentRun row in a terminal status.
        """
        if agent_type not in AGENT_TYPES:
            raise ValueError(f"Unknown agent type: {agent_type}")

        log_ctx = {"session_id": session_id, "agent_type": agent_type}
        fingerprint = compute_fingerprint(agent_type, inputs)

        if not force_rerun:
            cached = find_cached_run(session_id, agent_type, fingerprint)
            if cached is not None:
                logger.info("Agent served from cache", extra={**log_ctx, "run_id": cached.id})
                return AgentResult(
                    success=True, cached=True, run_id=cached.id, data=cached.outputs,
                    model=cached.model, provider=cached.provider, fingerprint=fingerprint,
                )

        run = AgentRun(
            session_id=session_id,
            agent_type=agent_type,
            input_hash=fingerprint,
            inputs=inputs,
            status="queued",
            created_by=user_id,
        )
        db.session.add(run)
        db.session.commit()
        log_ctx["run_id"] = run.id

        run.status = "running"
        run.started_at = utcnow()
        db.session.commit()

        try:
            messages = self.registry.render(agent_type, body=build_prompt(inputs))
            response = self.gateway.chat(
                messages,
                model=self.model,
                purpose=agent_type,
                max_retries=1,
                **self._settings(),
            )
            data = parse_agent_output(agent_type, response.get("content", ""))

            run.status = "succeeded"
            run.outputs = data
            run.model = response.get("model")
            run.provider = response.get("provider")
            run.completed_at = utcnow()
            db.session.commit()
        except (GatewayError, AgentOutputError) as exc:
            return self._fail(run, str(exc), log_ctx, fingerprint)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Agent run could not be recorded", extra=log_ctx)
            return self._fail(run, f"Database error: {exc.__class__.__name__}", log_ctx, fingerprint)
        except Exception as exc:
            logger.exception("Agent run raised unexpectedly", extra=log_ctx)
            return self._fail(run, str(exc) or exc.__class__.__name__, log_ctx, fingerprint)

        logger.info("Agent run succeeded", extra={**log_ctx, "duration_ms": run.duration_ms})
        return AgentResult(
            success=True, cached=False, run_id=run.id, data=data,
            model=run.model, provider=run.provider, fingerprint=fingerprint,
        )

    @staticmethod
    def _fail(run: AgentRun, message: str, log_ctx: dict, fingerprint: str) -> AgentResult:
        run.status = "failed"
        run.error = message
        run.completed_at = utcnow()
        db.session.commit()
        logger.warning("Agent run failed: %s", message, extra=log_ctx)
        return AgentResult(
            success=False, cached=False, run_id=run.id, error=message, fingerprint=fingerprint,
        )


def get_agent_run(run_id: str) -> AgentRun:
    run = db.session.get(AgentRun, run_id)
    if run is None:
        raise NotFoundError(resource="AgentRun", resource_id=run_id)
    return run


def run_agent(session_id: str, agent_type: str, inputs: dict, build_prompt,
              force_rerun: bool = False, user_id: str | None = None,
              orchestrator: AgentOrchestrator | None = None) -> AgentResult:
    """Convenience wrapper used by the pipeline services."""
    orchestrator = orchestrator or AgentOrchestrator()
    return orchestrator.run(session_id, agent_type, inputs, build_prompt,
                            force_rerun=force_rerun, user_id=user_id)


__all__ = ["AgentOrchestrator", "AgentResult", "get_agent_run", "run_agent"]

