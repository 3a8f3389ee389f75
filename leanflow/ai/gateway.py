"""
Lean Future-State Studio
LLM Gateway.

Routes agent prompts to a chat provider picked by model name:
    - OpenAI, Anthropic and Gemini SDKs (imported on first use, so a
      deployment installs only the SDK it talks to)
    - a deterministic local stub when no key is configured

Every provider call is bounded by a timeout; a timeout is an ordinary
failure. Retries are opt-in per call (agents use a single attempt).

Usage:
    from leanflow.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.chat(messages, model="gpt-4o-mini", purpose="design", timeout=90)
"""

import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4000
DEFAULT_TEMPERATURE = 0.7


class GatewayError(RuntimeError):
    """Every attempt against the resolved provider failed."""


def split_system(messages: list) -> tuple[str, list]:
    """Separate system prompts from the conversation turns."""
    system = [m["content"] for m in messages if m["role"] == "system"]
    turns = [m for m in messages if m["role"] != "system"]
    return "\n\n".join(system), turns


# ── Providers ─────────────────────────────────────────────────────────────────

class LLMProvider(ABC):
    """
    One chat backend.

    ``chat`` returns {content, prompt_tokens, completion_tokens, model};
    ``kwargs`` may carry temperature, max_tokens and timeout (seconds).
    """

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        ...


class _SDKProvider(LLMProvider):
    """Provider backed by a vendor SDK client built on first use."""

    api_key_env = ""
    package_hint = ""

    def __init__(self):
        self.api_key = os.getenv(self.api_key_env, "")
        self._client = None

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = self._build_client()
            except ImportError as exc:
                raise RuntimeError(
                    f"{self.package_hint} is not installed. Run: pip install {self.package_hint}"
                ) from exc
        return self._client

    def _build_client(self):
        raise NotImplementedError


class OpenAIProvider(_SDKProvider):
    """OpenAI chat completions in JSON mode."""

    api_key_env = "OPENAI_API_KEY"
    package_hint = "openai"

    def _build_client(self):
        import openai
        return openai.OpenAI(api_key=self.api_key)

    def chat(self, messages: list, model: str = "gpt-4o-mini", **kwargs) -> dict:
        response = self.client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=kwargs.get("max_tokens", DEFAULT_MAX_TOKENS),
            temperature=kwargs.get("temperature", DEFAULT_TEMPERATURE),
            response_format={"type": "json_object"},
            timeout=kwargs.get("timeout"),
        )
        usage = response.usage
        return {
            "content": response.choices[0].message.content or "",
            "prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "model": model,
        }


class AnthropicProvider(_SDKProvider):
    """Anthropic messages API. The system prompt travels outside the turns."""

    api_key_env = "ANTHROPIC_API_KEY"
    package_hint = "anthropic"

    def _build_client(self):
        import anthropic
        return anthropic.Anthropic(api_key=self.api_key)

    def chat(self, messages: list, model: str = "claude-3-5-haiku-20241022", **kwargs) -> dict:
        system, turns = split_system(messages)
        request = {
            "model": model,
            "messages": turns,
            "max_tokens": kwargs.get("max_tokens", DEFAULT_MAX_TOKENS),
            "temperature": kwargs.get("temperature", DEFAULT_TEMPERATURE),
        }
        if system:
            request["system"] = system
        if kwargs.get("timeout"):
            request["timeout"] = kwargs["timeout"]

        response = self.client.messages.create(**request)
        text = "".join(block.text for block in response.content if hasattr(block, "text"))
        return {
            "content": text,
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


class GeminiProvider(_SDKProvider):
    """Google Gemini via google-genai, JSON response MIME type."""

    api_key_env = "GEMINI_API_KEY"
    package_hint = "google-genai"

    def _build_client(self):
        from google import genai
        return genai.Client(api_key=self.api_key)

    def chat(self, messages: list, model: str = "gemini-2.5-flash", **kwargs) -> dict:
        from google.genai import types

        system, turns = split_system(messages)
        contents = [
            types.Content(role="model" if m["role"] == "assistant" else "user",
                          parts=[types.Part(text=m["content"])])
            for m in turns
        ]
        config = types.GenerateContentConfig(
            temperature=kwargs.get("temperature", DEFAULT_TEMPERATURE),
            max_output_tokens=kwargs.get("max_tokens", DEFAULT_MAX_TOKENS),
            response_mime_type="application/json",
            system_instruction=system or None,
        )
        if kwargs.get("timeout"):
            # milliseconds
            config.http_options = types.HttpOptions(timeout=int(kwargs["timeout"] * 1000))

        response = self.client.models.generate_content(model=model, contents=contents, config=config)
        usage = response.usage_metadata
        return {
            "content": response.text or "",
            "prompt_tokens": getattr(usage, "prompt_token_count", 0) or 0,
            "completion_tokens": getattr(usage, "candidates_token_count", 0) or 0,
            "model": model,
        }


# ── Local stub (dev/test without API keys) ───────────────────────────────────

class LocalStubProvider(LLMProvider):
    """Answers each agent type with fixed output that passes its schema."""

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        prompt = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
        content = self._generate_stub_response(prompt)
        return {
            "content": content,
            "prompt_tokens": len(prompt.split()),
            "completion_tokens": len(content.split()),
            "model": "local-stub",
        }

    @staticmethod
    def _generate_stub_response(user_msg: str) -> str:
        lower = user_msg.lower()

        if "future state process map" in lower:
            return json.dumps({
                "future_state": {
                    "name": "Future State",
                    "nodes": [
                        {"name": "Start", "lane": "Process", "step_type": "start",
                         "position_x": 0, "position_y": 0, "action": "unchanged"},
                        {"name": "Streamlined Step", "lane": "Process", "step_type": "action",
                         "position_x": 250, "position_y": 0, "action": "create",
                         "explanation": "Local stub output"},
                        {"name": "End", "lane": "Process", "step_type": "end",
                         "position_x": 500, "position_y": 0, "action": "unchanged"},
                    ],
                    "edges": [
                        {"source_node_index": 0, "target_node_index": 1},
                        {"source_node_index": 1, "target_node_index": 2},
                    ],
                }
            })

        if "implementation waves" in lower:
            return json.dumps({
                "waves": [
                    {"name": "Immediate / Quick Wins", "order_index": 0,
                     "start_estimate": "Week 1", "end_estimate": "Week 2", "solution_ids": []},
                ],
                "dependencies": [],
            })

        if "solution" in lower and "theme" in lower:
            return json.dumps({
                "solutions": [
                    {"bucket": "modify", "title": "Standardise hand-offs",
                     "description": "Introduce a checklist at each lane boundary.",
                     "expected_impact": "Fewer rework loops", "effort_level": "low"},
                ]
            })

        return json.dumps({
            "themes": [
                {"name": "Waiting between lanes", "summary": "Hand-offs queue work.",
                 "confidence": "medium", "observation_ids": ["stub"]},
            ]
        })


# ── Gateway ───────────────────────────────────────────────────────────────────

class LLMGateway:
    """
    Single entry point for agent chat calls.

    Resolves the provider from the model name (exact map first, then the
    model-family prefix) and degrades to the local stub when that
    provider has no API key configured.
    """

    PROVIDER_MAP = {
        "gpt-4o-mini": "openai",
        "gpt-4o": "openai",
        "claude-3-5-haiku-20241022": "anthropic",
        "claude-3-5-sonnet-20241022": "anthropic",
        "gemini-2.5-flash": "gemini",
        "gemini-2.5-pro": "gemini",
        "local-stub": "local",
    }
    PREFIX_MAP = (("gpt-", "openai"), ("o1", "openai"), ("claude-", "anthropic"),
                  ("gemini-", "gemini"))
    SDK_PROVIDERS = {
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
        "gemini": GeminiProvider,
    }

    def __init__(self, default_model: str | None = None):
        self.default_model = (default_model or os.getenv("LLM_DEFAULT_CHAT_MODEL")
                              or "gpt-4o-mini")
        self._providers: dict[str, LLMProvider] = {"local": LocalStubProvider()}
        for name, cls in self.SDK_PROVIDERS.items():
            if os.getenv(cls.api_key_env):
                self._providers[name] = cls()

    def provider_name_for(self, model: str) -> str:
        if model in self.PROVIDER_MAP:
            return self.PROVIDER_MAP[model]
        for prefix, name in self.PREFIX_MAP:
            if model.startswith(prefix):
                return name
        return "local"

    def _get_provider(self, model: str) -> tuple[LLMProvider, str]:
        name = self.provider_name_for(model)
        if name not in self._providers:
            logger.warning("No API key for provider %s; model %s served by the local stub",
                           name, model)
            name = "local"
        return self._providers[name], name

    def chat(
        self,
        messages: list,
        model: str | None = None,
        *,
        purpose: str = "",
        max_retries: int = 1,
        timeout: float | None = None,
        **kwargs,
    ) -> dict:
        """
        Run one chat completion.

        Args:
            messages: Chat messages ({"role", "content"}).
            model: Model name; the gateway default when omitted.
            purpose: Agent type, used in log lines only.
            max_retries: Total attempts (1 = no retry). Backoff 1s, 2s, 4s cap.
            timeout: Per-attempt timeout in seconds, handed to the SDK.
            **kwargs: temperature, max_tokens.

        Returns:
            {content, prompt_tokens, completion_tokens, model, provider, latency_ms}

        Raises:
            GatewayError: No attempt succeeded (timeouts included).
        """
        model = model or self.default_model
        provider, provider_name = self._get_provider(model)

        last_error = None
        for attempt in range(1, max_retries + 1):
            started = time.monotonic()
            try:
                result = provider.chat(messages, model, timeout=timeout, **kwargs)
            except Exception as exc:  # SDKs raise their own hierarchies
                last_error = exc
                logger.warning("LLM attempt %d/%d failed purpose=%s provider=%s: %s",
                               attempt, max_retries, purpose, provider_name, exc)
                if attempt < max_retries:
                    threading.Event().wait(min(2 ** (attempt - 1), 4))
                continue

            latency_ms = int((time.monotonic() - started) * 1000)
            result.update(provider=provider_name, latency_ms=latency_ms)
            logger.info("LLM call ok purpose=%s provider=%s model=%s tokens=%s/%s",
                        purpose, provider_name, result.get("model", model),
                        result.get("prompt_tokens", 0), result.get("completion_tokens", 0),
                        extra={"duration_ms": latency_ms})
            return result

        raise GatewayError(f"{provider_name} call failed after {max_retries} attempt(s): {last_error}")
