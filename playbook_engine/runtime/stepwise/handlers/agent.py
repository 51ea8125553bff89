"""
agent.py - AGENT step handler.

Builds a system prompt from the agent's personality and a user prompt from
the step config, then asks the injected GenerationProvider for a
completion. The provider is expected to be wrapped by
FallbackGenerationProvider at configuration time, so an unavailable
provider yields the templated stub and ``metadata.stubbed = True`` instead
of a failed step.

With ``responseFormat: "json"`` a JSON-object completion is parsed, and the
control keys a step may use to talk to the coordinator and the memory
recorder (sharedState, escalation, escalationReset, memoryWorthy,
importance) are lifted to the top level of the output.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from ...providers import GenerationProvider, GenerationRequest, Personality, PersonalityProvider
from ...types import AgentStepConfig, StepType
from ...types._time import _datetime_to_iso, _utcnow
from .base import StepExecutionContext, StepHandler, StepOutcome

logger = logging.getLogger(__name__)

CONTROL_KEYS = ("sharedState", "escalation", "escalationReset", "memoryWorthy", "importance")


def _render_input(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def build_system_prompt(config: AgentStepConfig, personality: Optional[Personality]) -> str:
    """System message (or a default preamble) plus persona constraints."""
    lines: List[str] = [config.system_message or f"You are {config.agent_id}, an AI agent."]
    if personality is not None:
        lines.append(f"Tone: {personality.tone}. Style: {personality.style}.")
        if personality.domain_specialty:
            lines.append("Domain specialty: " + ", ".join(personality.domain_specialty) + ".")
        if personality.require:
            lines.append("Always: " + "; ".join(personality.require) + ".")
        if personality.forbid:
            lines.append("Never: " + "; ".join(personality.forbid) + ".")
        lines.append(f"Escalation sensitivity: {personality.escalation_sensitivity:.2f}.")
    return "\n".join(lines)


def build_user_prompt(config: AgentStepConfig, step_input: Any) -> str:
    """Config prompt with ``{input}`` substituted, or the JSON input."""
    if config.prompt:
        return config.prompt.replace("{input}", _render_input(step_input))
    return _render_input(step_input)


def _parse_json_completion(completion: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(completion)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


class AgentStepHandler(StepHandler):
    """Executes AGENT steps against a generation capability."""

    def __init__(
        self,
        generation: GenerationProvider,
        personalities: Optional[PersonalityProvider] = None,
        default_model: str = "gpt-4",
        default_temperature: float = 0.7,
    ):
        self._generation = generation
        self._personalities = personalities
        self._default_model = default_model
        self._default_temperature = default_temperature

    @property
    def step_type(self) -> StepType:
        return StepType.AGENT

    def execute(self, ctx: StepExecutionContext) -> StepOutcome:
        config: AgentStepConfig = ctx.step.config

        personality = None
        if self._personalities is not None:
            personality = self._personalities.get_personality_for_agent(ctx.org_id, config.agent_id)

        model = config.model or self._default_model
        temperature = (
            config.temperature if config.temperature is not None else self._default_temperature
        )
        user_prompt = build_user_prompt(config, ctx.input)
        request = GenerationRequest(
            system_prompt=build_system_prompt(config, personality),
            user_prompt=user_prompt,
            model=model,
            temperature=temperature,
            max_tokens=config.max_tokens,
            agent_id=config.agent_id,
        )
        result = self._generation.generate(request)

        if result.stubbed:
            logger.info(
                "AGENT step '%s' (run %s) used stub completion for agent '%s'",
                ctx.step.key,
                ctx.run_id,
                config.agent_id,
            )

        metadata: Dict[str, Any] = {
            "executedAt": _datetime_to_iso(_utcnow()),
            "stubbed": result.stubbed,
            "provider": result.provider,
            "usage": dict(result.usage),
        }
        if personality is not None:
            metadata["personality"] = personality.slug
        if result.error:
            metadata["providerError"] = result.error

        output: Dict[str, Any] = {
            "agent": config.agent_id,
            "model": result.model or model,
            "temperature": temperature,
            "prompt": user_prompt,
            "response": result.completion,
            "metadata": metadata,
        }

        if config.response_format == "json":
            parsed = _parse_json_completion(result.completion)
            if parsed is None:
                logger.debug(
                    "AGENT step '%s': completion is not a JSON object; keeping text response",
                    ctx.step.key,
                )
            else:
                output["parsed"] = parsed
                for key in CONTROL_KEYS:
                    if key in parsed:
                        output[key] = parsed[key]

        return StepOutcome(output=output)
