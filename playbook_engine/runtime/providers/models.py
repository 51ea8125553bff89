"""
models.py - Data models for the capability provider abstraction.

This module defines the request/response types exchanged with external
capabilities:
- GenerationRequest / GenerationResult: LLM generation
- Personality: Persona configuration resolved for an agent
- ApiCallDescriptor: External call issued by API steps

These are pure data structures with no dependencies on provider implementations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class GenerationRequest:
    """Input to a GenerationProvider.

    Attributes:
        system_prompt: Persona and instructions.
        user_prompt: The task text.
        model: Requested model; providers may substitute their own.
        temperature: Sampling temperature.
        max_tokens: Completion budget.
        agent_id: Agent on whose behalf the call is made (used by stubs).
    """

    system_prompt: str
    user_prompt: str
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    agent_id: Optional[str] = None


@dataclass(frozen=True)
class GenerationResult:
    """Output of a GenerationProvider.

    ``stubbed`` is True when the completion came from the templated
    fallback rather than a real provider.
    """

    completion: str
    model: str
    provider: str
    usage: Dict[str, int] = field(default_factory=dict)
    stubbed: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class Personality:
    """Persona applied to AGENT prompts.

    Attributes:
        slug: Stable identifier of the personality.
        tone: e.g. "formal", "analytical", "friendly".
        style: e.g. "structured", "concise", "verbose".
        forbid: Phrases or behaviours the agent must avoid.
        require: Phrases or behaviours the agent must include.
        domain_specialty: Domains the persona is tuned for.
        escalation_sensitivity: 0-1 scalar surfaced to prompts.
    """

    slug: str
    tone: str = "neutral"
    style: str = "concise"
    forbid: List[str] = field(default_factory=list)
    require: List[str] = field(default_factory=list)
    domain_specialty: List[str] = field(default_factory=list)
    escalation_sensitivity: float = 0.5


@dataclass(frozen=True)
class ApiCallDescriptor:
    """External call issued by an API step."""

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout: Optional[float] = None


def api_call_descriptor_to_dict(descriptor: ApiCallDescriptor) -> Dict[str, Any]:
    return {
        "method": descriptor.method,
        "url": descriptor.url,
        "headers": dict(descriptor.headers),
        "body": descriptor.body,
        "timeout": descriptor.timeout,
    }
