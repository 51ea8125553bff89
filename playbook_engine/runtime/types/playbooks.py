"""Playbook definition types.

A playbook is an immutable, ordered list of steps. Each step's ``config`` is
a tagged union keyed by the step ``type``: the raw JSON config is parsed into
one of AgentStepConfig, DataStepConfig, BranchStepConfig or ApiStepConfig
when the step is constructed, so handlers never cast untyped dictionaries.

Raw configs use the camelCase keys the playbook editor stores
(``agentId``, ``sourceKey``, ``nextStepKey``...). snake_case aliases are
accepted for configs written by hand in Python.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..errors import InvalidStepConfig
from ._ids import OrgId, PlaybookId


class PlaybookStatus(str, Enum):
    """Lifecycle status of a playbook definition."""

    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    DEPRECATED = "DEPRECATED"
    ARCHIVED = "ARCHIVED"


class StepType(str, Enum):
    """Step variants understood by the executor."""

    AGENT = "AGENT"
    DATA = "DATA"
    BRANCH = "BRANCH"
    API = "API"


DATA_OPERATIONS = ("pluck", "map", "merge", "transform")
BRANCH_OPERATORS = ("equals", "notEquals", "contains", "greaterThan", "lessThan", "exists")
HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
RESPONSE_FORMATS = ("text", "json")


# =============================================================================
# Parsing helpers
# =============================================================================


def _pick(raw: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    """Return the first present key among ``names`` (camelCase first)."""
    for name in names:
        if name in raw:
            return raw[name]
    return default


def _optional_str(raw: Mapping[str, Any], *names: str, where: str) -> Optional[str]:
    value = _pick(raw, *names)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidStepConfig(f"{where}: '{names[0]}' must be a string")
    return value


def _optional_number(raw: Mapping[str, Any], *names: str, where: str) -> Optional[float]:
    value = _pick(raw, *names)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidStepConfig(f"{where}: '{names[0]}' must be a number")
    return value


@dataclass(frozen=True)
class MemoryCapture:
    """Per-step semantic memory capture options.

    Attributes:
        capture: Persist semantic memory after the step even if the output
            does not flag itself ``memoryWorthy``.
        scope: Memory scope (defaults to the engine-wide scope).
        ttl_seconds: Optional time-to-live for the memory.
        importance: Importance used when the output does not supply one.
    """

    capture: bool = False
    scope: Optional[str] = None
    ttl_seconds: Optional[int] = None
    importance: Optional[float] = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], where: str) -> "MemoryCapture":
        capture = _pick(raw, "captureMemory", "capture_memory", default=False)
        if not isinstance(capture, bool):
            raise InvalidStepConfig(f"{where}: 'captureMemory' must be a boolean")
        ttl = _optional_number(raw, "memoryTtlSeconds", "memory_ttl_seconds", where=where)
        return cls(
            capture=capture,
            scope=_optional_str(raw, "memoryScope", "memory_scope", where=where),
            ttl_seconds=int(ttl) if ttl is not None else None,
            importance=_optional_number(raw, "importance", where=where),
        )

    def to_raw(self) -> Dict[str, Any]:
        raw: Dict[str, Any] = {}
        if self.capture:
            raw["captureMemory"] = True
        if self.scope is not None:
            raw["memoryScope"] = self.scope
        if self.ttl_seconds is not None:
            raw["memoryTtlSeconds"] = self.ttl_seconds
        if self.importance is not None:
            raw["importance"] = self.importance
        return raw


# =============================================================================
# Step config variants
# =============================================================================


@dataclass(frozen=True)
class AgentStepConfig:
    """AGENT step: one LLM generation on behalf of a persona-bearing agent."""

    agent_id: str
    prompt: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    system_message: Optional[str] = None
    response_format: str = "text"
    memory: MemoryCapture = field(default_factory=MemoryCapture)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "AgentStepConfig":
        where = "AGENT config"
        agent_id = _pick(raw, "agentId", "agent_id")
        if not isinstance(agent_id, str) or not agent_id:
            raise InvalidStepConfig(f"{where}: 'agentId' is required")
        temperature = _optional_number(raw, "temperature", where=where)
        if temperature is not None and not 0 <= temperature <= 2:
            raise InvalidStepConfig(f"{where}: 'temperature' must be between 0 and 2")
        max_tokens = _optional_number(raw, "maxTokens", "max_tokens", where=where)
        if max_tokens is not None and max_tokens <= 0:
            raise InvalidStepConfig(f"{where}: 'maxTokens' must be positive")
        response_format = _pick(raw, "responseFormat", "response_format", default="text")
        if response_format not in RESPONSE_FORMATS:
            raise InvalidStepConfig(
                f"{where}: 'responseFormat' must be one of {', '.join(RESPONSE_FORMATS)}"
            )
        return cls(
            agent_id=agent_id,
            prompt=_optional_str(raw, "prompt", where=where),
            model=_optional_str(raw, "model", where=where),
            temperature=temperature,
            max_tokens=int(max_tokens) if max_tokens is not None else None,
            system_message=_optional_str(raw, "systemMessage", "system_message", where=where),
            response_format=response_format,
            memory=MemoryCapture.from_raw(raw, where),
        )

    def to_raw(self) -> Dict[str, Any]:
        raw: Dict[str, Any] = {"agentId": self.agent_id}
        for key, value in (
            ("prompt", self.prompt),
            ("model", self.model),
            ("temperature", self.temperature),
            ("maxTokens", self.max_tokens),
            ("systemMessage", self.system_message),
        ):
            if value is not None:
                raw[key] = value
        if self.response_format != "text":
            raw["responseFormat"] = self.response_format
        raw.update(self.memory.to_raw())
        return raw


@dataclass(frozen=True)
class DataStepConfig:
    """DATA step: a pure transform over the step input or a prior output.

    ``fields`` (pluck) and ``mapping`` (map) are only required by their
    operation; that requirement is checked when the step runs so it fails
    the step rather than the definition load.
    """

    operation: str
    source_key: Optional[str] = None
    fields: Tuple[str, ...] = ()
    mapping: Optional[Dict[str, str]] = None
    memory: MemoryCapture = field(default_factory=MemoryCapture)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "DataStepConfig":
        where = "DATA config"
        operation = _pick(raw, "operation")
        if operation not in DATA_OPERATIONS:
            raise InvalidStepConfig(
                f"{where}: unknown operation {operation!r} "
                f"(expected one of {', '.join(DATA_OPERATIONS)})"
            )
        fields = _pick(raw, "fields")
        if fields is not None:
            if not isinstance(fields, (list, tuple)) or not all(isinstance(f, str) for f in fields):
                raise InvalidStepConfig(f"{where}: 'fields' must be a list of strings")
        mapping = _pick(raw, "mapping")
        if mapping is not None:
            if not isinstance(mapping, Mapping) or not all(
                isinstance(v, str) for v in mapping.values()
            ):
                raise InvalidStepConfig(f"{where}: 'mapping' must map keys to source field names")
            mapping = dict(mapping)
        return cls(
            operation=operation,
            source_key=_optional_str(raw, "sourceKey", "source_key", where=where),
            fields=tuple(fields or ()),
            mapping=mapping,
            memory=MemoryCapture.from_raw(raw, where),
        )

    def to_raw(self) -> Dict[str, Any]:
        raw: Dict[str, Any] = {"operation": self.operation}
        if self.source_key is not None:
            raw["sourceKey"] = self.source_key
        if self.fields:
            raw["fields"] = list(self.fields)
        if self.mapping is not None:
            raw["mapping"] = dict(self.mapping)
        raw.update(self.memory.to_raw())
        return raw


@dataclass(frozen=True)
class BranchCondition:
    """One entry of a BRANCH step's ordered condition list."""

    operator: str
    next_step_key: str
    value: Any = None

    @classmethod
    def from_raw(cls, raw: Any, index: int) -> "BranchCondition":
        where = f"BRANCH condition #{index}"
        if not isinstance(raw, Mapping):
            raise InvalidStepConfig(f"{where}: must be an object")
        operator = raw.get("operator")
        if operator not in BRANCH_OPERATORS:
            raise InvalidStepConfig(
                f"{where}: unknown operator {operator!r} "
                f"(expected one of {', '.join(BRANCH_OPERATORS)})"
            )
        next_step_key = _pick(raw, "nextStepKey", "next_step_key")
        if not isinstance(next_step_key, str) or not next_step_key:
            raise InvalidStepConfig(f"{where}: 'nextStepKey' is required")
        return cls(operator=operator, next_step_key=next_step_key, value=raw.get("value"))

    def to_raw(self) -> Dict[str, Any]:
        raw: Dict[str, Any] = {"operator": self.operator, "nextStepKey": self.next_step_key}
        if self.value is not None:
            raw["value"] = self.value
        return raw


@dataclass(frozen=True)
class BranchStepConfig:
    """BRANCH step: first matching condition picks the next step."""

    source_key: str
    conditions: Tuple[BranchCondition, ...] = ()
    default_step_key: Optional[str] = None
    path: Optional[str] = None
    memory: MemoryCapture = field(default_factory=MemoryCapture)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "BranchStepConfig":
        where = "BRANCH config"
        source_key = _pick(raw, "sourceKey", "source_key")
        if not isinstance(source_key, str) or not source_key:
            raise InvalidStepConfig(f"{where}: 'sourceKey' is required")
        conditions = _pick(raw, "conditions", default=[])
        if not isinstance(conditions, (list, tuple)):
            raise InvalidStepConfig(f"{where}: 'conditions' must be a list")
        return cls(
            source_key=source_key,
            conditions=tuple(BranchCondition.from_raw(c, i) for i, c in enumerate(conditions)),
            default_step_key=_optional_str(raw, "defaultStepKey", "default_step_key", where=where),
            path=_optional_str(raw, "path", where=where),
            memory=MemoryCapture.from_raw(raw, where),
        )

    def to_raw(self) -> Dict[str, Any]:
        raw: Dict[str, Any] = {
            "sourceKey": self.source_key,
            "conditions": [c.to_raw() for c in self.conditions],
        }
        if self.default_step_key is not None:
            raw["defaultStepKey"] = self.default_step_key
        if self.path is not None:
            raw["path"] = self.path
        raw.update(self.memory.to_raw())
        return raw


@dataclass(frozen=True)
class ApiStepConfig:
    """API step: an external call descriptor handed to the call capability."""

    method: str
    url: str
    headers: Optional[Dict[str, str]] = None
    body: Any = None
    timeout: Optional[float] = None
    memory: MemoryCapture = field(default_factory=MemoryCapture)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "ApiStepConfig":
        where = "API config"
        method = raw.get("method")
        if not isinstance(method, str) or method.upper() not in HTTP_METHODS:
            raise InvalidStepConfig(
                f"{where}: 'method' must be one of {', '.join(HTTP_METHODS)}"
            )
        url = raw.get("url")
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            raise InvalidStepConfig(f"{where}: 'url' must be an absolute http(s) URL")
        headers = raw.get("headers")
        if headers is not None:
            if not isinstance(headers, Mapping) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in headers.items()
            ):
                raise InvalidStepConfig(f"{where}: 'headers' must map strings to strings")
            headers = dict(headers)
        timeout = _optional_number(raw, "timeout", where=where)
        if timeout is not None and timeout <= 0:
            raise InvalidStepConfig(f"{where}: 'timeout' must be positive")
        return cls(
            method=method.upper(),
            url=url,
            headers=headers,
            body=raw.get("body"),
            timeout=timeout,
            memory=MemoryCapture.from_raw(raw, where),
        )

    def to_raw(self) -> Dict[str, Any]:
        raw: Dict[str, Any] = {"method": self.method, "url": self.url}
        if self.headers is not None:
            raw["headers"] = dict(self.headers)
        if self.body is not None:
            raw["body"] = self.body
        if self.timeout is not None:
            raw["timeout"] = self.timeout
        raw.update(self.memory.to_raw())
        return raw


StepConfig = Union[AgentStepConfig, DataStepConfig, BranchStepConfig, ApiStepConfig]

_CONFIG_TYPES = {
    StepType.AGENT: AgentStepConfig,
    StepType.DATA: DataStepConfig,
    StepType.BRANCH: BranchStepConfig,
    StepType.API: ApiStepConfig,
}


def parse_step_config(step_type: StepType, raw: Any) -> StepConfig:
    """Parse a raw config dictionary into the variant for ``step_type``.

    Raises:
        InvalidStepConfig: If the config is not an object or has a wrong shape.
    """
    if not isinstance(raw, Mapping):
        raise InvalidStepConfig(f"{step_type.value} config must be an object")
    return _CONFIG_TYPES[step_type].from_raw(raw)


# =============================================================================
# Steps and playbooks
# =============================================================================


@dataclass(frozen=True)
class PlaybookStep:
    """A single step of a playbook.

    Attributes:
        key: Unique key within the playbook; used for routing and outputs.
        type: Step variant.
        config: Typed config matching ``type``.
        position: Ordering within the playbook; the lowest position starts.
        next_step_key: Static successor (ignored when a BRANCH decides).
        id: Storage identifier (defaults to the key).
        name: Display name.
    """

    key: str
    type: StepType
    config: StepConfig
    position: int = 0
    next_step_key: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self) -> None:
        expected = _CONFIG_TYPES[self.type]
        if not isinstance(self.config, expected):
            raise InvalidStepConfig(
                f"Step '{self.key}' of type {self.type.value} needs {expected.__name__}, "
                f"got {type(self.config).__name__}",
                step_key=self.key,
            )
        if self.id is None:
            object.__setattr__(self, "id", self.key)
        if self.name is None:
            object.__setattr__(self, "name", self.key)


@dataclass(frozen=True)
class Playbook:
    """Playbook header. Steps are carried by PlaybookDefinition."""

    id: PlaybookId
    org_id: OrgId
    name: str
    version: int = 1
    status: PlaybookStatus = PlaybookStatus.DRAFT


@dataclass(frozen=True)
class PlaybookDefinition:
    """An immutable playbook plus its steps, as consumed by the run controller."""

    playbook: Playbook
    steps: Tuple[PlaybookStep, ...]

    def __post_init__(self) -> None:
        keys = [s.key for s in self.steps]
        if len(keys) != len(set(keys)):
            raise InvalidStepConfig(f"Playbook '{self.playbook.id}' has duplicate step keys")

    @property
    def ordered_steps(self) -> List[PlaybookStep]:
        """Steps sorted by position (stable for equal positions)."""
        return sorted(self.steps, key=lambda s: s.position)

    def first_step(self) -> Optional[PlaybookStep]:
        ordered = self.ordered_steps
        return ordered[0] if ordered else None

    def get_step(self, key: str) -> Optional[PlaybookStep]:
        for step in self.steps:
            if step.key == key:
                return step
        return None


# =============================================================================
# Serialization Functions
# =============================================================================


def playbook_step_to_dict(step: PlaybookStep) -> Dict[str, Any]:
    """Convert PlaybookStep to a dictionary for serialization."""
    return {
        "id": step.id,
        "key": step.key,
        "name": step.name,
        "type": step.type.value,
        "config": step.config.to_raw(),
        "position": step.position,
        "nextStepKey": step.next_step_key,
    }


def playbook_step_from_dict(data: Mapping[str, Any]) -> PlaybookStep:
    """Parse and validate a PlaybookStep from a dictionary.

    Raises:
        InvalidStepConfig: On unknown type or malformed config.
    """
    key = data.get("key")
    if not isinstance(key, str) or not key:
        raise InvalidStepConfig("Step 'key' is required")
    try:
        step_type = StepType(data.get("type"))
    except ValueError:
        raise InvalidStepConfig(
            f"Step '{key}' has unknown type {data.get('type')!r}", step_key=key
        ) from None
    try:
        config = parse_step_config(step_type, data.get("config", {}))
    except InvalidStepConfig as exc:
        raise InvalidStepConfig(f"Step '{key}': {exc.message}", step_key=key) from exc
    return PlaybookStep(
        key=key,
        type=step_type,
        config=config,
        position=int(data.get("position", 0)),
        next_step_key=_pick(data, "nextStepKey", "next_step_key"),
        id=data.get("id"),
        name=data.get("name"),
    )


def playbook_definition_to_dict(definition: PlaybookDefinition) -> Dict[str, Any]:
    pb = definition.playbook
    return {
        "playbook": {
            "id": pb.id,
            "orgId": pb.org_id,
            "name": pb.name,
            "version": pb.version,
            "status": pb.status.value,
        },
        "steps": [playbook_step_to_dict(s) for s in definition.ordered_steps],
    }


def playbook_definition_from_dict(data: Mapping[str, Any]) -> PlaybookDefinition:
    """Parse a ``{playbook, steps}`` dictionary into a PlaybookDefinition."""
    pb = data["playbook"]
    playbook = Playbook(
        id=pb["id"],
        org_id=_pick(pb, "orgId", "org_id"),
        name=pb.get("name", pb["id"]),
        version=int(pb.get("version", 1)),
        status=PlaybookStatus(pb.get("status", PlaybookStatus.DRAFT.value)),
    )
    steps = tuple(playbook_step_from_dict(s) for s in data.get("steps", []))
    return PlaybookDefinition(playbook=playbook, steps=steps)
