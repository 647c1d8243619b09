"""
Typed node configs.

Stored node configs are opaque JSON. The compiler resolves each node once
into a ``NodeKind`` and a parsed config so that malformed configs fail the
compile instead of the first execution.
"""
import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from agentlib.config import settings
from agentlib.exceptions import BuildError, ConfigError
from agentlib.types import JSONValue


class NodeKind(str, Enum):
    WORKER = "worker"
    TOOL = "tool"
    SUPERVISOR = "supervisor"
    SUPERVISOR_MEMBER = "supervisor_member"


STORED_NODE_TYPES = (NodeKind.WORKER.value, NodeKind.TOOL.value, NodeKind.SUPERVISOR.value)


def normalize_node_type(node_type: Optional[str]) -> str:
    return (node_type or "").strip().lower()


def classify_node(node_key: str, node_type: Optional[str], supervisor_members: Dict[str, str]) -> NodeKind:
    """
    Resolve a stored node type into a NodeKind.

    Workers listed as a supervisor member become SUPERVISOR_MEMBER. A tool
    or supervisor node listed as a member keeps its own kind.
    """
    normalized = normalize_node_type(node_type)
    if normalized not in STORED_NODE_TYPES:
        raise BuildError(f"node {node_key!r}: unknown node type {node_type!r}")
    kind = NodeKind(normalized)
    if kind == NodeKind.WORKER and node_key in supervisor_members:
        return NodeKind.SUPERVISOR_MEMBER
    return kind


def load_config_json(raw: JSONValue, what: str) -> Dict[str, Any]:
    """Decode a stored JSON object; None or blank text is an empty object."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    text = raw.strip()
    if not text:
        return {}
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{what}: invalid config json: {e}") from e
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{what}: config json must be an object")
    return value


class _NodeConfig(BaseModel):
    model_config = {"extra": "ignore"}

    @classmethod
    def parse(cls, raw: JSONValue, what: str):
        data = load_config_json(raw, what)
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ConfigError(f"{what}: invalid config: {e}") from e


class NodeInputConfig(_NodeConfig):
    input_mode: str = ""
    input_prompt: str = ""

    @field_validator("input_mode", "input_prompt", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return "" if v is None else v


class WorkerConfig(NodeInputConfig):
    system_message: str = ""
    max_iterations: int = 0

    @field_validator("system_message", mode="before")
    @classmethod
    def _system_none(cls, v):
        return "" if v is None else v

    @field_validator("max_iterations", mode="before")
    @classmethod
    def _iterations_none(cls, v):
        return 0 if v is None else v

    @property
    def effective_max_iterations(self) -> int:
        if self.max_iterations > 0:
            return self.max_iterations
        return settings.worker_max_iterations


class ToolNodeConfig(_NodeConfig):
    input_mapping: Dict[str, str] = {}
    output_mapping: Dict[str, str] = {}

    @field_validator("input_mapping", "output_mapping", mode="before")
    @classmethod
    def _mapping_none(cls, v):
        return {} if v is None else v


class SupervisorConfig(NodeInputConfig):
    members: List[str]
    # omitted fields fall through the validators below to the settings defaults
    max_iterations: int = Field(default=0, validate_default=True)
    timeout_seconds: float = Field(default=0, validate_default=True)

    @field_validator("max_iterations", mode="before")
    @classmethod
    def _iterations_default(cls, v):
        if v is None or (isinstance(v, (int, float)) and v <= 0):
            return settings.supervisor_max_iterations
        return v

    @field_validator("timeout_seconds", mode="before")
    @classmethod
    def _timeout_default(cls, v):
        if v is None or (isinstance(v, (int, float)) and v <= 0):
            return settings.supervisor_timeout_seconds
        return v

    @field_validator("members", mode="before")
    @classmethod
    def _members_required(cls, v):
        if not v:
            raise ValueError('config must specify "members"')
        return v

    @field_validator("members")
    @classmethod
    def _members_unique(cls, v: List[str]) -> List[str]:
        seen = set()
        for member in v:
            if not member.strip():
                raise ValueError("members cannot contain empty node keys")
            if member in seen:
                raise ValueError(f"duplicate member {member!r}")
            seen.add(member)
        return v


def parse_supervisor_config(node_key: str, raw: JSONValue) -> SupervisorConfig:
    return SupervisorConfig.parse(raw, f"supervisor node {node_key!r}")


def peek_supervisor_members(raw: JSONValue) -> Optional[List[str]]:
    """
    Lenient member lookup for reachability checks.

    Returns None when the config cannot be decoded into a member list, and an
    empty list when it decodes but names no members. Strict parsing happens
    at compile time.
    """
    try:
        data = load_config_json(raw, "supervisor")
    except ConfigError:
        return None
    members = data.get("members")
    if members is None:
        return []
    if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
        return None
    return members
