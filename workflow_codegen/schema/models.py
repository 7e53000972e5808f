"""
Pydantic models describing the visual workflow graph.

The visual editor sends camelCase JSON (React Flow nodes and edges plus the
workflow's variables and settings). The models accept both the camelCase
aliases and the snake_case field names, and ignore editor-only keys such as
node positions.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


JSONPrimitive = Union[str, int, float, bool, None]
JSONValue = Union[JSONPrimitive, Dict[str, Any], List[Any]]
Duration = Union[str, int, float]

SETTINGS_WORKFLOW_TYPE = "workflowType"
SETTINGS_LONG_RUNNING = "longRunning"


class GraphModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        validate_assignment=True,
    )


# -----------------------------
# Tags
# -----------------------------
class NodeType(str, Enum):
    trigger = "trigger"
    activity = "activity"
    agent = "agent"
    condition = "condition"
    phase = "phase"
    retry = "retry"
    loop = "loop"
    state_variable = "state-variable"
    signal = "signal"
    child_workflow = "child-workflow"
    # Passive deployment / gateway annotations
    api_endpoint = "api-endpoint"
    data_in = "data-in"
    data_out = "data-out"
    kong_logging = "kong-logging"
    kong_cache = "kong-cache"
    kong_cors = "kong-cors"
    graphql_gateway = "graphql-gateway"
    mcp_server = "mcp-server"

    @classmethod
    def parse(cls, tag: str) -> Optional["NodeType"]:
        try:
            return cls(tag)
        except ValueError:
            return None


PASSIVE_NODE_TYPES = frozenset(
    {
        NodeType.api_endpoint,
        NodeType.data_in,
        NodeType.data_out,
        NodeType.kong_logging,
        NodeType.kong_cache,
        NodeType.kong_cors,
        NodeType.graphql_gateway,
        NodeType.mcp_server,
    }
)

# Node types whose emitted fragment produces a value downstream nodes can consume.
VALUE_NODE_TYPES = frozenset(
    {NodeType.activity, NodeType.agent, NodeType.condition, NodeType.child_workflow}
)


class WorkflowType(str, Enum):
    task = "task"
    service = "service"


class RetryStrategy(str, Enum):
    keep_trying = "keep-trying"
    fail_after_x = "fail-after-x"
    exponential_backoff = "exponential-backoff"
    none = "none"


class VariableType(str, Enum):
    number = "number"
    integer = "integer"
    string = "string"
    boolean = "boolean"
    array = "array"
    object = "object"
    any = "any"


NUMERIC_VARIABLE_TYPES = frozenset({VariableType.number, VariableType.integer})


# -----------------------------
# Graph records
# -----------------------------
class RetryPolicySpec(GraphModel):
    """Node-level retry strategy as authored in the editor."""

    strategy: RetryStrategy = RetryStrategy.none
    max_attempts: Optional[int] = Field(default=None, alias="maxAttempts")
    initial_interval: Optional[Duration] = Field(default=None, alias="initialInterval")
    max_interval: Optional[Duration] = Field(default=None, alias="maxInterval")
    backoff_coefficient: Optional[float] = Field(default=None, alias="backoffCoefficient")


class NodeData(GraphModel):
    label: Optional[str] = None
    component_name: Optional[str] = Field(default=None, alias="componentName")
    component_id: Optional[str] = Field(default=None, alias="componentId")
    activity_name: Optional[str] = Field(default=None, alias="activityName")
    signal_name: Optional[str] = Field(default=None, alias="signalName")
    config: Dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[Duration] = None
    retry_policy: Optional[RetryPolicySpec] = Field(default=None, alias="retryPolicy")


class Node(GraphModel):
    id: str = Field(min_length=1)
    # Kept as a free string so unknown tags surface as diagnostics with node context.
    type: str
    data: NodeData = Field(default_factory=NodeData)

    @property
    def kind(self) -> Optional[NodeType]:
        return NodeType.parse(self.type)

    @property
    def config(self) -> Dict[str, Any]:
        return self.data.config

    @property
    def display_name(self) -> str:
        return self.data.label or self.id


class Edge(GraphModel):
    id: str = Field(min_length=1)
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")


_TYPE_DEFAULTS: Dict[VariableType, Any] = {
    VariableType.number: 0,
    VariableType.integer: 0,
    VariableType.string: "",
    VariableType.boolean: False,
    VariableType.array: [],
    VariableType.object: {},
    VariableType.any: None,
}


class Variable(GraphModel):
    name: str = Field(min_length=1)
    type: VariableType = VariableType.any
    initial_value: Optional[JSONValue] = Field(default=None, alias="initialValue")

    def resolved_initial_value(self) -> Any:
        if "initial_value" in self.model_fields_set:
            return self.initial_value
        default = _TYPE_DEFAULTS[self.type]
        return type(default)() if isinstance(default, (list, dict)) else default


class LongRunningPolicy(GraphModel):
    """Typed view over `settings.longRunning` written by the configurator."""

    auto_compact: bool = Field(default=False, alias="autoCompact")
    max_history_events: Optional[int] = Field(default=None, alias="maxHistoryEvents")
    max_duration_ms: Optional[int] = Field(default=None, alias="maxDurationMs")
    preserve_state: bool = Field(default=True, alias="preserveState")


class WorkflowDefinition(GraphModel):
    id: Optional[str] = None
    name: Optional[str] = None
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    variables: List[Variable] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)

    @property
    def workflow_type(self) -> Optional[WorkflowType]:
        raw = self.settings.get(SETTINGS_WORKFLOW_TYPE)
        try:
            return WorkflowType(raw) if raw is not None else None
        except ValueError:
            return None

    @property
    def long_running(self) -> Optional[LongRunningPolicy]:
        raw = self.settings.get(SETTINGS_LONG_RUNNING)
        if not isinstance(raw, dict):
            return None
        return LongRunningPolicy.model_validate(raw)
