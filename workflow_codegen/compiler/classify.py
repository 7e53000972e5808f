"""
Stage 3: Classify a workflow as a short `task` or a long-lived `service`.

Only workflows that can run indefinitely need automatic history compaction,
so any signal entry point or explicit loop node makes the workflow a service.
"""

from __future__ import annotations

from workflow_codegen.schema.models import NodeType, WorkflowDefinition, WorkflowType

SERVICE_NODE_TYPES = frozenset({NodeType.signal, NodeType.loop})


def classify_workflow(definition: WorkflowDefinition) -> WorkflowType:
    for node in definition.nodes:
        if node.kind in SERVICE_NODE_TYPES:
            return WorkflowType.service
    return WorkflowType.task
