"""
Continue-as-new configurator.

Writes the classifier's decision and the long-running policy into the
definition's settings. Re-running it with the same classification is a no-op:
thresholds already present (custom or previously defaulted) are kept, and
missing or null ones take the configured defaults.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Optional

from shared.config import config
from shared.logger import get_logger
from workflow_codegen.compiler.classify import classify_workflow
from workflow_codegen.schema.models import (
    SETTINGS_LONG_RUNNING,
    SETTINGS_WORKFLOW_TYPE,
    WorkflowDefinition,
    WorkflowType,
)

logger = get_logger(__name__)


def configure_continue_as_new(
    definition: WorkflowDefinition,
    classification: Optional[WorkflowType] = None,
) -> WorkflowDefinition:
    """
    Return a copy of `definition` whose settings carry `workflowType` and
    `longRunning`. When `classification` is omitted the classifier decides.
    """

    workflow_type = classification or classify_workflow(definition)
    settings: Dict[str, Any] = copy.deepcopy(dict(definition.settings))

    existing = settings.get(SETTINGS_LONG_RUNNING)
    policy: Dict[str, Any] = dict(existing) if isinstance(existing, dict) else {}

    if workflow_type == WorkflowType.service:
        policy["autoCompact"] = True
        for key, default in (
            ("maxHistoryEvents", config.default_max_history_events),
            ("maxDurationMs", config.default_max_duration_ms),
            ("preserveState", True),
        ):
            if policy.get(key) is None:
                policy[key] = default
    else:
        policy["autoCompact"] = False

    settings[SETTINGS_WORKFLOW_TYPE] = workflow_type.value
    settings[SETTINGS_LONG_RUNNING] = policy

    logger.debug(
        "configured workflow=%s type=%s auto_compact=%s",
        definition.name or definition.id,
        workflow_type.value,
        policy["autoCompact"],
    )
    return definition.model_copy(update={"settings": settings})
