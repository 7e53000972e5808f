"""
Stage 1: Parse JSON into a strongly typed WorkflowDefinition.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from pydantic import ValidationError

from workflow_codegen.errors import ValidationPhaseError
from workflow_codegen.schema.models import WorkflowDefinition


def parse_workflow_definition(payload: Any) -> WorkflowDefinition:
    """
    Accepts a JSON string, a mapping compatible with the WorkflowDefinition
    shape, or an existing WorkflowDefinition (which is deep-copied so later
    stages never touch the caller's object).
    """

    if isinstance(payload, WorkflowDefinition):
        return payload.model_copy(deep=True)

    if isinstance(payload, (str, bytes)):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValidationPhaseError(f"Invalid workflow JSON payload: {exc}") from exc
    elif isinstance(payload, Mapping):
        data = payload
    else:
        raise ValidationPhaseError(
            f"Unsupported payload type {type(payload).__name__}; expected str, Mapping or WorkflowDefinition"
        )

    if not isinstance(data, Mapping):
        raise ValidationPhaseError("Workflow JSON payload must be an object")

    try:
        return WorkflowDefinition.model_validate(data)
    except ValidationError as exc:
        raise ValidationPhaseError(f"Workflow definition validation failed: {exc}") from exc
