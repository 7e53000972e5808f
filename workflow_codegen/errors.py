"""
Shared exception hierarchy and diagnostic records for the workflow code generator.

Exceptions are reserved for conditions that stop a stage outright (an
unparseable payload, a dispatch table asked for a tag it does not know).
Everything else is reported as a `Diagnostic` so one compilation run can
surface every problem at once.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class WorkflowCompilerError(Exception):
    """Base class for all compiler related errors."""


class ValidationPhaseError(WorkflowCompilerError):
    """Raised when the workflow payload cannot be parsed into a definition."""


class UnknownNodeTypeError(WorkflowCompilerError):
    """Raised when a node tag has no code-generation handler."""

    def __init__(self, node_type: str, node_id: Optional[str] = None) -> None:
        self.node_type = node_type
        self.node_id = node_id
        where = f" (node '{node_id}')" if node_id else ""
        super().__init__(f"Unknown node type '{node_type}'{where}")


class EmissionError(WorkflowCompilerError):
    """Raised when code generation reaches a state validation should have excluded."""


class Severity(str, Enum):
    error = "error"
    warning = "warning"


class DiagnosticCategory(str, Enum):
    parse = "parse"
    structural = "structural"
    type_consistency = "type"
    handler = "handler"
    generation = "generation"


class Diagnostic(BaseModel):
    model_config = ConfigDict(frozen=True)

    severity: Severity
    category: DiagnosticCategory
    message: str
    node_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.error

    def __str__(self) -> str:
        where = f"[{self.node_id}] " if self.node_id else ""
        return f"{self.severity.value}: {where}{self.message}"
