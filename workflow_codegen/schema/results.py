"""
Options accepted by and results returned from `compile_workflow`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from workflow_codegen.errors import Diagnostic
from workflow_codegen.schema.models import WorkflowType


class CompileOptions(BaseModel):
    """Caller overrides; unset fields fall back to `shared.config`."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    include_comments: Optional[bool] = Field(default=None, alias="includeComments")
    strict_mode: Optional[bool] = Field(default=None, alias="strictMode")
    workflow_name: Optional[str] = Field(default=None, alias="workflowName")


class CompileResult(BaseModel):
    success: bool
    program: str = ""
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    workflow_type: Optional[WorkflowType] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def errors(self) -> List[Diagnostic]:
        return [item for item in self.diagnostics if item.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [item for item in self.diagnostics if not item.is_error]
