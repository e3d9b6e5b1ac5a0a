"""Dependency conflict models for replan."""

from datetime import date
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

from replan.models.migration import Migration
from replan.models.task import Task


class ConflictKind(str, Enum):
    DEPENDENCY_AFTER = "dependency_after"
    DEPENDENT_BEFORE = "dependent_before"
    CIRCULAR = "circular"


class ConflictSeverity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


class DependencyConflict(BaseModel):
    """An ordering problem between a migrated task and a related task."""

    task_id: str
    task_title: str
    kind: ConflictKind
    conflicting_task_id: str
    conflicting_task_title: str
    conflicting_date: Optional[date] = None
    severity: ConflictSeverity = ConflictSeverity.WARNING
    suggestion: Optional[str] = None

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class DependencyValidationResult(BaseModel):
    has_conflicts: bool = False
    conflicts: List[DependencyConflict] = Field(default_factory=list)
    suggested_fixes: List[Migration] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list, description="Lookups that failed and were skipped")


class DependencyInfo(BaseModel):
    dependencies: List[Task] = Field(default_factory=list)
    dependents: List[Task] = Field(default_factory=list)
    has_relationships: bool = False
