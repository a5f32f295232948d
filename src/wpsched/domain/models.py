from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .states import ResetMode, WPStatus


TaskId = Annotated[int, Field(ge=1)]
WPNumber = Annotated[int, Field(ge=1)]


class TaskCreate(BaseModel):
    """
    API input model for creating a task.

    Omitting task_id allocates max(task_id) + 1. Giving an id that already
    has rows replaces them.
    """
    model_config = ConfigDict(extra="forbid")

    wp_total: Annotated[int, Field(ge=1, le=10_000_000)]
    task_id: Optional[TaskId] = None


class TaskCreateResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: int
    wp_total: int
    replaced: int = 0


class TaskSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: int
    wp_total: int
    wp_todo: int
    wp_running: int
    wp_finished: int


class TaskView(BaseModel):
    """
    Snapshot of one task, as read from the store.

    status[i] and depends[i] belong to wp_number i + 1. wp_finished counts
    both FINISHED and TASK_DONE rows.
    """
    model_config = ConfigDict(extra="forbid")

    task_id: int
    wp_total: int
    wp_todo: int
    wp_running: int
    wp_finished: int

    status: list[WPStatus] = Field(default_factory=list)
    depends: list[int] = Field(default_factory=list)

    # wp_number currently holding the advisory lock
    locked_wp: Optional[int] = None


class ResetRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: ResetMode = ResetMode.SUSPENDED
    wps: Optional[list[WPNumber]] = None

    @model_validator(mode="after")
    def _validate_wps(self):
        if self.mode == ResetMode.SPECIFIC and not self.wps:
            raise ValueError("mode 'specific' requires a non-empty wps list")
        return self


class DependenciesUpdate(BaseModel):
    """
    One predecessor per WP (0 = none). Length and range are checked against
    the task by the repository, so a bad vector is a DEPENDENCY_ERROR.
    """
    model_config = ConfigDict(extra="forbid")

    depends: list[int]


class DependenciesView(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: int
    depends: list[int]


class AffectedResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    affected: int


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    code: str
    details: dict = Field(default_factory=dict)
