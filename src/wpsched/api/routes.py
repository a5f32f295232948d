# src/wpsched/api/routes.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from wpsched.domain.errors import (
    DependencyError,
    NotFoundError,
    ValidationError,
    WPSBaseError,
)
from wpsched.domain.models import (
    AffectedResponse,
    DependenciesUpdate,
    DependenciesView,
    ErrorResponse,
    ResetRequest,
    TaskCreate,
    TaskCreateResponse,
    TaskSummary,
    TaskView,
)
from wpsched.logging import get_logger
from wpsched.storage import WorkPackageRepo

from .deps import get_repo

_LOG = get_logger(__name__)
router = APIRouter()


def _error_response(err: WPSBaseError, http_status: int) -> JSONResponse:
    payload = ErrorResponse(
        error=err.message,
        code=err.code,
        details=err.details or {},
    ).model_dump()
    return JSONResponse(status_code=http_status, content=payload)


@router.get("/healthz")
def healthz() -> dict:
    return {"ok": True}


@router.post("/tasks", response_model=TaskCreateResponse, status_code=201)
def create_task(
    payload: TaskCreate,
    repo: WorkPackageRepo = Depends(get_repo),
):
    """
    Create a task of wp_total READY WPs.

    Notes:
    - Without task_id the next free id is allocated.
    - An existing task with the given id is overwritten.
    """
    try:
        task_id, replaced = repo.create_task(payload.wp_total, payload.task_id)
    except ValidationError as e:
        return _error_response(e, 400)
    if replaced:
        _LOG.warning("Overwrote existing task %d (%d row(s) deleted)", task_id, replaced)
    return TaskCreateResponse(task_id=task_id, wp_total=payload.wp_total, replaced=replaced)


@router.get("/tasks", response_model=list[TaskSummary])
def list_tasks(repo: WorkPackageRepo = Depends(get_repo)):
    return repo.list_tasks()


@router.get("/tasks/{task_id}", response_model=TaskView)
def get_task(task_id: int, repo: WorkPackageRepo = Depends(get_repo)):
    try:
        return repo.require_task(task_id)
    except NotFoundError as e:
        return _error_response(e, 404)


@router.delete("/tasks/{task_id}")
def delete_task(task_id: int, repo: WorkPackageRepo = Depends(get_repo)):
    deleted = repo.delete_task(task_id)
    if not deleted:
        return _error_response(
            NotFoundError(f"Task not found: {task_id}", details={"task_id": task_id}), 404
        )
    return {"deleted": deleted}


@router.post("/tasks/{task_id}/suspend", response_model=AffectedResponse)
def suspend_task(task_id: int, repo: WorkPackageRepo = Depends(get_repo)):
    try:
        repo.require_task(task_id)
    except NotFoundError as e:
        return _error_response(e, 404)
    return AffectedResponse(affected=repo.suspend(task_id))


@router.post("/tasks/{task_id}/reset", response_model=AffectedResponse)
def reset_task(
    task_id: int,
    payload: ResetRequest,
    repo: WorkPackageRepo = Depends(get_repo),
):
    """
    Reset WPs to READY (modes: suspended, running, all, specific).
    """
    try:
        repo.require_task(task_id)
        return AffectedResponse(affected=repo.reset(task_id, payload.mode, payload.wps))
    except NotFoundError as e:
        return _error_response(e, 404)
    except ValidationError as e:
        return _error_response(e, 400)


@router.post("/tasks/{task_id}/unlock", response_model=AffectedResponse)
def force_unlock(task_id: int, repo: WorkPackageRepo = Depends(get_repo)):
    """
    Clears the task lock whoever holds it (stalled or crashed holder).
    """
    try:
        repo.require_task(task_id)
    except NotFoundError as e:
        return _error_response(e, 404)
    return AffectedResponse(affected=repo.force_release_lock(task_id))


@router.get("/tasks/{task_id}/dependencies", response_model=DependenciesView)
def get_dependencies(task_id: int, repo: WorkPackageRepo = Depends(get_repo)):
    try:
        view = repo.require_task(task_id)
    except NotFoundError as e:
        return _error_response(e, 404)
    return DependenciesView(task_id=task_id, depends=view.depends)


@router.put("/tasks/{task_id}/dependencies")
def set_dependencies(
    task_id: int,
    payload: DependenciesUpdate,
    repo: WorkPackageRepo = Depends(get_repo),
):
    try:
        repo.require_task(task_id)
        changed = repo.set_dependencies(task_id, payload.depends)
    except NotFoundError as e:
        return _error_response(e, 404)
    except DependencyError as e:
        return _error_response(e, 400)
    return {"changed": changed}
