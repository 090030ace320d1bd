from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from ..schemas import CompletionUpdate, ErrorOut, TaskCreate, TaskOut, TaskPage, TaskUpdate
from ..service import TaskService

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
)

_ERRORS = {
    404: {"model": ErrorOut, "description": "Task not found"},
    422: {"model": ErrorOut, "description": "Validation error"},
    503: {"model": ErrorOut, "description": "Storage unavailable"},
}


def get_task_service(request: Request) -> TaskService:
    """
    Dependency returning the TaskService created at application startup.
    """
    return request.app.state.task_service


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TaskOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Task",
    description="Create a new pending task and return it.",
    responses={201: {"description": "Task created"}, 422: _ERRORS[422], 503: _ERRORS[503]},
)
def create_task(payload: TaskCreate, service: TaskService = Depends(get_task_service)) -> TaskOut:
    created = service.create_task(payload.title, payload.description).unwrap()
    return TaskOut(**created)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=TaskPage,
    summary="List Tasks",
    description=(
        "List tasks, in creation order by default.\n\n"
        "Query parameters:\n"
        "- completed: filter by completion status\n"
        "- sort: one of id, created_at, -created_at, updated_at, -updated_at\n"
        "- limit: max number of items to return (0..1000)\n"
        "- offset: number of items to skip (>=0)"
    ),
    responses={200: {"description": "List retrieved"}, 422: _ERRORS[422], 503: _ERRORS[503]},
)
def list_tasks(
    completed: Optional[bool] = Query(None, description="Filter by completion status"),
    sort: str = Query("id", description="Sort field, '-' prefix for descending"),
    limit: Optional[int] = Query(None, ge=0, le=1000, description="Maximum number of items to return"),
    offset: int = Query(0, ge=0, description="Number of items to skip"),
    service: TaskService = Depends(get_task_service),
) -> TaskPage:
    items, total = service.list_page(
        completed=completed, sort=sort.strip().lower(), limit=limit, offset=offset
    ).unwrap()
    return TaskPage(
        items=[TaskOut(**it) for it in items],
        total=total,
        limit=limit,
        offset=offset,
    )


# PUBLIC_INTERFACE
@router.get(
    "/{task_id}",
    response_model=TaskOut,
    summary="Get Task",
    responses={200: {"description": "Task found"}, 404: _ERRORS[404]},
)
def get_task(task_id: int, service: TaskService = Depends(get_task_service)) -> TaskOut:
    return TaskOut(**service.get_task(task_id).unwrap())


# PUBLIC_INTERFACE
@router.put(
    "/{task_id}",
    response_model=TaskOut,
    summary="Replace Task",
    description="Replace title and description. An omitted description is cleared.",
    responses={200: {"description": "Task updated"}, **_ERRORS},
)
def put_task(task_id: int, payload: TaskCreate, service: TaskService = Depends(get_task_service)) -> TaskOut:
    updated = service.update_task(
        task_id, title=payload.title, description=payload.description or ""
    ).unwrap()
    return TaskOut(**updated)


# PUBLIC_INTERFACE
@router.patch(
    "/{task_id}",
    response_model=TaskOut,
    summary="Update Task",
    description="Partially update title and/or description.",
    responses={200: {"description": "Task updated"}, **_ERRORS},
)
def patch_task(task_id: int, payload: TaskUpdate, service: TaskService = Depends(get_task_service)) -> TaskOut:
    updated = service.update_task(task_id, title=payload.title, description=payload.description).unwrap()
    return TaskOut(**updated)


# PUBLIC_INTERFACE
@router.post(
    "/{task_id}/toggle",
    response_model=TaskOut,
    summary="Toggle Task",
    description="Flip the completion status of a task.",
    responses={200: {"description": "Task toggled"}, 404: _ERRORS[404], 503: _ERRORS[503]},
)
def toggle_task(task_id: int, service: TaskService = Depends(get_task_service)) -> TaskOut:
    return TaskOut(**service.toggle_complete(task_id).unwrap())


# PUBLIC_INTERFACE
@router.put(
    "/{task_id}/completed",
    response_model=TaskOut,
    summary="Set Completion",
    description="Set the completion status. Setting the current value changes nothing.",
    responses={200: {"description": "Completion set"}, **_ERRORS},
)
def set_completed(
    task_id: int, payload: CompletionUpdate, service: TaskService = Depends(get_task_service)
) -> TaskOut:
    return TaskOut(**service.set_completed(task_id, payload.completed).unwrap())


# PUBLIC_INTERFACE
@router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Task",
    responses={204: {"description": "Task deleted"}, 404: _ERRORS[404], 503: _ERRORS[503]},
)
def delete_task(task_id: int, service: TaskService = Depends(get_task_service)) -> Response:
    """
    Delete a task permanently. Returns 204 on success, 404 if not found.
    """
    service.delete_task(task_id).unwrap()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
