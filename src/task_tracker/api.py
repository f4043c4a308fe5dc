"""
FastAPI request/response translation for the task mutation engine.

Maps HTTP requests onto TaskService calls and the service's errors onto
problem-details responses:
- TaskConflictError -> 409 with the task id
- TaskNotFoundError -> 404 with the task id
- TaskValidationError / schema errors -> 400 with one entry per violation
- MalformedBodyError / undecodable JSON -> 400 with a generic decode shape

Caller identity is resolved upstream; this layer only reads the owner id the
gateway put in the X-Owner-Id header.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Path, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.concurrency import run_in_threadpool

from .config import Settings
from .database import TaskStore
from .errors import (
    MalformedBodyError,
    TaskConflictError,
    TaskNotFoundError,
    TaskValidationError,
)
from .models import (
    HealthResponse,
    TaskCreateRequest,
    TaskReplaceRequest,
    TaskResponse,
    create_problem_detail,
    violations_from_validation_error,
)
from .patch import decode_patch, decode_status
from .service import TaskService

logger = logging.getLogger(__name__)

TASKS_API_BASE_URL = "/api/tasks"

# Largest value an SQLite INTEGER column can hold
MAX_ROW_ID = 2**63 - 1

# Set by lifespan; tests override get_database instead
db_instance: Optional[TaskStore] = None


def get_database() -> TaskStore:
    """
    FastAPI dependency to provide the task store.

    Raises:
        HTTPException: If the store has not been opened
    """
    if db_instance is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db_instance


def get_task_service(db: TaskStore = Depends(get_database)) -> TaskService:
    return TaskService(db)


def get_current_owner_id(x_owner_id: Optional[str] = Header(None)) -> int:
    """Owner id resolved by the upstream authentication layer."""
    if x_owner_id is None or not x_owner_id.strip().isdigit():
        raise HTTPException(status_code=401, detail="Missing or invalid caller identity")
    owner_id = int(x_owner_id)
    if owner_id > MAX_ROW_ID:
        raise HTTPException(status_code=401, detail="Missing or invalid caller identity")
    return owner_id


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the task store on startup and close it on shutdown."""
    global db_instance

    settings = Settings.from_env()
    try:
        db_instance = TaskStore(settings.database_path, busy_timeout_ms=settings.busy_timeout_ms)
        logger.info(f"Database initialized: {settings.database_path}")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    yield

    if db_instance:
        db_instance.close()
        db_instance = None
        logger.info("Database connection closed")


app = FastAPI(
    title="Task Tracker API",
    description="Owner-scoped task records with optimistic concurrency",
    version="1.0.0",
    lifespan=lifespan,
)


# Error translation


@app.exception_handler(TaskNotFoundError)
async def handle_not_found(request: Request, exc: TaskNotFoundError):
    logger.warning(f"Not found on {request.method} {request.url.path}: task {exc.task_id}, owner {exc.owner_id}")
    return JSONResponse(
        status_code=404,
        content=create_problem_detail(
            404, "task.not-found", "Task not found", str(exc), task_id=exc.task_id
        ),
    )


@app.exception_handler(TaskConflictError)
async def handle_conflict(request: Request, exc: TaskConflictError):
    return JSONResponse(
        status_code=409,
        content=create_problem_detail(
            409, "task.conflict", "Version conflict", str(exc), task_id=exc.task_id
        ),
    )


@app.exception_handler(TaskValidationError)
async def handle_validation(request: Request, exc: TaskValidationError):
    logger.warning(f"Validation failed on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=400,
        content=create_problem_detail(
            400, "validation", "Validation failed", str(exc),
            invalid_params=[v.to_dict() for v in exc.violations],
        ),
    )


@app.exception_handler(MalformedBodyError)
async def handle_malformed_body(request: Request, exc: MalformedBodyError):
    logger.warning(f"Malformed body on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=400,
        content=create_problem_detail(400, "malformed-body", "Malformed request body", exc.detail),
    )


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if any(error.get("type") == "json_invalid" for error in errors):
        return await handle_malformed_body(request, MalformedBodyError("Request body is not valid JSON"))
    if any(tuple(error.get("loc", ()))[:2] == ("path", "task_id") for error in errors):
        # An id outside the storable range cannot name an existing task
        raw_id = request.path_params.get("task_id", "")
        task_id = int(raw_id) if raw_id.isdigit() else raw_id
        return await handle_not_found(request, TaskNotFoundError(task_id))
    violations = violations_from_validation_error(exc)
    return await handle_validation(request, TaskValidationError(violations))


# Routes


@app.get("/healthz", response_model=HealthResponse)
def health_check(db: TaskStore = Depends(get_database)):
    """Report whether the task store answers queries."""
    database_connected = True
    try:
        db.list_owner_ids(limit=1)
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database_connected = False

    return HealthResponse(
        status="healthy" if database_connected else "degraded",
        database_connected=database_connected,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@app.post(TASKS_API_BASE_URL, response_model=TaskResponse, status_code=201)
def create_task(
    request: TaskCreateRequest,
    response: Response,
    owner_id: int = Depends(get_current_owner_id),
    service: TaskService = Depends(get_task_service),
):
    task = service.create(owner_id, request.title, request.description)
    response.headers["Location"] = f"{TASKS_API_BASE_URL}/{task.id}"
    return TaskResponse.from_task(task)


@app.get(TASKS_API_BASE_URL, response_model=List[TaskResponse])
def list_tasks(
    owner_id: int = Depends(get_current_owner_id),
    service: TaskService = Depends(get_task_service),
):
    return [TaskResponse.from_task(task) for task in service.list_all(owner_id)]


@app.get(TASKS_API_BASE_URL + "/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: int = Path(..., ge=1, le=MAX_ROW_ID),
    owner_id: int = Depends(get_current_owner_id),
    service: TaskService = Depends(get_task_service),
):
    return TaskResponse.from_task(service.get_by_id(owner_id, task_id))


@app.put(TASKS_API_BASE_URL + "/{task_id}", response_model=TaskResponse)
def replace_task(
    request: TaskReplaceRequest,
    task_id: int = Path(..., ge=1, le=MAX_ROW_ID),
    owner_id: int = Depends(get_current_owner_id),
    service: TaskService = Depends(get_task_service),
):
    status = decode_status(request.status)
    task = service.replace(
        owner_id, task_id, request.title, request.description, status, request.version
    )
    return TaskResponse.from_task(task)


@app.patch(TASKS_API_BASE_URL + "/{task_id}", response_model=TaskResponse)
async def patch_task(
    request: Request,
    task_id: int = Path(..., ge=1, le=MAX_ROW_ID),
    owner_id: int = Depends(get_current_owner_id),
    service: TaskService = Depends(get_task_service),
):
    try:
        document = await request.json()
    except ValueError:
        raise MalformedBodyError("Request body is not valid JSON") from None

    patch = decode_patch(document)
    task = await run_in_threadpool(service.patch, owner_id, task_id, patch)
    return TaskResponse.from_task(task)


@app.delete(TASKS_API_BASE_URL + "/{task_id}", status_code=204)
def delete_task(
    task_id: int = Path(..., ge=1, le=MAX_ROW_ID),
    owner_id: int = Depends(get_current_owner_id),
    service: TaskService = Depends(get_task_service),
):
    service.delete(owner_id, task_id)
    return Response(status_code=204)
