# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Site Backup FastAPI Integration - HTTP surface for the backup engine.

This module provides a complete integration with FastAPI including:
- Lifespan management (startup/shutdown, schedule reload)
- Protected backup, restore and schedule endpoints
- Error mapping (validation -> 400, not found -> 404, precondition -> 400)
- Health checks

Creation endpoints answer 202 with a pending record; callers poll the
record to observe completion.
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, UTC
from typing import Any, Callable, Coroutine

import aiosqlite
import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from sitebackup.adapters.dump import DumpAdapter, to_libpq_url
from sitebackup.backup.orchestrator import (
    create_backup,
    delete_backup,
    get_backup_job,
    list_backup_jobs,
)
from sitebackup.backup.restore import get_restore_job, list_restore_jobs, restore_from_backup
from sitebackup.config import BackupConfig, BackupKind
from sitebackup.core import EngineState, initialize_engine_state, shutdown_engine_state
from sitebackup.exceptions import (
    ArtifactMissingError,
    NotFoundError,
    PreconditionError,
    ScheduleValidationError,
    SiteBackupError,
    ValidationError,
)
from sitebackup.scheduler import BackupScheduler
from sitebackup.stats import get_backup_stats
from sitebackup.store import BackupRecord, RestoreRecord, ScheduleRecord

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the SITEBACKUP_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("SITEBACKUP_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="SITEBACKUP_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


async def get_actor(x_actor_id: str | None = Header(default=None)) -> str:
    """Initiating actor, forwarded by the API gateway in X-Actor-Id."""
    return x_actor_id or "api"


class ScheduleRequest(BaseModel):
    """Body of POST /schedule."""

    model_config = ConfigDict(populate_by_name=True)

    kind: str
    trigger_expression: str = Field(alias="triggerExpression")
    enabled: bool


# ============================================================================
# Serialization
# ============================================================================


def backup_to_api(record: BackupRecord) -> dict:
    return {
        "id": record["id"],
        "kind": record["kind"],
        "status": record["status"],
        "sizeBytes": record["size_bytes"],
        "artifactLocation": record["artifact_location"],
        "createdBy": record["created_by"],
        "createdAt": record["created_at"],
        "completedAt": record["completed_at"],
        "error": record["error"],
    }


def restore_to_api(record: RestoreRecord) -> dict:
    return {
        "id": record["id"],
        "backupId": record["backup_id"],
        "status": record["status"],
        "restoredBy": record["restored_by"],
        "createdAt": record["created_at"],
        "completedAt": record["completed_at"],
        "error": record["error"],
    }


def schedule_to_api(record: ScheduleRecord, scheduler: BackupScheduler) -> dict:
    next_run = scheduler.next_run_time(record["id"])
    return {
        "id": record["id"],
        "kind": record["kind"],
        "triggerExpression": record["trigger_expression"],
        "enabled": record["enabled"],
        "active": scheduler.is_registered(record["id"]),
        "nextRunAt": next_run.isoformat() if next_run else None,
        "createdBy": record["created_by"],
        "createdAt": record["created_at"],
        "updatedAt": record["updated_at"],
    }


# ============================================================================
# Error mapping
# ============================================================================


def _error_status(exc: SiteBackupError) -> tuple[int, str]:
    if isinstance(exc, ArtifactMissingError):
        return 400, "BACKUP_FILE_NOT_FOUND"
    if isinstance(exc, PreconditionError):
        return 400, "BACKUP_NOT_COMPLETED"
    if isinstance(exc, ScheduleValidationError):
        return 400, "INVALID_CRON_EXPRESSION"
    if isinstance(exc, ValidationError):
        return 400, "VALIDATION_ERROR"
    if isinstance(exc, NotFoundError):
        return 404, "NOT_FOUND"
    return 500, "INTERNAL_ERROR"


def _error_response(request: Request, exc: SiteBackupError) -> JSONResponse:
    status_code, code = _error_status(exc)
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status_code,
        content={"error": code, "message": exc.message, "details": exc.details},
    )


class BackupRoute(APIRoute):
    """
    Route class that maps the engine's error taxonomy to HTTP responses.

    Routes are registered at startup, after Starlette has frozen the app's
    exception handlers, so the mapping has to live on the route itself.
    Malformed request bodies become 400 VALIDATION_ERROR instead of 422.
    """

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        handler = super().get_route_handler()

        async def backup_route_handler(request: Request) -> Response:
            try:
                return await handler(request)
            except SiteBackupError as exc:
                return _error_response(request, exc)
            except RequestValidationError as exc:
                return _error_response(
                    request,
                    ValidationError(
                        "Invalid request",
                        details={"errors": jsonable_encoder(exc.errors())},
                    ),
                )

        return backup_route_handler


# ============================================================================
# Routes
# ============================================================================


def register_backup_routes(
    app: FastAPI,
    config: BackupConfig,
    state: EngineState,
    scheduler: BackupScheduler,
    prefix: str = "/api/backup",
) -> None:
    """
    Register backup endpoints on a FastAPI app.

    All endpoints require Bearer token authentication. Engine errors are
    mapped by BackupRoute, so this works before or after the app has started.

    Args:
        app: FastAPI application
        config: Engine configuration
        state: Runtime state
        scheduler: Live schedule registry
        prefix: URL prefix for endpoints (default: /api/backup)
    """
    router = APIRouter(
        prefix=prefix,
        route_class=BackupRoute,
        dependencies=[Depends(verify_api_key)],
    )

    @router.get("/backups")
    async def list_backups_endpoint(
        page: str = "1",
        limit: str | None = None,
        sortBy: str = "createdAt",
        sortOrder: str = "desc",
        kind: str | None = None,
        status: str | None = None,
    ) -> dict:
        """List backups with pagination, kind/status filters and sorting."""
        result = await list_backup_jobs(
            config, state, page, limit, sortBy, sortOrder, kind, status
        )
        return {
            "data": [backup_to_api(r) for r in result["data"]],
            "pagination": result["pagination"],
        }

    @router.get("/backups/{backup_id}")
    async def get_backup_endpoint(backup_id: str) -> dict:
        """Get one backup. Poll this to observe completion."""
        return backup_to_api(await get_backup_job(state, backup_id))

    @router.get("/backups/{backup_id}/restores")
    async def list_backup_restores_endpoint(backup_id: str) -> list:
        """List restores performed from a backup."""
        await get_backup_job(state, backup_id)
        return [restore_to_api(r) for r in await list_restore_jobs(state, backup_id)]

    @router.delete("/backups/{backup_id}")
    async def delete_backup_endpoint(backup_id: str) -> dict:
        """Delete a backup record and its artifact."""
        await delete_backup(state, backup_id)
        return {"message": "Backup deleted successfully"}

    async def _create(kind: BackupKind, actor: str) -> JSONResponse:
        record = await create_backup(config, state, kind, actor)
        return JSONResponse(status_code=202, content=backup_to_api(record))

    @router.post("/backups/database", status_code=202)
    @router.post("/database", status_code=202)
    async def create_database_backup_endpoint(actor: str = Depends(get_actor)):
        """Start a database backup."""
        return await _create(BackupKind.DATABASE, actor)

    @router.post("/backups/files", status_code=202)
    @router.post("/files", status_code=202)
    async def create_files_backup_endpoint(actor: str = Depends(get_actor)):
        """Start a files backup."""
        return await _create(BackupKind.FILES, actor)

    @router.post("/backups/full", status_code=202)
    @router.post("/full", status_code=202)
    async def create_full_backup_endpoint(actor: str = Depends(get_actor)):
        """Start a full backup."""
        return await _create(BackupKind.FULL, actor)

    @router.post("/restore/{backup_id}", status_code=202)
    async def restore_endpoint(backup_id: str, actor: str = Depends(get_actor)):
        """
        Restore from a completed backup.

        Fails fast with 404/400 if the backup is unknown, not completed or
        its artifact is missing.
        """
        record = await restore_from_backup(config, state, backup_id, actor)
        return JSONResponse(status_code=202, content=restore_to_api(record))

    @router.get("/restores/{restore_id}")
    async def get_restore_endpoint(restore_id: str) -> dict:
        return restore_to_api(await get_restore_job(state, restore_id))

    @router.post("/schedule", status_code=201)
    async def schedule_endpoint(
        body: ScheduleRequest,
        actor: str = Depends(get_actor),
    ) -> dict:
        """Create a recurring backup schedule."""
        schedule_id = await scheduler.schedule(
            body.kind, body.trigger_expression, body.enabled, actor
        )
        return {"id": schedule_id, "message": "Backup schedule created successfully"}

    @router.get("/schedules")
    async def list_schedules_endpoint() -> list:
        return [schedule_to_api(r, scheduler) for r in await scheduler.list_schedules()]

    @router.post("/schedules/{schedule_id}/enable")
    async def enable_schedule_endpoint(schedule_id: str) -> dict:
        record = await scheduler.enable_schedule(schedule_id)
        return schedule_to_api(record, scheduler)

    @router.post("/schedules/{schedule_id}/disable")
    async def disable_schedule_endpoint(schedule_id: str) -> dict:
        record = await scheduler.disable_schedule(schedule_id)
        return schedule_to_api(record, scheduler)

    @router.delete("/schedules/{schedule_id}")
    async def delete_schedule_endpoint(schedule_id: str) -> dict:
        await scheduler.delete_schedule(schedule_id)
        return {"message": "Backup schedule deleted successfully"}

    @router.get("/stats")
    async def stats_endpoint() -> dict:
        """Backup counts, sizes, status distribution and last success."""
        return (await get_backup_stats(state)).to_dict()

    @router.get("/health")
    async def health_check() -> dict:
        """
        Health check endpoint.

        Verifies the backup root, the job store and the database.
        """
        backup_root_ok = os.access(state["backup_root"], os.W_OK)

        store_ok = False
        store_error = None
        try:
            async with aiosqlite.connect(state["store_db_path"]) as db:
                await db.execute("SELECT 1")
            store_ok = True
        except Exception as e:
            store_error = str(e)

        database_ok, database_error = await _check_database(config)

        status = "healthy"
        if not (backup_root_ok and database_ok):
            status = "degraded"
        if not store_ok:
            status = "unhealthy"

        return {
            "status": status,
            "backup_root_writable": backup_root_ok,
            "job_store_reachable": store_ok,
            "job_store_error": store_error,
            "database_reachable": database_ok,
            "database_error": database_error,
            "scheduler_running": scheduler.running,
            "active_schedules": len(scheduler.registered_ids),
            "jobs_in_flight": len(state["tasks"]),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    app.include_router(router)


async def _check_database(config: BackupConfig) -> tuple[bool, str | None]:
    """Ping the relational store."""
    import asyncpg

    try:
        conn = await asyncpg.connect(to_libpq_url(config.database_url), timeout=5)
        try:
            await conn.fetchval("SELECT 1")
        finally:
            await conn.close()
        return True, None
    except Exception as e:
        return False, str(e) or e.__class__.__name__


# ============================================================================
# Lifecycle
# ============================================================================


def setup_backup_plugin(
    app: FastAPI,
    config: BackupConfig,
    dump_adapter: DumpAdapter | None = None,
    prefix: str = "/api/backup",
) -> None:
    """
    Set up the backup engine with startup/shutdown events.

    This is the main entry point for integrating the engine with a FastAPI
    app. It sets up:
    - Startup/shutdown lifecycle events
    - Backup, restore and schedule endpoints
    - Re-registration of persisted enabled schedules

    Args:
        app: FastAPI application
        config: Engine configuration
        dump_adapter: Dump producer/consumer (default: PgDumpAdapter)
        prefix: URL prefix for endpoints
    """
    app.state.backup_config = config
    app.state.backup_state = None
    app.state.backup_scheduler = None

    @app.on_event("startup")
    async def startup():
        logger.info("backup_plugin_starting", backup_root=str(config.backup_root))

        state = await initialize_engine_state(config, dump_adapter)
        scheduler = BackupScheduler(config, state)
        app.state.backup_state = state
        app.state.backup_scheduler = scheduler

        register_backup_routes(app, config, state, scheduler, prefix)

        loaded = await scheduler.load_schedules()
        scheduler.start()

        logger.info("backup_plugin_started", schedules_loaded=loaded)

    @app.on_event("shutdown")
    async def shutdown():
        logger.info("backup_plugin_stopping")

        scheduler = app.state.backup_scheduler
        if scheduler is not None:
            scheduler.shutdown()

        state = app.state.backup_state
        if state:
            await shutdown_engine_state(state)

        logger.info("backup_plugin_stopped")


@asynccontextmanager
async def backup_lifespan(
    app: FastAPI,
    config: BackupConfig,
    dump_adapter: DumpAdapter | None = None,
    prefix: str = "/api/backup",
):
    """
    Alternative lifespan context manager for FastAPI.

        app = FastAPI(lifespan=lambda app: backup_lifespan(app, config))

    On startup the engine state is initialized, routes are registered,
    persisted enabled schedules are re-registered and the scheduler starts.
    On shutdown every live task is cancelled and in-flight jobs are allowed
    to finish.

    Args:
        app: FastAPI application
        config: Engine configuration
        dump_adapter: Dump producer/consumer (default: PgDumpAdapter)
        prefix: URL prefix for endpoints
    """
    logger.info("backup_lifespan_starting")

    state = await initialize_engine_state(config, dump_adapter)
    scheduler = BackupScheduler(config, state)

    app.state.backup_config = config
    app.state.backup_state = state
    app.state.backup_scheduler = scheduler

    register_backup_routes(app, config, state, scheduler, prefix)

    await scheduler.load_schedules()
    scheduler.start()

    logger.info("backup_lifespan_started")

    try:
        yield
    finally:
        logger.info("backup_lifespan_stopping")
        scheduler.shutdown()
        await shutdown_engine_state(state)
        logger.info("backup_lifespan_stopped")


def get_engine_state(app: FastAPI) -> EngineState:
    """
    Get the engine state from a FastAPI app.

    Raises:
        RuntimeError: If the engine is not initialized
    """
    state = getattr(app.state, "backup_state", None)
    if not state:
        raise RuntimeError("Backup engine not initialized. Use backup_lifespan first.")
    return state


def get_backup_scheduler(app: FastAPI) -> BackupScheduler:
    """
    Get the schedule registry from a FastAPI app.

    Raises:
        RuntimeError: If the engine is not initialized
    """
    scheduler: Any = getattr(app.state, "backup_scheduler", None)
    if scheduler is None:
        raise RuntimeError("Backup engine not initialized. Use backup_lifespan first.")
    return scheduler
