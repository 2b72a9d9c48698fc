# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Integration Tests for Site Backup.

These tests verify the integration between components:
- FastAPI endpoints and error mapping
- Listing pagination and validation
- Configuration builder and environment loading
- Archive and dump adapters
"""

import zipfile
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio

from sitebackup.config import BackupConfig
from sitebackup.core import wait_for_jobs
from sitebackup.exceptions import ConfigurationError, ExternalToolError
from sitebackup.store import insert_backup

from conftest import AUTH_HEADERS, TEST_DATABASE_URL


@pytest_asyncio.fixture
async def api(test_config, test_state):
    """HTTP client against an app with the backup routes registered."""
    from fastapi import FastAPI
    from httpx import AsyncClient, ASGITransport

    from sitebackup.integrations.fastapi import register_backup_routes
    from sitebackup.scheduler import BackupScheduler

    app = FastAPI()
    scheduler = BackupScheduler(test_config, test_state)
    register_backup_routes(app, test_config, test_state, scheduler)

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers=AUTH_HEADERS
    ) as client:
        yield client

    scheduler.shutdown()


# ============================================================================
# FastAPI Integration Tests
# ============================================================================


@pytest.mark.asyncio
async def test_fastapi_unauthorized_access(api):
    """Endpoints require the admin API key."""
    response = await api.get("/api/backup/stats", headers={"Authorization": ""})
    assert response.status_code == 401

    response = await api.get(
        "/api/backup/stats", headers={"Authorization": "Bearer wrong-key"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_fastapi_health_endpoint(api):
    """Health reports the unreachable test database as degraded."""
    response = await api.get("/api/backup/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["backup_root_writable"] is True
    assert data["job_store_reachable"] is True
    assert data["database_reachable"] is False
    assert data["active_schedules"] == 0


@pytest.mark.asyncio
async def test_fastapi_create_and_poll_backup(api, test_state):
    response = await api.post("/api/backup/full", headers={"X-Actor-Id": "ops@example.com"})

    assert response.status_code == 202
    created = response.json()
    assert created["status"] == "pending"
    assert created["kind"] == "full"
    assert created["createdBy"] == "ops@example.com"

    await wait_for_jobs(test_state)

    response = await api.get(f"/api/backup/backups/{created['id']}")
    assert response.status_code == 200
    polled = response.json()
    assert polled["status"] == "completed"
    assert polled["sizeBytes"] > 0
    assert polled["artifactLocation"].endswith(".zip")


@pytest.mark.asyncio
async def test_fastapi_unknown_backup_is_404(api):
    response = await api.get("/api/backup/backups/01UNKNOWN")
    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"

    response = await api.delete("/api/backup/backups/01UNKNOWN")
    assert response.status_code == 404

    response = await api.post("/api/backup/restore/01UNKNOWN")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_fastapi_restore_flow(api, test_state, fake_dump):
    async with aiosqlite.connect(test_state["store_db_path"]) as db:
        await insert_backup(db, "01PENDINGBACKUP", "database", "admin")

    response = await api.post("/api/backup/restore/01PENDINGBACKUP")
    assert response.status_code == 400
    assert response.json()["error"] == "BACKUP_NOT_COMPLETED"

    created = (await api.post("/api/backup/database")).json()
    await wait_for_jobs(test_state)
    fake_dump.rows = ["changed"]

    response = await api.post(f"/api/backup/restore/{created['id']}")
    assert response.status_code == 202
    restore = response.json()
    assert restore["backupId"] == created["id"]
    assert restore["restoredBy"] == "api"

    await wait_for_jobs(test_state)

    response = await api.get(f"/api/backup/restores/{restore['id']}")
    assert response.json()["status"] == "completed"
    assert fake_dump.rows == ["alpha", "beta"]

    response = await api.get(f"/api/backup/backups/{created['id']}/restores")
    assert [r["id"] for r in response.json()] == [restore["id"]]


@pytest.mark.asyncio
async def test_fastapi_restore_with_missing_artifact(api, test_state):
    created = (await api.post("/api/backup/backups/files")).json()
    await wait_for_jobs(test_state)

    backup = (await api.get(f"/api/backup/backups/{created['id']}")).json()
    Path(backup["artifactLocation"]).unlink()

    response = await api.post(f"/api/backup/restore/{created['id']}")
    assert response.status_code == 400
    assert response.json()["error"] == "BACKUP_FILE_NOT_FOUND"


@pytest.mark.asyncio
async def test_fastapi_delete_backup(api, test_state):
    created = (await api.post("/api/backup/database")).json()
    await wait_for_jobs(test_state)

    response = await api.delete(f"/api/backup/backups/{created['id']}")
    assert response.status_code == 200

    response = await api.get(f"/api/backup/backups/{created['id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_fastapi_stats_endpoint(api, test_state):
    response = await api.get("/api/backup/stats")
    assert response.json()["totalBackups"] == 0
    assert response.json()["lastSuccessfulBackupAt"] is None

    await api.post("/api/backup/database")
    await wait_for_jobs(test_state)

    data = (await api.get("/api/backup/stats")).json()
    assert data["totalBackups"] == 1
    assert data["byType"][0]["kind"] == "database"
    assert data["byStatus"] == [{"status": "completed", "count": 1}]
    assert data["lastSuccessfulBackupAt"] is not None


# ============================================================================
# Listing
# ============================================================================


@pytest.mark.asyncio
async def test_listing_pagination(api, test_state):
    ids = []
    for endpoint in ("database", "files", "files"):
        ids.append((await api.post(f"/api/backup/{endpoint}")).json()["id"])
    await wait_for_jobs(test_state)

    page1 = (await api.get("/api/backup/backups", params={"limit": 2})).json()
    assert len(page1["data"]) == 2
    assert page1["pagination"] == {
        "page": 1,
        "limit": 2,
        "total": 3,
        "totalPages": 2,
        "hasNext": True,
        "hasPrev": False,
    }

    page2 = (await api.get("/api/backup/backups", params={"limit": 2, "page": 2})).json()
    assert len(page2["data"]) == 1
    assert page2["pagination"]["hasNext"] is False
    assert page2["pagination"]["hasPrev"] is True

    seen = {b["id"] for b in page1["data"]} | {b["id"] for b in page2["data"]}
    assert seen == set(ids)


@pytest.mark.asyncio
async def test_listing_filters_and_sorting(api, test_state):
    first = (await api.post("/api/backup/files")).json()
    await wait_for_jobs(test_state)
    second = (await api.post("/api/backup/files")).json()
    await api.post("/api/backup/database")
    await wait_for_jobs(test_state)

    data = (await api.get("/api/backup/backups", params={"kind": "files"})).json()
    assert [b["id"] for b in data["data"]] == [second["id"], first["id"]]

    data = (
        await api.get(
            "/api/backup/backups",
            params={"kind": "files", "sortBy": "createdAt", "sortOrder": "asc"},
        )
    ).json()
    assert [b["id"] for b in data["data"]] == [first["id"], second["id"]]

    data = (await api.get("/api/backup/backups", params={"status": "failed"})).json()
    assert data["data"] == []
    assert data["pagination"]["total"] == 0
    assert data["pagination"]["totalPages"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "params",
    [
        {"page": 0},
        {"page": "abc"},
        {"limit": 0},
        {"limit": 101},
        {"sortBy": "artifactLocation"},
        {"sortOrder": "sideways"},
        {"kind": "everything"},
        {"status": "lost"},
    ],
)
async def test_listing_rejects_invalid_parameters(api, params):
    response = await api.get("/api/backup/backups", params=params)

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


# ============================================================================
# Schedules over HTTP
# ============================================================================


@pytest.mark.asyncio
async def test_fastapi_schedule_lifecycle(api):
    response = await api.post(
        "/api/backup/schedule",
        json={"kind": "database", "triggerExpression": "0 2 * * *", "enabled": True},
    )
    assert response.status_code == 201
    schedule_id = response.json()["id"]

    listed = (await api.get("/api/backup/schedules")).json()
    assert [(s["id"], s["active"]) for s in listed] == [(schedule_id, True)]
    assert listed[0]["triggerExpression"] == "0 2 * * *"

    response = await api.post(f"/api/backup/schedules/{schedule_id}/disable")
    assert response.json()["enabled"] is False
    assert response.json()["active"] is False

    response = await api.post(f"/api/backup/schedules/{schedule_id}/enable")
    assert response.json()["active"] is True

    response = await api.delete(f"/api/backup/schedules/{schedule_id}")
    assert response.status_code == 200
    assert (await api.get("/api/backup/schedules")).json() == []

    response = await api.post(f"/api/backup/schedules/{schedule_id}/enable")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_fastapi_schedule_rejects_invalid_input(api):
    response = await api.post(
        "/api/backup/schedule",
        json={"kind": "database", "triggerExpression": "99 * * * *", "enabled": True},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_CRON_EXPRESSION"

    response = await api.post(
        "/api/backup/schedule",
        json={"kind": "everything", "triggerExpression": "0 2 * * *", "enabled": True},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"

    assert (await api.get("/api/backup/schedules")).json() == []


# ============================================================================
# Configuration
# ============================================================================


def test_builder_functional_api(temp_dir: Path):
    """Builder steps compose into a validated, immutable config."""
    from sitebackup.builder import (
        build_from_steps,
        in_timezone,
        with_backup_root,
        with_database,
        with_page_size,
        with_upload_path,
    )

    config = build_from_steps(
        lambda c: with_database(c, "postgresql+asyncpg://app@db/app"),
        lambda c: with_backup_root(c, temp_dir / "backups"),
        lambda c: with_upload_path(c, temp_dir / "uploads"),
        lambda c: with_page_size(c, 10, 50),
        lambda c: in_timezone(c, "Europe/Berlin"),
    )

    assert isinstance(config, BackupConfig)
    assert config.default_page_size == 10
    assert config.max_page_size == 50
    assert config.timezone == "Europe/Berlin"
    assert config.resolved_store_path == temp_dir / "backups" / "jobs.db"

    with pytest.raises(Exception):
        config.timezone = "UTC"  # type: ignore[misc]


@pytest.mark.parametrize(
    "overrides",
    [
        {"database_url": "mysql://app@db/app"},
        {"database_url": ""},
        {"timezone": "Mars/Olympus_Mons"},
        {"default_page_size": 500},
        {"max_page_size": 0},
    ],
)
def test_config_validation(temp_dir: Path, overrides):
    from sitebackup.builder import create_config

    kwargs = {
        "database_url": TEST_DATABASE_URL,
        "backup_root": temp_dir / "backups",
        "upload_path": temp_dir / "uploads",
    }
    kwargs.update(overrides)

    with pytest.raises(ConfigurationError):
        create_config(**kwargs)


def test_config_rejects_shared_directories(temp_dir: Path):
    from sitebackup.builder import create_config

    with pytest.raises(ConfigurationError):
        create_config(TEST_DATABASE_URL, temp_dir / "same", temp_dir / "same")


@pytest.mark.parametrize(
    "backup_root, upload_path, store_path",
    [
        ("uploads/backups", "uploads", None),
        ("data", "data/uploads", None),
        ("backups", "uploads", "uploads/jobs.db"),
    ],
)
def test_config_rejects_nested_directories(temp_dir: Path, backup_root, upload_path, store_path):
    """A files restore replaces the upload tree, so nothing of ours may live in it."""
    from sitebackup.builder import create_config

    with pytest.raises(ConfigurationError) as exc_info:
        create_config(
            TEST_DATABASE_URL,
            temp_dir / backup_root,
            temp_dir / upload_path,
            store_path=temp_dir / store_path if store_path else None,
        )

    assert any("upload_path" in e for e in exc_info.value.details["errors"])


def test_config_accepts_sibling_directories(temp_dir: Path):
    from sitebackup.builder import create_config

    config = create_config(
        TEST_DATABASE_URL,
        temp_dir / "backups",
        temp_dir / "uploads",
        store_path=temp_dir / "state" / "jobs.db",
    )

    assert config.resolved_store_path == temp_dir / "state" / "jobs.db"


def test_config_from_env(monkeypatch, temp_dir: Path):
    from sitebackup.env import create_config_from_env

    monkeypatch.setenv("DATABASE_URL", TEST_DATABASE_URL)
    monkeypatch.setenv("BACKUP_PATH", str(temp_dir / "b"))
    monkeypatch.setenv("UPLOAD_PATH", str(temp_dir / "u"))
    monkeypatch.setenv("APP_VERSION", "2.3.4")
    monkeypatch.setenv("BACKUP_PAGE_SIZE", "15")
    monkeypatch.delenv("BACKUP_STORE_PATH", raising=False)
    monkeypatch.delenv("BACKUP_SCHEDULE_TIMEZONE", raising=False)

    config = create_config_from_env()

    assert config.backup_root == temp_dir / "b"
    assert config.upload_path == temp_dir / "u"
    assert config.app_version == "2.3.4"
    assert config.default_page_size == 15
    assert config.timezone == "UTC"


def test_config_from_env_requires_database_url(monkeypatch):
    from sitebackup.env import create_config_from_env

    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ConfigurationError):
        create_config_from_env()

    monkeypatch.setenv("DATABASE_URL", TEST_DATABASE_URL)
    monkeypatch.setenv("BACKUP_PAGE_SIZE", "lots")
    with pytest.raises(ConfigurationError):
        create_config_from_env()


# ============================================================================
# Adapters
# ============================================================================


def test_archive_round_trip_preserves_empty_directories(temp_dir: Path, upload_dir: Path):
    from sitebackup.adapters import archive

    handle = archive.create_archive()
    assert archive.add_directory(handle, upload_dir, "uploads") == 2
    archive.add_bytes(handle, b"{}", "config.json")

    size = archive.write(handle, temp_dir / "out.zip")
    assert size == (temp_dir / "out.zip").stat().st_size
    assert not (temp_dir / "out.zip.tmp").exists()

    with archive.open_archive(temp_dir / "out.zip") as zf:
        archive.extract_all(zf, temp_dir / "extracted")

    assert (temp_dir / "extracted" / "uploads" / "empty").is_dir()
    assert (temp_dir / "extracted" / "uploads" / "readme.txt").read_text() == "hello uploads"
    assert (temp_dir / "extracted" / "config.json").read_bytes() == b"{}"


def test_archive_rejects_missing_sources_and_unsafe_entries(temp_dir: Path):
    from sitebackup.adapters import archive

    handle = archive.create_archive()
    with pytest.raises(ExternalToolError):
        archive.add_file(handle, temp_dir / "missing.sql", "database.sql")
    with pytest.raises(ExternalToolError):
        archive.add_directory(handle, temp_dir / "missing", "uploads")

    evil = temp_dir / "evil.zip"
    with zipfile.ZipFile(evil, "w") as zf:
        zf.writestr("../escape.txt", b"nope")

    with archive.open_archive(evil) as zf:
        with pytest.raises(ExternalToolError):
            archive.extract_all(zf, temp_dir / "out")
    assert not (temp_dir / "escape.txt").exists()

    (temp_dir / "not-a-zip.zip").write_text("plain text")
    with pytest.raises(ExternalToolError):
        archive.open_archive(temp_dir / "not-a-zip.zip")


def test_dump_adapter_url_and_missing_binary(temp_dir: Path):
    from sitebackup.adapters.dump import PgDumpAdapter, to_libpq_url

    assert (
        to_libpq_url("postgresql+asyncpg://u:p@db:5432/app?sslmode=require")
        == "postgresql://u:p@db:5432/app?sslmode=require"
    )
    assert to_libpq_url("postgres://db/app") == "postgres://db/app"

    adapter = PgDumpAdapter(pg_dump_bin="definitely-not-pg-dump", psql_bin="definitely-not-psql")
    with pytest.raises(ExternalToolError):
        adapter.dump(TEST_DATABASE_URL, temp_dir / "out.sql")

    (temp_dir / "in.sql").write_text("SELECT 1;")
    with pytest.raises(ExternalToolError):
        adapter.restore(TEST_DATABASE_URL, temp_dir / "in.sql")
    with pytest.raises(ExternalToolError):
        adapter.restore(TEST_DATABASE_URL, temp_dir / "missing.sql")


# ============================================================================
# Lifespan
# ============================================================================


@pytest.mark.asyncio
async def test_lifespan_reloads_schedules_and_shuts_down(test_config, fake_dump):
    """Enabled schedules persisted by a previous process are live after startup."""
    from fastapi import FastAPI
    from httpx import AsyncClient, ASGITransport

    from sitebackup.integrations.fastapi import (
        backup_lifespan,
        get_backup_scheduler,
        get_engine_state,
    )
    from sitebackup.store import init_store_db, insert_schedule

    await init_store_db(test_config.resolved_store_path)
    async with aiosqlite.connect(test_config.resolved_store_path) as db:
        await insert_schedule(db, "01NIGHTLY", "full", "0 2 * * *", True, "admin")
        await insert_schedule(db, "01PAUSED", "files", "0 3 * * *", False, "admin")

    app = FastAPI()
    with pytest.raises(RuntimeError):
        get_engine_state(app)

    async with backup_lifespan(app, test_config, fake_dump):
        state = get_engine_state(app)
        scheduler = get_backup_scheduler(app)

        assert scheduler.running
        assert scheduler.registered_ids == ["01NIGHTLY"]
        assert scheduler.next_run_time("01NIGHTLY") is not None

        transport = ASGITransport(app=app)
        async with AsyncClient(
            transport=transport, base_url="http://test", headers=AUTH_HEADERS
        ) as client:
            response = await client.post("/api/backup/database")
            assert response.status_code == 202

    assert not scheduler.running
    assert scheduler.registered_ids == []
    assert state["tasks"] == set()

    async with aiosqlite.connect(test_config.resolved_store_path) as db:
        cursor = await db.execute("SELECT status FROM backups")
        assert [row[0] for row in await cursor.fetchall()] == ["completed"]


def _assert_engine_errors_mapped(client) -> None:
    response = client.get("/api/backup/backups/01UNKNOWN")
    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"

    response = client.post("/api/backup/restore/01UNKNOWN")
    assert response.status_code == 404

    response = client.post(
        "/api/backup/schedule",
        json={"kind": "database", "triggerExpression": "99 * * * *", "enabled": True},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_CRON_EXPRESSION"

    response = client.post(
        "/api/backup/schedule",
        json={"kind": "database", "triggerExpression": "0 2 * * *"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"
    assert response.json()["details"]["errors"]


def test_lifespan_app_maps_engine_errors(test_config, fake_dump):
    """Routes registered inside the app's own lifespan still answer 404/400."""
    from fastapi import FastAPI
    from fastapi.testclient import TestClient

    from sitebackup.integrations.fastapi import backup_lifespan

    app = FastAPI(lifespan=lambda app: backup_lifespan(app, test_config, fake_dump))

    with TestClient(app, headers=AUTH_HEADERS) as client:
        _assert_engine_errors_mapped(client)


def test_plugin_app_maps_engine_errors(test_config, fake_dump):
    """Routes registered from the plugin's startup hook still answer 404/400."""
    from fastapi import FastAPI
    from fastapi.testclient import TestClient

    from sitebackup.integrations.fastapi import setup_backup_plugin

    app = FastAPI()
    setup_backup_plugin(app, test_config, fake_dump)

    with TestClient(app, headers=AUTH_HEADERS) as client:
        _assert_engine_errors_mapped(client)

        response = client.get("/api/backup/stats", headers={"Authorization": ""})
        assert response.status_code == 401
