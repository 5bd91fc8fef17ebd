"""
Tests for task ingestion from spreadsheets and the project-management API.

Tests cover:
- Status, priority, owner and date normalization
- CSV import: owner shares, split work time, skipped rows
- .xlsx import, Excel serial dates
- API sync: auth header, re-sync adds only new work time, validation survives,
  malformed records are skipped, every run is logged
"""

import io
from datetime import date, datetime, timezone

import httpx
import pytest
from openpyxl import Workbook
from sqlalchemy import func, select

from app.models.sync_log import SyncLog
from app.models.task import Task, TaskOwner
from app.models.time_log import TimeLog
from app.models.user import User
from app.services.ingest import email_for_name, map_priority, map_status, parse_owner_list
from app.services.project_sync import ProjectSyncClient
from app.services.spreadsheet_import import import_tasks_csv, import_tasks_xlsx, parse_date
from app.services.task_validation import validate_task

from conftest import make_user

CSV_HEADER = "Task Name,Owner,Created By,Custom Status,Priority,Duration,Work hours,% Completed,Start Date,Due Date,Completion Date\n"


def csv_lines(*rows):
    return io.StringIO(CSV_HEADER + "".join(row + "\n" for row in rows))


async def owner_shares(db, task_id):
    result = await db.execute(
        select(User.name, TaskOwner.share_percentage)
        .join(User, User.id == TaskOwner.user_id)
        .where(TaskOwner.task_id == task_id)
        .order_by(TaskOwner.id)
    )
    return result.all()


async def minutes_by_user(db, task_id):
    result = await db.execute(
        select(User.name, func.sum(TimeLog.minutes))
        .join(User, User.id == TimeLog.user_id)
        .where(TimeLog.task_id == task_id)
        .group_by(User.name)
    )
    return dict(result.all())


# =============================================================
# TEST: Normalization
# =============================================================

class TestNormalization:

    @pytest.mark.parametrize("raw, expected", [
        ("Done", "completed"),
        ("In Progress", "in_progress"),
        ("Open", "todo"),
        ("On Hold", "on_hold"),
        ("something else", "todo"),
        (None, "todo"),
    ])
    def test_status(self, raw, expected):
        assert map_status(raw) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("High", "high"),
        ("None", "low"),
        ("", "medium"),
        ("urgent", "medium"),
    ])
    def test_priority(self, raw, expected):
        assert map_priority(raw) == expected

    def test_owner_list_skips_placeholder_and_duplicates(self):
        assert parse_owner_list("Ana Diaz, Unassigned User, Ben Ho, Ana Diaz") == ["Ana Diaz", "Ben Ho"]
        assert parse_owner_list("") == []

    def test_generated_email(self):
        assert email_for_name("Ana  Maria Diaz") == "ana.maria.diaz@company.com"

    def test_dates(self):
        assert parse_date("15-10-2026 02:30 PM") == datetime(2026, 10, 15, 14, 30, tzinfo=timezone.utc)
        assert parse_date("15-10-2026") == datetime(2026, 10, 15, tzinfo=timezone.utc)
        assert parse_date("2026-10-15T09:00:00+00:00") == datetime(2026, 10, 15, 9, tzinfo=timezone.utc)
        assert parse_date("") is None
        with pytest.raises(ValueError):
            parse_date("next tuesday")

    def test_excel_serial_dates(self):
        assert parse_date(45234.5) == datetime(2023, 11, 4, 12, tzinfo=timezone.utc)
        assert parse_date(45234) == datetime(2023, 11, 4, tzinfo=timezone.utc)
        assert parse_date("46305") == datetime(2026, 10, 10, tzinfo=timezone.utc)
        assert parse_date(datetime(2026, 10, 15, 9)) == datetime(2026, 10, 15, 9, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", [True, {}, ["2026-10-15"], float("nan"), float("inf")])
    def test_unusable_date_cells(self, raw):
        with pytest.raises(ValueError):
            parse_date(raw)


# =============================================================
# TEST: CSV import
# =============================================================

class TestCsvImport:

    async def test_shared_task(self, db):
        summary = await import_tasks_csv(db, csv_lines(
            "API gateway,\"Ana Diaz, Ben Ho, Cy Lee\",Ana Diaz,Done,High,2,10,100%,01-10-2026 09:00 AM,10-10-2026,09-10-2026 05:00 PM",
        ))
        assert summary == {"imported": 1, "skipped": 0, "users": 3}

        task = (await db.execute(select(Task))).scalar_one()
        assert task.status == "completed"
        assert task.priority == "high"
        assert task.estimated_hours == 16
        assert task.progress_percentage == 100
        assert task.due_date.day == 10

        assert await owner_shares(db, task.id) == [("Ana Diaz", 34), ("Ben Ho", 33), ("Cy Lee", 33)]
        assert await minutes_by_user(db, task.id) == {"Ana Diaz": 200, "Ben Ho": 200, "Cy Lee": 200}

        ana = (await db.execute(select(User).where(User.name == "Ana Diaz"))).scalar_one()
        assert ana.email == "ana.diaz@company.com"
        assert ana.role == "EMPLOYEE"
        assert task.assignee_id == ana.id

    async def test_uneven_minutes_give_remainder_to_first_owner(self, db):
        await import_tasks_csv(db, csv_lines(
            "Docs,\"Ana Diaz, Ben Ho\",,Open,Low,,0.5,20,,,",
        ))
        task = (await db.execute(select(Task))).scalar_one()
        # 30 minutes over two owners
        assert await minutes_by_user(db, task.id) == {"Ana Diaz": 15, "Ben Ho": 15}

        await import_tasks_csv(db, csv_lines(
            "Review,\"Ana Diaz, Ben Ho\",,Open,Low,,0.15,20,,,",
        ))
        review = (await db.execute(select(Task).where(Task.title == "Review"))).scalar_one()
        # 9 minutes
        assert await minutes_by_user(db, review.id) == {"Ana Diaz": 5, "Ben Ho": 4}

    async def test_existing_users_are_matched(self, db):
        ana = await make_user(db, "Ana Diaz")
        summary = await import_tasks_csv(db, csv_lines(
            "Dashboards,ANA DIAZ,,In Progress,Medium,1,,50,,,",
        ))
        assert summary["users"] == 0
        task = (await db.execute(select(Task))).scalar_one()
        assert task.assignee_id == ana.id
        assert await minutes_by_user(db, task.id) == {}

    async def test_bad_rows_are_skipped(self, db):
        summary = await import_tasks_csv(db, csv_lines(
            "Nobody,Unassigned User,,Open,Low,,,,,,",
            "Bad date,Ana Diaz,,Open,Low,,,,someday,,",
            "Bad number,Ana Diaz,,Open,Low,lots,,,,,",
            "Good,Ana Diaz,,Open,Low,,,,,,",
        ))
        assert summary == {"imported": 1, "skipped": 3, "users": 1}
        titles = (await db.execute(select(Task.title))).scalars().all()
        assert titles == ["Good"]

    async def test_account_with_generated_email_is_reused(self, db):
        synced = User(email="john.smith@company.com", name=None, role="EMPLOYEE")
        db.add(synced)
        await db.commit()

        summary = await import_tasks_csv(db, csv_lines(
            "Onboarding,John Smith,,Open,Low,,1,,,,",
        ))
        assert summary == {"imported": 1, "skipped": 0, "users": 0}

        users = (await db.execute(select(User))).scalars().all()
        assert [user.id for user in users] == [synced.id]
        assert users[0].name == "John Smith"
        task = (await db.execute(select(Task))).scalar_one()
        assert task.assignee_id == synced.id


# =============================================================
# TEST: .xlsx import
# =============================================================

XLSX_HEADER = ["Task Name", "Owner", "Created By", "Custom Status", "Priority", "Duration",
               "Work hours", "% Completed", "Start Date", "Due Date", "Completion Date"]


def xlsx_bytes(*rows):
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(XLSX_HEADER)
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class TestXlsxImport:

    async def test_typed_cells(self, db):
        summary = await import_tasks_xlsx(db, xlsx_bytes(
            ["API gateway", "Ana Diaz, Ben Ho", None, "Done", "High", 2, 1.5, 100,
             datetime(2026, 10, 1, 9, 0), 46305, "09-10-2026 05:00 PM"],
            [None] * len(XLSX_HEADER),
            ["Bad date", "Ana Diaz", None, "Open", "Low", None, None, None, None, "someday", None],
        ))
        assert summary == {"imported": 1, "skipped": 1, "users": 2}

        task = (await db.execute(select(Task))).scalar_one()
        assert task.estimated_hours == 16
        assert task.progress_percentage == 100
        assert task.start_date.replace(tzinfo=None) == datetime(2026, 10, 1, 9, 0)
        assert task.due_date.date() == date(2026, 10, 10)
        assert task.completed_at.hour == 17
        assert await minutes_by_user(db, task.id) == {"Ana Diaz": 45, "Ben Ho": 45}

    async def test_not_a_workbook(self, db):
        with pytest.raises(ValueError):
            await import_tasks_xlsx(db, b"Task Name,Owner\nDocs,Ana Diaz\n")


# =============================================================
# TEST: Project API sync
# =============================================================

def make_api(tasks_payload, seen_headers):
    def handler(request: httpx.Request) -> httpx.Response:
        seen_headers.append(request.headers.get("Authorization"))
        if request.url.path == "/api/projects":
            return httpx.Response(200, json=[{"id": 7, "name": "Mobile app"}])
        if request.url.path == "/api/projects/7/tasks":
            return httpx.Response(200, json=tasks_payload)
        return httpx.Response(404)
    return httpx.MockTransport(handler)


def api_task(**overrides):
    payload = {
        "id": "T-1",
        "name": "Login screen",
        "owners": ["ana@corp.io", "ben@corp.io"],
        "status": "In Progress",
        "priority": "High",
        "estimated_hours": 12,
        "due_date": "2026-10-20T17:00:00+00:00",
        "percent_complete": 30,
        "work_minutes": 120,
    }
    payload.update(overrides)
    return payload


class TestProjectSync:

    async def test_sync_creates_projects_tasks_and_users(self, db):
        headers = []
        client = ProjectSyncClient("https://pm.example.com/api/", token="secret",
                                   transport=make_api([api_task()], headers))

        summary = await client.sync_all(db)
        assert summary == {"projects": 1, "tasks": 1, "skipped": 0, "users": 2}
        assert set(headers) == {"Bearer secret"}

        task = (await db.execute(select(Task).where(Task.external_id == "T-1"))).scalar_one()
        assert task.status == "in_progress"
        assert task.progress_percentage == 30
        assert [share for _, share in await owner_shares(db, task.id)] == [50, 50]

        minutes = (await db.execute(
            select(func.sum(TimeLog.minutes)).where(TimeLog.task_id == task.id)
        )).scalar_one()
        assert minutes == 120

    async def test_resync_updates_in_place(self, db):
        headers = []
        first = ProjectSyncClient("https://pm.example.com/api", transport=make_api([api_task()], headers))
        await first.sync_all(db)

        task = (await db.execute(select(Task))).scalar_one()
        manager = await make_user(db, "Manager", role="MANAGER")
        await validate_task(db, task.id, 45, "Reviewed during sprint demo", manager)

        updated = api_task(percent_complete=60, work_minutes=200, owners=["ana@corp.io"])
        second = ProjectSyncClient("https://pm.example.com/api", transport=make_api([updated], headers))
        summary = await second.sync_all(db)
        assert summary["users"] == 0
        assert headers[0] is None

        tasks = (await db.execute(select(Task))).scalars().all()
        assert len(tasks) == 1
        task = tasks[0]
        await db.refresh(task)
        assert task.progress_percentage == 60
        assert task.manager_validated_percentage == 45

        owners = (await db.execute(
            select(TaskOwner.share_percentage).where(TaskOwner.task_id == task.id)
        )).scalars().all()
        assert owners == [100]

        logs = (await db.execute(
            select(TimeLog.minutes).where(TimeLog.task_id == task.id).order_by(TimeLog.id)
        )).scalars().all()
        # 60 + 60 from the first sync, then the 80 new minutes to the sole owner
        assert logs == [60, 60, 80]

    async def test_http_errors_propagate(self, db):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        client = ProjectSyncClient("https://pm.example.com/api", transport=transport)
        with pytest.raises(httpx.HTTPStatusError):
            await client.sync_all(db)

        log = (await db.execute(select(SyncLog))).scalar_one()
        assert log.status == "failed"
        assert log.completed_at is not None
        assert log.errors[-1]["message"] == "Project sync failed"

    async def test_malformed_records_are_skipped(self, db):
        payload = [
            api_task(id="T-1", percent_complete="about half"),
            api_task(id="T-2", due_date={"at": "friday"}),
            api_task(id="T-3", owners=[]),
            api_task(id="T-4", name="Settings page"),
        ]
        client = ProjectSyncClient("https://pm.example.com/api", transport=make_api(payload, []))

        summary = await client.sync_all(db)
        assert summary == {"projects": 1, "tasks": 1, "skipped": 3, "users": 2}
        assert (await db.execute(select(Task.external_id))).scalars().all() == ["T-4"]

        log = (await db.execute(select(SyncLog))).scalar_one()
        assert log.status == "partial_success"
        assert log.items_processed == 2
        assert [error["message"] for error in log.errors] == [
            "Failed to sync task T-1", "Failed to sync task T-2", "Task T-3 has no owner",
        ]

    async def test_clean_run_is_logged_as_success(self, db):
        client = ProjectSyncClient("https://pm.example.com/api", transport=make_api([api_task()], []))
        await client.sync_all(db)

        log = (await db.execute(select(SyncLog))).scalar_one()
        assert (log.sync_type, log.status, log.items_processed, log.errors) == ("project_api", "success", 2, None)
