"""
Ingestion test fixtures: progress workbooks, file stores and lookup seeds.
"""

import zipfile
from datetime import date
from io import BytesIO
from pathlib import Path

import openpyxl
import pytest

from program_ingestion.adapters.xlsx_adapter import PROGRESS_COLUMNS
from program_ingestion.models.progress import (
    MemberModel,
    ProgressProgramModel,
    ProgressUserMappingModel,
)
from program_ingestion.storage import LocalFileStore

BUCKET = "progress-exports"

HEADER_LABELS = (
    "User ID",
    "Name",
    "Email",
    "Phone",
    "Program",
    "Registration Date",
    "Start Date",
    "Projected Completion",
    "Status",
    "Last Completed",
    "Date of Last Completed",
    "Working On",
)


def progress_row(user_id, program="Gut Reset", **overrides):
    """A complete, valid row as a column-name dict."""
    row = {
        "user_id": user_id,
        "name": f"Member {user_id}",
        "email": f"member{user_id}@example.com",
        "phone": f"555-010{user_id % 10}",
        "program": program,
        "registration_date": date(2024, 1, 2),
        "start_date": date(2024, 1, 8),
        "projected_completion": date(2024, 4, 1),
        "status": "In Progress",
        "last_completed": "Module 2",
        "date_of_last_completed": date(2024, 2, 1),
        "working_on": "Module 3",
    }
    row.update(overrides)
    return row


def build_workbook(rows, header_row=5) -> bytes:
    """Title block, labels on ``header_row``, then one sheet row per dict (None = blank row)."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Progress"
    ws.cell(row=1, column=1, value="Member Progress Export")
    ws.cell(row=2, column=1, value="Generated 2024-02-15")
    for col, label in enumerate(HEADER_LABELS, start=1):
        ws.cell(row=header_row, column=col, value=label)
    for offset, row in enumerate(rows, start=1):
        if row is None:
            continue
        for col, name in enumerate(PROGRESS_COLUMNS, start=1):
            value = row.get(name)
            if value is not None:
                ws.cell(row=header_row + offset, column=col, value=value)
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def truncate_sheet_xml(content: bytes, member="xl/worksheets/sheet1.xml") -> bytes:
    """Rewrite a workbook with ``member`` cut off halfway through its XML."""
    buf = BytesIO()
    with zipfile.ZipFile(BytesIO(content)) as src, zipfile.ZipFile(
        buf, "w", zipfile.ZIP_DEFLATED
    ) as dst:
        for info in src.infolist():
            data = src.read(info.filename)
            if info.filename == member:
                data = data[: len(data) // 2]
            dst.writestr(info, data)
    return buf.getvalue()


@pytest.fixture
def store_root(tmp_path) -> Path:
    (tmp_path / BUCKET).mkdir()
    return tmp_path


@pytest.fixture
def file_store(store_root) -> LocalFileStore:
    return LocalFileStore(store_root)


@pytest.fixture
def write_workbook(store_root):
    """Write a workbook into the test bucket and return its bucket-relative path."""

    def _write(rows, name="exports/progress.xlsx", header_row=5) -> str:
        target = store_root / BUCKET / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(build_workbook(rows, header_row=header_row))
        return name

    return _write


@pytest.fixture
def seed_lookups(session, test_actor_id):
    """
    Create user mappings (user N -> member 1000+N), members and programs.

    Returns (mappings by user id, programs by name).
    """

    def _seed(user_ids, programs=("Gut Reset",)):
        mappings = {}
        for user_id in user_ids:
            mapping = ProgressUserMappingModel(
                external_user_id=user_id,
                member_id=1000 + user_id,
                created_by_id=test_actor_id,
            )
            session.add(mapping)
            session.add(
                MemberModel(
                    member_id=1000 + user_id,
                    email="old@example.com",
                    created_by_id=test_actor_id,
                )
            )
            mappings[user_id] = mapping
        known = {}
        for name in programs:
            program = ProgressProgramModel(program_name=name, created_by_id=test_actor_id)
            session.add(program)
            known[name] = program
        session.commit()
        return mappings, known

    return _seed


@pytest.fixture
def bucket() -> str:
    return BUCKET


@pytest.fixture
def make_row():
    """Factory for valid progress rows; see ``progress_row``."""
    return progress_row


@pytest.fixture
def workbook_bytes():
    """Factory returning workbook content; see ``build_workbook``."""
    return build_workbook


@pytest.fixture
def damaged_workbook_bytes():
    """Factory: a valid workbook whose first sheet XML is truncated."""

    def _build(rows):
        return truncate_sheet_xml(build_workbook(rows))

    return _build
