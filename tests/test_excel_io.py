import io
import os
from datetime import date

import pytest
from openpyxl import Workbook, load_workbook
from sqlmodel import select

from tracker.connectors.excel.exporter import (
    build_export_workbook,
    cleanup_old_exports,
    export_all_data,
    get_export_filename,
    list_exports,
)
from tracker.connectors.excel.importer import (
    IMPORT_HEADERS,
    IMPORT_SHEET,
    ImportValidationError,
    generate_import_template,
    import_data_from_file,
    import_workbook,
)
from tracker.core.audit import Actor
from tracker.models.tracker_models import AuditLogEntry, Metric, MetricPeriod, Project


def _workbook(rows, headers=IMPORT_HEADERS, title=IMPORT_SHEET):
    wb = Workbook()
    sheet = wb.active
    sheet.title = title
    sheet.append(headers)
    for row in rows:
        sheet.append(row)
    return wb


ROWS = [
    ["Nova", "Launch", "Kim", "Users", "2024-01-31", 10, 40, 8, "kim@example.com"],
    ["Nova", "", "", "Users", "2024-02-29", 20, 40, 20, ""],
    ["Nova", "", "", "Users", date(2024, 3, 31), 30, 40, 31, ""],
]


# ── Import ──


def test_import_creates_projects_metrics_and_periods(session):
    result = import_workbook(session, _workbook(ROWS), Actor(user_email="ops@example.com"))
    assert result.projects_created == 1
    assert result.metrics_created == 1
    assert result.periods_created == 3
    assert result.errors == []

    project = session.exec(select(Project).where(Project.name == "Nova")).one()
    assert project.initiative_manager == "Kim"
    metric = session.exec(select(Metric).where(Metric.project_id == project.id)).one()
    assert metric.frequency == "monthly"
    assert metric.owner == "kim@example.com"
    assert metric.final_target == 40
    assert metric.end_date == date(2024, 3, 31)

    audits = session.exec(select(AuditLogEntry)).all()
    assert {a.user_email for a in audits} == {"ops@example.com"}
    assert len(audits) == 5


def test_reimport_updates_existing_periods(session):
    import_workbook(session, _workbook(ROWS))
    changed = [list(r) for r in ROWS]
    changed[0][7] = 12
    result = import_workbook(session, _workbook(changed))
    assert result.projects_created == 0
    assert result.metrics_created == 0
    assert result.periods_created == 0
    assert result.periods_updated == 3

    first = session.exec(
        select(MetricPeriod).where(MetricPeriod.reporting_date == date(2024, 1, 31))
    ).one()
    assert first.complete == 12


def test_blank_rows_are_skipped(session):
    rows = [ROWS[0], [None] * 9, ROWS[1]]
    assert import_workbook(session, _workbook(rows)).periods_created == 2


def test_missing_sheet_is_rejected(session):
    with pytest.raises(ImportValidationError) as excinfo:
        import_workbook(session, _workbook(ROWS, title="Sheet1"))
    assert "Import_Data" in excinfo.value.errors[0]["error"]


def test_header_mismatch_is_rejected(session):
    headers = list(IMPORT_HEADERS)
    headers[4] = "Date"
    with pytest.raises(ImportValidationError) as excinfo:
        import_workbook(session, _workbook(ROWS, headers=headers))
    assert excinfo.value.errors[0]["column"] == 5


def test_bad_values_are_all_reported(session):
    rows = [
        ["Nova", "", "", "Users", "31/01/2024", 10, 40, 8, ""],
        ["Nova", "", "", "Users", "2024-02-29", -1, 40, "lots", ""],
    ]
    with pytest.raises(ImportValidationError) as excinfo:
        import_workbook(session, _workbook(rows))
    messages = [e["error"] for e in excinfo.value.errors]
    assert "Reporting Date must be in YYYY-MM-DD format" in messages
    assert "Expected cannot be negative" in messages
    assert "Complete must be a number" in messages
    assert session.exec(select(Project)).all() == []


def test_empty_sheet_is_rejected(session):
    with pytest.raises(ImportValidationError):
        import_workbook(session, _workbook([]))


def test_unreadable_file_is_rejected(session):
    with pytest.raises(ImportValidationError):
        import_data_from_file(session, b"not an xlsx file")


def test_template_imports_cleanly(session):
    buffer = io.BytesIO()
    generate_import_template().save(buffer)
    result = import_data_from_file(session, buffer.getvalue())
    assert result.projects_created == 2
    assert result.metrics_created == 2
    assert result.periods_created == 3


def test_template_has_instructions():
    wb = generate_import_template()
    assert wb.sheetnames == [IMPORT_SHEET, "Instructions"]
    assert [c.value for c in wb[IMPORT_SHEET][1]] == IMPORT_HEADERS


# ── Export ──


def test_export_without_projects(session, tmp_path):
    assert build_export_workbook(session) is None
    assert export_all_data(session, str(tmp_path)) is None


def test_export_writes_summary_and_project_sheets(session, tmp_path):
    import_workbook(session, _workbook(ROWS))
    session.add(Project(name="Empty: Q1/Q2"))
    session.commit()

    path = export_all_data(session, str(tmp_path))
    assert path.name == get_export_filename()

    wb = load_workbook(path)
    assert wb.sheetnames == ["Summary", "Nova"]
    summary = wb["Summary"]
    assert summary["B3"].value == 2
    assert [c.value for c in summary[5]] == ["Project Name", "Description", "Initiative Manager"]

    sheet = wb["Nova"]
    assert sheet["B1"].value == "Nova"
    assert [c.value for c in sheet[5]] == ["Date", "Metric", "Expected", "Target", "Complete", "Owner"]
    assert [c.value for c in sheet[6]] == ["2024-01-31", "Users", 10, 40, 8, "kim@example.com"]
    assert sheet.freeze_panes == "A6"


def test_cleanup_keeps_newest_exports(tmp_path):
    for day in range(1, 6):
        f = tmp_path / f"progress-tracker-2024-01-0{day}.xlsx"
        f.write_bytes(b"")
        os.utime(f, (day * 1000, day * 1000))
    (tmp_path / "notes.txt").write_text("keep me")

    deleted = cleanup_old_exports(str(tmp_path), max_exports=2)
    assert sorted(deleted) == [f"progress-tracker-2024-01-0{d}.xlsx" for d in (1, 2, 3)]
    assert [f.name for f in list_exports(str(tmp_path))] == [
        "progress-tracker-2024-01-05.xlsx",
        "progress-tracker-2024-01-04.xlsx",
    ]
    assert (tmp_path / "notes.txt").exists()


def test_failed_project_is_not_counted(session, monkeypatch):
    from tracker.connectors.excel import importer

    real_upsert = importer._upsert_period

    def flaky_upsert(session, metric, row, result, actor):
        if metric.name == "Broken":
            raise RuntimeError("disk full")
        return real_upsert(session, metric, row, result, actor)

    monkeypatch.setattr(importer, "_upsert_period", flaky_upsert)
    rows = ROWS + [["Bad", "", "", "Broken", "2024-01-31", 1, 2, 1, ""]]
    result = import_workbook(session, _workbook(rows))

    assert result.projects_created == 1
    assert result.metrics_created == 1
    assert result.periods_created == 3
    assert result.errors == [{"project": "Bad", "error": "disk full"}]
    assert [p.name for p in session.exec(select(Project)).all()] == ["Nova"]
    assert len(session.exec(select(MetricPeriod)).all()) == 3
