"""Progress Tracker — Excel Importer.

Template format (prescriptive):

Sheet "Import_Data" (case sensitive), first row holds exactly these headers:
    Project Name | Description | Initiative Manager | Metric Name |
    Reporting Date | Expected | Target | Complete | Owner Email

Rules:
1. Data starts on row 2; completely empty rows are skipped.
2. Reporting Date is a date cell, an Excel serial number or YYYY-MM-DD text.
3. Expected, Target and Complete are required and cannot be negative.
4. Project and metric names match existing records case-sensitively.
5. Nothing is ever deleted: projects, metrics and periods are created or updated.
"""

import io
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, BinaryIO, Dict, List, Optional, Union

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.datetime import from_excel
from sqlmodel import Session, select

from tracker.analyzer.progression_engine import detect_frequency
from tracker.core.audit import Actor, audit_create, audit_update, row_values
from tracker.core.logging import get_logger
from tracker.core.registry import (
    TABLE_METRIC_PERIODS,
    TABLE_METRICS,
    TABLE_PROJECTS,
    ProgressionType,
)
from tracker.models.analysis_models import ImportResult
from tracker.models.tracker_models import Metric, MetricPeriod, Project, utcnow

logger = get_logger("connectors.excel.importer")

IMPORT_SHEET = "Import_Data"
IMPORT_HEADERS = [
    "Project Name",
    "Description",
    "Initiative Manager",
    "Metric Name",
    "Reporting Date",
    "Expected",
    "Target",
    "Complete",
    "Owner Email",
]


class ImportValidationError(Exception):
    """Raised with every problem found in an import workbook."""

    def __init__(self, errors: List[Dict[str, Any]]):
        self.errors = errors
        super().__init__("Import validation failed")


@dataclass
class ImportRow:
    row_number: int
    project_name: str
    description: str
    initiative_manager: str
    metric_name: str
    reporting_date: date
    expected: float
    target: float
    complete: float
    owner_email: str


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _parse_date(value: Any, problems: List[str]) -> Optional[date]:
    if value is None or value == "":
        problems.append("Reporting Date is required")
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return from_excel(value).date()
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d").date()
        except ValueError:
            problems.append("Reporting Date must be in YYYY-MM-DD format")
            return None
    problems.append("Reporting Date has invalid format")
    return None


def _parse_number(value: Any, field: str, problems: List[str]) -> Optional[float]:
    if value is None or value == "":
        problems.append(f"{field} is required")
        return None
    if isinstance(value, bool):
        problems.append(f"{field} must be a number")
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        problems.append(f"{field} must be a number")
        return None
    if number < 0:
        problems.append(f"{field} cannot be negative")
        return None
    return number


def validate_import_workbook(workbook: Workbook) -> List[ImportRow]:
    """Check structure and data; returns clean rows or raises ImportValidationError."""
    if IMPORT_SHEET not in workbook.sheetnames:
        raise ImportValidationError(
            [
                {
                    "row": 0,
                    "column": "N/A",
                    "error": f'Missing required sheet "{IMPORT_SHEET}" (case sensitive)',
                }
            ]
        )
    sheet = workbook[IMPORT_SHEET]

    header_cells = next(sheet.iter_rows(min_row=1, max_row=1, values_only=True), ())
    headers = list(header_cells) + [None] * (len(IMPORT_HEADERS) - len(header_cells))
    errors: List[Dict[str, Any]] = []
    for index, expected_header in enumerate(IMPORT_HEADERS):
        actual = headers[index]
        if actual != expected_header:
            errors.append(
                {
                    "row": 1,
                    "column": index + 1,
                    "error": f'Header mismatch: expected "{expected_header}", got "{actual}"',
                }
            )
    if errors:
        raise ImportValidationError(errors)

    rows: List[ImportRow] = []
    for row_number, values in enumerate(
        sheet.iter_rows(min_row=2, max_col=len(IMPORT_HEADERS), values_only=True),
        start=2,
    ):
        values = list(values) + [None] * (len(IMPORT_HEADERS) - len(values))
        (
            project_name,
            description,
            manager,
            metric_name,
            reporting_date,
            expected,
            target,
            complete,
            owner_email,
        ) = values

        if not project_name and not metric_name and not reporting_date:
            continue

        problems: List[str] = []
        if not isinstance(project_name, str) or not project_name.strip():
            problems.append("Project Name is required and must be text")
        if not isinstance(metric_name, str) or not metric_name.strip():
            problems.append("Metric Name is required and must be text")
        parsed_date = _parse_date(reporting_date, problems)
        expected_num = _parse_number(expected, "Expected", problems)
        target_num = _parse_number(target, "Target", problems)
        complete_num = _parse_number(complete, "Complete", problems)

        if problems:
            errors.extend(
                {"row": row_number, "column": "Multiple", "error": p} for p in problems
            )
            continue

        rows.append(
            ImportRow(
                row_number=row_number,
                project_name=project_name.strip(),
                description=_text(description),
                initiative_manager=_text(manager),
                metric_name=metric_name.strip(),
                reporting_date=parsed_date,
                expected=expected_num,
                target=target_num,
                complete=complete_num,
                owner_email=_text(owner_email),
            )
        )

    if errors:
        raise ImportValidationError(errors)
    if not rows:
        raise ImportValidationError(
            [{"row": 2, "column": "N/A", "error": f"No data rows found in {IMPORT_SHEET} sheet"}]
        )
    return rows


def _group_rows(rows: List[ImportRow]) -> Dict[str, Dict[str, Any]]:
    """project name → {description, manager, metrics: {metric name → rows}}."""
    projects: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        project = projects.setdefault(
            row.project_name,
            {"description": "", "initiative_manager": "", "metrics": {}},
        )
        if row.description and not project["description"]:
            project["description"] = row.description
        if row.initiative_manager and not project["initiative_manager"]:
            project["initiative_manager"] = row.initiative_manager
        project["metrics"].setdefault(row.metric_name, []).append(row)
    return projects


def _upsert_project(
    session: Session, name: str, data: Dict[str, Any], result: ImportResult, actor: Actor
) -> Project:
    project = session.exec(select(Project).where(Project.name == name)).first()
    if project is None:
        project = Project(
            name=name,
            description=data["description"],
            initiative_manager=data["initiative_manager"] or None,
        )
        session.add(project)
        session.flush()
        audit_create(session, TABLE_PROJECTS, project, actor, f"Imported project {name}")
        result.projects_created += 1
        logger.info(f"✅ Created project: {name}")
        return project

    before = row_values(project)
    if data["description"] and data["description"] != project.description:
        project.description = data["description"]
    if data["initiative_manager"] and data["initiative_manager"] != project.initiative_manager:
        project.initiative_manager = data["initiative_manager"]
    if audit_update(session, TABLE_PROJECTS, project, before, actor) is not None:
        project.updated_at = utcnow()
        session.add(project)
        result.projects_updated += 1
        logger.info(f"✅ Updated project: {name}")
    return project


def _create_metric(
    session: Session,
    project: Project,
    name: str,
    rows: List[ImportRow],
    actor: Actor,
) -> Metric:
    ordered = sorted(rows, key=lambda r: r.reporting_date)
    metric = Metric(
        project_id=project.id,
        name=name,
        owner=ordered[0].owner_email or actor.user_email,
        start_date=ordered[0].reporting_date,
        end_date=ordered[-1].reporting_date,
        frequency=detect_frequency([r.reporting_date for r in ordered]).value,
        progression_type=ProgressionType.LINEAR.value,
        final_target=max(r.target for r in ordered),
    )
    session.add(metric)
    session.flush()
    audit_create(session, TABLE_METRICS, metric, actor, f"Imported metric {name}")
    logger.info(f"✅ Created metric: {name} for project {project.name}")
    return metric


def _upsert_period(
    session: Session, metric: Metric, row: ImportRow, result: ImportResult, actor: Actor
) -> None:
    period = session.exec(
        select(MetricPeriod).where(
            MetricPeriod.metric_id == metric.id,
            MetricPeriod.reporting_date == row.reporting_date,
        )
    ).first()

    if period is None:
        period = MetricPeriod(
            metric_id=metric.id,
            reporting_date=row.reporting_date,
            expected=row.expected,
            target=row.target,
            complete=row.complete,
        )
        session.add(period)
        session.flush()
        audit_create(
            session,
            TABLE_METRIC_PERIODS,
            period,
            actor,
            f"Imported period {row.reporting_date} (row {row.row_number})",
        )
        result.periods_created += 1
        return

    before = row_values(period)
    period.expected = row.expected
    period.target = row.target
    period.complete = row.complete
    period.updated_at = utcnow()
    session.add(period)
    audit_update(
        session,
        TABLE_METRIC_PERIODS,
        period,
        before,
        actor,
        f"Imported update for period {row.reporting_date} (row {row.row_number})",
    )
    result.periods_updated += 1


COUNTED_FIELDS = (
    "projects_created",
    "projects_updated",
    "metrics_created",
    "periods_created",
    "periods_updated",
)


def _add_counts(total: ImportResult, part: ImportResult) -> None:
    for field in COUNTED_FIELDS:
        setattr(total, field, getattr(total, field) + getattr(part, field))


def import_workbook(
    session: Session, workbook: Workbook, actor: Optional[Actor] = None
) -> ImportResult:
    """Validate then apply an import workbook, one commit per project.

    A failing project is rolled back and reported in ``errors``; the others
    still land.
    """
    actor = actor or Actor()
    rows = validate_import_workbook(workbook)
    result = ImportResult()

    for project_name, data in _group_rows(rows).items():
        # Counted separately so a rolled-back project reports nothing
        counts = ImportResult()
        try:
            project = _upsert_project(session, project_name, data, counts, actor)
            for metric_name, metric_rows in data["metrics"].items():
                metric = session.exec(
                    select(Metric).where(
                        Metric.project_id == project.id, Metric.name == metric_name
                    )
                ).first()
                if metric is None:
                    metric = _create_metric(session, project, metric_name, metric_rows, actor)
                    counts.metrics_created += 1
                for row in metric_rows:
                    _upsert_period(session, metric, row, counts, actor)
            session.commit()
            _add_counts(result, counts)
        except Exception as e:
            session.rollback()
            logger.error(f"Error processing project {project_name}: {e}")
            result.errors.append({"project": project_name, "error": str(e)})

    logger.info(
        f"Import finished: {result.projects_created} projects created, "
        f"{result.metrics_created} metrics created, {result.periods_created} periods "
        f"created, {result.periods_updated} periods updated, {len(result.errors)} errors"
    )
    return result


def import_data_from_file(
    session: Session,
    source: Union[str, bytes, BinaryIO],
    actor: Optional[Actor] = None,
) -> ImportResult:
    """Load an .xlsx from a path, raw bytes or a file object and import it."""
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    try:
        workbook = load_workbook(source, data_only=True)
    except Exception as e:
        raise ImportValidationError(
            [{"row": 0, "column": "N/A", "error": f"Could not read Excel file: {e}"}]
        )
    return import_workbook(session, workbook, actor)


# ─────────────────────────────────────────────
# TEMPLATE
# ─────────────────────────────────────────────

TEMPLATE_WIDTHS = [30, 40, 25, 30, 15, 12, 12, 12, 25]

TEMPLATE_EXAMPLES = [
    ["Example Project Alpha", "This is an example project description", "John Doe",
     "User Signups", "2024-01-31", 100, 500, 95, "john@example.com"],
    ["Example Project Alpha", "This is an example project description", "John Doe",
     "User Signups", "2024-02-29", 200, 500, 180, "john@example.com"],
    ["Example Project Beta", "Another example project", "Jane Smith",
     "Revenue Growth", "2024-01-31", 50000, 200000, 48000, "jane@example.com"],
]

INSTRUCTIONS = [
    ("PROGRESS TRACKER - IMPORT INSTRUCTIONS", Font(bold=True, size=16)),
    ("", None),
    (f'IMPORTANT: Do not rename or delete the "{IMPORT_SHEET}" sheet!', Font(bold=True, color="FF0000")),
    ("", None),
    ("FORMAT REQUIREMENTS:", Font(bold=True)),
    (f'1. All data must be in the "{IMPORT_SHEET}" sheet', None),
    ("2. Do NOT modify column headers (case sensitive)", None),
    ("3. Dates must be in YYYY-MM-DD format (e.g., 2024-01-31)", None),
    ("4. Numbers cannot be negative", None),
    ("5. Empty rows will be skipped", None),
    ("", None),
    ("BEHAVIOR:", Font(bold=True)),
    ("• Existing projects will be updated with new description/manager if provided", None),
    ("• Existing metrics within a project will be matched by name", None),
    ("• Existing periods (same metric + date) will be updated", None),
    ("• New periods will be created", None),
    ("• No data will be deleted - only created or updated", None),
]


def generate_import_template() -> Workbook:
    """Blank import workbook with example rows and an Instructions sheet."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = IMPORT_SHEET
    sheet.append(IMPORT_HEADERS)
    for col, width in enumerate(TEMPLATE_WIDTHS, start=1):
        cell = sheet.cell(row=1, column=col)
        cell.font = Font(bold=True, color="FFFFFF")
        cell.fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
        cell.alignment = Alignment(vertical="center", horizontal="center")
        sheet.column_dimensions[get_column_letter(col)].width = width
    sheet.row_dimensions[1].height = 20
    for example in TEMPLATE_EXAMPLES:
        sheet.append(example)

    instructions = workbook.create_sheet("Instructions")
    instructions.column_dimensions["A"].width = 80
    for row, (text, font) in enumerate(INSTRUCTIONS, start=1):
        cell = instructions.cell(row=row, column=1, value=text or None)
        if font is not None:
            cell.font = font

    return workbook
