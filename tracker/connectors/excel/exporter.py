"""Progress Tracker — Excel Exporter.

Writes every project's period data into a dated workbook:
a Summary sheet first, then one sheet per project that has data.
Only the newest ``settings.max_exports`` export files are kept.
"""

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Set

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlmodel import Session, select

from tracker.config import settings
from tracker.core.logging import get_logger
from tracker.models.tracker_models import Metric, MetricPeriod, Project

logger = get_logger("connectors.excel.exporter")

EXPORT_PREFIX = "progress-tracker-"
EXPORT_SUFFIX = ".xlsx"
MAX_SHEET_TITLE = 31  # Excel limit
INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")

DATA_COLUMNS = [
    ("Date", 12),
    ("Metric", 25),
    ("Expected", 12),
    ("Target", 12),
    ("Complete", 12),
    ("Owner", 20),
]
HEADER_ROW = 5


def get_export_filename(now: Optional[datetime] = None) -> str:
    """progress-tracker-YYYY-MM-DD.xlsx for the given (UTC) day."""
    now = now or datetime.now(timezone.utc)
    return f"{EXPORT_PREFIX}{now.strftime('%Y-%m-%d')}{EXPORT_SUFFIX}"


def list_exports(exports_dir: Optional[str] = None) -> List[Path]:
    """Export files, newest first."""
    directory = Path(exports_dir or settings.exports_dir)
    if not directory.exists():
        return []
    files = [
        f
        for f in directory.iterdir()
        if f.is_file() and f.name.startswith(EXPORT_PREFIX) and f.name.endswith(EXPORT_SUFFIX)
    ]
    return sorted(files, key=lambda f: f.stat().st_mtime, reverse=True)


def cleanup_old_exports(
    exports_dir: Optional[str] = None, max_exports: Optional[int] = None
) -> List[str]:
    """Delete all but the newest ``max_exports`` files; returns deleted names."""
    keep = max_exports if max_exports is not None else settings.max_exports
    deleted = []
    for stale in list_exports(exports_dir)[keep:]:
        stale.unlink()
        deleted.append(stale.name)
        logger.info(f"Deleted old export: {stale.name}")
    return deleted


def _sheet_title(name: str, used: Set[str]) -> str:
    base = INVALID_SHEET_CHARS.sub("_", name).strip() or "Project"
    title = base[:MAX_SHEET_TITLE]
    n = 2
    while title.lower() in used:
        suffix = f" ({n})"
        title = base[: MAX_SHEET_TITLE - len(suffix)] + suffix
        n += 1
    used.add(title.lower())
    return title


def _style_header(sheet, row: int, columns: int) -> None:
    for col in range(1, columns + 1):
        cell = sheet.cell(row=row, column=col)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL


def build_export_workbook(session: Session) -> Optional[Workbook]:
    """Workbook with all project data, or None when there are no projects."""
    projects = session.exec(select(Project).order_by(Project.name)).all()
    if not projects:
        return None

    workbook = Workbook()
    summary = workbook.active
    summary.title = "Summary"
    used_titles = {"summary"}

    for project in projects:
        rows = session.exec(
            select(MetricPeriod, Metric)
            .join(Metric, MetricPeriod.metric_id == Metric.id)
            .where(Metric.project_id == project.id)
            .order_by(Metric.name, MetricPeriod.reporting_date)
        ).all()
        if not rows:
            continue

        sheet = workbook.create_sheet(_sheet_title(project.name, used_titles))
        sheet.append(["Project:", project.name])
        sheet.append(["Description:", project.description or ""])
        sheet.append(["Initiative Manager:", project.initiative_manager or ""])
        sheet.append([])
        sheet.append([header for header, _ in DATA_COLUMNS])
        _style_header(sheet, HEADER_ROW, len(DATA_COLUMNS))

        for period, metric in rows:
            sheet.append(
                [
                    period.reporting_date.isoformat(),
                    metric.name,
                    period.expected,
                    period.target,
                    period.complete,
                    metric.owner or "",
                ]
            )

        for index, (_, width) in enumerate(DATA_COLUMNS, start=1):
            sheet.column_dimensions[get_column_letter(index)].width = width
        sheet.auto_filter.ref = f"A{HEADER_ROW}:F{HEADER_ROW}"
        sheet.freeze_panes = f"A{HEADER_ROW + 1}"

    summary.append(["Progress Tracker Export Summary"])
    summary.append(["Export Date:", datetime.now(timezone.utc).isoformat()])
    summary.append(["Total Projects:", len(projects)])
    summary.append([])
    summary.append(["Project Name", "Description", "Initiative Manager"])
    _style_header(summary, HEADER_ROW, 3)
    for project in projects:
        summary.append(
            [project.name, project.description or "", project.initiative_manager or ""]
        )
    summary.column_dimensions["A"].width = 30
    summary.column_dimensions["B"].width = 50
    summary.column_dimensions["C"].width = 25

    return workbook


def export_all_data(session: Session, exports_dir: Optional[str] = None) -> Optional[Path]:
    """Write today's export file and prune old ones. Returns the file path."""
    logger.info("Starting data export...")
    workbook = build_export_workbook(session)
    if workbook is None:
        logger.info("No projects to export")
        return None

    directory = Path(exports_dir or settings.exports_dir)
    directory.mkdir(parents=True, exist_ok=True)
    filepath = directory / get_export_filename()
    workbook.save(filepath)
    logger.info(f"✅ Export completed: {filepath.name}")

    cleanup_old_exports(str(directory))
    return filepath
