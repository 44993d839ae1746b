"""Progress Tracker — Excel Import & Export Routes."""

import io

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from sqlmodel import Session

from tracker.api.dependencies import get_actor
from tracker.config import settings
from tracker.connectors.excel.exporter import export_all_data, list_exports
from tracker.connectors.excel.importer import (
    ImportValidationError,
    generate_import_template,
    import_data_from_file,
)
from tracker.core.audit import Actor
from tracker.core.logging import get_logger
from tracker.database import get_session
from tracker.models.analysis_models import ImportResult

logger = get_logger("api.io")

router = APIRouter(tags=["Import/Export"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("/import/template")
async def download_import_template():
    """Blank import workbook with example rows and instructions."""
    buffer = io.BytesIO()
    generate_import_template().save(buffer)
    buffer.seek(0)
    return StreamingResponse(
        buffer,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="import-template.xlsx"'},
    )


@router.post("/import", response_model=ImportResult)
async def import_data(
    file: UploadFile = File(...),
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
):
    """Create or update projects, metrics and periods from an .xlsx upload."""
    if not (file.filename or "").lower().endswith(".xlsx"):
        raise HTTPException(status_code=400, detail="Only .xlsx files are supported")
    content = await file.read()
    try:
        return import_data_from_file(session, content, actor)
    except ImportValidationError as e:
        logger.info(f"Import of {file.filename} rejected with {len(e.errors)} errors")
        raise HTTPException(
            status_code=400, detail={"error": str(e), "errors": e.errors}
        )


@router.post("/export/trigger")
async def trigger_export(session: Session = Depends(get_session)):
    """Run the daily export now."""
    try:
        path = export_all_data(session)
    except OSError as e:
        logger.error(f"Export failed: {e}")
        raise HTTPException(status_code=500, detail=f"Export failed: {str(e)}")
    if path is None:
        return {"status": "no_data", "message": "No projects to export"}
    return {"status": "success", "filename": path.name}


@router.get("/exports")
async def get_exports():
    """Retained export files, newest first."""
    files = list_exports()
    return {
        "status": "success",
        "max_exports": settings.max_exports,
        "count": len(files),
        "files": [f.name for f in files],
    }
