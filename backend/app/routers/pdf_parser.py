"""PDF parser router — ingestion of stored course materials."""

import asyncio

from fastapi import APIRouter, Depends, File, UploadFile

from app.dependencies import Services, get_services
from app.errors import InvalidRequestError
from app.middleware.auth import CurrentUser, get_current_user, require_admin
from app.schemas.rag import ParseFromUrlRequest, envelope
from app.services.document_parser import detect_format
from app.services.ingestion import run_to_completion

router = APIRouter(prefix="/api/pdf-parser", tags=["pdf-parser"])


@router.post("/parse-from-url")
async def parse_from_url(
    body: ParseFromUrlRequest,
    _admin: CurrentUser = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Fetch, parse, chunk and index a material.

    The run is shielded from request cancellation: a client that disconnects
    does not leave the material half-indexed.
    """
    report = await run_to_completion(
        services.ingestion.ingest(body.material_id, body.file_url),
        f"Ingestion of material {body.material_id}",
    )
    return envelope(report.to_dict(), "Material parsed and indexed successfully")


@router.post("/extract-text")
async def extract_text(
    file: UploadFile = File(...),
    _user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Parse an uploaded file and return its pages without indexing anything."""
    detect_format(file.filename, file.content_type)
    data = await file.read()
    if len(data) > services.ingestion.max_file_bytes:
        raise InvalidRequestError("File is too large to parse")

    parsed = await asyncio.to_thread(
        services.ingestion.parser.parse, data, file.filename or "", file.content_type
    )
    pages = [
        {
            "page_number": p.page_number,
            "text": p.text,
            "markdown": p.markdown,
            "ocr_applied": p.ocr_applied,
            "tables": [
                {"rows": t.row_count, "columns": t.column_count, "bbox": t.bbox, "content": t.rows}
                for t in p.tables
            ],
            "images": [{"name": i.name, "bbox": i.bbox} for i in p.images],
        }
        for p in parsed.pages
    ]
    return envelope(
        {
            "file_name": file.filename,
            "total_pages": parsed.total_pages,
            "skipped_pages": parsed.skipped_count,
            "total_tables": parsed.total_tables,
            "total_images": parsed.total_images,
            "pages": pages,
        },
        "Text extracted successfully",
    )
