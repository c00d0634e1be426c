from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas import ImportResponse, PreviewResponse
from ..security import get_user_id
from ..services.csv_importer import import_csv, preview_csv
from ..services.rate_limit import rate_limited

MAX_CSV_BYTES = 10 * 1024 * 1024      # 10 MB

router = APIRouter(prefix="/imports", tags=["imports"])


# ─────────────────────────────────────────────────────────────────────────────
# Preview
# ─────────────────────────────────────────────────────────────────────────────


@router.post(
    "/preview",
    response_model=PreviewResponse,
    summary="Return headers, detected column mapping and the first 20 rows",
)
async def preview_csv_endpoint(
    file: UploadFile = File(...),
):
    _require_csv(file)
    content = await file.read()
    _require_max_size(content, MAX_CSV_BYTES, "CSV")
    _require_content(content)

    try:
        data = preview_csv(content)
    except (ValueError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=422, detail=f"Could not parse CSV: {exc}")

    return PreviewResponse(filename=file.filename or "upload.csv", **data)


# ─────────────────────────────────────────────────────────────────────────────
# Import
# ─────────────────────────────────────────────────────────────────────────────


@router.post(
    "/csv",
    response_model=ImportResponse,
    summary="Import a bank/card CSV: vendors, transactions and detected subscriptions",
    dependencies=[Depends(rate_limited("upload"))],
)
async def import_csv_endpoint(
    file: UploadFile = File(...),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    _require_csv(file)
    content = await file.read()
    _require_max_size(content, MAX_CSV_BYTES, "CSV")
    _require_content(content)

    try:
        return import_csv(db, user_id, content)
    except (ValueError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=422, detail=str(exc))


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _require_csv(file: UploadFile) -> None:
    if not (file.filename or "").lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only .csv files are accepted.")


def _require_content(content: bytes) -> None:
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")


def _require_max_size(content: bytes, max_bytes: int, label: str) -> None:
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"{label} file too large (>{max_bytes // (1024*1024)} MB).",
        )
