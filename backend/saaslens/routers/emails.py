"""Inbox scan: run a batch of already-fetched messages through the extraction pipeline."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas import ScanRequest, ScanResult
from ..security import get_user_id
from ..services import llm_service
from ..services.email_pipeline import scan_messages
from ..services.rate_limit import rate_limited

router = APIRouter(prefix="/emails", tags=["emails"])


@router.post(
    "/scan",
    response_model=ScanResult,
    summary="Detect subscriptions in a batch of inbox messages",
    dependencies=[Depends(rate_limited("gmail_scan"))],
)
def scan_emails(
    body: ScanRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    settings = llm_service.get_llm_settings(db)
    extract = llm_service.make_extractor(settings["provider"], settings["model"])
    return scan_messages(db, user_id, body.messages, extract=extract, max_results=body.max_results)
