from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas import (
    RenewalEstimateResponse,
    VendorClassificationResponse,
    VendorClassificationUpdate,
    VendorSchema,
)
from ..security import get_user_id
from ..services import subscription_manager
from ..services.rate_limit import rate_limited
from ..services.vendor_classifier import set_vendor_type

router = APIRouter(
    prefix="/vendors",
    tags=["vendors"],
    dependencies=[Depends(rate_limited("standard"))],
)


@router.get("", response_model=list[VendorSchema])
def list_vendors(
    saas_only: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    return subscription_manager.list_vendors(db, saas_only=saas_only)


@router.put(
    "/{vendor_id}/classification",
    response_model=VendorClassificationResponse,
    summary="Store FIXED_PLAN / NEGOTIABLE for a vendor",
)
def classify(
    vendor_id: int,
    body: VendorClassificationUpdate,
    db: Session = Depends(get_db),
):
    try:
        vendor = set_vendor_type(db, vendor_id, body.vendor_type)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return VendorClassificationResponse(vendor_id=vendor.id, vendor_type=vendor.vendor_type, stored=True)


@router.get(
    "/{vendor_id}/renewal",
    response_model=RenewalEstimateResponse,
    summary="Renewal projection from this user's charges for the vendor",
)
def vendor_renewal(
    vendor_id: int,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    try:
        return subscription_manager.vendor_renewal_info(db, user_id, vendor_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
