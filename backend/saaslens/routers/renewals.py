from fastapi import APIRouter, HTTPException

from ..schemas import RenewalEstimateRequest, RenewalEstimateResponse
from ..services.normalizer import parse_date
from ..services.renewal import get_renewal_info, get_urgency_label

router = APIRouter(prefix="/renewals", tags=["renewals"])


@router.post(
    "/estimate",
    response_model=RenewalEstimateResponse,
    summary="Billing frequency and next renewal for a series of charge dates",
)
def estimate(body: RenewalEstimateRequest):
    # parse_date(datetime) only normalizes aware values to naive UTC
    dates = [parse_date(d) for d in body.dates]
    try:
        info = get_renewal_info(dates, frequency=body.frequency)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return RenewalEstimateResponse(**info.model_dump(), urgency=get_urgency_label(info.days_until_renewal))
