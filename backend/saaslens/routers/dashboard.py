from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas import DashboardResponse
from ..security import get_user_id
from ..services.rate_limit import rate_limited
from ..services.reporter import get_dashboard

router = APIRouter(tags=["dashboard"])


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="Vendor and subscription totals with renewals due in the next 30 days",
    dependencies=[Depends(rate_limited("standard"))],
)
def dashboard(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return get_dashboard(db, user_id)
