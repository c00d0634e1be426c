from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas import (
    IntelligenceReport,
    ManualSubscriptionCreate,
    Source,
    SubscriptionSchema,
    SubscriptionUpdate,
)
from ..security import get_user_id
from ..services import subscription_manager
from ..services.intelligence import analyze_subscription
from ..services.rate_limit import rate_limited

router = APIRouter(
    prefix="/subscriptions",
    tags=["subscriptions"],
    dependencies=[Depends(rate_limited("standard"))],
)


@router.get("", response_model=list[SubscriptionSchema], summary="List subscriptions")
def list_subscriptions(
    filter: Literal["all", "renewing", "active", "cancelled"] = Query(default="all"),
    source: Optional[Source] = Query(default=None),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return subscription_manager.list_subscriptions(db, user_id, filter=filter, source=source)


@router.post("", response_model=SubscriptionSchema, status_code=201, summary="Add a manual subscription")
def create_subscription(
    body: ManualSubscriptionCreate,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    sub = subscription_manager.create_manual_subscription(db, user_id, body)
    return subscription_manager.to_schema(sub)


@router.get("/{subscription_id}", response_model=SubscriptionSchema)
def get_subscription(
    subscription_id: int,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return subscription_manager.to_schema(_get_or_404(db, user_id, subscription_id))


@router.patch("/{subscription_id}", response_model=SubscriptionSchema, summary="Update subscription fields")
def update_subscription(
    subscription_id: int,
    body: SubscriptionUpdate,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    try:
        sub = subscription_manager.update_subscription(db, user_id, subscription_id, body)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return subscription_manager.to_schema(sub)


@router.get(
    "/{subscription_id}/intelligence",
    response_model=IntelligenceReport,
    summary="Vendor type, normalized cost, value summary and alternatives",
)
def subscription_intelligence(
    subscription_id: int,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return analyze_subscription(db, _get_or_404(db, user_id, subscription_id))


def _get_or_404(db: Session, user_id: str, subscription_id: int):
    try:
        return subscription_manager.get_subscription(db, user_id, subscription_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
