from functools import partial
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas import (
    NegotiationDraftRequest,
    NegotiationDraftResponse,
    NegotiationSchema,
    NegotiationSend,
    NegotiationStatus,
    NegotiationUpdate,
    SavingCreate,
    SavingSchema,
)
from ..security import get_user_id
from ..services import llm_service, negotiation_tracker
from ..services.negotiation import (
    STRATEGY_DESCRIPTIONS,
    STRATEGY_NAMES,
    context_for_subscription,
    draft_negotiation_email,
)
from ..services.negotiation_tracker import InvalidTransitionError
from ..services.rate_limit import rate_limited
from ..services.subscription_manager import get_subscription

router = APIRouter(prefix="/negotiations", tags=["negotiations"])


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=422, detail=str(exc))


@router.get("/strategies", summary="Available negotiation strategies")
def list_strategies():
    return [
        {"strategy": key, "name": name, "description": STRATEGY_DESCRIPTIONS[key]}
        for key, name in STRATEGY_NAMES.items()
    ]


@router.post(
    "/draft",
    response_model=NegotiationDraftResponse,
    summary="Draft and store a negotiation email for a subscription",
    dependencies=[Depends(rate_limited("negotiate"))],
)
def draft(
    body: NegotiationDraftRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    try:
        sub = get_subscription(db, user_id, body.subscription_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    try:
        context = context_for_subscription(db, sub, company_name=body.company_name)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    settings = llm_service.get_llm_settings(db)
    complete = partial(llm_service.complete, provider=settings["provider"], model=settings["model"])
    result = draft_negotiation_email(context, body.strategy, complete=complete)
    neg = negotiation_tracker.save_draft(db, user_id, sub, result)
    return result.model_copy(update={"id": neg.id, "status": neg.status})


@router.get("", response_model=list[NegotiationSchema], summary="List stored negotiations")
def list_negotiations(
    status: Optional[NegotiationStatus] = Query(default=None),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return [negotiation_tracker.to_schema(n) for n in negotiation_tracker.list_negotiations(db, user_id, status)]


@router.get("/{negotiation_id}", response_model=NegotiationSchema, summary="Get one negotiation")
def get_negotiation(
    negotiation_id: int,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    try:
        return negotiation_tracker.to_schema(negotiation_tracker.get_negotiation(db, user_id, negotiation_id))
    except LookupError as exc:
        raise _http_error(exc)


@router.patch("/{negotiation_id}", response_model=NegotiationSchema, summary="Edit and approve a draft")
def update_negotiation(
    negotiation_id: int,
    body: NegotiationUpdate,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    try:
        neg = negotiation_tracker.update_draft(db, user_id, negotiation_id, body)
    except (LookupError, ValueError) as exc:
        raise _http_error(exc)
    return negotiation_tracker.to_schema(neg)


@router.post("/{negotiation_id}/sent", response_model=NegotiationSchema, summary="Record that the email was sent")
def mark_sent(
    negotiation_id: int,
    body: NegotiationSend,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    try:
        neg = negotiation_tracker.mark_sent(db, user_id, negotiation_id, body)
    except (LookupError, ValueError) as exc:
        raise _http_error(exc)
    return negotiation_tracker.to_schema(neg)


@router.post(
    "/{negotiation_id}/savings",
    response_model=SavingSchema,
    status_code=201,
    summary="Record estimated or confirmed savings",
)
def record_saving(
    negotiation_id: int,
    body: SavingCreate,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    try:
        saving = negotiation_tracker.record_saving(db, user_id, negotiation_id, body)
    except (LookupError, ValueError) as exc:
        raise _http_error(exc)
    return negotiation_tracker.saving_to_schema(saving)
