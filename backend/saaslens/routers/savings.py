from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas import SavingSchema, SavingUpdate
from ..security import get_user_id
from ..services import negotiation_tracker

router = APIRouter(prefix="/savings", tags=["savings"])


@router.put("/{saving_id}", response_model=SavingSchema, summary="Confirm the amount actually saved")
def confirm_saving(
    saving_id: int,
    body: SavingUpdate,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    try:
        saving = negotiation_tracker.confirm_saving(db, user_id, saving_id, body)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return negotiation_tracker.saving_to_schema(saving)
