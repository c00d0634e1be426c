"""LLM router: provider selection stored in the settings table."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..services import llm_service

router = APIRouter(prefix="/llm", tags=["llm"])


class LLMSettingsUpdate(BaseModel):
    provider: Literal["gemini", "openai", "ollama"] = "gemini"
    model: Optional[str] = None


@router.get("/settings", summary="Get LLM settings")
def get_settings(db: Session = Depends(get_db)):
    return llm_service.get_llm_settings(db)


@router.put("/settings", summary="Update LLM settings")
def update_settings(payload: LLMSettingsUpdate, db: Session = Depends(get_db)):
    llm_service.set_setting(db, "llm_provider", payload.provider)
    # Empty model means "provider default"
    llm_service.set_setting(db, "llm_model", payload.model or "")
    return llm_service.get_llm_settings(db)
