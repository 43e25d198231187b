# forswags/routers/coach_applications.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from forswags import schemas
from forswags.coach_applications import submit_application
from forswags.database import get_db

# Public: no login required to apply
router = APIRouter(prefix="/coach-applications", tags=["coach-applications"])


@router.post("", response_model=schemas.CoachApplicationOut, status_code=201)
def apply_to_coach(
    payload: schemas.CoachApplicationIn,
    db: Session = Depends(get_db),
):
    return submit_application(db, payload.model_dump())
