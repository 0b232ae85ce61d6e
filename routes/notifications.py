from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from core.ownership import get_current_user
from models.user import User
from schemas.notification import NotificationOut
from services.notifications import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationOut])
def list_unread(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return NotificationService(db).unread(user.id)


@router.post("/read-all")
def read_all(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"updated": NotificationService(db).mark_all_read(user.id)}


@router.post("/{notification_id}/read", response_model=NotificationOut)
def read_one(notification_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return NotificationService(db).mark_read(user.id, notification_id)
