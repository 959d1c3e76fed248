from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from armory.database import get_db
from armory.models import User
from armory.schemas import AuditLogResponse, Page
from armory.services.audit import list_audit_logs
from armory.services.dependency import require_admin

router = APIRouter()


@router.get("", response_model=Page[AuditLogResponse])
def list_entries(
    entity: Optional[str] = None,
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    items, pagination = list_audit_logs(db, entity, action, user_id, date_from, date_to, page, limit)
    return {"items": items, "pagination": pagination}
