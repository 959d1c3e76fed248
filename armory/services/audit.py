"""
Audit trail.

Services record what they changed on the request's AuditTrail after their
transaction commits. The trail is flushed by a background task once the
response is sent, in a session of its own, so a failing audit write can
never undo or fail the operation it describes.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session, joinedload

from armory.database import utcnow
from armory.models import AuditLog
from armory.utils.pagination import paginate

logger = logging.getLogger(__name__)

SNAPSHOT_EXCLUDE = {"hashed_password"}


def snapshot(obj, **extra) -> Optional[dict]:
    """Column values of a model instance as JSON-safe data."""
    if obj is None:
        return None
    values = {
        column.name: getattr(obj, column.name)
        for column in obj.__table__.columns
        if column.name not in SNAPSHOT_EXCLUDE
    }
    values.update(extra)
    return jsonable_encoder(values)


@dataclass
class AuditEntry:
    action: str
    entity: str
    entity_id: Optional[int]
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None


class AuditTrail:
    def __init__(
        self,
        user_id: Optional[int],
        session_factory: Optional[Callable[[], Session]],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ):
        self.user_id = user_id
        self.session_factory = session_factory
        self.ip_address = ip_address
        self.user_agent = user_agent
        self.entries: List[AuditEntry] = []

    def add(self, action: str, entity: str, entity_id: Optional[int], before=None, after=None):
        self.entries.append(AuditEntry(action, entity, entity_id, before, after))

    def flush(self):
        """Write collected entries. Errors are logged, never raised."""
        if not self.entries or self.session_factory is None:
            return
        entries, self.entries = self.entries, []
        db = self.session_factory()
        try:
            for entry in entries:
                db.add(AuditLog(
                    user_id=self.user_id,
                    action=entry.action,
                    entity=entry.entity,
                    entity_id=entry.entity_id,
                    old_values=entry.old_values,
                    new_values=entry.new_values,
                    ip_address=self.ip_address,
                    user_agent=(self.user_agent or "")[:255] or None,
                    timestamp=utcnow(),
                ))
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(f"Failed to write {len(entries)} audit entries for user {self.user_id}")
        finally:
            db.close()


def list_audit_logs(
    db: Session,
    entity: Optional[str] = None,
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    limit: Optional[int] = None,
):
    query = db.query(AuditLog).options(joinedload(AuditLog.user))
    if entity:
        query = query.filter(AuditLog.entity == entity)
    if action:
        query = query.filter(AuditLog.action == action.upper())
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)
    if date_from:
        query = query.filter(AuditLog.timestamp >= date_from)
    if date_to:
        query = query.filter(AuditLog.timestamp <= date_to)
    query = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
    return paginate(query, page, limit)
