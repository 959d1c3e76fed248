"""Base scoping for BASE_COMMANDER and LOGISTICS_OFFICER callers."""
from typing import Optional

from armory.exceptions import ForbiddenError, NotFoundError
from armory.models import Role, User


def is_base_scoped(user: User) -> bool:
    return user.role != Role.ADMIN


def scoped_base_id(user: User) -> Optional[int]:
    """Base a caller is pinned to, None for global callers."""
    return user.base_id if is_base_scoped(user) else None


def ensure_visible(user: User, base_ids, entity: str, entity_id: Optional[int] = None) -> None:
    """Hide records of other bases behind NotFoundError."""
    if not is_base_scoped(user):
        return
    if isinstance(base_ids, int) or base_ids is None:
        base_ids = (base_ids,)
    if user.base_id not in base_ids:
        raise NotFoundError(entity, entity_id)


def ensure_base_access(user: User, base_id: Optional[int], message: str) -> None:
    """Scoped callers may only act on their own base."""
    if is_base_scoped(user) and base_id != user.base_id:
        raise ForbiddenError(message, base_id=base_id)
