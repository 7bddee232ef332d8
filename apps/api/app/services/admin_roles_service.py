from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.admin_role import AdminRole
from app.observability import log_event


def has_privileged_role(db: Session, subject_id: str) -> bool:
    if not subject_id:
        return False
    found = db.scalar(select(AdminRole.subject_id).where(AdminRole.subject_id == subject_id))
    return found is not None


def grant_privileged_role(db: Session, subject_id: str, granted_by: str | None = None) -> bool:
    """Grant back-office access; returns False when the subject already had it."""
    if has_privileged_role(db, subject_id):
        return False
    db.add(AdminRole(subject_id=subject_id, granted_by=granted_by))
    db.commit()
    log_event("admin_role_granted", detail=f"subject={subject_id} by={granted_by or 'system'}")
    return True


def bootstrap_privileged_roles(db: Session, subject_ids: list[str]) -> int:
    granted = 0
    for subject_id in subject_ids:
        if grant_privileged_role(db, subject_id, granted_by="bootstrap"):
            granted += 1
    return granted
