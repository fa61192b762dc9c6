from collections.abc import Generator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from jobshadow.db.session import SessionLocal
from jobshadow.models.user import ADMIN_ROLES, User, UserRole
from jobshadow.services.lottery_jobs import LotteryJobRunner, lottery_runner


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_admin(
    admin_id: str = Header(alias="X-Admin-Id", min_length=1),
    db: Session = Depends(get_db),
) -> User:
    # Identity comes from the surrounding application; this layer only checks the role.
    admin = db.get(User, admin_id)
    if admin is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown administrator")
    if admin.role not in ADMIN_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return admin


def require_full_admin(current_admin: User = Depends(get_current_admin)) -> User:
    if current_admin.role != UserRole.full_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Read-only admins cannot manage the lottery")
    return current_admin


def get_lottery_runner() -> LotteryJobRunner:
    return lottery_runner
