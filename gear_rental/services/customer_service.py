from __future__ import annotations

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from models.rental_models import LIVE_RENTAL_STATES, Pendency, Rental, User


def serialize_user(user: User) -> dict:
    return {
        "userID": user.UserID,
        "name": user.FullName,
        "email": user.Email,
        "phone": user.Phone,
        "cpf": user.Cpf,
        "address": user.Address,
        "avatarUrl": user.AvatarUrl,
        "role": user.Role,
    }


def normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def find_conflicting_user(db: Session, email: str, cpf: str, exclude_user_id: int | None = None) -> User | None:
    stmt = select(User).where(or_(User.Email == normalize_email(email), User.Cpf == cpf.strip()))
    if exclude_user_id is not None:
        stmt = stmt.where(User.UserID != exclude_user_id)
    return db.execute(stmt).scalars().first()


def list_users(db: Session, role: str) -> list[User]:
    return db.execute(select(User).where(User.Role == role).order_by(User.FullName)).scalars().all()


def has_open_obligations(db: Session, user_id: int) -> bool:
    live_rental = db.execute(
        select(Rental.RentalID)
        .where(Rental.CustomerID == user_id)
        .where(Rental.Status.in_(LIVE_RENTAL_STATES))
    ).first()
    if live_rental:
        return True
    unresolved = db.execute(
        select(Pendency.PendencyID)
        .where(Pendency.CustomerID == user_id)
        .where(Pendency.ResolvedAt.is_(None))
    ).first()
    return unresolved is not None
