from __future__ import annotations

import secrets
import string
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.rental_models import LIVE_RENTAL_STATES, AuditLog, Pendency, Rental

CODE_ALPHABET = string.ascii_uppercase + string.digits


def normalize_code(raw: str | None) -> str:
    return (raw or "").strip().upper()


def generate_pickup_code(length: int = 6) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def is_code_live(db: Session, code: str) -> bool:
    stmt = (
        select(Rental.RentalID)
        .where(Rental.Code == code)
        .where(Rental.Status.in_(LIVE_RENTAL_STATES))
    )
    return db.execute(stmt).first() is not None


def find_rental_by_code(db: Session, code: str) -> Rental | None:
    # Codes are only unique among live rentals; prefer the live one.
    rentals = db.execute(
        select(Rental).where(Rental.Code == code).order_by(Rental.RentalID.desc())
    ).scalars().all()
    for rental in rentals:
        if rental.Status in LIVE_RENTAL_STATES:
            return rental
    return rentals[0] if rentals else None


def compute_rental_price(hourly_value: float, duration_minutes: int) -> float:
    return round(float(hourly_value or 0) * (duration_minutes / 60), 2)


def elapsed_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants, truncated toward zero."""
    return int((end - start).total_seconds() / 60)


def compute_late_fee(delay_minutes: int, fee_per_minute: float) -> float:
    return round(delay_minutes * fee_per_minute, 2)


def serialize_rental(rental: Rental) -> dict:
    return {
        "rentalID": rental.RentalID,
        "code": rental.Code,
        "customerID": rental.CustomerID,
        "inventoryID": rental.InventoryID,
        "status": rental.Status,
        "duration": rental.Duration,
        "price": rental.Price,
        "expiresAt": rental.ExpiresAt,
        "pickedUpAt": rental.PickedUpAt,
        "returnedAt": rental.ReturnedAt,
        "createdDate": rental.CreatedDate,
        "updatedDate": rental.UpdatedDate,
    }


def serialize_pendency(pendency: Pendency) -> dict:
    return {
        "pendencyID": pendency.PendencyID,
        "customerID": pendency.CustomerID,
        "rentalID": pendency.RentalID,
        "delay": pendency.Delay,
        "value": pendency.Value,
        "resolvedAt": pendency.ResolvedAt,
        "createdDate": pendency.CreatedDate,
    }


def log_audit(db: Session, entity_type: str, entity_id: int, action: str, details: str | None = None, user_id: int | None = None) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=datetime.now(),
        )
    )
