"""
Rental lifecycle: reserve -> pickup -> return, plus expiry of unclaimed
reservations.

Every operation runs in its own session from the injected factory. The two
contended writes (inventory claim and rental status changes) are conditional
updates guarded by the current status, so concurrent callers resolve to a
single winner without holding locks across database calls.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterator

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from models.rental_models import (
    INVENTORY_AVAILABLE,
    INVENTORY_RESERVED,
    RENTAL_ACTIVE,
    RENTAL_CANCELLED,
    RENTAL_COMPLETED,
    RENTAL_COMPLETED_LATE,
    RENTAL_PENDING,
    Pendency,
    Rental,
)
from services.errors import (
    AlreadyCancelled,
    HasPendency,
    InvalidCode,
    InvalidState,
    NoAvailableInventory,
    NotFound,
    PendencyBlocksReservation,
    StorageFailure,
)
from services.inventory_store import InventoryStore, PendencyLedger
from services.rental_policy import RentalPolicy
from services.rental_service import (
    compute_late_fee,
    compute_rental_price,
    elapsed_minutes,
    find_rental_by_code,
    generate_pickup_code,
    is_code_live,
    log_audit,
    normalize_code,
)

RENTAL_LOGGER = logging.getLogger("gear_rental.rentals")

STATE_TRANSITIONS = {
    RENTAL_PENDING: {RENTAL_ACTIVE, RENTAL_CANCELLED},
    RENTAL_ACTIVE: {RENTAL_COMPLETED, RENTAL_COMPLETED_LATE},
    RENTAL_CANCELLED: set(),
    RENTAL_COMPLETED: set(),
    RENTAL_COMPLETED_LATE: set(),
}


class _CodeCollision(Exception):
    pass


@dataclass
class ReturnOutcome:
    rental: Rental
    pendency: Pendency | None = None

    @property
    def has_pendency(self) -> bool:
        return self.pendency is not None


class RentalLifecycleManager:
    def __init__(
        self,
        session_factory: sessionmaker,
        policy: RentalPolicy | None = None,
        now_fn: Callable[[], datetime] | None = None,
        scheduler=None,
    ):
        self._session_factory = session_factory
        self.policy = policy or RentalPolicy()
        self._now = now_fn or datetime.now
        self.scheduler = scheduler

    @contextmanager
    def _unit_of_work(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            RENTAL_LOGGER.error("Storage failure error=%s", exc.__class__.__name__)
            raise StorageFailure(f"Storage failure: {exc.__class__.__name__}") from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def reserve(self, customer_id: int, product_id: int, color_id: int, size_id: int, duration: int) -> str:
        for attempt in range(1, self.policy.code_attempts + 1):
            try:
                with self._unit_of_work() as db:
                    rental = self._reserve_once(db, customer_id, product_id, color_id, size_id, duration)
            except _CodeCollision as exc:
                RENTAL_LOGGER.warning("Pickup code collision code=%s attempt=%s", exc, attempt)
                continue

            RENTAL_LOGGER.info(
                "Rental reserved rental_id=%s code=%s customer_id=%s inventory_id=%s",
                rental.RentalID,
                rental.Code,
                customer_id,
                rental.InventoryID,
            )
            if self.scheduler is not None:
                self.scheduler.schedule(rental.Code, rental.ExpiresAt)
            return rental.Code

        raise StorageFailure("Could not issue a unique pickup code.")

    def _reserve_once(
        self,
        db: Session,
        customer_id: int,
        product_id: int,
        color_id: int,
        size_id: int,
        duration: int,
    ) -> Rental:
        ledger = PendencyLedger(db, self._now)
        store = InventoryStore(db, self._now)

        if ledger.has_unresolved(customer_id):
            RENTAL_LOGGER.info("Reservation blocked by pendency customer_id=%s", customer_id)
            raise PendencyBlocksReservation()

        hourly_rate = store.get_hourly_rate(product_id)
        if hourly_rate is None:
            raise NoAvailableInventory()

        code = self._issue_code(db)

        claimed = None
        for item in store.find_available_items(product_id, color_id, size_id):
            if store.try_set_status(item.InventoryID, INVENTORY_AVAILABLE, INVENTORY_RESERVED):
                claimed = item
                break
            RENTAL_LOGGER.info("Inventory claimed concurrently inventory_id=%s", item.InventoryID)
        if claimed is None:
            raise NoAvailableInventory()

        now = self._now()
        rental = Rental(
            Code=code,
            CustomerID=customer_id,
            InventoryID=claimed.InventoryID,
            Status=RENTAL_PENDING,
            Duration=duration,
            Price=compute_rental_price(hourly_rate, duration),
            ExpiresAt=now + timedelta(minutes=self.policy.pickup_window_minutes),
            PickedUpAt=None,
            ReturnedAt=None,
            CreatedDate=now,
            UpdatedDate=now,
        )
        db.add(rental)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            if is_code_live(db, code):
                raise _CodeCollision(code) from exc
            raise

        log_audit(db, "Rental", rental.RentalID, "Reserve", f"code={code} inventory={claimed.InventoryID}", user_id=customer_id)
        return rental

    def _issue_code(self, db: Session) -> str:
        for _ in range(self.policy.code_attempts):
            code = generate_pickup_code(self.policy.code_length)
            if not is_code_live(db, code):
                return code
        raise StorageFailure("Could not issue a unique pickup code.")

    def confirm_pickup(self, code: str) -> Rental:
        code = normalize_code(code)
        with self._unit_of_work() as db:
            rental = find_rental_by_code(db, code)
            if not rental:
                raise InvalidCode()

            now = self._now()
            picked_up = False
            if rental.Status == RENTAL_PENDING and self._is_overdue(rental, now):
                # Expiry may not have fired yet (e.g. after a restart); the
                # cancellation is committed before reporting it.
                if not self._cancel(db, rental, "pickup window elapsed"):
                    self._reload_status(db, rental)
            elif rental.Status == RENTAL_PENDING:
                picked_up = self._transition(db, rental, RENTAL_PENDING, RENTAL_ACTIVE, PickedUpAt=now)
                if picked_up:
                    log_audit(db, "Rental", rental.RentalID, "ConfirmPickup", f"code={code}", user_id=rental.CustomerID)
                else:
                    self._reload_status(db, rental)

            if not picked_up and rental.Status != RENTAL_CANCELLED:
                raise InvalidState("Pickup can only be confirmed for a pending rental.")

        if not picked_up:
            raise AlreadyCancelled()

        RENTAL_LOGGER.info("Rental picked up rental_id=%s code=%s", rental.RentalID, code)
        return rental

    def confirm_return(self, code: str, actor_id: int | None = None) -> ReturnOutcome:
        code = normalize_code(code)
        with self._unit_of_work() as db:
            rental = find_rental_by_code(db, code)
            if not rental:
                raise InvalidCode()
            if rental.Status != RENTAL_ACTIVE:
                raise InvalidState("Return can only be confirmed for an active rental.")

            now = self._now()
            InventoryStore(db, self._now).set_status(rental.InventoryID, INVENTORY_AVAILABLE)

            started_at = rental.PickedUpAt or rental.CreatedDate
            elapsed = elapsed_minutes(started_at, now)
            if elapsed > rental.Duration + self.policy.grace_minutes:
                if not self._transition(db, rental, RENTAL_ACTIVE, RENTAL_COMPLETED_LATE, ReturnedAt=now):
                    raise InvalidState("Return can only be confirmed for an active rental.")
                delay = elapsed - rental.Duration
                value = compute_late_fee(delay, self.policy.late_fee_per_minute)
                pendency = PendencyLedger(db, self._now).create(rental.CustomerID, rental.RentalID, delay, value)
                outcome = ReturnOutcome(rental=rental, pendency=pendency)
            else:
                if not self._transition(db, rental, RENTAL_ACTIVE, RENTAL_COMPLETED, ReturnedAt=now):
                    raise InvalidState("Return can only be confirmed for an active rental.")
                outcome = ReturnOutcome(rental=rental)

            log_audit(
                db,
                "Rental",
                rental.RentalID,
                "ConfirmReturn",
                f"code={code} elapsed={elapsed} status={rental.Status}",
                user_id=actor_id,
            )

        RENTAL_LOGGER.info(
            "Rental returned rental_id=%s code=%s elapsed=%s late=%s",
            rental.RentalID,
            code,
            elapsed,
            outcome.has_pendency,
        )
        return outcome

    def expire_rental(self, code: str) -> bool:
        code = normalize_code(code)
        with self._unit_of_work() as db:
            rental = find_rental_by_code(db, code)
            if not rental or rental.Status != RENTAL_PENDING:
                return False
            if not self._is_overdue(rental, self._now()):
                return False
            return self._cancel(db, rental, "pickup window elapsed")

    def expire_overdue(self, now: datetime | None = None) -> int:
        now = now or self._now()
        legacy_cutoff = now - timedelta(minutes=self.policy.pickup_window_minutes)
        expired = 0
        with self._unit_of_work() as db:
            rentals = db.execute(
                select(Rental)
                .where(Rental.Status == RENTAL_PENDING)
                .where(
                    or_(
                        Rental.ExpiresAt <= now,
                        and_(Rental.ExpiresAt.is_(None), Rental.CreatedDate <= legacy_cutoff),
                    )
                )
                .order_by(Rental.RentalID)
            ).scalars().all()
            for rental in rentals:
                if self._cancel(db, rental, "overdue sweep"):
                    expired += 1
        if expired:
            RENTAL_LOGGER.info("Expired overdue reservations count=%s", expired)
        return expired

    def _is_overdue(self, rental: Rental, now: datetime) -> bool:
        expires_at = rental.ExpiresAt or (rental.CreatedDate + timedelta(minutes=self.policy.pickup_window_minutes))
        return expires_at <= now

    def _cancel(self, db: Session, rental: Rental, reason: str) -> bool:
        if not self._transition(db, rental, RENTAL_PENDING, RENTAL_CANCELLED):
            return False
        InventoryStore(db, self._now).set_status(rental.InventoryID, INVENTORY_AVAILABLE)
        log_audit(db, "Rental", rental.RentalID, "Cancel", reason, user_id=None)
        RENTAL_LOGGER.info("Rental cancelled rental_id=%s code=%s reason=%s", rental.RentalID, rental.Code, reason)
        return True

    def _reload_status(self, db: Session, rental: Rental) -> str:
        # A concurrent writer changed the row after it was read.
        status = db.execute(select(Rental.Status).where(Rental.RentalID == rental.RentalID)).scalar()
        set_committed_value(rental, "Status", status)
        return status

    def _transition(self, db: Session, rental: Rental, expected: str, target: str, **values) -> bool:
        if target not in STATE_TRANSITIONS.get(expected, set()):
            raise InvalidState(f"Invalid state transition: {expected} -> {target}")
        now = self._now()
        result = db.execute(
            update(Rental)
            .where(Rental.RentalID == rental.RentalID)
            .where(Rental.Status == expected)
            .values(Status=target, UpdatedDate=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        set_committed_value(rental, "Status", target)
        set_committed_value(rental, "UpdatedDate", now)
        for field, value in values.items():
            set_committed_value(rental, field, value)
        return True

    def resolve_pendency(self, pendency_id: int) -> Pendency:
        with self._unit_of_work() as db:
            pendency = PendencyLedger(db, self._now).resolve(pendency_id)
            if not pendency:
                raise NotFound("Pendency not found or already resolved.")
            log_audit(db, "Pendency", pendency.PendencyID, "Resolve", None, user_id=pendency.CustomerID)
        RENTAL_LOGGER.info("Pendency resolved pendency_id=%s customer_id=%s", pendency.PendencyID, pendency.CustomerID)
        return pendency

    def delete_rental(self, rental_id: int) -> None:
        with self._unit_of_work() as db:
            rental = db.get(Rental, rental_id)
            if not rental:
                raise NotFound("Rental not found.")
            if PendencyLedger(db, self._now).exists_for_rental(rental.RentalID):
                raise HasPendency()
            if rental.Status != RENTAL_COMPLETED:
                raise InvalidState("Only a completed rental can be deleted.")
            db.delete(rental)
            log_audit(db, "Rental", rental_id, "Delete", f"code={rental.Code}", user_id=None)
        RENTAL_LOGGER.info("Rental deleted rental_id=%s", rental_id)
