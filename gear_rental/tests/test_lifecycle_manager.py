import sys
import unittest
from datetime import timedelta
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent))

from rental_fixtures import START, FakeClock, build_session_factory_for, seed_catalog, seed_user

from sqlalchemy import update
from sqlalchemy.dialects import mssql, postgresql, sqlite
from sqlalchemy.exc import OperationalError
from sqlalchemy.schema import CreateIndex

from models.rental_models import (
    INVENTORY_AVAILABLE,
    INVENTORY_RESERVED,
    RENTAL_ACTIVE,
    RENTAL_CANCELLED,
    RENTAL_COMPLETED,
    RENTAL_COMPLETED_LATE,
    RENTAL_PENDING,
    AuditLog,
    Pendency,
    ProductInventory,
    Rental,
)
from services import lifecycle_service
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
from services.lifecycle_service import RentalLifecycleManager
from services.rental_policy import RentalPolicy
from services.rental_service import elapsed_minutes, find_rental_by_code


class LifecycleManagerTests(unittest.TestCase):
    def setUp(self):
        self.session_factory = build_session_factory_for()
        self.clock = FakeClock()
        self.manager = RentalLifecycleManager(self.session_factory, RentalPolicy(), now_fn=self.clock)
        self.catalog = seed_catalog(self.session_factory, items=1, hourly_value=12.0)
        self.customer_id = seed_user(self.session_factory, "ana@example.test")

    def _reserve(self, customer_id=None, duration=60):
        return self.manager.reserve(
            customer_id or self.customer_id,
            self.catalog["product_id"],
            self.catalog["color_id"],
            self.catalog["size_id"],
            duration,
        )

    def _rental(self, code):
        with self.session_factory() as db:
            return db.query(Rental).filter(Rental.Code == code).order_by(Rental.RentalID.desc()).first()

    def _item_status(self, inventory_id=None):
        with self.session_factory() as db:
            return db.get(ProductInventory, inventory_id or self.catalog["inventory_ids"][0]).Status

    def test_reserve_creates_pending_rental_and_reserves_item(self):
        code = self._reserve()

        self.assertEqual(len(code), 6)
        self.assertEqual(code, code.upper())
        rental = self._rental(code)
        self.assertEqual(rental.Status, RENTAL_PENDING)
        self.assertEqual(rental.Price, 12.0)
        self.assertEqual(rental.CustomerID, self.customer_id)
        self.assertEqual(rental.CreatedDate, self.clock.current)
        self.assertEqual((rental.ExpiresAt - rental.CreatedDate).total_seconds(), 3600)
        self.assertEqual(self._item_status(), INVENTORY_RESERVED)

    def test_price_is_hourly_value_times_hours(self):
        code = self._reserve(duration=90)
        self.assertEqual(self._rental(code).Price, 18.0)

    def test_reserve_without_available_item_fails(self):
        self._reserve()
        other_customer = seed_user(self.session_factory, "bia@example.test")

        with self.assertRaises(NoAvailableInventory):
            self._reserve(customer_id=other_customer)

    def test_reserve_unknown_product_fails(self):
        with self.assertRaises(NoAvailableInventory):
            self.manager.reserve(self.customer_id, 9999, self.catalog["color_id"], self.catalog["size_id"], 60)

    def test_pickup_is_case_insensitive_and_activates_rental(self):
        code = self._reserve()
        self.clock.advance(minutes=5)

        rental = self.manager.confirm_pickup(f"  {code.lower()} ")

        self.assertEqual(rental.Status, RENTAL_ACTIVE)
        self.assertEqual(rental.PickedUpAt, self.clock.current)
        self.assertEqual(self._rental(code).Status, RENTAL_ACTIVE)
        self.assertEqual(self._item_status(), INVENTORY_RESERVED)

    def test_pickup_unknown_code_is_invalid(self):
        with self.assertRaises(InvalidCode):
            self.manager.confirm_pickup("NOPE")

    def test_pickup_twice_is_invalid_state(self):
        code = self._reserve()
        self.manager.confirm_pickup(code)

        with self.assertRaises(InvalidState):
            self.manager.confirm_pickup(code)

    def test_return_within_grace_completes_without_pendency(self):
        code = self._reserve(duration=60)
        self.manager.confirm_pickup(code)
        self.clock.advance(minutes=69)

        outcome = self.manager.confirm_return(code)

        self.assertFalse(outcome.has_pendency)
        self.assertEqual(outcome.rental.Status, RENTAL_COMPLETED)
        self.assertEqual(self._item_status(), INVENTORY_AVAILABLE)

    def test_late_return_records_pendency(self):
        code = self._reserve(duration=60)
        self.manager.confirm_pickup(code)
        self.clock.advance(minutes=71)

        outcome = self.manager.confirm_return(code)

        self.assertTrue(outcome.has_pendency)
        self.assertEqual(outcome.rental.Status, RENTAL_COMPLETED_LATE)
        self.assertEqual(outcome.pendency.Delay, 11)
        self.assertEqual(outcome.pendency.Value, 275.0)
        self.assertEqual(outcome.pendency.CustomerID, self.customer_id)
        self.assertIsNone(outcome.pendency.ResolvedAt)
        self.assertEqual(self._item_status(), INVENTORY_AVAILABLE)

    def test_return_of_pending_rental_is_invalid_state(self):
        code = self._reserve()

        with self.assertRaises(InvalidState):
            self.manager.confirm_return(code)

    def test_return_unknown_code_is_invalid(self):
        with self.assertRaises(InvalidCode):
            self.manager.confirm_return("NOPE")

    def test_unresolved_pendency_blocks_reservation_until_resolved(self):
        code = self._reserve()
        self.manager.confirm_pickup(code)
        self.clock.advance(minutes=120)
        outcome = self.manager.confirm_return(code)

        with self.assertRaises(PendencyBlocksReservation):
            self._reserve()

        resolved = self.manager.resolve_pendency(outcome.pendency.PendencyID)
        self.assertEqual(resolved.ResolvedAt, self.clock.current)
        self.assertTrue(self._reserve())

    def test_resolve_pendency_twice_is_not_found(self):
        code = self._reserve()
        self.manager.confirm_pickup(code)
        self.clock.advance(minutes=90)
        pendency_id = self.manager.confirm_return(code).pendency.PendencyID
        self.manager.resolve_pendency(pendency_id)

        with self.assertRaises(NotFound):
            self.manager.resolve_pendency(pendency_id)

    def test_expire_overdue_cancels_pending_and_frees_item(self):
        code = self._reserve()
        self.clock.advance(minutes=59)
        self.assertEqual(self.manager.expire_overdue(), 0)

        self.clock.advance(minutes=2)
        self.assertEqual(self.manager.expire_overdue(), 1)
        self.assertEqual(self._rental(code).Status, RENTAL_CANCELLED)
        self.assertEqual(self._item_status(), INVENTORY_AVAILABLE)

        with self.assertRaises(AlreadyCancelled):
            self.manager.confirm_pickup(code)

    def test_expire_rental_ignores_reservations_not_yet_due(self):
        code = self._reserve()
        self.clock.advance(minutes=30)

        self.assertFalse(self.manager.expire_rental(code))
        self.assertEqual(self._rental(code).Status, RENTAL_PENDING)

    def test_expire_rental_leaves_active_rentals_alone(self):
        code = self._reserve()
        self.manager.confirm_pickup(code)
        self.clock.advance(minutes=120)

        self.assertFalse(self.manager.expire_rental(code))
        self.assertEqual(self._rental(code).Status, RENTAL_ACTIVE)

    def test_pickup_after_window_cancels_on_the_spot(self):
        code = self._reserve()
        self.clock.advance(minutes=61)

        with self.assertRaises(AlreadyCancelled):
            self.manager.confirm_pickup(code)

        self.assertEqual(self._rental(code).Status, RENTAL_CANCELLED)
        self.assertEqual(self._item_status(), INVENTORY_AVAILABLE)

    def test_cancelled_item_can_be_reserved_again(self):
        self._reserve()
        self.clock.advance(minutes=61)
        self.manager.expire_overdue()

        other_customer = seed_user(self.session_factory, "bia@example.test")
        self.assertTrue(self._reserve(customer_id=other_customer))

    def test_delete_completed_rental(self):
        code = self._reserve()
        self.manager.confirm_pickup(code)
        self.clock.advance(minutes=30)
        rental_id = self.manager.confirm_return(code).rental.RentalID

        self.manager.delete_rental(rental_id)

        self.assertIsNone(self._rental(code))

    def test_delete_rental_with_pendency_is_refused(self):
        code = self._reserve()
        self.manager.confirm_pickup(code)
        self.clock.advance(minutes=90)
        rental_id = self.manager.confirm_return(code).rental.RentalID

        with self.assertRaises(HasPendency):
            self.manager.delete_rental(rental_id)

    def test_delete_active_rental_is_invalid_state(self):
        code = self._reserve()
        self.manager.confirm_pickup(code)

        with self.assertRaises(InvalidState):
            self.manager.delete_rental(self._rental(code).RentalID)

    def test_delete_missing_rental_is_not_found(self):
        with self.assertRaises(NotFound):
            self.manager.delete_rental(4242)

    def test_colliding_code_is_regenerated(self):
        self.catalog = seed_catalog_extra_item(self.session_factory, self.catalog)
        other_customer = seed_user(self.session_factory, "bia@example.test")
        codes = iter(["AAAAAA", "AAAAAA", "BBBBBB"])

        with mock.patch.object(lifecycle_service, "generate_pickup_code", lambda length: next(codes)):
            first = self._reserve()
            second = self._reserve(customer_id=other_customer)

        self.assertEqual(first, "AAAAAA")
        self.assertEqual(second, "BBBBBB")

    def test_code_of_terminal_rental_can_be_reused(self):
        codes = iter(["AAAAAA", "AAAAAA"])
        with mock.patch.object(lifecycle_service, "generate_pickup_code", lambda length: next(codes)):
            first = self._reserve()
            self.clock.advance(minutes=61)
            self.manager.expire_overdue()
            second = self._reserve()

        self.assertEqual(first, second)
        rental = self._rental(second)
        self.assertEqual(rental.Status, RENTAL_PENDING)
        self.assertEqual(self.manager.confirm_pickup(second).Status, RENTAL_ACTIVE)

    def test_operations_write_audit_entries(self):
        code = self._reserve()
        self.manager.confirm_pickup(code)
        self.manager.confirm_return(code, actor_id=77)

        with self.session_factory() as db:
            actions = [row.Action for row in db.query(AuditLog).order_by(AuditLog.AuditID).all()]
            return_entry = db.query(AuditLog).filter(AuditLog.Action == "ConfirmReturn").one()
        self.assertEqual(actions, ["Reserve", "ConfirmPickup", "ConfirmReturn"])
        self.assertEqual(return_entry.UserID, 77)

    def test_reserve_registers_deadline_with_scheduler(self):
        scheduler = mock.Mock()
        self.manager.scheduler = scheduler

        code = self._reserve()

        scheduler.schedule.assert_called_once_with(code, self._rental(code).ExpiresAt)

    def test_late_fee_follows_policy(self):
        manager = RentalLifecycleManager(
            self.session_factory,
            RentalPolicy(grace_minutes=0, late_fee_rate=0.5, late_fee_scale=2),
            now_fn=self.clock,
        )
        code = manager.reserve(self.customer_id, self.catalog["product_id"], self.catalog["color_id"], self.catalog["size_id"], 30)
        manager.confirm_pickup(code)
        self.clock.advance(minutes=40)

        outcome = manager.confirm_return(code)

        self.assertEqual(outcome.pendency.Delay, 10)
        self.assertEqual(outcome.pendency.Value, 10.0)
        with self.session_factory() as db:
            self.assertEqual(db.query(Pendency).count(), 1)

    def _cancel_after_read(self):
        def read_then_lose_race(db, code):
            rental = find_rental_by_code(db, code)
            db.execute(
                update(Rental)
                .where(Rental.RentalID == rental.RentalID)
                .values(Status=RENTAL_CANCELLED)
                .execution_options(synchronize_session=False)
            )
            return rental

        return mock.patch.object(lifecycle_service, "find_rental_by_code", read_then_lose_race)

    def test_pickup_losing_to_expiry_reports_cancellation(self):
        code = self._reserve()
        self.clock.advance(minutes=5)

        with self._cancel_after_read():
            with self.assertRaises(AlreadyCancelled):
                self.manager.confirm_pickup(code)

        self.assertEqual(self._rental(code).Status, RENTAL_CANCELLED)

    def test_overdue_pickup_losing_to_sweep_reports_cancellation(self):
        code = self._reserve()
        self.clock.advance(minutes=61)

        with self._cancel_after_read():
            with self.assertRaises(AlreadyCancelled):
                self.manager.confirm_pickup(code)

        self.assertEqual(self._rental(code).Status, RENTAL_CANCELLED)

    def test_storage_errors_are_wrapped_with_cause(self):
        code = self._reserve()

        def database_gone(db, code):
            raise OperationalError("SELECT", {}, Exception("database is gone"))

        with mock.patch.object(lifecycle_service, "find_rental_by_code", database_gone):
            with self.assertRaises(StorageFailure) as ctx:
                self.manager.confirm_pickup(code)

        self.assertIsInstance(ctx.exception.__cause__, OperationalError)
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(self._rental(code).Status, RENTAL_PENDING)

    def test_storage_error_mid_return_rolls_back_every_write(self):
        code = self._reserve()
        self.manager.confirm_pickup(code)
        self.clock.advance(minutes=30)

        def audit_fails(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk full"))

        with mock.patch.object(lifecycle_service, "log_audit", audit_fails):
            with self.assertRaises(StorageFailure):
                self.manager.confirm_return(code)

        self.assertEqual(self._rental(code).Status, RENTAL_ACTIVE)
        self.assertEqual(self._item_status(), INVENTORY_RESERVED)

    def test_exhausted_pickup_code_attempts_is_storage_failure(self):
        self.catalog = seed_catalog_extra_item(self.session_factory, self.catalog)
        other_customer = seed_user(self.session_factory, "bia@example.test")
        manager = RentalLifecycleManager(self.session_factory, RentalPolicy(code_attempts=3), now_fn=self.clock)
        calls = []

        def always_same(length):
            calls.append(length)
            return "AAAAAA"

        with mock.patch.object(lifecycle_service, "generate_pickup_code", always_same):
            manager.reserve(self.customer_id, self.catalog["product_id"], self.catalog["color_id"], self.catalog["size_id"], 60)
            calls.clear()
            with self.assertRaises(StorageFailure):
                manager.reserve(other_customer, self.catalog["product_id"], self.catalog["color_id"], self.catalog["size_id"], 60)

        self.assertEqual(len(calls), 3)
        self.assertEqual(self._item_status(self.catalog["inventory_ids"][1]), INVENTORY_AVAILABLE)
        with self.session_factory() as db:
            self.assertEqual(db.query(Rental).count(), 1)


class RentalMathAndSchemaTests(unittest.TestCase):
    def test_elapsed_minutes_truncates_toward_zero(self):
        self.assertEqual(elapsed_minutes(START, START + timedelta(seconds=119)), 1)
        self.assertEqual(elapsed_minutes(START, START - timedelta(seconds=90)), -1)

    def test_live_code_index_is_filtered_on_each_dialect(self):
        index = next(item for item in Rental.__table__.indexes if item.name == "ux_rentals_live_code")
        for dialect in (sqlite.dialect(), postgresql.dialect(), mssql.dialect()):
            ddl = str(CreateIndex(index).compile(dialect=dialect))
            self.assertIn("WHERE", ddl, dialect.name)
            self.assertIn("'Pending', 'Active'", ddl, dialect.name)


def seed_catalog_extra_item(session_factory, catalog):
    with session_factory() as db:
        item = ProductInventory(ProductID=catalog["product_id"], ColorID=catalog["color_id"], SizeID=catalog["size_id"])
        db.add(item)
        db.commit()
        return {**catalog, "inventory_ids": catalog["inventory_ids"] + [item.InventoryID]}


if __name__ == "__main__":
    unittest.main()
