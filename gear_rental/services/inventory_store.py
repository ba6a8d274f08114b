from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models.rental_models import INVENTORY_AVAILABLE, Pendency, Product, ProductInventory


class InventoryStore:
    """Availability of individual inventory items, bound to one session."""

    def __init__(self, db: Session, now_fn=datetime.now):
        self.db = db
        self._now = now_fn

    def find_available_items(self, product_id: int, color_id: int, size_id: int) -> list[ProductInventory]:
        return self.db.execute(
            select(ProductInventory)
            .where(ProductInventory.ProductID == product_id)
            .where(ProductInventory.ColorID == color_id)
            .where(ProductInventory.SizeID == size_id)
            .where(ProductInventory.Status == INVENTORY_AVAILABLE)
            .order_by(ProductInventory.InventoryID)
        ).scalars().all()

    def try_set_status(self, item_id: int, expected_status: str, new_status: str) -> bool:
        result = self.db.execute(
            update(ProductInventory)
            .where(ProductInventory.InventoryID == item_id)
            .where(ProductInventory.Status == expected_status)
            .values(Status=new_status, UpdatedDate=self._now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def set_status(self, item_id: int, new_status: str) -> None:
        self.db.execute(
            update(ProductInventory)
            .where(ProductInventory.InventoryID == item_id)
            .values(Status=new_status, UpdatedDate=self._now())
            .execution_options(synchronize_session=False)
        )

    def get_hourly_rate(self, product_id: int) -> float | None:
        value = self.db.execute(
            select(Product.HourlyValue).where(Product.ProductID == product_id)
        ).scalar()
        return float(value) if value is not None else None


class PendencyLedger:
    """Unresolved late-return debts per customer."""

    def __init__(self, db: Session, now_fn=datetime.now):
        self.db = db
        self._now = now_fn

    def has_unresolved(self, customer_id: int) -> bool:
        stmt = (
            select(Pendency.PendencyID)
            .where(Pendency.CustomerID == customer_id)
            .where(Pendency.ResolvedAt.is_(None))
        )
        return self.db.execute(stmt).first() is not None

    def exists_for_rental(self, rental_id: int) -> bool:
        stmt = select(Pendency.PendencyID).where(Pendency.RentalID == rental_id)
        return self.db.execute(stmt).first() is not None

    def create(self, customer_id: int, rental_id: int, delay: int, value: float) -> Pendency:
        pendency = Pendency(
            CustomerID=customer_id,
            RentalID=rental_id,
            Delay=delay,
            Value=value,
            ResolvedAt=None,
            CreatedDate=self._now(),
        )
        self.db.add(pendency)
        self.db.flush()
        return pendency

    def resolve(self, pendency_id: int) -> Pendency | None:
        pendency = self.db.execute(
            select(Pendency)
            .where(Pendency.PendencyID == pendency_id)
            .where(Pendency.ResolvedAt.is_(None))
        ).scalars().first()
        if not pendency:
            return None
        pendency.ResolvedAt = self._now()
        return pendency

    def list_for_customer(self, customer_id: int) -> tuple[list[Pendency], list[Pendency]]:
        active = self.db.execute(
            select(Pendency)
            .where(Pendency.CustomerID == customer_id)
            .where(Pendency.ResolvedAt.is_(None))
            .order_by(Pendency.CreatedDate.desc())
        ).scalars().all()
        completed = self.db.execute(
            select(Pendency)
            .where(Pendency.CustomerID == customer_id)
            .where(Pendency.ResolvedAt.is_not(None))
            .order_by(Pendency.ResolvedAt.desc())
        ).scalars().all()
        return list(active), list(completed)
