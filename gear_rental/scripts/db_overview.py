#!/usr/bin/env python3
"""Database overview and integrity checks for GearRental."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
import models.rental_models  # noqa: F401  registers tables on Base.metadata


EXPECTED_COLUMNS: dict[str, list[str]] = {
    "Rentals": [
        "RentalID",
        "Code",
        "CustomerID",
        "InventoryID",
        "Status",
        "Duration",
        "Price",
        "ExpiresAt",
        "PickedUpAt",
        "ReturnedAt",
        "CreatedDate",
        "UpdatedDate",
    ],
    "ProductInventory": ["InventoryID", "ProductID", "ColorID", "SizeID", "Status", "CreatedDate", "UpdatedDate"],
    "Pendencies": ["PendencyID", "CustomerID", "RentalID", "Delay", "Value", "ResolvedAt", "CreatedDate"],
    "AuditLogs": ["AuditID", "EntityType", "EntityID", "Action", "Details", "UserID", "CreatedAt"],
    "Users": ["UserID", "FullName", "Email", "Cpf", "Role", "PasswordHash", "PasswordSalt"],
}


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _scalar(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar()


def _run_existence_checks(engine: Engine) -> list[CheckResult]:
    present = set(inspect(engine).get_table_names())
    results: list[CheckResult] = []
    for table in Base.metadata.tables:
        exists = table in present
        results.append(CheckResult(f"table:{table}", exists, "present" if exists else "missing"))
    return results


def _run_column_checks(engine: Engine) -> list[CheckResult]:
    inspector = inspect(engine)
    present = set(inspector.get_table_names())
    results: list[CheckResult] = []
    for table, expected in EXPECTED_COLUMNS.items():
        if table not in present:
            results.append(CheckResult(f"columns:{table}", False, "table missing"))
            continue
        actual = {column["name"] for column in inspector.get_columns(table)}
        missing = [name for name in expected if name not in actual]
        results.append(
            CheckResult(
                f"columns:{table}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def _run_integrity_checks(engine: Engine) -> list[CheckResult]:
    present = set(inspect(engine).get_table_names())
    checks: list[CheckResult] = []
    if "Rentals" not in present or "ProductInventory" not in present:
        return checks

    duplicate_live_codes = _scalar(
        engine,
        """
        SELECT COUNT(*)
        FROM (
            SELECT "Code"
            FROM "Rentals"
            WHERE "Status" IN ('Pending', 'Active')
            GROUP BY "Code"
            HAVING COUNT(*) > 1
        ) d
        """,
    )
    checks.append(
        CheckResult(
            "rentals:duplicate_live_code",
            int(duplicate_live_codes or 0) == 0,
            f"count={int(duplicate_live_codes or 0)}",
        )
    )

    # A live rental must hold its item Reserved; anything else is a leak.
    unreserved_live = _scalar(
        engine,
        """
        SELECT COUNT(*)
        FROM "Rentals" r
        JOIN "ProductInventory" pi ON pi."InventoryID" = r."InventoryID"
        WHERE r."Status" IN ('Pending', 'Active') AND pi."Status" <> 'Reserved'
        """,
    )
    checks.append(
        CheckResult(
            "rentals:live_rental_item_not_reserved",
            int(unreserved_live or 0) == 0,
            f"count={int(unreserved_live or 0)}",
        )
    )

    orphan_reserved = _scalar(
        engine,
        """
        SELECT COUNT(*)
        FROM "ProductInventory" pi
        WHERE pi."Status" = 'Reserved'
          AND NOT EXISTS (
              SELECT 1 FROM "Rentals" r
              WHERE r."InventoryID" = pi."InventoryID" AND r."Status" IN ('Pending', 'Active')
          )
        """,
    )
    checks.append(
        CheckResult(
            "inventory:reserved_without_live_rental",
            int(orphan_reserved or 0) == 0,
            f"count={int(orphan_reserved or 0)}",
        )
    )
    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    present = set(inspect(engine).get_table_names())
    for table in Base.metadata.tables:
        if table not in present:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f'SELECT COUNT(*) FROM "{table}"')
        print(f"{table}: {int(count or 0)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="GearRental DB overview")
    parser.add_argument("--db-url", default=os.environ.get("GEAR_RENTAL_DB_URL", ""))
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables before checking.")
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("GEAR_RENTAL_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    if args.create_tables:
        Base.metadata.create_all(engine)

    _print_results("Table Existence", _run_existence_checks(engine))
    _print_results("Column Checks", _run_column_checks(engine))
    _print_results("Integrity Checks", _run_integrity_checks(engine))
    _print_row_counts(engine)
    return 0


if __name__ == "__main__":
    sys.exit(main())
