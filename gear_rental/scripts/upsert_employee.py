#!/usr/bin/env python3
from __future__ import annotations

import argparse
import hashlib
import os
import secrets
import sys
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from models.rental_models import ROLE_CUSTOMER, ROLE_EMPLOYEE, User


def _password_hash(password: str, salt: str) -> str:
    raw = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt.encode("utf-8"),
        120000,
    )
    return raw.hex()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create/update one Users record directly from terminal.",
    )
    parser.add_argument("--email", required=True, help="Login e-mail of the user")
    parser.add_argument("--name", default=None, help="Full name; required when creating")
    parser.add_argument("--cpf", default=None, help="CPF; required when creating")
    parser.add_argument("--role", choices=[ROLE_EMPLOYEE, ROLE_CUSTOMER], default=ROLE_EMPLOYEE)
    parser.add_argument("--password", default=None, help="Password to set. Omit to keep the existing one.")
    parser.add_argument(
        "--db-url",
        default=os.environ.get("GEAR_RENTAL_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to GEAR_RENTAL_DB_URL env var.",
    )
    return parser


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    if not args.db_url:
        parser.error("Missing DB URL. Set GEAR_RENTAL_DB_URL or pass --db-url.")
    if args.password is not None and len(args.password) < 6:
        parser.error("--password must be at least 6 characters.")

    email = args.email.strip().lower()
    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)

    with session_factory() as db:
        user = db.execute(select(User).where(User.Email == email)).scalars().first()
        created = user is None
        if created:
            if not args.name or not args.cpf or args.password is None:
                parser.error("--name, --cpf and --password are required to create a user.")
            user = User(Email=email, FullName=args.name, Cpf=args.cpf.strip(), CreatedDate=datetime.now())
            db.add(user)
        elif args.name:
            user.FullName = args.name

        user.Role = args.role
        if args.password is not None:
            user.PasswordSalt = secrets.token_hex(16)
            user.PasswordHash = _password_hash(args.password, user.PasswordSalt)
        user.UpdatedDate = datetime.now()
        db.commit()

    print(f"OK user_id={user.UserID} email={user.Email} role={user.Role} created={created}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
