import threading
from collections.abc import Generator

from sqlalchemy.orm import sessionmaker

from services.lifecycle_service import RentalLifecycleManager
from services.rental_policy import RentalPolicy

from .session import build_session_factory_from_env

_LOCK = threading.Lock()
_SESSION_FACTORY: sessionmaker | None = None
_LIFECYCLE_MANAGER: RentalLifecycleManager | None = None


def get_session_factory() -> sessionmaker:
    global _SESSION_FACTORY
    with _LOCK:
        if _SESSION_FACTORY is None:
            _SESSION_FACTORY = build_session_factory_from_env()
        return _SESSION_FACTORY


def get_rental_db() -> Generator:
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def get_lifecycle_manager() -> RentalLifecycleManager:
    global _LIFECYCLE_MANAGER
    session_factory = get_session_factory()
    with _LOCK:
        if _LIFECYCLE_MANAGER is None:
            _LIFECYCLE_MANAGER = RentalLifecycleManager(session_factory, RentalPolicy.from_env())
        return _LIFECYCLE_MANAGER
