import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import select, text
from sqlalchemy.orm import Session, selectinload
from starlette.middleware.sessions import SessionMiddleware

load_dotenv()

from db.base import Base
from db.deps import get_lifecycle_manager, get_rental_db, get_session_factory
from models.rental_models import (
    INVENTORY_RESERVED,
    LIVE_RENTAL_STATES,
    RENTAL_ACTIVE,
    RENTAL_COMPLETED,
    RENTAL_COMPLETED_LATE,
    RENTAL_PENDING,
    ROLE_CUSTOMER,
    ROLE_EMPLOYEE,
    Category,
    Color,
    Pendency,
    Product,
    ProductInventory,
    Rental,
    Size,
    Supplier,
    User,
)
from schemas.catalog import CategoryUpsert, ColorUpsert, ProductCreate, ProductUpdate, SizeUpsert, SupplierUpsert
from schemas.rentals import RentalCodeRequest, ReserveRentalRequest
from schemas.users import AuthLoginRequest, UserCreate, UserUpdate
from services.catalog_service import (
    available_colors_by_size,
    available_sizes_by_color,
    build_product_detail,
    list_available_products,
    serialize_category,
    serialize_color,
    serialize_inventory_item,
    serialize_product,
    serialize_product_summary,
    serialize_size,
    serialize_supplier,
)
from services.customer_service import find_conflicting_user, has_open_obligations, list_users, normalize_email, serialize_user
from services.errors import RentalError
from services.expiry_service import ExpiryScheduler
from services.inventory_store import PendencyLedger
from services.lifecycle_service import RentalLifecycleManager
from services.rental_service import serialize_pendency, serialize_rental
from services.user_access_service import create_session, get_session, hash_password, remove_session, verify_password

BASE_DIR = Path(__file__).resolve().parent
STATIC_DIR = BASE_DIR / "static"
UPLOADS_DIR = STATIC_DIR / "uploads"
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}

AUTH_LOGGER = logging.getLogger("gear_rental.auth")
APP_LOGGER = logging.getLogger("gear_rental.app")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    if _env_flag("GEAR_RENTAL_CREATE_TABLES", False):
        Base.metadata.create_all(get_session_factory().kw["bind"])

    scheduler = None
    manager = None
    if _env_flag("EXPIRY_SCHEDULER_ENABLED", True):
        manager = get_lifecycle_manager()
        scheduler = ExpiryScheduler(
            manager.expire_rental,
            manager.expire_overdue,
            sweep_interval_seconds=float(os.environ.get("EXPIRY_SWEEP_INTERVAL_SECONDS") or "60"),
        )
        manager.scheduler = scheduler
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()
            manager.scheduler = None


app = FastAPI(title="Gear Rental API", lifespan=lifespan)

_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = _env_flag("CORS_ALLOW_CREDENTIALS", True)
if "*" in _CORS_ALLOW_ORIGINS:
    # Wildcard origins cannot carry credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)
app.add_middleware(
    SessionMiddleware,
    secret_key=os.environ["SESSION_SIGNING_SECRET"].strip(),
    session_cookie="gear_rental_session",
    same_site="lax",
    https_only=False,
)


@app.exception_handler(RentalError)
async def rental_error_handler(request: Request, exc: RentalError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.error_kind},
    )


def _get_active_session(request: Request, session_token: str | None) -> dict | None:
    session_from_token = get_session(session_token)
    if session_from_token:
        request.session["user"] = {**session_from_token, "token": session_token}
        return dict(session_from_token)
    if session_token:
        return None
    session_from_cookie = request.session.get("user")
    if isinstance(session_from_cookie, dict) and get_session(session_from_cookie.get("token")):
        return dict(session_from_cookie)
    return None


def _require_session_or_401(request: Request, session_token: str | None) -> dict:
    session = _get_active_session(request, session_token)
    if not session:
        raise HTTPException(status_code=401, detail="Not logged in.")
    return session


def _require_employee_session_or_403(request: Request, session_token: str | None) -> dict:
    session = _require_session_or_401(request, session_token)
    if str(session.get("role") or "").strip() != ROLE_EMPLOYEE:
        raise HTTPException(status_code=403, detail="Employee role required.")
    return session


def _require_customer_session_or_403(request: Request, session_token: str | None) -> dict:
    session = _require_session_or_401(request, session_token)
    if str(session.get("role") or "").strip() != ROLE_CUSTOMER:
        raise HTTPException(status_code=403, detail="Customer account required.")
    return session


def _get_or_404(db: Session, model, identifier: int, label: str):
    record = db.get(model, identifier)
    if not record:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return record


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    return request.client.host if request.client and request.client.host else "unknown"


@app.post("/api/auth/login")
def auth_login(payload: AuthLoginRequest, request: Request, db: Session = Depends(get_rental_db)):
    client_ip = _client_ip(request)
    email = normalize_email(payload.email)
    user = db.execute(select(User).where(User.Email == email)).scalars().first()
    if not user or not verify_password(payload.password, user.PasswordHash, user.PasswordSalt):
        AUTH_LOGGER.warning("Login failed ip=%s email=%s", client_ip, email)
        raise HTTPException(status_code=400, detail="Invalid e-mail or password.")

    session_payload = {
        "userID": user.UserID,
        "name": user.FullName,
        "email": user.Email,
        "avatarUrl": user.AvatarUrl,
        "role": user.Role,
    }
    token = create_session(session_payload)
    request.session["user"] = {**session_payload, "token": token}
    AUTH_LOGGER.info("Login success ip=%s user_id=%s role=%s", client_ip, user.UserID, user.Role)
    return {"sessionToken": token, "user": session_payload}


@app.post("/api/auth/logout")
def auth_logout(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    cookie_user = request.session.get("user") or {}
    request.session.clear()
    remove_session(x_session_token or cookie_user.get("token"))
    return {"ok": True}


@app.get("/api/auth/me")
def auth_me(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    session = _require_session_or_401(request, x_session_token)
    session.pop("token", None)
    session.pop("expiresAt", None)
    return {"user": session}


@app.get("/api/rentals")
def get_rentals(
    request: Request,
    status: str | None = Query(None),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    stmt = select(Rental).order_by(Rental.CreatedDate.desc(), Rental.RentalID.desc())
    if status:
        stmt = stmt.where(Rental.Status.contains(status))
    return [serialize_rental(rental) for rental in db.execute(stmt).scalars().all()]


@app.post("/api/rentals", status_code=201)
def reserve_rental(
    payload: ReserveRentalRequest,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    manager: RentalLifecycleManager = Depends(get_lifecycle_manager),
):
    session = _require_customer_session_or_403(request, x_session_token)
    code = manager.reserve(
        int(session["userID"]),
        payload.productID,
        payload.colorID,
        payload.sizeID,
        payload.duration,
    )
    return {"code": code}


@app.patch("/api/rentals/confirm/pickup")
def confirm_pickup(
    payload: RentalCodeRequest,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    manager: RentalLifecycleManager = Depends(get_lifecycle_manager),
):
    _require_session_or_401(request, x_session_token)
    rental = manager.confirm_pickup(payload.code)
    return serialize_rental(rental)


@app.patch("/api/rentals/confirm/return")
def confirm_return(
    payload: RentalCodeRequest,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    manager: RentalLifecycleManager = Depends(get_lifecycle_manager),
):
    session = _require_session_or_401(request, x_session_token)
    outcome = manager.confirm_return(payload.code, actor_id=session.get("userID"))
    if outcome.has_pendency:
        return {"hasPendency": True, "data": serialize_pendency(outcome.pendency)}
    return {"hasPendency": False, "data": serialize_rental(outcome.rental)}


@app.delete("/api/rentals/{rental_id}")
def delete_rental(
    rental_id: int,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    manager: RentalLifecycleManager = Depends(get_lifecycle_manager),
):
    _require_employee_session_or_403(request, x_session_token)
    manager.delete_rental(rental_id)
    return {"message": "Deleted"}


def _create_user(db: Session, payload: UserCreate, role: str) -> User:
    if find_conflicting_user(db, payload.email, payload.cpf):
        raise HTTPException(
            status_code=400,
            detail="This user already exists, check that the e-mail and cpf are correct!",
        )
    try:
        password_hash, password_salt = hash_password(payload.password)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    user = User(
        FullName=payload.name,
        Email=normalize_email(payload.email),
        Cpf=payload.cpf.strip(),
        Phone=payload.phone,
        Address=payload.address,
        AvatarUrl=payload.avatarUrl,
        Role=role,
        PasswordHash=password_hash,
        PasswordSalt=password_salt,
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _update_user(db: Session, user: User, payload: UserUpdate) -> User:
    values = payload.model_dump(exclude_unset=True)
    email = values.get("email", user.Email)
    cpf = values.get("cpf", user.Cpf)
    if find_conflicting_user(db, email, cpf, exclude_user_id=user.UserID):
        raise HTTPException(status_code=400, detail="This user already exists!")

    field_map = {
        "name": "FullName",
        "cpf": "Cpf",
        "phone": "Phone",
        "address": "Address",
        "avatarUrl": "AvatarUrl",
    }
    for field, value in values.items():
        if field == "email":
            user.Email = normalize_email(value)
        elif field == "password":
            try:
                user.PasswordHash, user.PasswordSalt = hash_password(value)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        elif field in field_map:
            setattr(user, field_map[field], value)
    user.UpdatedDate = datetime.now()
    db.commit()
    db.refresh(user)
    return user


@app.get("/api/customers")
def get_customers(
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    return [serialize_user(user) for user in list_users(db, ROLE_CUSTOMER)]


@app.post("/api/customers", status_code=201)
def create_customer(payload: UserCreate, db: Session = Depends(get_rental_db)):
    return serialize_user(_create_user(db, payload, ROLE_CUSTOMER))


@app.put("/api/customers/{user_id}")
def update_customer(
    user_id: int,
    payload: UserUpdate,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    session = _require_session_or_401(request, x_session_token)
    if session.get("role") != ROLE_EMPLOYEE and int(session.get("userID") or 0) != user_id:
        raise HTTPException(status_code=403, detail="Not allowed to update this customer.")
    user = _get_or_404(db, User, user_id, "Customer")
    if user.Role != ROLE_CUSTOMER:
        raise HTTPException(status_code=404, detail="Customer not found")
    return serialize_user(_update_user(db, user, payload))


@app.delete("/api/customers/{user_id}")
def delete_customer(
    user_id: int,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    user = _get_or_404(db, User, user_id, "Customer")
    if user.Role != ROLE_CUSTOMER:
        raise HTTPException(status_code=404, detail="Customer not found")
    if has_open_obligations(db, user_id):
        raise HTTPException(status_code=400, detail="Customer has live rentals or unresolved pendencies.")
    if db.execute(select(Rental.RentalID).where(Rental.CustomerID == user_id)).first():
        raise HTTPException(status_code=400, detail="Customer has rental history.")
    db.delete(user)
    db.commit()
    return {"message": "Deleted"}


@app.get("/api/customers/me/pendencies")
def get_my_pendencies(
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    session = _require_customer_session_or_403(request, x_session_token)
    active, completed = PendencyLedger(db).list_for_customer(int(session["userID"]))
    return {
        "active": [serialize_pendency(pendency) for pendency in active],
        "completed": [serialize_pendency(pendency) for pendency in completed],
    }


@app.patch("/api/customers/pendencies/{pendency_id}")
def resolve_pendency(
    pendency_id: int,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
    manager: RentalLifecycleManager = Depends(get_lifecycle_manager),
):
    session = _require_session_or_401(request, x_session_token)
    if session.get("role") != ROLE_EMPLOYEE:
        pendency = db.get(Pendency, pendency_id)
        if pendency and pendency.CustomerID != int(session.get("userID") or 0):
            raise HTTPException(status_code=403, detail="Not allowed to resolve this pendency.")
    return serialize_pendency(manager.resolve_pendency(pendency_id))


@app.get("/api/customers/me/rentals")
def get_my_rentals(
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    session = _require_customer_session_or_403(request, x_session_token)
    rentals = db.execute(
        select(Rental)
        .where(Rental.CustomerID == int(session["userID"]))
        .order_by(Rental.CreatedDate.desc(), Rental.RentalID.desc())
    ).scalars().all()
    return {
        "pending": [serialize_rental(rental) for rental in rentals if rental.Status == RENTAL_PENDING],
        "active": [serialize_rental(rental) for rental in rentals if rental.Status == RENTAL_ACTIVE],
        "completed": [
            serialize_rental(rental)
            for rental in rentals
            if rental.Status in {RENTAL_COMPLETED, RENTAL_COMPLETED_LATE}
        ],
    }


@app.get("/api/employees")
def get_employees(
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    return [serialize_user(user) for user in list_users(db, ROLE_EMPLOYEE)]


@app.post("/api/employees", status_code=201)
def create_employee(
    payload: UserCreate,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    has_employee = db.execute(select(User.UserID).where(User.Role == ROLE_EMPLOYEE)).first() is not None
    if has_employee:
        _require_employee_session_or_403(request, x_session_token)
    employee = _create_user(db, payload, ROLE_EMPLOYEE)
    APP_LOGGER.info("Employee created user_id=%s bootstrap=%s", employee.UserID, not has_employee)
    return serialize_user(employee)


@app.put("/api/employees/{user_id}")
def update_employee(
    user_id: int,
    payload: UserUpdate,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    user = _get_or_404(db, User, user_id, "Employee")
    if user.Role != ROLE_EMPLOYEE:
        raise HTTPException(status_code=404, detail="Employee not found")
    return serialize_user(_update_user(db, user, payload))


@app.delete("/api/employees/{user_id}")
def delete_employee(
    user_id: int,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    session = _require_employee_session_or_403(request, x_session_token)
    if int(session.get("userID") or 0) == user_id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account.")
    user = _get_or_404(db, User, user_id, "Employee")
    if user.Role != ROLE_EMPLOYEE:
        raise HTTPException(status_code=404, detail="Employee not found")
    db.delete(user)
    db.commit()
    return {"message": "Deleted"}


@app.get("/api/categories")
def get_categories(db: Session = Depends(get_rental_db)):
    categories = db.execute(select(Category).order_by(Category.CategoryName)).scalars().all()
    return [serialize_category(category) for category in categories]


@app.get("/api/categories/{category_id}/products")
def get_category_products(category_id: int, db: Session = Depends(get_rental_db)):
    _get_or_404(db, Category, category_id, "Category")
    return [serialize_product_summary(product) for product in list_available_products(db, category_id)]


@app.post("/api/categories", status_code=201)
def create_category(
    payload: CategoryUpsert,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    name = payload.name.strip()
    if db.execute(select(Category).where(Category.CategoryName == name)).scalars().first():
        raise HTTPException(status_code=400, detail="This category already exists.")
    category = Category(CategoryName=name, CreatedDate=datetime.now())
    db.add(category)
    db.commit()
    db.refresh(category)
    return serialize_category(category)


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryUpsert,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    category = _get_or_404(db, Category, category_id, "Category")
    name = payload.name.strip()
    conflict = db.execute(
        select(Category).where(Category.CategoryName == name).where(Category.CategoryID != category_id)
    ).scalars().first()
    if conflict:
        raise HTTPException(status_code=400, detail="This category already exists.")
    category.CategoryName = name
    db.commit()
    return serialize_category(category)


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: int,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    category = _get_or_404(db, Category, category_id, "Category")
    if db.execute(select(Product.ProductID).where(Product.CategoryID == category_id)).first():
        raise HTTPException(status_code=400, detail="Category is used by products.")
    db.delete(category)
    db.commit()
    return {"message": "Deleted"}


@app.get("/api/colors")
def get_colors(db: Session = Depends(get_rental_db)):
    return [serialize_color(color) for color in db.execute(select(Color).order_by(Color.ColorName)).scalars().all()]


@app.get("/api/products/{product_id}/colors")
def get_product_colors(product_id: int, db: Session = Depends(get_rental_db)):
    _get_or_404(db, Product, product_id, "Product")
    return available_sizes_by_color(db, product_id)


@app.post("/api/colors", status_code=201)
def create_color(
    payload: ColorUpsert,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    color = Color(Code=payload.code, ColorName=payload.name, CreatedDate=datetime.now())
    db.add(color)
    db.commit()
    db.refresh(color)
    return serialize_color(color)


@app.put("/api/colors/{color_id}")
def update_color(
    color_id: int,
    payload: ColorUpsert,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    color = _get_or_404(db, Color, color_id, "Color")
    color.Code = payload.code
    color.ColorName = payload.name
    db.commit()
    return serialize_color(color)


@app.delete("/api/colors/{color_id}")
def delete_color(
    color_id: int,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    color = _get_or_404(db, Color, color_id, "Color")
    if db.execute(select(ProductInventory.InventoryID).where(ProductInventory.ColorID == color_id)).first():
        raise HTTPException(status_code=400, detail="Color is used by inventory items.")
    db.delete(color)
    db.commit()
    return {"message": "Deleted"}


@app.get("/api/sizes")
def get_sizes(db: Session = Depends(get_rental_db)):
    return [serialize_size(size) for size in db.execute(select(Size).order_by(Size.SizeValue)).scalars().all()]


@app.get("/api/products/{product_id}/sizes")
def get_product_sizes(product_id: int, db: Session = Depends(get_rental_db)):
    _get_or_404(db, Product, product_id, "Product")
    return available_colors_by_size(db, product_id)


@app.post("/api/sizes", status_code=201)
def create_size(
    payload: SizeUpsert,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    if db.execute(select(Size).where(Size.SizeValue == payload.size)).scalars().first():
        raise HTTPException(status_code=400, detail="This size already exists.")
    size = Size(SizeValue=payload.size, CreatedDate=datetime.now())
    db.add(size)
    db.commit()
    db.refresh(size)
    return serialize_size(size)


@app.put("/api/sizes/{size_id}")
def update_size(
    size_id: int,
    payload: SizeUpsert,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    size = _get_or_404(db, Size, size_id, "Size")
    size.SizeValue = payload.size
    db.commit()
    return serialize_size(size)


@app.delete("/api/sizes/{size_id}")
def delete_size(
    size_id: int,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    size = _get_or_404(db, Size, size_id, "Size")
    if db.execute(select(ProductInventory.InventoryID).where(ProductInventory.SizeID == size_id)).first():
        raise HTTPException(status_code=400, detail="Size is used by inventory items.")
    db.delete(size)
    db.commit()
    return {"message": "Deleted"}


@app.get("/api/suppliers")
def get_suppliers(db: Session = Depends(get_rental_db)):
    suppliers = db.execute(select(Supplier).order_by(Supplier.SupplierName)).scalars().all()
    return [serialize_supplier(supplier) for supplier in suppliers]


@app.post("/api/suppliers", status_code=201)
def create_supplier(
    payload: SupplierUpsert,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    email = normalize_email(payload.email)
    if db.execute(select(Supplier).where(Supplier.Email == email)).scalars().first():
        raise HTTPException(status_code=400, detail="This supplier already exists!")
    supplier = Supplier(
        SupplierName=payload.name,
        Phone=payload.phone,
        Email=email,
        Cnpj=payload.cnpj,
        CreatedDate=datetime.now(),
    )
    db.add(supplier)
    db.commit()
    db.refresh(supplier)
    return serialize_supplier(supplier)


@app.put("/api/suppliers/{supplier_id}")
def update_supplier(
    supplier_id: int,
    payload: SupplierUpsert,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    supplier = _get_or_404(db, Supplier, supplier_id, "Supplier")
    email = normalize_email(payload.email)
    conflict = db.execute(
        select(Supplier).where(Supplier.Email == email).where(Supplier.SupplierID != supplier_id)
    ).scalars().first()
    if conflict:
        raise HTTPException(status_code=400, detail="This supplier already exists!")
    supplier.SupplierName = payload.name
    supplier.Phone = payload.phone
    supplier.Email = email
    supplier.Cnpj = payload.cnpj
    db.commit()
    return serialize_supplier(supplier)


@app.delete("/api/suppliers/{supplier_id}")
def delete_supplier(
    supplier_id: int,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    supplier = _get_or_404(db, Supplier, supplier_id, "Supplier")
    if db.execute(select(Product.ProductID).where(Product.SupplierID == supplier_id)).first():
        raise HTTPException(status_code=400, detail="Supplier is used by products.")
    db.delete(supplier)
    db.commit()
    return {"message": "Deleted"}


@app.get("/api/products")
def get_products(db: Session = Depends(get_rental_db)):
    return [serialize_product_summary(product) for product in list_available_products(db)]


@app.get("/api/products/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_rental_db)):
    product = _get_or_404(db, Product, product_id, "Product")
    return build_product_detail(db, product)


@app.post("/api/products", status_code=201)
def create_product(
    payload: ProductCreate,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    _get_or_404(db, Color, payload.colorID, "Color")
    _get_or_404(db, Size, payload.sizeID, "Size")

    product = db.execute(
        select(Product).where(Product.Model == payload.model).where(Product.Brand == payload.brand)
    ).scalars().first()
    if not product:
        _get_or_404(db, Category, payload.categoryID, "Category")
        _get_or_404(db, Supplier, payload.supplierID, "Supplier")
        product = Product(
            Model=payload.model,
            Brand=payload.brand,
            Description=payload.description,
            HourlyValue=payload.hourlyValue,
            CoverUrl=payload.coverUrl,
            CategoryID=payload.categoryID,
            SupplierID=payload.supplierID,
            CreatedDate=datetime.now(),
            UpdatedDate=datetime.now(),
        )
        db.add(product)
        db.flush()

    # An existing brand+model only gains a new physical unit.
    item = ProductInventory(
        ProductID=product.ProductID,
        ColorID=payload.colorID,
        SizeID=payload.sizeID,
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(item)
    db.commit()
    item = db.execute(
        select(ProductInventory)
        .options(selectinload(ProductInventory.Product))
        .options(selectinload(ProductInventory.Color))
        .options(selectinload(ProductInventory.Size))
        .where(ProductInventory.InventoryID == item.InventoryID)
    ).scalars().one()
    return serialize_inventory_item(item)


@app.put("/api/products/{product_id}")
def update_product(
    product_id: int,
    payload: ProductUpdate,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    product = _get_or_404(db, Product, product_id, "Product")
    field_map = {
        "model": "Model",
        "brand": "Brand",
        "description": "Description",
        "hourlyValue": "HourlyValue",
        "coverUrl": "CoverUrl",
    }
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(product, field_map[field], value)
    product.UpdatedDate = datetime.now()
    db.commit()
    db.refresh(product)
    return serialize_product(product)


@app.get("/api/inventory")
def get_inventory(
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    items = db.execute(
        select(ProductInventory)
        .join(Product, Product.ProductID == ProductInventory.ProductID)
        .options(selectinload(ProductInventory.Product))
        .options(selectinload(ProductInventory.Color))
        .options(selectinload(ProductInventory.Size))
        .order_by(Product.Model, ProductInventory.InventoryID)
    ).scalars().all()
    return [serialize_inventory_item(item) for item in items]


@app.delete("/api/inventory/{inventory_id}")
def delete_inventory_item(
    inventory_id: int,
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_rental_db),
):
    _require_employee_session_or_403(request, x_session_token)
    item = _get_or_404(db, ProductInventory, inventory_id, "Inventory item")
    live_rental = db.execute(
        select(Rental.RentalID)
        .where(Rental.InventoryID == inventory_id)
        .where(Rental.Status.in_(LIVE_RENTAL_STATES))
    ).first()
    if item.Status == INVENTORY_RESERVED or live_rental:
        raise HTTPException(status_code=400, detail="Inventory item is reserved.")
    if db.execute(select(Rental.RentalID).where(Rental.InventoryID == inventory_id)).first():
        raise HTTPException(status_code=400, detail="Inventory item has rental history.")
    db.delete(item)
    db.commit()
    return {"message": "Deleted"}


@app.post("/api/uploads")
def upload_image(
    request: Request,
    file: UploadFile = File(...),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Unsupported file type. Please upload an image (jpg, png, webp, gif).")

    UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
    ext = os.path.splitext(file.filename or "")[1]
    filename = f"{uuid.uuid4().hex}{ext}"
    target = UPLOADS_DIR / filename

    with target.open("wb") as output:
        output.write(file.file.read())

    return {"path": f"/uploads/{filename}"}


app.mount("/uploads", StaticFiles(directory=str(UPLOADS_DIR), check_dir=False), name="uploads")
