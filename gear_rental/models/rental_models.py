from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


INVENTORY_AVAILABLE = "Available"
INVENTORY_RESERVED = "Reserved"

RENTAL_PENDING = "Pending"
RENTAL_ACTIVE = "Active"
RENTAL_CANCELLED = "Cancelled"
RENTAL_COMPLETED = "Completed"
RENTAL_COMPLETED_LATE = "Completed Late"

LIVE_RENTAL_STATES = {RENTAL_PENDING, RENTAL_ACTIVE}

ROLE_CUSTOMER = "Customer"
ROLE_EMPLOYEE = "Employee"


class Category(Base):
    __tablename__ = "Categories"

    CategoryID = Column(Integer, primary_key=True)
    CategoryName = Column(String(100), nullable=False, unique=True)
    CreatedDate = Column(DateTime, server_default=func.now())

    Products = relationship("Product", back_populates="Category")


class Color(Base):
    __tablename__ = "Colors"

    ColorID = Column(Integer, primary_key=True)
    Code = Column(String(20), nullable=False)
    ColorName = Column(String(100), nullable=False)
    CreatedDate = Column(DateTime, server_default=func.now())

    Inventory = relationship("ProductInventory", back_populates="Color")


class Size(Base):
    __tablename__ = "Sizes"

    SizeID = Column(Integer, primary_key=True)
    SizeValue = Column(Numeric(6, 1, asdecimal=False), nullable=False, unique=True)
    CreatedDate = Column(DateTime, server_default=func.now())

    Inventory = relationship("ProductInventory", back_populates="Size")


class Supplier(Base):
    __tablename__ = "Suppliers"

    SupplierID = Column(Integer, primary_key=True)
    SupplierName = Column(String(255), nullable=False)
    Phone = Column(String(50))
    Email = Column(String(255), nullable=False, unique=True)
    Cnpj = Column(String(20))
    CreatedDate = Column(DateTime, server_default=func.now())

    Products = relationship("Product", back_populates="Supplier")


class Product(Base):
    __tablename__ = "Products"
    __table_args__ = (UniqueConstraint("Model", "Brand", name="uq_products_model_brand"),)

    ProductID = Column(Integer, primary_key=True)
    Model = Column(String(255), nullable=False)
    Brand = Column(String(255), nullable=False)
    Description = Column(String(2000))
    HourlyValue = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    CoverUrl = Column(String(500))
    CategoryID = Column(Integer, ForeignKey("Categories.CategoryID"))
    SupplierID = Column(Integer, ForeignKey("Suppliers.SupplierID"))
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Category = relationship("Category", back_populates="Products")
    Supplier = relationship("Supplier", back_populates="Products")
    Inventory = relationship("ProductInventory", back_populates="Product")


class ProductInventory(Base):
    __tablename__ = "ProductInventory"

    InventoryID = Column(Integer, primary_key=True)
    ProductID = Column(Integer, ForeignKey("Products.ProductID"), nullable=False)
    ColorID = Column(Integer, ForeignKey("Colors.ColorID"), nullable=False)
    SizeID = Column(Integer, ForeignKey("Sizes.SizeID"), nullable=False)
    Status = Column(String(20), nullable=False, default=INVENTORY_AVAILABLE)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Product = relationship("Product", back_populates="Inventory")
    Color = relationship("Color", back_populates="Inventory")
    Size = relationship("Size", back_populates="Inventory")
    Rentals = relationship("Rental", back_populates="InventoryItem")


class User(Base):
    __tablename__ = "Users"

    UserID = Column(Integer, primary_key=True)
    FullName = Column(String(255), nullable=False)
    Email = Column(String(255), nullable=False, unique=True)
    Cpf = Column(String(20), nullable=False, unique=True)
    Phone = Column(String(50))
    Address = Column(String(500))
    AvatarUrl = Column(String(500))
    Role = Column(String(20), nullable=False, default=ROLE_CUSTOMER)
    PasswordHash = Column(String(256), nullable=False)
    PasswordSalt = Column(String(64), nullable=False)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Rentals = relationship("Rental", back_populates="Customer")
    Pendencies = relationship("Pendency", back_populates="Customer")


class Rental(Base):
    __tablename__ = "Rentals"
    __table_args__ = (
        # A pickup code may be reused once its previous rental is terminal.
        Index(
            "ux_rentals_live_code",
            "Code",
            unique=True,
            sqlite_where=text("\"Status\" IN ('Pending', 'Active')"),
            postgresql_where=text("\"Status\" IN ('Pending', 'Active')"),
            mssql_where=text("\"Status\" IN ('Pending', 'Active')"),
        ),
        Index("ix_rentals_status_expires", "Status", "ExpiresAt"),
    )

    RentalID = Column(Integer, primary_key=True)
    Code = Column(String(12), nullable=False, index=True)
    CustomerID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    InventoryID = Column(Integer, ForeignKey("ProductInventory.InventoryID"), nullable=False)
    Status = Column(String(20), nullable=False, default=RENTAL_PENDING)
    Duration = Column(Integer, nullable=False)
    Price = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    ExpiresAt = Column(DateTime)
    PickedUpAt = Column(DateTime)
    ReturnedAt = Column(DateTime)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Customer = relationship("User", back_populates="Rentals")
    InventoryItem = relationship("ProductInventory", back_populates="Rentals")
    Pendencies = relationship("Pendency", back_populates="Rental")


class Pendency(Base):
    __tablename__ = "Pendencies"

    PendencyID = Column(Integer, primary_key=True)
    CustomerID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    Delay = Column(Integer, nullable=False)
    Value = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    ResolvedAt = Column(DateTime)
    CreatedDate = Column(DateTime, server_default=func.now())

    Customer = relationship("User", back_populates="Pendencies")
    Rental = relationship("Rental", back_populates="Pendencies")


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())
