from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models.rental_models import (
    INVENTORY_AVAILABLE,
    Category,
    Color,
    Product,
    ProductInventory,
    Size,
    Supplier,
)

EXCERPT_LENGTH = 75


def build_excerpt(description: str | None) -> str | None:
    if description is None:
        return None
    return description[:EXCERPT_LENGTH] + "..."


def serialize_category(category: Category) -> dict:
    return {
        "categoryID": category.CategoryID,
        "name": category.CategoryName,
    }


def serialize_color(color: Color) -> dict:
    return {
        "colorID": color.ColorID,
        "code": color.Code,
        "name": color.ColorName,
    }


def serialize_size(size: Size) -> dict:
    return {
        "sizeID": size.SizeID,
        "size": size.SizeValue,
    }


def serialize_supplier(supplier: Supplier) -> dict:
    return {
        "supplierID": supplier.SupplierID,
        "name": supplier.SupplierName,
        "phone": supplier.Phone,
        "email": supplier.Email,
        "cnpj": supplier.Cnpj,
    }


def serialize_product(product: Product) -> dict:
    return {
        "productID": product.ProductID,
        "model": product.Model,
        "brand": product.Brand,
        "description": product.Description,
        "hourlyValue": product.HourlyValue,
        "coverUrl": product.CoverUrl,
        "categoryID": product.CategoryID,
        "supplierID": product.SupplierID,
        "createdDate": product.CreatedDate,
        "updatedDate": product.UpdatedDate,
    }


def serialize_product_summary(product: Product) -> dict:
    return {
        "productID": product.ProductID,
        "category": product.Category.CategoryName if product.Category else None,
        "brand": product.Brand,
        "model": product.Model,
        "excerpt": build_excerpt(product.Description),
        "hourlyValue": product.HourlyValue,
        "coverUrl": product.CoverUrl,
    }


def serialize_inventory_item(item: ProductInventory) -> dict:
    return {
        "inventoryID": item.InventoryID,
        "productID": item.ProductID,
        "model": item.Product.Model if item.Product else None,
        "brand": item.Product.Brand if item.Product else None,
        "coverUrl": item.Product.CoverUrl if item.Product else None,
        "status": item.Status,
        "colorID": item.ColorID,
        "color": item.Color.Code if item.Color else None,
        "sizeID": item.SizeID,
        "size": item.Size.SizeValue if item.Size else None,
    }


def list_available_products(db: Session, category_id: int | None = None) -> list[Product]:
    available_ids = (
        select(ProductInventory.ProductID)
        .where(ProductInventory.Status == INVENTORY_AVAILABLE)
        .distinct()
    )
    stmt = select(Product).where(Product.ProductID.in_(available_ids))
    if category_id is not None:
        stmt = stmt.where(Product.CategoryID == category_id)
    return db.execute(stmt.order_by(Product.Model)).scalars().all()


def _variant_rows(db: Session, product_id: int, available_only: bool):
    stmt = (
        select(Size, Color)
        .select_from(Size)
        .join(ProductInventory, ProductInventory.SizeID == Size.SizeID)
        .join(Color, Color.ColorID == ProductInventory.ColorID)
        .where(ProductInventory.ProductID == product_id)
    )
    if available_only:
        stmt = stmt.where(ProductInventory.Status == INVENTORY_AVAILABLE)
    return db.execute(stmt.order_by(Size.SizeValue, Color.ColorName)).all()


def available_colors_by_size(db: Session, product_id: int) -> list[dict]:
    grouped: dict[int, dict] = {}
    for size, color in _variant_rows(db, product_id, available_only=True):
        entry = grouped.setdefault(size.SizeID, {**serialize_size(size), "colors": []})
        if all(existing["colorID"] != color.ColorID for existing in entry["colors"]):
            entry["colors"].append(serialize_color(color))
    return list(grouped.values())


def available_sizes_by_color(db: Session, product_id: int) -> list[dict]:
    grouped: dict[int, dict] = {}
    for size, color in _variant_rows(db, product_id, available_only=True):
        entry = grouped.setdefault(color.ColorID, {**serialize_color(color), "sizes": []})
        if all(existing["sizeID"] != size.SizeID for existing in entry["sizes"]):
            entry["sizes"].append(serialize_size(size))
    return list(grouped.values())


def build_product_detail(db: Session, product: Product) -> dict:
    available_quantity = db.execute(
        select(func.count(ProductInventory.InventoryID))
        .where(ProductInventory.ProductID == product.ProductID)
        .where(ProductInventory.Status == INVENTORY_AVAILABLE)
    ).scalar() or 0

    possible_sizes: dict[int, dict] = {}
    possible_colors: dict[int, dict] = {}
    for size, color in _variant_rows(db, product.ProductID, available_only=False):
        possible_sizes.setdefault(size.SizeID, serialize_size(size))
        possible_colors.setdefault(color.ColorID, serialize_color(color))

    return {
        "productID": product.ProductID,
        "category": product.Category.CategoryName if product.Category else None,
        "brand": product.Brand,
        "model": product.Model,
        "description": product.Description,
        "hourlyValue": product.HourlyValue,
        "coverUrl": product.CoverUrl,
        "availableQuantity": available_quantity,
        "sizes": available_colors_by_size(db, product.ProductID),
        "possibleColors": list(possible_colors.values()),
        "possibleSizes": sorted(possible_sizes.values(), key=lambda item: item["size"]),
    }
