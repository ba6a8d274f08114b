from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CategoryUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)


class ColorUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    code: str = Field(min_length=1)
    name: str = Field(min_length=1)


class SizeUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    size: float


class SupplierUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    phone: str
    email: str
    cnpj: str


class ProductCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: str
    brand: str
    description: str
    hourlyValue: float = Field(ge=0)
    coverUrl: str
    categoryID: int
    supplierID: int
    colorID: int
    sizeID: int


class ProductUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    hourlyValue: Optional[float] = Field(default=None, ge=0)
    coverUrl: Optional[str] = None
