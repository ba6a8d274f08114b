from pydantic import BaseModel, ConfigDict, Field


class ReserveRentalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productID: int
    colorID: int
    sizeID: int
    duration: int = Field(gt=0, description="Requested rental duration in minutes")


class RentalCodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    code: str = Field(min_length=1, max_length=12)
