from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from billbook.schemas.common import PageMeta


StockMovementType = Literal["IN", "OUT"]


def _normalize_movement_type(value):
    if isinstance(value, str):
        return value.strip().upper()
    return value


class StockMovementCreate(BaseModel):
    product_id: str
    type: StockMovementType
    quantity: int = Field(ge=0)
    purchase_price: Decimal = Field(ge=0)
    date: Optional[datetime] = None
    note: Optional[str] = Field(default=None, max_length=255)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        return _normalize_movement_type(value)

    @field_validator("note")
    @classmethod
    def normalize_note(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": "product-id-here",
                "type": "IN",
                "quantity": 20,
                "purchase_price": 380.0,
                "note": "Weekly restock",
            }
        }
    )


class StockMovementUpdate(BaseModel):
    type: Optional[StockMovementType] = None
    quantity: int | None = Field(default=None, ge=0)
    purchase_price: Decimal | None = Field(default=None, ge=0)
    date: Optional[datetime] = None
    note: Optional[str] = Field(default=None, max_length=255)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        return _normalize_movement_type(value)

    @model_validator(mode="after")
    def validate_has_update(self) -> "StockMovementUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class StockMovementOut(BaseModel):
    id: str
    product_id: str
    type: StockMovementType
    quantity: int
    purchase_price: float
    date: datetime
    note: Optional[str] = None
    current_stock: Optional[int] = None
    created_at: Optional[datetime] = None


class StockMovementListOut(BaseModel):
    pagination: PageMeta
    items: list[StockMovementOut]


class StockMovementDeleteOut(BaseModel):
    ok: bool = True
    current_stock: Optional[int] = None


class ProductStockOut(BaseModel):
    product_id: str
    name: str
    opening_stock: int
    current_stock: int
    low_stock_alert: int


class LowStockListOut(BaseModel):
    business_id: str
    items: list[ProductStockOut]


class StockRebuildRowOut(BaseModel):
    product_id: str
    name: str
    opening_stock: int
    current_stock: int
    difference: int


class StockRebuildOut(BaseModel):
    bills_replayed: int
    movements_replayed: int
    items: list[StockRebuildRowOut]
