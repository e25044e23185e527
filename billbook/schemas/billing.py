from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from billbook.schemas.common import PageMeta


BillType = Literal["sale", "purchase"]
PaymentMethod = Literal["unpaid", "cash", "online"]
DiscountKind = Literal["percentage", "amount"]


class PartyIn(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


class BillItemIn(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(ge=0)
    price: Decimal = Field(ge=0)


class AdditionalChargeIn(BaseModel):
    name: Optional[str] = None
    amount: Decimal | None = Field(default=None, ge=0)


class DiscountIn(BaseModel):
    type: Optional[DiscountKind] = None
    value: Decimal | None = Field(default=None, ge=0)


class AddressIn(BaseModel):
    address: Optional[str] = None
    pincode: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


class CustomFieldIn(BaseModel):
    field_name: Optional[str] = None
    field_value: Optional[str] = None


class TermIn(BaseModel):
    text: str


class OptionalFieldsIn(BaseModel):
    custom_fields: List[CustomFieldIn] = Field(default_factory=list)
    party_address: Optional[AddressIn] = None
    shipping_address: Optional[AddressIn] = None
    business_address: Optional[AddressIn] = None
    terms_and_conditions: List[TermIn] = Field(default_factory=list)


class BillCreate(BaseModel):
    # Presence and allowed values of the fields below are checked by the
    # billing service so that they surface as 400 errors.
    user_id: Optional[str] = None
    business_id: Optional[str] = None
    type: Optional[str] = None
    date: Optional[datetime] = None
    party: Optional[PartyIn] = None
    items: List[BillItemIn] = Field(default_factory=list)
    additional_charges: Optional[List[AdditionalChargeIn]] = None
    discounts: Optional[List[DiscountIn]] = None
    optional_fields: Optional[OptionalFieldsIn] = None
    note: Optional[str] = None
    photos: Optional[List[str]] = None
    method: Optional[str] = None
    due_date: Optional[datetime] = None
    balance_due: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user_id": "user-id-here",
                "business_id": "business-id-here",
                "type": "sale",
                "party": {"id": "party-id", "name": "Asha Traders", "phone": "9876543210"},
                "items": [
                    {
                        "product_id": "product-id-here",
                        "name": "Basmati Rice 5kg",
                        "quantity": 3,
                        "price": 450.0,
                    }
                ],
                "additional_charges": [{"name": "Delivery", "amount": 40.0}],
                "discounts": [{"type": "percentage", "value": 5}],
                "method": "cash",
                "total_amount": 1322.5,
            }
        }
    )


class BillUpdate(BaseModel):
    business_id: Optional[str] = None
    type: Optional[str] = None
    date: Optional[datetime] = None
    party: Optional[PartyIn] = None
    items: Optional[List[BillItemIn]] = None
    additional_charges: Optional[List[AdditionalChargeIn]] = None
    discounts: Optional[List[DiscountIn]] = None
    optional_fields: Optional[OptionalFieldsIn] = None
    note: Optional[str] = None
    photos: Optional[List[str]] = None
    method: Optional[str] = None
    due_date: Optional[datetime] = None
    balance_due: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None

    @model_validator(mode="after")
    def validate_has_update(self) -> "BillUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "items": [
                    {
                        "product_id": "product-id-here",
                        "name": "Basmati Rice 5kg",
                        "quantity": 8,
                        "price": 450.0,
                    }
                ],
                "method": "online",
                "balance_due": 0,
            }
        }
    )


class PartyOut(BaseModel):
    id: str
    name: str
    phone: str


class BillItemOut(BaseModel):
    product_id: str
    name: str
    quantity: int
    price: float


class AdditionalChargeOut(BaseModel):
    name: str
    amount: float


class DiscountOut(BaseModel):
    type: DiscountKind
    value: float


class BillOut(BaseModel):
    id: str
    user_id: str
    business_id: str
    type: BillType
    bill_number: int
    date: datetime
    party: PartyOut
    items: list[BillItemOut]
    additional_charges: list[AdditionalChargeOut]
    discounts: list[DiscountOut]
    optional_fields: Optional[dict] = None
    note: Optional[str] = None
    photos: list[str]
    method: PaymentMethod
    due_date: Optional[datetime] = None
    balance_due: Optional[float] = None
    total_amount: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BillListOut(BaseModel):
    pagination: PageMeta
    items: list[BillOut]


class NextBillNumberOut(BaseModel):
    business_id: str
    type: BillType
    next_number: int


class BillDeleteOut(BaseModel):
    ok: bool = True
    id: str
