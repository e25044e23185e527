from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from billbook.core.api_docs import error_responses
from billbook.core.config import settings
from billbook.core.deps import get_db
from billbook.core.money import money_to_float
from billbook.schemas.billing import (
    BillCreate,
    BillDeleteOut,
    BillItemOut,
    BillListOut,
    BillOut,
    BillType,
    BillUpdate,
    NextBillNumberOut,
    PartyOut,
    PaymentMethod,
)
from billbook.schemas.common import PageMeta
from billbook.services import bill_counter_service, billing_service
from billbook.services.billing_service import BillFilters, BillRecord

router = APIRouter(prefix="/billing", tags=["billing"])


def _bill_out(record: BillRecord) -> BillOut:
    bill = record.bill
    return BillOut(
        id=bill.id,
        user_id=bill.user_id,
        business_id=bill.business_id,
        type=bill.type,
        bill_number=bill.bill_number,
        date=bill.bill_date,
        party=PartyOut(id=bill.party_id, name=bill.party_name, phone=bill.party_phone),
        items=[
            BillItemOut(
                product_id=item.product_id,
                name=item.product_name,
                quantity=item.quantity,
                price=money_to_float(item.price),
            )
            for item in record.items
        ],
        additional_charges=bill.additional_charges or [],
        discounts=bill.discounts or [],
        optional_fields=bill.optional_fields,
        note=bill.note,
        photos=bill.photos or [],
        method=bill.method,
        due_date=bill.due_date,
        balance_due=money_to_float(bill.balance_due),
        total_amount=money_to_float(bill.total_amount),
        created_at=bill.created_at,
        updated_at=bill.updated_at,
    )


@router.post(
    "",
    response_model=BillOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create bill",
    description=(
        "Creates a sale or purchase bill, assigns the next bill number for the "
        "business and type, and moves product stock for every line item."
    ),
    responses=error_responses(400, 422, 500),
)
def create_bill(payload: BillCreate, db: Session = Depends(get_db)):
    record = billing_service.create_bill(db, payload)
    db.commit()
    db.refresh(record.bill)
    return _bill_out(record)


@router.get(
    "",
    response_model=BillListOut,
    summary="List bills",
    responses={
        200: {
            "description": "Paginated bills, newest first",
            "content": {
                "application/json": {
                    "example": {
                        "pagination": {
                            "total": 1,
                            "page": 1,
                            "limit": 20,
                            "count": 1,
                            "total_pages": 1,
                            "has_next": False,
                        },
                        "items": [
                            {
                                "id": "bill-id",
                                "user_id": "user-id",
                                "business_id": "business-id",
                                "type": "sale",
                                "bill_number": 12,
                                "date": "2026-10-19T10:00:00Z",
                                "party": {"id": "party-id", "name": "Asha Traders", "phone": "9876543210"},
                                "items": [
                                    {"product_id": "product-id", "name": "Basmati Rice 5kg", "quantity": 3, "price": 450.0}
                                ],
                                "additional_charges": [],
                                "discounts": [],
                                "photos": [],
                                "method": "cash",
                                "total_amount": 1350.0,
                            }
                        ],
                    }
                }
            },
        },
        **error_responses(400, 422, 500),
    },
)
def list_bills(
    user_id: str | None = Query(default=None, description="Owner of the bills (required)"),
    business_id: str | None = Query(default=None),
    bill_type: BillType | None = Query(default=None, alias="type"),
    method: PaymentMethod | None = Query(default=None),
    bill_number: int | None = Query(default=None, ge=1),
    search: str | None = Query(default=None, description="Party name or phone, partial match"),
    start_date: date | None = Query(default=None, description="Filter from date (YYYY-MM-DD), inclusive"),
    end_date: date | None = Query(default=None, description="Filter to date (YYYY-MM-DD), inclusive"),
    page: int = Query(default=1, ge=1, description="1-indexed page number"),
    limit: int = Query(
        default=settings.billing_default_page_size,
        ge=1,
        le=settings.billing_max_page_size,
        description="Page size",
    ),
    db: Session = Depends(get_db),
):
    result = billing_service.list_bills(
        db,
        BillFilters(
            user_id=user_id,
            business_id=business_id,
            type=bill_type,
            method=method,
            bill_number=bill_number,
            search=search,
            start_date=start_date,
            end_date=end_date,
        ),
        page=page,
        limit=limit,
    )
    items = [_bill_out(record) for record in result.records]
    return BillListOut(
        pagination=PageMeta(
            total=result.total,
            page=result.page,
            limit=result.limit,
            count=len(items),
            total_pages=result.total_pages,
            has_next=result.has_next,
        ),
        items=items,
    )


@router.get(
    "/next-number",
    response_model=NextBillNumberOut,
    summary="Preview next bill number",
    description="Returns the number the next bill of this type would get. Does not consume it.",
    responses=error_responses(400, 422, 500),
)
def get_next_bill_number(
    business_id: str | None = Query(default=None),
    bill_type: str | None = Query(default=None, alias="type"),
    db: Session = Depends(get_db),
):
    next_number = bill_counter_service.peek_next_number(db, business_id, bill_type)
    return NextBillNumberOut(business_id=business_id, type=bill_type, next_number=next_number)


@router.get(
    "/{bill_id}",
    response_model=BillOut,
    summary="Get bill",
    responses=error_responses(404, 422, 500),
)
def get_bill(bill_id: str, db: Session = Depends(get_db)):
    return _bill_out(billing_service.get_bill(db, bill_id))


@router.put(
    "/{bill_id}",
    response_model=BillOut,
    summary="Update bill",
    description="business_id and type cannot change. A new items list replaces the old one and re-balances stock.",
    responses=error_responses(400, 404, 422, 500),
)
@router.patch(
    "/{bill_id}",
    response_model=BillOut,
    summary="Update bill (partial)",
    responses=error_responses(400, 404, 422, 500),
)
def update_bill(
    bill_id: str,
    payload: BillUpdate,
    actor_user_id: str | None = Query(default=None, description="User performing the change"),
    db: Session = Depends(get_db),
):
    record = billing_service.update_bill(db, bill_id, payload, actor_user_id=actor_user_id)
    db.commit()
    db.refresh(record.bill)
    return _bill_out(record)


@router.delete(
    "/{bill_id}",
    response_model=BillDeleteOut,
    summary="Delete bill",
    description="Reverses the bill's stock effect and removes it. The bill number is not reused.",
    responses=error_responses(404, 422, 500),
)
def delete_bill(
    bill_id: str,
    actor_user_id: str | None = Query(default=None, description="User performing the change"),
    db: Session = Depends(get_db),
):
    billing_service.delete_bill(db, bill_id, actor_user_id=actor_user_id)
    db.commit()
    return BillDeleteOut(id=bill_id)
