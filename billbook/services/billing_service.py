import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from billbook.core.config import StockFailurePolicy
from billbook.core.errors import NotFoundError, ValidationError
from billbook.core.id_utils import generate_shortuuid
from billbook.core.money import money_to_float, to_money, to_money_or_none
from billbook.core.time_utils import as_utc, as_utc_or_none
from billbook.core.observability import log_event
from billbook.models.billing import BILL_TYPES, PAYMENT_METHODS, Bill, BillItem
from billbook.schemas.billing import (
    AdditionalChargeIn,
    BillCreate,
    BillItemIn,
    BillUpdate,
    DiscountIn,
    OptionalFieldsIn,
    PartyIn,
)
from billbook.services import bill_counter_service
from billbook.services.audit_service import log_audit_event
from billbook.services.stock_service import StockApplyResult, apply_line_items

logger = logging.getLogger("billbook.billing")


@dataclass
class BillRecord:
    bill: Bill
    items: list[BillItem]
    stock: StockApplyResult = field(default_factory=StockApplyResult)


@dataclass(frozen=True)
class BillFilters:
    user_id: str | None
    business_id: str | None = None
    type: str | None = None
    method: str | None = None
    bill_number: int | None = None
    search: str | None = None
    start_date: date | None = None
    end_date: date | None = None


@dataclass(frozen=True)
class BillPage:
    records: list[BillRecord]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _validate_bill_type(bill_type: str | None) -> str:
    if bill_type not in BILL_TYPES:
        raise ValidationError("type must be 'sale' or 'purchase'")
    return bill_type


def _validate_method(method: str | None) -> str:
    if method not in PAYMENT_METHODS:
        raise ValidationError("method must be 'unpaid', 'cash' or 'online'")
    return method


def _validate_party(party: PartyIn | None) -> tuple[str, str, str]:
    if party is None:
        raise ValidationError("party (id, name, phone) is required")
    party_id, name, phone = _clean(party.id), _clean(party.name), _clean(party.phone)
    if not party_id or not name or not phone:
        raise ValidationError("party (id, name, phone) is required")
    return party_id, name, phone


def _validate_items(items: Sequence[BillItemIn] | None) -> list[BillItemIn]:
    if not items:
        raise ValidationError("At least one item is required")
    return list(items)


def _validate_non_negative(field_name: str, value: Decimal | None) -> Decimal | None:
    if value is not None and value < 0:
        raise ValidationError(f"{field_name} must be >= 0")
    return to_money_or_none(value)


def sanitize_charges(charges: Sequence[AdditionalChargeIn] | None) -> list[dict[str, Any]]:
    """Drop charge entries without a name or an amount."""
    cleaned: list[dict[str, Any]] = []
    for charge in charges or []:
        name = _clean(charge.name)
        if not name or charge.amount is None:
            continue
        cleaned.append({"name": name, "amount": money_to_float(charge.amount)})
    return cleaned


def sanitize_discounts(discounts: Sequence[DiscountIn] | None) -> list[dict[str, Any]]:
    """Drop discount entries without a kind or a value."""
    cleaned: list[dict[str, Any]] = []
    for discount in discounts or []:
        if not discount.type or discount.value is None:
            continue
        cleaned.append({"type": discount.type, "value": money_to_float(discount.value)})
    return cleaned


def _optional_fields_json(optional_fields: OptionalFieldsIn | None) -> dict[str, Any] | None:
    if optional_fields is None:
        return None
    return optional_fields.model_dump(mode="json", exclude_none=True)


def _build_items(bill_id: str, items: Sequence[BillItemIn]) -> list[BillItem]:
    return [
        BillItem(
            id=generate_shortuuid(),
            bill_id=bill_id,
            position=position,
            product_id=item.product_id,
            product_name=item.name.strip(),
            quantity=item.quantity,
            price=to_money(item.price),
        )
        for position, item in enumerate(items)
    ]


def list_bill_items(db: Session, bill_ids: Sequence[str]) -> dict[str, list[BillItem]]:
    items_by_bill: dict[str, list[BillItem]] = {bill_id: [] for bill_id in bill_ids}
    if not bill_ids:
        return items_by_bill
    rows = db.execute(
        select(BillItem)
        .where(BillItem.bill_id.in_(list(bill_ids)))
        .order_by(BillItem.bill_id, BillItem.position.asc())
    ).scalars()
    for item in rows:
        items_by_bill[item.bill_id].append(item)
    return items_by_bill


def _bill_or_404(db: Session, bill_id: str) -> Bill:
    bill = db.execute(select(Bill).where(Bill.id == bill_id)).scalar_one_or_none()
    if not bill:
        raise NotFoundError("Bill not found")
    return bill


def _stock_metadata(stock: StockApplyResult) -> dict[str, Any]:
    return {"applied": stock.applied, "skipped": stock.skipped, "failed": stock.failed}


def create_bill(
    db: Session,
    payload: BillCreate,
    *,
    policy: StockFailurePolicy | None = None,
) -> BillRecord:
    """Number, persist and stock-adjust a new bill.

    Every check runs before the counter is touched. The caller owns the
    transaction and commits once this returns.
    """
    user_id = _clean(payload.user_id)
    business_id = _clean(payload.business_id)
    if not user_id or not business_id or not payload.type:
        raise ValidationError("user_id, business_id and type are required")
    bill_type = _validate_bill_type(payload.type)
    party_id, party_name, party_phone = _validate_party(payload.party)
    items = _validate_items(payload.items)
    method = _validate_method(payload.method)
    balance_due = _validate_non_negative("balance_due", payload.balance_due)
    total_amount = _validate_non_negative("total_amount", payload.total_amount)

    bill_number = bill_counter_service.next_number(db, business_id, bill_type)

    bill = Bill(
        id=generate_shortuuid(),
        user_id=user_id,
        business_id=business_id,
        type=bill_type,
        bill_number=bill_number,
        bill_date=as_utc(payload.date) if payload.date else datetime.now(timezone.utc),
        party_id=party_id,
        party_name=party_name,
        party_phone=party_phone,
        additional_charges=sanitize_charges(payload.additional_charges),
        discounts=sanitize_discounts(payload.discounts),
        optional_fields=_optional_fields_json(payload.optional_fields),
        note=_clean(payload.note),
        photos=list(payload.photos or []),
        method=method,
        due_date=as_utc_or_none(payload.due_date),
        balance_due=balance_due,
        total_amount=total_amount,
    )
    db.add(bill)
    bill_items = _build_items(bill.id, items)
    db.add_all(bill_items)
    # Flush before the stock savepoints so a bad bill row cannot be mistaken
    # for a per-item stock failure.
    db.flush()

    stock = apply_line_items(db, bill_type, bill_items, policy=policy)

    log_audit_event(
        db,
        business_id=business_id,
        actor_user_id=user_id,
        action="bill.create",
        target_type="bill",
        target_id=bill.id,
        metadata_json={
            "type": bill_type,
            "bill_number": bill_number,
            "items_count": len(bill_items),
            "stock": _stock_metadata(stock),
        },
    )
    log_event(
        logger,
        logging.INFO,
        "bill.created",
        bill_id=bill.id,
        business_id=business_id,
        type=bill_type,
        bill_number=bill_number,
        stock_skipped=stock.skipped,
        stock_failed=stock.failed,
    )
    return BillRecord(bill=bill, items=bill_items, stock=stock)


def get_bill(db: Session, bill_id: str) -> BillRecord:
    bill = _bill_or_404(db, bill_id)
    return BillRecord(bill=bill, items=list_bill_items(db, [bill.id])[bill.id])


def update_bill(
    db: Session,
    bill_id: str,
    patch: BillUpdate,
    *,
    actor_user_id: str | None = None,
    policy: StockFailurePolicy | None = None,
) -> BillRecord:
    """Apply a partial update to an existing bill.

    business_id and type are fixed at creation. A new item list replaces the
    old one: the old items' stock effect is reversed before the new one is
    applied, both keyed by the bill's own type.
    """
    bill = _bill_or_404(db, bill_id)
    fields_set = patch.model_fields_set

    if patch.business_id is not None and patch.business_id != bill.business_id:
        raise ValidationError("Changing business_id is not allowed for an existing bill")
    if patch.type is not None and patch.type != bill.type:
        raise ValidationError("Changing type is not allowed for an existing bill")

    party = _validate_party(patch.party) if patch.party is not None else None
    new_items = _validate_items(patch.items) if patch.items is not None else None
    method = _validate_method(patch.method) if patch.method is not None else None
    balance_due = _validate_non_negative("balance_due", patch.balance_due)
    total_amount = _validate_non_negative("total_amount", patch.total_amount)

    changed: list[str] = []
    if patch.date is not None:
        bill.bill_date = as_utc(patch.date)
        changed.append("date")
    if party is not None:
        bill.party_id, bill.party_name, bill.party_phone = party
        changed.append("party")
    if patch.additional_charges is not None:
        bill.additional_charges = sanitize_charges(patch.additional_charges)
        changed.append("additional_charges")
    if patch.discounts is not None:
        bill.discounts = sanitize_discounts(patch.discounts)
        changed.append("discounts")
    if "optional_fields" in fields_set:
        bill.optional_fields = _optional_fields_json(patch.optional_fields)
        changed.append("optional_fields")
    if "note" in fields_set:
        bill.note = _clean(patch.note)
        changed.append("note")
    if patch.photos is not None:
        bill.photos = list(patch.photos)
        changed.append("photos")
    if method is not None:
        bill.method = method
        changed.append("method")
    if patch.due_date is not None:
        bill.due_date = as_utc(patch.due_date)
        changed.append("due_date")
    if "balance_due" in fields_set:
        bill.balance_due = balance_due
        changed.append("balance_due")
    if "total_amount" in fields_set:
        bill.total_amount = total_amount
        changed.append("total_amount")

    original_items = list_bill_items(db, [bill.id])[bill.id]
    items = original_items
    stock = StockApplyResult()
    if new_items is not None:
        db.execute(delete(BillItem).where(BillItem.bill_id == bill.id))
        items = _build_items(bill.id, new_items)
        db.add_all(items)
        changed.append("items")
    db.flush()

    if new_items is not None:
        reversed_stock = apply_line_items(db, bill.type, original_items, reverse=True, policy=policy)
        stock = apply_line_items(db, bill.type, items, policy=policy)
        stock.skipped = reversed_stock.skipped + stock.skipped
        stock.failed = reversed_stock.failed + stock.failed

    log_audit_event(
        db,
        business_id=bill.business_id,
        actor_user_id=actor_user_id or bill.user_id,
        action="bill.update",
        target_type="bill",
        target_id=bill.id,
        metadata_json={
            "bill_number": bill.bill_number,
            "changed": changed,
            "stock": _stock_metadata(stock),
        },
    )
    return BillRecord(bill=bill, items=items, stock=stock)


def delete_bill(
    db: Session,
    bill_id: str,
    *,
    actor_user_id: str | None = None,
    policy: StockFailurePolicy | None = None,
) -> BillRecord:
    """Undo a bill's stock effect, then remove it. Its number is not reused."""
    bill = _bill_or_404(db, bill_id)
    items = list_bill_items(db, [bill.id])[bill.id]

    stock = apply_line_items(db, bill.type, items, reverse=True, policy=policy)

    db.execute(delete(BillItem).where(BillItem.bill_id == bill.id))
    db.delete(bill)
    log_audit_event(
        db,
        business_id=bill.business_id,
        actor_user_id=actor_user_id or bill.user_id,
        action="bill.delete",
        target_type="bill",
        target_id=bill.id,
        metadata_json={
            "type": bill.type,
            "bill_number": bill.bill_number,
            "stock": _stock_metadata(stock),
        },
    )
    return BillRecord(bill=bill, items=items, stock=stock)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def list_bills(db: Session, filters: BillFilters, *, page: int = 1, limit: int = 20) -> BillPage:
    user_id = _clean(filters.user_id)
    if not user_id:
        raise ValidationError("user_id is required")
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be >= 1")
    if filters.start_date and filters.end_date and filters.end_date < filters.start_date:
        raise ValidationError("end_date cannot be before start_date")

    conditions = [Bill.user_id == user_id]
    if filters.business_id:
        conditions.append(Bill.business_id == filters.business_id)
    if filters.type:
        conditions.append(Bill.type == filters.type)
    if filters.method:
        conditions.append(Bill.method == filters.method)
    if filters.bill_number is not None:
        conditions.append(Bill.bill_number == filters.bill_number)
    search = _clean(filters.search)
    if search:
        pattern = f"%{_escape_like(search)}%"
        conditions.append(
            or_(
                Bill.party_name.ilike(pattern, escape="\\"),
                Bill.party_phone.ilike(pattern, escape="\\"),
            )
        )
    if filters.start_date:
        conditions.append(func.date(Bill.bill_date) >= filters.start_date)
    if filters.end_date:
        conditions.append(func.date(Bill.bill_date) <= filters.end_date)

    total = int(db.execute(select(func.count(Bill.id)).where(*conditions)).scalar_one())
    bills = db.execute(
        select(Bill)
        .where(*conditions)
        .order_by(Bill.bill_date.desc(), Bill.bill_number.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    items_by_bill = list_bill_items(db, [bill.id for bill in bills])
    records = [BillRecord(bill=bill, items=items_by_bill[bill.id]) for bill in bills]
    return BillPage(records=records, total=total, page=page, limit=limit)
