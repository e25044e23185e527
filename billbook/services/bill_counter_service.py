from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billbook.core.errors import ValidationError
from billbook.core.id_utils import generate_shortuuid
from billbook.models.billing import BILL_TYPES, BillCounter


def validate_counter_key(business_id: str | None, bill_type: str | None) -> None:
    if not business_id or not bill_type:
        raise ValidationError("business_id and type are required")
    if bill_type not in BILL_TYPES:
        raise ValidationError("type must be 'sale' or 'purchase'")


def _increment(db: Session, business_id: str, bill_type: str) -> int | None:
    # Single UPDATE so the row lock, not application code, orders concurrent callers.
    result = db.execute(
        update(BillCounter)
        .where(BillCounter.business_id == business_id, BillCounter.type == bill_type)
        .values(seq=BillCounter.seq + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    return int(
        db.execute(
            select(BillCounter.seq).where(
                BillCounter.business_id == business_id,
                BillCounter.type == bill_type,
            )
        ).scalar_one()
    )


def next_number(db: Session, business_id: str, bill_type: str) -> int:
    """Increment and return the sequence for (business_id, bill_type).

    The counter row is created on first use. If another transaction creates
    it first, the unique constraint rejects our insert and we increment the
    row that won instead.
    """
    validate_counter_key(business_id, bill_type)

    value = _increment(db, business_id, bill_type)
    if value is not None:
        return value

    try:
        with db.begin_nested():
            db.add(BillCounter(id=generate_shortuuid(), business_id=business_id, type=bill_type, seq=1))
        return 1
    except IntegrityError:
        value = _increment(db, business_id, bill_type)
        if value is None:
            raise
        return value


def peek_next_number(db: Session, business_id: str, bill_type: str) -> int:
    validate_counter_key(business_id, bill_type)
    current = db.execute(
        select(BillCounter.seq).where(
            BillCounter.business_id == business_id,
            BillCounter.type == bill_type,
        )
    ).scalar_one_or_none()
    return int(current or 0) + 1
