import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billbook.core.config import StockFailurePolicy, settings
from billbook.core.errors import NotFoundError, StorageError, ValidationError
from billbook.core.observability import log_event
from billbook.core.time_utils import as_utc, as_utc_or_none
from billbook.models.billing import Bill, BillItem
from billbook.models.product import Product
from billbook.models.stock import StockMovement

logger = logging.getLogger("billbook.stock")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class StockLine(Protocol):
    product_id: str
    quantity: int


@dataclass
class StockApplyResult:
    applied: dict[str, int] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.skipped and not self.failed


@dataclass(frozen=True)
class StockRebuildRow:
    product_id: str
    name: str
    opening_stock: int
    current_stock: int

    @property
    def difference(self) -> int:
        return self.current_stock - self.opening_stock


@dataclass(frozen=True)
class StockRebuildReport:
    bills_replayed: int
    movements_replayed: int
    rows: list[StockRebuildRow]


def signed_quantity(bill_type: str, quantity: int) -> int:
    if bill_type == "sale":
        return -quantity
    if bill_type == "purchase":
        return quantity
    raise ValidationError(f"Unknown bill type: {bill_type}")


def _clamped_stock_expr(delta: int):
    next_value = Product.current_stock + delta
    return case((next_value < 0, 0), else_=next_value)


def apply_delta(db: Session, product_id: str, signed_qty: int) -> int | None:
    """Move a product's current stock by signed_qty, floored at zero.

    The read-add-clamp runs inside one UPDATE statement so concurrent bills
    touching the same product cannot overwrite each other. Returns the new
    quantity, or None when the product does not exist.
    """
    result = db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(current_stock=_clamped_stock_expr(signed_qty))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    return int(
        db.execute(select(Product.current_stock).where(Product.id == product_id)).scalar_one()
    )


def apply_line_items(
    db: Session,
    bill_type: str,
    items: Iterable[StockLine],
    *,
    reverse: bool = False,
    policy: StockFailurePolicy | None = None,
) -> StockApplyResult:
    """Apply the stock effect of a bill's line items, in order.

    reverse=True undoes a previous application. Under ``best_effort`` a
    missing product or a failing update is logged and the next item still
    runs; under ``all_or_nothing`` the first failure raises and the caller
    must not commit.
    """
    policy = policy or settings.stock_failure_policy
    result = StockApplyResult()

    for item in items:
        quantity = -item.quantity if reverse else item.quantity
        delta = signed_quantity(bill_type, quantity)

        if policy == "all_or_nothing":
            try:
                new_stock = apply_delta(db, item.product_id, delta)
            except SQLAlchemyError as exc:
                raise StorageError(f"Stock update failed for product {item.product_id}") from exc
            if new_stock is None:
                raise NotFoundError(f"Product not found: {item.product_id}")
            result.applied[item.product_id] = new_stock
            continue

        try:
            with db.begin_nested():
                new_stock = apply_delta(db, item.product_id, delta)
        except SQLAlchemyError as exc:
            result.failed.append(item.product_id)
            log_event(
                logger,
                logging.ERROR,
                "stock.delta.failed",
                product_id=item.product_id,
                delta=delta,
                error=str(exc),
            )
            continue

        if new_stock is None:
            result.skipped.append(item.product_id)
            log_event(
                logger,
                logging.WARNING,
                "stock.delta.skipped",
                product_id=item.product_id,
                delta=delta,
                reason="product_not_found",
            )
            continue
        result.applied[item.product_id] = new_stock

    return result


def get_product(db: Session, product_id: str) -> Product:
    # apply_delta writes around the identity map, so reload loaded instances.
    product = db.execute(
        select(Product)
        .where(Product.id == product_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not product:
        raise NotFoundError("Product not found")
    return product


def list_low_stock(db: Session, business_id: str, threshold: int | None = None) -> list[Product]:
    if not business_id:
        raise ValidationError("business_id is required")

    stmt = select(Product).where(Product.business_id == business_id)
    if threshold is not None:
        stmt = stmt.where(Product.current_stock <= threshold)
    else:
        default_threshold = settings.low_stock_default_threshold
        stmt = stmt.where(
            or_(
                (Product.low_stock_alert > 0) & (Product.current_stock <= Product.low_stock_alert),
                (Product.low_stock_alert <= 0) & (Product.current_stock <= default_threshold),
            )
        )
    return list(db.execute(stmt.order_by(Product.current_stock.asc(), Product.name.asc())).scalars().all())


def _movement_delta(movement_type: str, quantity: int) -> int:
    return quantity if movement_type == "IN" else -quantity


def _replay_key(event_time: datetime, created_at: datetime | None, rank: int, record_id: str):
    # Same-instant events fall back to insertion time, then bills before movements, then id.
    return (as_utc(event_time), as_utc_or_none(created_at) or _EPOCH, rank, record_id)


def rebuild_stock_from_bills(db: Session, business_id: str | None = None) -> StockRebuildReport:
    """Recompute current stock from opening stock and recorded history.

    Every product is reset to its opening stock, then bills and direct stock
    movements are replayed as one timeline ordered by bill date / movement
    date, using the same clamp-at-zero rule as live updates. Records that
    reference missing products are skipped.
    """
    product_stmt = select(Product)
    bill_stmt = select(Bill)
    movement_stmt = select(StockMovement)
    if business_id:
        product_stmt = product_stmt.where(Product.business_id == business_id)
        bill_stmt = bill_stmt.where(Bill.business_id == business_id)
        movement_stmt = movement_stmt.where(StockMovement.business_id == business_id)

    products = db.execute(product_stmt.execution_options(populate_existing=True)).scalars().all()
    stock_by_product = {product.id: product.opening_stock for product in products}

    bills = db.execute(bill_stmt).scalars().all()
    bill_ids = [bill.id for bill in bills]
    items_by_bill: dict[str, list[BillItem]] = {bill_id: [] for bill_id in bill_ids}
    if bill_ids:
        for item in db.execute(
            select(BillItem).where(BillItem.bill_id.in_(bill_ids)).order_by(BillItem.position.asc())
        ).scalars():
            items_by_bill[item.bill_id].append(item)
    movements = db.execute(movement_stmt).scalars().all()

    timeline: list[tuple[tuple, Bill | StockMovement]] = [
        (_replay_key(bill.bill_date, bill.created_at, 0, bill.id), bill) for bill in bills
    ]
    timeline.extend(
        (_replay_key(movement.movement_date, movement.created_at, 1, movement.id), movement)
        for movement in movements
    )
    timeline.sort(key=lambda entry: entry[0])

    for _key, record in timeline:
        if isinstance(record, StockMovement):
            deltas = [(record.product_id, _movement_delta(record.type, record.quantity))]
        else:
            deltas = [
                (item.product_id, signed_quantity(record.type, item.quantity))
                for item in items_by_bill[record.id]
            ]
        for product_id, delta in deltas:
            if product_id not in stock_by_product:
                log_event(
                    logger,
                    logging.WARNING,
                    "stock.rebuild.skipped",
                    record_id=record.id,
                    product_id=product_id,
                    reason="product_not_found",
                )
                continue
            stock_by_product[product_id] = max(0, stock_by_product[product_id] + delta)

    rows: list[StockRebuildRow] = []
    for product in products:
        product.current_stock = stock_by_product[product.id]
        rows.append(
            StockRebuildRow(
                product_id=product.id,
                name=product.name,
                opening_stock=product.opening_stock,
                current_stock=product.current_stock,
            )
        )

    log_event(
        logger,
        logging.INFO,
        "stock.rebuild.completed",
        business_id=business_id,
        products=len(rows),
        bills=len(bills),
        movements=len(movements),
    )
    return StockRebuildReport(bills_replayed=len(bills), movements_replayed=len(movements), rows=rows)
