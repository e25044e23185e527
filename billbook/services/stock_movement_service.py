from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from billbook.core.errors import NotFoundError, ValidationError
from billbook.core.id_utils import generate_shortuuid
from billbook.core.money import to_money
from billbook.core.time_utils import as_utc
from billbook.models.product import Product
from billbook.models.stock import StockMovement
from billbook.schemas.stock import StockMovementCreate, StockMovementUpdate
from billbook.services.audit_service import log_audit_event
from billbook.services.stock_service import apply_delta, get_product


@dataclass(frozen=True)
class MovementResult:
    movement: StockMovement
    current_stock: int | None


@dataclass(frozen=True)
class MovementPage:
    movements: list[StockMovement]
    total: int
    page: int
    limit: int


def movement_delta(movement_type: str, quantity: int) -> int:
    return quantity if movement_type == "IN" else -quantity


def _take_stock(db: Session, product_id: str, quantity: int) -> int:
    # Guarded decrement: the WHERE clause is the stock check.
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.current_stock >= quantity)
        .values(current_stock=Product.current_stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ValidationError("Not enough stock for OUT movement")
    return int(db.execute(select(Product.current_stock).where(Product.id == product_id)).scalar_one())


def _apply_movement(db: Session, product_id: str, movement_type: str, quantity: int) -> int:
    if movement_type == "OUT":
        return _take_stock(db, product_id, quantity)
    new_stock = apply_delta(db, product_id, quantity)
    if new_stock is None:
        raise NotFoundError("Product not found")
    return new_stock


def _movement_or_404(db: Session, movement_id: str) -> StockMovement:
    movement = db.execute(
        select(StockMovement).where(StockMovement.id == movement_id)
    ).scalar_one_or_none()
    if not movement:
        raise NotFoundError("Stock record not found")
    return movement


def create_movement(
    db: Session,
    payload: StockMovementCreate,
    *,
    actor_user_id: str | None = None,
) -> MovementResult:
    product = get_product(db, payload.product_id)
    if payload.type == "OUT" and product.current_stock < payload.quantity:
        raise ValidationError("Not enough stock for OUT movement")

    current_stock = _apply_movement(db, product.id, payload.type, payload.quantity)
    movement = StockMovement(
        id=generate_shortuuid(),
        business_id=product.business_id,
        product_id=product.id,
        type=payload.type,
        quantity=payload.quantity,
        purchase_price=to_money(payload.purchase_price),
        movement_date=as_utc(payload.date) if payload.date else datetime.now(timezone.utc),
        note=payload.note,
    )
    db.add(movement)
    log_audit_event(
        db,
        business_id=product.business_id,
        actor_user_id=actor_user_id,
        action="stock.movement.create",
        target_type="stock_movement",
        target_id=movement.id,
        metadata_json={
            "product_id": product.id,
            "type": movement.type,
            "quantity": movement.quantity,
            "current_stock": current_stock,
        },
    )
    return MovementResult(movement=movement, current_stock=current_stock)


def get_movement(db: Session, movement_id: str) -> StockMovement:
    return _movement_or_404(db, movement_id)


def update_movement(
    db: Session,
    movement_id: str,
    payload: StockMovementUpdate,
    *,
    actor_user_id: str | None = None,
) -> MovementResult:
    """Re-point a movement: undo its old effect, then apply the new one.

    The OUT check runs against the stock as it stands after the undo, and
    before anything is written.
    """
    movement = _movement_or_404(db, movement_id)
    product = get_product(db, movement.product_id)

    new_type = payload.type or movement.type
    new_quantity = payload.quantity if payload.quantity is not None else movement.quantity
    stock_after_reversal = max(0, product.current_stock - movement_delta(movement.type, movement.quantity))
    if new_type == "OUT" and stock_after_reversal < new_quantity:
        raise ValidationError("Not enough stock for OUT movement")

    apply_delta(db, product.id, -movement_delta(movement.type, movement.quantity))
    current_stock = _apply_movement(db, product.id, new_type, new_quantity)

    previous = {"type": movement.type, "quantity": movement.quantity}
    movement.type = new_type
    movement.quantity = new_quantity
    if payload.purchase_price is not None:
        movement.purchase_price = to_money(payload.purchase_price)
    if payload.date is not None:
        movement.movement_date = as_utc(payload.date)
    if "note" in payload.model_fields_set:
        movement.note = payload.note.strip() if payload.note else None

    log_audit_event(
        db,
        business_id=movement.business_id,
        actor_user_id=actor_user_id,
        action="stock.movement.update",
        target_type="stock_movement",
        target_id=movement.id,
        metadata_json={
            "previous": previous,
            "next": {"type": new_type, "quantity": new_quantity},
            "current_stock": current_stock,
        },
    )
    return MovementResult(movement=movement, current_stock=current_stock)


def delete_movement(
    db: Session,
    movement_id: str,
    *,
    actor_user_id: str | None = None,
) -> int | None:
    movement = _movement_or_404(db, movement_id)
    get_product(db, movement.product_id)

    current_stock = apply_delta(db, movement.product_id, -movement_delta(movement.type, movement.quantity))
    db.delete(movement)
    log_audit_event(
        db,
        business_id=movement.business_id,
        actor_user_id=actor_user_id,
        action="stock.movement.delete",
        target_type="stock_movement",
        target_id=movement.id,
        metadata_json={
            "product_id": movement.product_id,
            "type": movement.type,
            "quantity": movement.quantity,
            "current_stock": current_stock,
        },
    )
    return current_stock


def list_movements(
    db: Session,
    *,
    product_id: str | None = None,
    movement_type: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    page: int = 1,
    limit: int = 20,
) -> MovementPage:
    if from_date and to_date and to_date < from_date:
        raise ValidationError("to_date cannot be before from_date")

    conditions = []
    if product_id:
        conditions.append(StockMovement.product_id == product_id)
    if movement_type:
        conditions.append(StockMovement.type == movement_type)
    if from_date:
        conditions.append(func.date(StockMovement.movement_date) >= from_date)
    if to_date:
        conditions.append(func.date(StockMovement.movement_date) <= to_date)

    total = int(db.execute(select(func.count(StockMovement.id)).where(*conditions)).scalar_one())
    movements = db.execute(
        select(StockMovement)
        .where(*conditions)
        .order_by(StockMovement.movement_date.desc(), StockMovement.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return MovementPage(movements=list(movements), total=total, page=page, limit=limit)
