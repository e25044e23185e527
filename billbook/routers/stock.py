import math
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from billbook.core.api_docs import error_responses
from billbook.core.config import settings
from billbook.core.deps import get_db
from billbook.core.money import money_to_float
from billbook.models.product import Product
from billbook.models.stock import StockMovement
from billbook.schemas.common import PageMeta
from billbook.schemas.stock import (
    LowStockListOut,
    ProductStockOut,
    StockMovementCreate,
    StockMovementDeleteOut,
    StockMovementListOut,
    StockMovementOut,
    StockMovementType,
    StockMovementUpdate,
    StockRebuildOut,
    StockRebuildRowOut,
)
from billbook.services import stock_movement_service, stock_service

router = APIRouter(prefix="/stock", tags=["stock"])


def _product_stock_out(product: Product) -> ProductStockOut:
    return ProductStockOut(
        product_id=product.id,
        name=product.name,
        opening_stock=product.opening_stock,
        current_stock=product.current_stock,
        low_stock_alert=product.low_stock_alert,
    )


def _movement_out(movement: StockMovement, current_stock: int | None = None) -> StockMovementOut:
    return StockMovementOut(
        id=movement.id,
        product_id=movement.product_id,
        type=movement.type,
        quantity=movement.quantity,
        purchase_price=money_to_float(movement.purchase_price),
        date=movement.movement_date,
        note=movement.note,
        current_stock=current_stock,
        created_at=movement.created_at,
    )


@router.get(
    "/products/{product_id}",
    response_model=ProductStockOut,
    summary="Get stock level for a product",
    responses=error_responses(404, 422, 500),
)
def get_product_stock(product_id: str, db: Session = Depends(get_db)):
    return _product_stock_out(stock_service.get_product(db, product_id))


@router.get(
    "/low-stock",
    response_model=LowStockListOut,
    summary="List low-stock products",
    responses=error_responses(400, 422, 500),
)
def list_low_stock_products(
    business_id: str | None = Query(default=None),
    threshold: int | None = Query(
        default=None,
        ge=0,
        description="Optional global threshold override. Defaults to each product's alert level or configured default.",
    ),
    db: Session = Depends(get_db),
):
    products = stock_service.list_low_stock(db, business_id, threshold)
    return LowStockListOut(business_id=business_id, items=[_product_stock_out(p) for p in products])


@router.post(
    "/rebuild",
    response_model=StockRebuildOut,
    summary="Rebuild current stock from history",
    description=(
        "Resets every product's current stock to its opening stock and replays "
        "all bills and stock movements."
    ),
    responses=error_responses(422, 500),
)
def rebuild_stock(
    business_id: str | None = Query(default=None, description="Limit the rebuild to one business"),
    db: Session = Depends(get_db),
):
    report = stock_service.rebuild_stock_from_bills(db, business_id)
    db.commit()
    return StockRebuildOut(
        bills_replayed=report.bills_replayed,
        movements_replayed=report.movements_replayed,
        items=[
            StockRebuildRowOut(
                product_id=row.product_id,
                name=row.name,
                opening_stock=row.opening_stock,
                current_stock=row.current_stock,
                difference=row.difference,
            )
            for row in report.rows
        ],
    )


@router.post(
    "/movements",
    response_model=StockMovementOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record stock IN/OUT",
    responses=error_responses(400, 404, 422, 500),
)
def create_stock_movement(
    payload: StockMovementCreate,
    actor_user_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    result = stock_movement_service.create_movement(db, payload, actor_user_id=actor_user_id)
    db.commit()
    db.refresh(result.movement)
    return _movement_out(result.movement, result.current_stock)


@router.get(
    "/movements",
    response_model=StockMovementListOut,
    summary="List stock movements",
    responses=error_responses(400, 422, 500),
)
def list_stock_movements(
    product_id: str | None = Query(default=None),
    movement_type: StockMovementType | None = Query(default=None, alias="type"),
    from_date: date | None = Query(default=None, description="Filter from date (YYYY-MM-DD)"),
    to_date: date | None = Query(default=None, description="Filter to date (YYYY-MM-DD)"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(
        default=settings.billing_default_page_size,
        ge=1,
        le=settings.billing_max_page_size,
    ),
    db: Session = Depends(get_db),
):
    result = stock_movement_service.list_movements(
        db,
        product_id=product_id,
        movement_type=movement_type,
        from_date=from_date,
        to_date=to_date,
        page=page,
        limit=limit,
    )
    items = [_movement_out(movement) for movement in result.movements]
    total_pages = math.ceil(result.total / limit)
    return StockMovementListOut(
        pagination=PageMeta(
            total=result.total,
            page=page,
            limit=limit,
            count=len(items),
            total_pages=total_pages,
            has_next=page < total_pages,
        ),
        items=items,
    )


@router.get(
    "/movements/{movement_id}",
    response_model=StockMovementOut,
    summary="Get stock movement",
    responses=error_responses(404, 422, 500),
)
def get_stock_movement(movement_id: str, db: Session = Depends(get_db)):
    return _movement_out(stock_movement_service.get_movement(db, movement_id))


@router.put(
    "/movements/{movement_id}",
    response_model=StockMovementOut,
    summary="Update stock movement",
    responses=error_responses(400, 404, 422, 500),
)
def update_stock_movement(
    movement_id: str,
    payload: StockMovementUpdate,
    actor_user_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    result = stock_movement_service.update_movement(db, movement_id, payload, actor_user_id=actor_user_id)
    db.commit()
    db.refresh(result.movement)
    return _movement_out(result.movement, result.current_stock)


@router.delete(
    "/movements/{movement_id}",
    response_model=StockMovementDeleteOut,
    summary="Delete stock movement",
    responses=error_responses(404, 422, 500),
)
def delete_stock_movement(
    movement_id: str,
    actor_user_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    current_stock = stock_movement_service.delete_movement(db, movement_id, actor_user_id=actor_user_id)
    db.commit()
    return StockMovementDeleteOut(current_stock=current_stock)
