from sqlalchemy import func, select

from billbook.core.config import settings
from billbook.models.audit_log import AuditLog
from billbook.models.billing import Bill, BillItem
from billbook.models.product import Product


def _bill_payload(product_id: str, quantity: int, **overrides) -> dict:
    payload = {
        "user_id": "user-1",
        "business_id": "biz-1",
        "type": "sale",
        "date": "2026-10-01T10:00:00Z",
        "party": {"id": "party-1", "name": "Asha Traders", "phone": "9876543210"},
        "items": [
            {"product_id": product_id, "name": "Basmati Rice 5kg", "quantity": quantity, "price": 450.0}
        ],
        "method": "cash",
        "total_amount": 450.0 * quantity,
    }
    payload.update(overrides)
    return payload


def _stock(session_local, product_id: str) -> int:
    with session_local() as db:
        return db.get(Product, product_id).current_stock


def _preview(client, bill_type: str = "sale", business_id: str = "biz-1") -> int:
    response = client.get("/billing/next-number", params={"business_id": business_id, "type": bill_type})
    assert response.status_code == 200, response.text
    return response.json()["next_number"]


def test_create_sale_bill_numbers_and_reduces_stock(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local, opening_stock=10)

    response = client.post("/billing", json=_bill_payload(product_id, 3))
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["bill_number"] == 1
    assert body["type"] == "sale"
    assert body["party"] == {"id": "party-1", "name": "Asha Traders", "phone": "9876543210"}
    assert body["items"] == [
        {"product_id": product_id, "name": "Basmati Rice 5kg", "quantity": 3, "price": 450.0}
    ]
    assert body["total_amount"] == 1350.0
    assert _stock(session_local, product_id) == 7
    assert _preview(client) == 2

    fetched = client.get(f"/billing/{body['id']}")
    assert fetched.status_code == 200, fetched.text
    assert fetched.json()["bill_number"] == 1

    with session_local() as db:
        actions = db.execute(select(AuditLog.action)).scalars().all()
    assert actions == ["bill.create"]


def test_purchase_bill_increases_stock_with_its_own_sequence(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local, opening_stock=10)

    sale = client.post("/billing", json=_bill_payload(product_id, 2))
    purchase = client.post("/billing", json=_bill_payload(product_id, 5, type="purchase"))

    assert sale.json()["bill_number"] == 1
    assert purchase.status_code == 201, purchase.text
    assert purchase.json()["bill_number"] == 1
    assert _stock(session_local, product_id) == 13


def test_create_drops_incomplete_charges_and_discounts(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local)

    response = client.post(
        "/billing",
        json=_bill_payload(
            product_id,
            1,
            additional_charges=[
                {"name": "Delivery", "amount": 40},
                {"name": "  ", "amount": 10},
                {"name": "Packing"},
            ],
            discounts=[
                {"type": "percentage", "value": 5},
                {"value": 20},
                {"type": "amount"},
            ],
            note="  Deliver before noon  ",
            photos=["https://example.com/receipt.jpg"],
        ),
    )

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["additional_charges"] == [{"name": "Delivery", "amount": 40.0}]
    assert body["discounts"] == [{"type": "percentage", "value": 5.0}]
    assert body["note"] == "Deliver before noon"
    assert body["photos"] == ["https://example.com/receipt.jpg"]


def test_create_validation_errors_do_not_consume_numbers(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local, opening_stock=10)

    cases = [
        (_bill_payload(product_id, 1, user_id=None), "user_id, business_id and type are required"),
        (_bill_payload(product_id, 1, business_id=""), "user_id, business_id and type are required"),
        (_bill_payload(product_id, 1, type="refund"), "type must be 'sale' or 'purchase'"),
        (_bill_payload(product_id, 1, party=None), "party (id, name, phone) is required"),
        (
            _bill_payload(product_id, 1, party={"id": "party-1", "name": "Asha Traders"}),
            "party (id, name, phone) is required",
        ),
        (_bill_payload(product_id, 1, items=[]), "At least one item is required"),
        (_bill_payload(product_id, 1, method="card"), "method must be 'unpaid', 'cash' or 'online'"),
        (_bill_payload(product_id, 1, method=None), "method must be 'unpaid', 'cash' or 'online'"),
        (_bill_payload(product_id, 1, balance_due=-1), "balance_due must be >= 0"),
    ]
    for payload, message in cases:
        response = client.post("/billing", json=payload)
        assert response.status_code == 400, response.text
        error = response.json()["error"]
        assert error["code"] == "bad_request"
        assert error["message"] == message
        assert error["path"] == "/billing"

    negative_quantity = client.post("/billing", json=_bill_payload(product_id, -1))
    assert negative_quantity.status_code == 422
    assert negative_quantity.json()["error"]["code"] == "validation_error"

    assert _preview(client) == 1
    assert _stock(session_local, product_id) == 10
    with session_local() as db:
        assert db.execute(select(func.count(Bill.id))).scalar_one() == 0


def test_best_effort_skips_deleted_product(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local, opening_stock=10)
    payload = _bill_payload(product_id, 2)
    payload["items"].insert(
        0, {"product_id": "deleted-product", "name": "Old stock", "quantity": 4, "price": 10}
    )

    response = client.post("/billing", json=payload)

    assert response.status_code == 201, response.text
    assert [item["product_id"] for item in response.json()["items"]] == ["deleted-product", product_id]
    assert _stock(session_local, product_id) == 8


def test_all_or_nothing_rolls_back_whole_bill(test_context, make_product):
    client, session_local = test_context
    settings.stock_failure_policy = "all_or_nothing"
    product_id = make_product(session_local, opening_stock=10)
    payload = _bill_payload(product_id, 2)
    payload["items"].append({"product_id": "deleted-product", "name": "Old stock", "quantity": 1, "price": 10})

    response = client.post("/billing", json=payload)

    assert response.status_code == 404, response.text
    assert response.json()["error"]["message"] == "Product not found: deleted-product"
    assert _stock(session_local, product_id) == 10
    assert _preview(client) == 1
    with session_local() as db:
        assert db.execute(select(func.count(Bill.id))).scalar_one() == 0
        assert db.execute(select(func.count(BillItem.id))).scalar_one() == 0


def test_get_missing_bill_returns_error_envelope(test_context):
    client, _ = test_context

    response = client.get("/billing/missing-bill", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 404
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.json() == {
        "error": {
            "code": "not_found",
            "message": "Bill not found",
            "request_id": "req-123",
            "path": "/billing/missing-bill",
            "details": None,
        }
    }


def test_update_items_replaces_old_stock_effect(test_context, make_product):
    client, session_local = test_context
    rice = make_product(session_local, opening_stock=10)
    oil = make_product(session_local, name="Sunflower Oil 1L", opening_stock=6)

    created = client.post("/billing", json=_bill_payload(rice, 3))
    bill_id = created.json()["id"]
    assert _stock(session_local, rice) == 7

    response = client.put(
        f"/billing/{bill_id}",
        json={
            "items": [
                {"product_id": rice, "name": "Basmati Rice 5kg", "quantity": 8, "price": 450},
                {"product_id": oil, "name": "Sunflower Oil 1L", "quantity": 2, "price": 180},
            ],
            "method": "online",
        },
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["bill_number"] == 1
    assert body["method"] == "online"
    assert [(item["product_id"], item["quantity"]) for item in body["items"]] == [(rice, 8), (oil, 2)]
    assert _stock(session_local, rice) == 2
    assert _stock(session_local, oil) == 4

    with session_local() as db:
        assert db.execute(select(func.count(BillItem.id))).scalar_one() == 2


def test_patch_without_items_leaves_stock_alone(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local, opening_stock=10)
    bill_id = client.post("/billing", json=_bill_payload(product_id, 4)).json()["id"]

    response = client.patch(
        f"/billing/{bill_id}",
        json={"note": "Paid in full", "balance_due": 0, "party": {"id": "party-2", "name": "Ravi Stores", "phone": "9000000001"}},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["note"] == "Paid in full"
    assert body["balance_due"] == 0.0
    assert body["party"]["name"] == "Ravi Stores"
    assert [item["quantity"] for item in body["items"]] == [4]
    assert _stock(session_local, product_id) == 6


def test_update_rejects_business_or_type_change(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local, opening_stock=10)
    bill_id = client.post("/billing", json=_bill_payload(product_id, 3)).json()["id"]

    change_type = client.put(
        f"/billing/{bill_id}",
        json={
            "type": "purchase",
            "items": [{"product_id": product_id, "name": "Basmati Rice 5kg", "quantity": 1, "price": 450}],
        },
    )
    assert change_type.status_code == 400
    assert change_type.json()["error"]["message"] == "Changing type is not allowed for an existing bill"

    change_business = client.put(f"/billing/{bill_id}", json={"business_id": "biz-2"})
    assert change_business.status_code == 400
    assert change_business.json()["error"]["message"] == "Changing business_id is not allowed for an existing bill"

    same_values = client.put(f"/billing/{bill_id}", json={"business_id": "biz-1", "type": "sale"})
    assert same_values.status_code == 200, same_values.text

    fetched = client.get(f"/billing/{bill_id}").json()
    assert fetched["type"] == "sale"
    assert fetched["business_id"] == "biz-1"
    assert [item["quantity"] for item in fetched["items"]] == [3]
    assert _stock(session_local, product_id) == 7


def test_update_validation(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local, opening_stock=10)
    bill_id = client.post("/billing", json=_bill_payload(product_id, 3)).json()["id"]

    empty = client.patch(f"/billing/{bill_id}", json={})
    assert empty.status_code == 422

    no_items = client.patch(f"/billing/{bill_id}", json={"items": []})
    assert no_items.status_code == 400
    assert no_items.json()["error"]["message"] == "At least one item is required"

    partial_party = client.patch(f"/billing/{bill_id}", json={"party": {"name": "Ravi Stores"}})
    assert partial_party.status_code == 400

    missing = client.patch("/billing/missing-bill", json={"note": "x"})
    assert missing.status_code == 404

    assert _stock(session_local, product_id) == 7


def test_delete_reverses_stock_and_keeps_number_consumed(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local, opening_stock=10)
    bill_id = client.post("/billing", json=_bill_payload(product_id, 3)).json()["id"]

    response = client.delete(f"/billing/{bill_id}")

    assert response.status_code == 200, response.text
    assert response.json() == {"ok": True, "id": bill_id}
    assert _stock(session_local, product_id) == 10
    assert client.get(f"/billing/{bill_id}").status_code == 404
    assert client.delete(f"/billing/{bill_id}").status_code == 404
    assert _preview(client) == 2

    with session_local() as db:
        assert db.execute(select(func.count(BillItem.id))).scalar_one() == 0
        actions = db.execute(select(AuditLog.action).order_by(AuditLog.created_at, AuditLog.action)).scalars().all()
    assert sorted(actions) == ["bill.create", "bill.delete"]


def test_oversell_clamps_and_delete_restores_recorded_quantity(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local, opening_stock=10)

    first = client.post("/billing", json=_bill_payload(product_id, 3))
    assert _stock(session_local, product_id) == 7

    second = client.post("/billing", json=_bill_payload(product_id, 10))
    assert second.status_code == 201, second.text
    assert _stock(session_local, product_id) == 0

    assert [first.json()["bill_number"], second.json()["bill_number"]] == [1, 2]

    deleted = client.delete(f"/billing/{first.json()['id']}")
    assert deleted.status_code == 200, deleted.text
    assert _stock(session_local, product_id) == 3


def test_update_rejects_blank_business_or_type(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local, opening_stock=10)
    bill_id = client.post("/billing", json=_bill_payload(product_id, 3)).json()["id"]

    blank_business = client.patch(f"/billing/{bill_id}", json={"business_id": ""})
    assert blank_business.status_code == 400
    assert blank_business.json()["error"]["message"] == "Changing business_id is not allowed for an existing bill"

    blank_type = client.patch(f"/billing/{bill_id}", json={"type": ""})
    assert blank_type.status_code == 400
    assert blank_type.json()["error"]["message"] == "Changing type is not allowed for an existing bill"

    fetched = client.get(f"/billing/{bill_id}").json()
    assert fetched["business_id"] == "biz-1"
    assert fetched["type"] == "sale"


def test_bill_dates_are_stored_in_utc(test_context, make_product):
    client, session_local = test_context
    product_id = make_product(session_local, opening_stock=10)

    created = client.post(
        "/billing",
        json=_bill_payload(
            product_id,
            1,
            date="2026-10-20T01:00:00+05:30",
            due_date="2026-10-25T10:00:00-04:00",
        ),
    )

    assert created.status_code == 201, created.text
    body = created.json()
    assert body["date"].startswith("2026-10-19T19:30:00")
    assert body["due_date"].startswith("2026-10-25T14:00:00")

    same_day = client.get(
        "/billing",
        params={"user_id": "user-1", "start_date": "2026-10-19", "end_date": "2026-10-19"},
    )
    assert same_day.json()["pagination"]["total"] == 1

    updated = client.patch(f"/billing/{body['id']}", json={"date": "2026-10-21T23:30:00+05:30"})
    assert updated.status_code == 200, updated.text
    assert updated.json()["date"].startswith("2026-10-21T18:00:00")
