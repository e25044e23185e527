import pytest
from sqlalchemy import func, select

from billbook.core.errors import ValidationError
from billbook.models.billing import BillCounter
from billbook.services import bill_counter_service


def test_next_number_starts_at_one_and_increments(db_session):
    numbers = [bill_counter_service.next_number(db_session, "biz-1", "sale") for _ in range(4)]
    db_session.commit()

    assert numbers == [1, 2, 3, 4]
    seq = db_session.execute(
        select(BillCounter.seq).where(BillCounter.business_id == "biz-1", BillCounter.type == "sale")
    ).scalar_one()
    assert seq == 4


def test_counters_are_isolated_per_business_and_type(db_session):
    assert bill_counter_service.next_number(db_session, "biz-1", "sale") == 1
    assert bill_counter_service.next_number(db_session, "biz-1", "sale") == 2
    assert bill_counter_service.next_number(db_session, "biz-1", "purchase") == 1
    assert bill_counter_service.next_number(db_session, "biz-2", "sale") == 1
    db_session.commit()

    total_rows = db_session.execute(select(func.count(BillCounter.id))).scalar_one()
    assert total_rows == 3


def test_peek_does_not_consume_or_create_counter(db_session):
    assert bill_counter_service.peek_next_number(db_session, "biz-1", "sale") == 1
    assert bill_counter_service.peek_next_number(db_session, "biz-1", "sale") == 1
    assert db_session.execute(select(func.count(BillCounter.id))).scalar_one() == 0

    bill_counter_service.next_number(db_session, "biz-1", "sale")
    bill_counter_service.next_number(db_session, "biz-1", "sale")
    db_session.commit()

    assert bill_counter_service.peek_next_number(db_session, "biz-1", "sale") == 3
    assert bill_counter_service.peek_next_number(db_session, "biz-1", "purchase") == 1
    assert bill_counter_service.next_number(db_session, "biz-1", "sale") == 3


def test_rolled_back_number_is_handed_out_again(session_local):
    with session_local() as db:
        assert bill_counter_service.next_number(db, "biz-1", "sale") == 1
        db.commit()

    with session_local() as db:
        assert bill_counter_service.next_number(db, "biz-1", "sale") == 2
        db.rollback()

    with session_local() as db:
        assert bill_counter_service.next_number(db, "biz-1", "sale") == 2


@pytest.mark.parametrize(
    ("business_id", "bill_type", "message"),
    [
        (None, "sale", "business_id and type are required"),
        ("biz-1", None, "business_id and type are required"),
        ("", "sale", "business_id and type are required"),
        ("biz-1", "refund", "type must be 'sale' or 'purchase'"),
    ],
)
def test_counter_rejects_invalid_keys(db_session, business_id, bill_type, message):
    with pytest.raises(ValidationError) as exc_info:
        bill_counter_service.next_number(db_session, business_id, bill_type)
    assert exc_info.value.message == message

    with pytest.raises(ValidationError):
        bill_counter_service.peek_next_number(db_session, business_id, bill_type)


def test_next_number_api_preview(test_context):
    client, session_local = test_context

    first = client.get("/billing/next-number", params={"business_id": "biz-1", "type": "sale"})
    assert first.status_code == 200, first.text
    assert first.json() == {"business_id": "biz-1", "type": "sale", "next_number": 1}

    with session_local() as db:
        bill_counter_service.next_number(db, "biz-1", "sale")
        db.commit()

    second = client.get("/billing/next-number", params={"business_id": "biz-1", "type": "sale"})
    assert second.json()["next_number"] == 2

    missing = client.get("/billing/next-number", params={"type": "sale"})
    assert missing.status_code == 400
    assert missing.json()["error"]["code"] == "bad_request"
    assert missing.json()["error"]["message"] == "business_id and type are required"

    bad_type = client.get("/billing/next-number", params={"business_id": "biz-1", "type": "refund"})
    assert bad_type.status_code == 400
