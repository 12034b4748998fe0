"""
Invoices debit stock; refunds credit it back and reshape the invoice.
"""
from decimal import Decimal

import pytest

from app.core.errors import InsufficientStockError, InvalidTransitionError, ValidationError
from app.db.models.sales import Refund
from services.inventory import service as inventory
from services.sales import service as sales


@pytest.fixture
def goods(make_product):
    mug = make_product("Mug", "standard", 10, price="8.00", cost="3.00")
    tee = make_product("T-Shirt", "standard", 5, price="20.00", cost="9.00")
    return mug, tee


def test_invoice_total_applies_discount_then_tax():
    total = sales.invoice_total([(2, Decimal("8.00")), (1, Decimal("20.00"))], Decimal("10"), Decimal("5"))
    # 36.00 - 10% = 32.40, + 5% tax = 34.02
    assert total == Decimal("34.02")


def test_invoice_debits_stock(db, goods):
    mug, tee = goods
    inv = sales.create_invoice(db, lines=[(mug.id, 2), (tee.id, 1)], customer_name="Dana", status="paid")
    assert inv.amount == Decimal("36.00")
    assert [ln.price for ln in inv.lines] == [Decimal("8.00"), Decimal("20.00")]
    assert inventory.get_product(db, mug.id).stock == 8
    assert inventory.get_product(db, tee.id).stock == 4


def test_invoice_rejected_when_short(db, goods):
    mug, tee = goods
    with pytest.raises(InsufficientStockError):
        sales.create_invoice(db, lines=[(mug.id, 1), (tee.id, 6)])
    assert inventory.get_product(db, mug.id).stock == 10
    assert sales.list_invoices(db) == []


def test_partial_then_full_refund(db, goods):
    mug, tee = goods
    inv = sales.create_invoice(db, lines=[(mug.id, 3), (tee.id, 1)], status="paid")

    refund = sales.process_refund(db, inv.id, [(mug.id, 1)], "chipped")
    assert refund.amount == Decimal("8.00")
    after = sales.get_invoice(db, inv.id)
    assert after.status == "partially-refunded"
    assert [ln.quantity for ln in after.lines] == [2, 1]
    assert inventory.get_product(db, mug.id).stock == 8

    sales.process_refund(db, inv.id, [(mug.id, 2), (tee.id, 1)], "changed mind")
    final = sales.get_invoice(db, inv.id)
    assert final.status == "refunded"
    assert inventory.get_product(db, mug.id).stock == 10
    assert inventory.get_product(db, tee.id).stock == 5
    assert db.query(Refund).filter(Refund.invoice_id == inv.id).count() == 2


def test_cannot_refund_more_than_remaining(db, goods):
    mug, _ = goods
    inv = sales.create_invoice(db, lines=[(mug.id, 2)], status="paid")
    with pytest.raises(ValidationError):
        sales.process_refund(db, inv.id, [(mug.id, 3)], "too many")
    assert sales.get_invoice(db, inv.id).status == "paid"
    assert inventory.get_product(db, mug.id).stock == 8


def test_refund_needs_reason_and_items(db, goods):
    mug, _ = goods
    inv = sales.create_invoice(db, lines=[(mug.id, 2)], status="paid")
    with pytest.raises(ValidationError):
        sales.process_refund(db, inv.id, [(mug.id, 1)], " ")
    with pytest.raises(ValidationError):
        sales.process_refund(db, inv.id, [(mug.id, 0)], "nothing selected")


def test_only_paid_invoices_are_refundable(db, goods):
    mug, _ = goods
    inv = sales.create_invoice(db, lines=[(mug.id, 1)], status="pending")
    with pytest.raises(InvalidTransitionError):
        sales.process_refund(db, inv.id, [(mug.id, 1)], "unpaid")
    assert sales.refundable_invoices(db) == []

    sales.set_invoice_status(db, inv.id, "paid")
    assert [i.id for i in sales.refundable_invoices(db)] == [inv.id]


def test_refunded_invoice_status_is_locked(db, goods):
    mug, _ = goods
    inv = sales.create_invoice(db, lines=[(mug.id, 1)], status="paid")
    sales.process_refund(db, inv.id, [(mug.id, 1)], "return")
    with pytest.raises(InvalidTransitionError):
        sales.set_invoice_status(db, inv.id, "paid")
    with pytest.raises(InvalidTransitionError):
        sales.process_refund(db, inv.id, [(mug.id, 1)], "again")


def test_refund_draws_on_every_line_of_a_product(db, goods):
    mug, _ = goods
    inv = sales.create_invoice(db, lines=[(mug.id, 2), (mug.id, 3)], status="paid")
    assert inventory.get_product(db, mug.id).stock == 5

    refund = sales.process_refund(db, inv.id, [(mug.id, 4)], "damaged")

    assert refund.amount == Decimal("32.00")
    after = sales.get_invoice(db, inv.id)
    assert [ln.quantity for ln in after.lines] == [0, 1]
    assert after.status == "partially-refunded"
    assert inventory.get_product(db, mug.id).stock == 9

    with pytest.raises(ValidationError):
        sales.process_refund(db, inv.id, [(mug.id, 2)], "again")
    sales.process_refund(db, inv.id, [(mug.id, 1)], "last one")
    assert sales.get_invoice(db, inv.id).status == "refunded"
    assert inventory.get_product(db, mug.id).stock == 10
