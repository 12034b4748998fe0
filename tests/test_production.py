"""
Production order lifecycle and completion reconciliation.
"""
from datetime import date

import pytest

from app.core.errors import InsufficientStockError, InvalidTransitionError, NotFoundError, ValidationError
from app.db.models.activity import ActivityLog
from app.db.models.inventory import StockMovement
from app.events.outbox import OutboxEvent
from services.inventory import service as inventory
from services.mes import service as production
from services.mrp import bom as boms


def _stock(db, product_id):
    return inventory.get_product(db, product_id).stock


class TestCreateOrder:

    def test_created_orders_start_planned(self, db, widget_setup, schedule):
        a, _, bom = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=3, **schedule)
        assert order.status == "planned"
        assert order.bom_id == bom.id
        assert order.product_name == "Widget A"
        assert order.order_number.startswith("MO-")
        assert order.actions == ["in-progress", "on-hold", "cancelled", "completed"]

    def test_product_without_bom_is_rejected(self, db, make_product, schedule):
        p = make_product("No Recipe", "manufactured")
        with pytest.raises(ValidationError):
            production.create_order(db, product_id=p.id, quantity=1, **schedule)
        assert production.list_orders(db) == []

    @pytest.mark.parametrize("quantity", [0, -2, True, 1.5])
    def test_quantity_must_be_positive_integer(self, db, widget_setup, schedule, quantity):
        a, _, _ = widget_setup
        with pytest.raises(ValidationError):
            production.create_order(db, product_id=a.id, quantity=quantity, **schedule)

    def test_end_before_start_is_rejected(self, db, widget_setup):
        a, _, _ = widget_setup
        with pytest.raises(ValidationError):
            production.create_order(
                db,
                product_id=a.id,
                quantity=1,
                scheduled_start_date=date(2026, 3, 5),
                scheduled_end_date=date(2026, 3, 1),
            )

    def test_create_writes_activity_and_event(self, db, widget_setup, schedule):
        a, _, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        assert db.query(ActivityLog).filter(ActivityLog.entity_id == order.id).count() == 1
        evt = db.query(OutboxEvent).filter(OutboxEvent.topic == "production.order.created").one()
        assert evt.payload["order_id"] == order.id


class TestTransitions:

    def test_start_stamps_actual_start_once(self, db, widget_setup, schedule):
        a, _, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        started = production.transition(db, order.id, "in-progress")
        assert started.status == "in-progress"
        assert started.actual_start_date is not None

        production.transition(db, order.id, "on-hold")
        resumed = production.transition(db, order.id, "in-progress")
        # SQLite hands datetimes back without tzinfo
        assert resumed.actual_start_date.replace(tzinfo=None) == started.actual_start_date.replace(tzinfo=None)

    def test_same_state_transition_is_rejected(self, db, widget_setup, schedule):
        a, _, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        with pytest.raises(InvalidTransitionError):
            production.transition(db, order.id, "planned")

    def test_cannot_go_back_to_planned(self, db, widget_setup, schedule):
        a, _, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        production.transition(db, order.id, "in-progress")
        with pytest.raises(InvalidTransitionError):
            production.transition(db, order.id, "planned")

    def test_unknown_status_is_a_validation_error(self, db, widget_setup, schedule):
        a, _, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        with pytest.raises(ValidationError):
            production.transition(db, order.id, "shipped")

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            production.transition(db, "missing", "on-hold")

    def test_cancelling_planned_order_never_touches_stock(self, db, widget_setup, schedule):
        a, x, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=3, **schedule)
        before = db.query(StockMovement).count()

        cancelled = production.transition(db, order.id, "cancelled")

        assert cancelled.status == "cancelled"
        assert _stock(db, x.id) == 10
        assert _stock(db, a.id) == 0
        assert db.query(StockMovement).count() == before

    def test_hold_from_planned_and_in_progress(self, db, widget_setup, schedule):
        a, _, _ = widget_setup
        o1 = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        o2 = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        production.transition(db, o2.id, "in-progress")
        assert production.transition(db, o1.id, "on-hold").status == "on-hold"
        assert production.transition(db, o2.id, "on-hold").status == "on-hold"

    @pytest.mark.parametrize("terminal", ["completed", "cancelled"])
    def test_terminal_states_are_closed(self, db, widget_setup, schedule, terminal):
        a, _, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        production.transition(db, order.id, terminal)
        assert production.allowed_transitions(terminal) == []

        for target in ("planned", "in-progress", "on-hold", "completed", "cancelled"):
            with pytest.raises(InvalidTransitionError):
                production.transition(db, order.id, target)
        with pytest.raises(InvalidTransitionError):
            production.update_order(db, order.id, quantity=2)
        assert production.get_order(db, order.id).status == terminal


class TestCompletion:

    def test_sufficient_stock_completes_order(self, db, widget_setup, schedule):
        """A (stock 0), X (stock 10), BOM(A) = 2X, order 3 x A: X -> 4, A -> 3."""
        a, x, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=3, **schedule)

        done = production.transition(db, order.id, "completed")

        assert done.status == "completed"
        assert done.actual_completion_date is not None
        assert _stock(db, x.id) == 4
        assert _stock(db, a.id) == 3

    def test_shortage_leaves_everything_unchanged(self, db, make_product, schedule):
        """Same setup with X stock 5: completing 3 needs 6 X and fails."""
        a = make_product("Widget A", "manufactured", 0)
        x = make_product("Component X", "component", 5)
        boms.create_bom(db, a.id, [(x.id, 2)])
        order = production.create_order(db, product_id=a.id, quantity=3, **schedule)
        movements_before = db.query(StockMovement).count()

        with pytest.raises(InsufficientStockError) as exc:
            production.complete_order(db, order.id)

        [shortage] = exc.value.shortages
        assert (shortage.product_id, shortage.required, shortage.available) == (x.id, 6, 5)
        assert _stock(db, x.id) == 5
        assert _stock(db, a.id) == 0
        assert production.get_order(db, order.id).status == "planned"
        assert db.query(StockMovement).count() == movements_before
        assert db.query(OutboxEvent).filter(OutboxEvent.topic == "production.order.completed").count() == 0

    def test_one_short_component_blocks_all_deductions(self, db, make_product, schedule):
        a = make_product("Bike", "manufactured")
        frame = make_product("Frame", "component", 10)
        wheel = make_product("Wheel", "component", 3)
        boms.create_bom(db, a.id, [(frame.id, 1), (wheel.id, 2)])
        order = production.create_order(db, product_id=a.id, quantity=2, **schedule)

        with pytest.raises(InsufficientStockError) as exc:
            production.complete_order(db, order.id)

        assert [s.product_id for s in exc.value.shortages] == [wheel.id]
        assert _stock(db, frame.id) == 10
        assert _stock(db, wheel.id) == 3

    def test_second_completion_fails_without_double_application(self, db, widget_setup, schedule):
        a, x, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=2, **schedule)
        production.complete_order(db, order.id)

        with pytest.raises(InvalidTransitionError):
            production.complete_order(db, order.id)

        assert _stock(db, x.id) == 6
        assert _stock(db, a.id) == 2

    def test_completion_from_hold(self, db, widget_setup, schedule):
        a, x, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        production.transition(db, order.id, "on-hold")
        assert production.complete_order(db, order.id).status == "completed"
        assert _stock(db, x.id) == 8

    def test_completion_after_restock(self, db, make_product, schedule):
        a = make_product("Widget A", "manufactured")
        x = make_product("Component X", "component", 1)
        boms.create_bom(db, a.id, [(x.id, 2)])
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        with pytest.raises(InsufficientStockError):
            production.complete_order(db, order.id)

        from services.inventory.ledger import adjust_stock
        adjust_stock(db, x.id, 1, "cycle count")

        assert production.complete_order(db, order.id).status == "completed"
        assert _stock(db, x.id) == 0

    def test_completion_writes_ledger_lines(self, db, widget_setup, schedule):
        a, x, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=3, **schedule)
        production.complete_order(db, order.id)

        lines = db.query(StockMovement).filter(StockMovement.reference_id == order.id).all()
        by_product = {m.product_id: m for m in lines}
        assert by_product[x.id].qty_change == -6
        assert by_product[x.id].balance_after == 4
        assert by_product[a.id].qty_change == 3
        assert by_product[a.id].reason == "PRODUCTION_OUTPUT"
        assert len({m.correlation_id for m in lines}) == 1

        evt = db.query(OutboxEvent).filter(OutboxEvent.topic == "production.order.completed").one()
        assert evt.payload["consumed"] == [{"component_id": x.id, "quantity": 6}]


class TestUpdateOrder:

    def test_edit_fields_while_open(self, db, widget_setup, schedule):
        a, _, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        production.transition(db, order.id, "in-progress")

        edited = production.update_order(db, order.id, quantity=4, notes="rush", scheduled_end_date=date(2026, 3, 9))

        assert edited.quantity == 4
        assert edited.notes == "rush"
        assert edited.scheduled_end_date == date(2026, 3, 9)
        assert edited.status == "in-progress"

    def test_changing_product_re_resolves_bom(self, db, widget_setup, make_product, schedule):
        a, x, _ = widget_setup
        b = make_product("Widget B", "manufactured")
        bom_b = boms.create_bom(db, b.id, [(x.id, 1)])
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)

        edited = production.update_order(db, order.id, product_id=b.id)

        assert edited.product_id == b.id
        assert edited.bom_id == bom_b.id

    def test_changing_to_product_without_bom_fails(self, db, widget_setup, make_product, schedule):
        a, _, bom = widget_setup
        other = make_product("Loose", "standard")
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        with pytest.raises(ValidationError):
            production.update_order(db, order.id, product_id=other.id)
        assert production.get_order(db, order.id).bom_id == bom.id

    def test_schedule_is_checked_on_edit(self, db, widget_setup, schedule):
        a, _, _ = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        with pytest.raises(ValidationError):
            production.update_order(db, order.id, scheduled_end_date=date(2026, 2, 1))


def test_list_orders_filters_by_status(db, widget_setup, schedule):
    a, _, _ = widget_setup
    o1 = production.create_order(db, product_id=a.id, quantity=1, **schedule)
    production.create_order(db, product_id=a.id, quantity=1, **schedule)
    production.transition(db, o1.id, "on-hold")

    assert [o.id for o in production.list_orders(db, status="on-hold")] == [o1.id]
    assert len(production.list_orders(db)) == 2
