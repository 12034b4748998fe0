"""
BOM lookup and maintenance.
"""
import pytest

from app.core.errors import BomNotFoundError, ConflictError, NotFoundError, ValidationError
from services.mes import service as production
from services.mrp import bom as boms


class TestResolve:

    def test_resolve_returns_items(self, db, widget_setup):
        a, x, bom = widget_setup
        resolved = boms.resolve_bom(db, a.id)
        assert resolved.id == bom.id
        assert [(i.component_id, i.component_name, i.quantity) for i in resolved.items] == [(x.id, "Component X", 2)]

    def test_resolving_twice_gives_equal_items(self, db, widget_setup):
        a, _, _ = widget_setup
        first = boms.resolve_bom(db, a.id)
        second = boms.resolve_bom(db, a.id)
        assert first.items == second.items
        assert first == second

    def test_missing_bom(self, db, make_product):
        p = make_product("Loose", "standard")
        with pytest.raises(BomNotFoundError) as exc:
            boms.resolve_bom(db, p.id)
        assert isinstance(exc.value, NotFoundError)
        assert exc.value.product_id == p.id

    def test_required_components_scales_by_quantity(self, db, make_product):
        a = make_product("Table", "manufactured")
        leg = make_product("Leg", "component")
        top = make_product("Top", "component")
        bom = boms.create_bom(db, a.id, [(leg.id, 4), (top.id, 1)])
        assert boms.required_components(bom, 3) == [(leg.id, 12), (top.id, 3)]


class TestValidation:

    def test_component_cannot_be_finished_product(self, db, make_product):
        c = make_product("Screw", "component")
        other = make_product("Bolt", "component")
        with pytest.raises(ValidationError):
            boms.create_bom(db, c.id, [(other.id, 1)])

    def test_manufactured_cannot_be_component(self, db, make_product):
        a = make_product("Cabinet", "manufactured")
        b = make_product("Drawer", "manufactured")
        with pytest.raises(ValidationError):
            boms.create_bom(db, a.id, [(b.id, 2)])

    def test_standard_product_may_be_either(self, db, make_product):
        kit = make_product("Gift Kit", "standard")
        mug = make_product("Mug", "standard")
        bom = boms.create_bom(db, kit.id, [(mug.id, 2)])
        assert bom.product_id == kit.id

    def test_self_reference_is_rejected(self, db, make_product):
        kit = make_product("Kit", "standard")
        with pytest.raises(ValidationError):
            boms.create_bom(db, kit.id, [(kit.id, 1)])

    def test_needs_at_least_one_line(self, db, make_product):
        a = make_product("Empty", "manufactured")
        with pytest.raises(ValidationError):
            boms.create_bom(db, a.id, [])

    @pytest.mark.parametrize("qty", [0, -1, 2.5])
    def test_line_quantity_must_be_positive_integer(self, db, make_product, qty):
        a = make_product("A", "manufactured")
        x = make_product("X", "component")
        with pytest.raises(ValidationError):
            boms.create_bom(db, a.id, [(x.id, qty)])

    def test_duplicate_component_is_rejected(self, db, make_product):
        a = make_product("A", "manufactured")
        x = make_product("X", "component")
        with pytest.raises(ValidationError):
            boms.create_bom(db, a.id, [(x.id, 1), (x.id, 2)])

    def test_one_bom_per_product(self, db, widget_setup, make_product):
        a, _, _ = widget_setup
        y = make_product("Component Y", "component")
        with pytest.raises(ValidationError):
            boms.create_bom(db, a.id, [(y.id, 1)])

    def test_unknown_component(self, db, make_product):
        a = make_product("A", "manufactured")
        with pytest.raises(ValidationError):
            boms.create_bom(db, a.id, [("nope", 1)])


class TestMaintenance:

    def test_update_replaces_lines(self, db, widget_setup, make_product):
        a, x, bom = widget_setup
        y = make_product("Component Y", "component")
        updated = boms.update_bom(db, bom.id, lines=[(x.id, 5), (y.id, 1)])
        assert [(i.component_id, i.quantity) for i in updated.items] == [(x.id, 5), (y.id, 1)]
        assert boms.resolve_bom(db, a.id).items == updated.items

    def test_update_can_keep_same_component(self, db, widget_setup):
        _, x, bom = widget_setup
        updated = boms.update_bom(db, bom.id, lines=[(x.id, 3)])
        assert [(i.component_id, i.quantity) for i in updated.items] == [(x.id, 3)]

    def test_list_search_is_case_insensitive(self, db, widget_setup, make_product):
        other = make_product("Gadget", "manufactured")
        part = make_product("Spring", "component")
        boms.create_bom(db, other.id, [(part.id, 1)])
        assert [b.product_name for b in boms.list_boms(db, search="wIdGeT")] == ["Widget A"]
        assert len(boms.list_boms(db)) == 2

    def test_delete_blocked_by_open_order(self, db, widget_setup, schedule):
        a, _, bom = widget_setup
        production.create_order(db, product_id=a.id, quantity=1, **schedule)
        with pytest.raises(ConflictError):
            boms.delete_bom(db, bom.id)
        assert boms.get_bom(db, bom.id).id == bom.id

    def test_delete_after_orders_finish(self, db, widget_setup, schedule):
        a, _, bom = widget_setup
        order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
        production.transition(db, order.id, "cancelled")

        boms.delete_bom(db, bom.id)

        with pytest.raises(NotFoundError):
            boms.get_bom(db, bom.id)
        assert production.get_order(db, order.id).bom_id is None

    def test_manufacturable_products_and_candidates(self, db, widget_setup, make_product):
        a, x, _ = widget_setup
        make_product("Loose", "standard")

        assert [p["id"] for p in boms.manufacturable_products(db)] == [a.id]
        candidates = boms.bom_candidates(db)
        assert x.id not in {p["id"] for p in candidates["products"]}
        assert a.id not in {p["id"] for p in candidates["components"]}
        assert "Loose" in {p["name"] for p in candidates["components"]}
