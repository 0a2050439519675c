from decimal import Decimal

import pytest

from conftest import combo_selection, sel
from errors import (
    ExtraNotFound,
    ExtraTreeTooDeep,
    ExtraUnavailable,
    ItemUnavailable,
    OrderErrorKind,
    QuantityExceeded,
    RequiredExtraMissing,
    TooManySelections,
)
from extras import (
    ExtraSelection,
    find_extra,
    price_and_snapshot,
    price_item_line,
    validate_level,
)
from menu import CatalogExtra, CatalogItem


# ---- validate_level ----


def test_validate_level_returns_matched_nodes_in_selection_order(combo):
    matched = validate_level(combo.extras, [sel("drink"), sel("entree")])
    assert [node.name for node in matched] == ["Drink", "Entree"]


def test_validate_level_missing_required(combo):
    with pytest.raises(RequiredExtraMissing) as exc:
        validate_level(combo.extras, [sel("entree")])
    assert exc.value.name == "Drink"
    assert exc.value.message == "Drink is required"


def test_validate_level_unknown_extra(combo):
    with pytest.raises(ExtraNotFound) as exc:
        validate_level(combo.extras, [sel("entree"), sel("drink"), sel("nope")])
    assert exc.value.identifier == "nope"


def test_validate_level_does_not_search_other_levels(combo):
    # "soda" exists, but one level down under Drink
    with pytest.raises(ExtraNotFound):
        validate_level(combo.extras, [sel("entree"), sel("drink"), sel("soda")])


def test_validate_level_unavailable(combo):
    drink = find_extra(combo.extras, "drink")
    with pytest.raises(ExtraUnavailable) as exc:
        validate_level(drink.extras, [sel("lemonade")], parent=drink)
    assert str(exc.value) == "Lemonade is currently unavailable"


def test_validate_level_max_selectable(combo):
    entree = find_extra(combo.extras, "entree")
    with pytest.raises(TooManySelections) as exc:
        validate_level(entree.extras, [sel("cheeseburger"), sel("veggie")], parent=entree)
    assert exc.value.limit == 1
    assert exc.value.selected == 2


def test_validate_level_max_selectable_can_be_soft(combo):
    entree = find_extra(combo.extras, "entree")
    matched = validate_level(
        entree.extras,
        [sel("cheeseburger"), sel("veggie")],
        parent=entree,
        enforce_max_selectable=False
    )
    assert len(matched) == 2


def test_validate_level_top_level_has_no_cap(combo):
    matched = validate_level(combo.extras, [sel("entree"), sel("drink"), sel("dessert")])
    assert len(matched) == 3


# ---- price_and_snapshot ----


def test_price_and_snapshot_nested_totals(combo):
    snapshots, total = price_and_snapshot(combo.extras, combo_selection())

    assert total == Decimal("0.50")
    entree, drink = snapshots
    assert entree.name == "Entree"
    assert entree.nested[0].name == "Cheeseburger"
    assert entree.nested[0].nested[0].name == "Extra Cheese"
    assert entree.nested[0].nested[0].price_delta == Decimal("0.50")
    assert drink.nested[0].name == "Fountain Soda"


def test_price_and_snapshot_sums_every_level(combo):
    selections = combo_selection() + [sel("dessert", sel("flavor", sel("chocolate")))]
    selections[0] = sel("entree", sel("cheeseburger", sel("extra-cheese"), sel("bacon")))

    snapshots, total = price_and_snapshot(combo.extras, selections)

    assert total == Decimal("0.50") + Decimal("1.25") + Decimal("1.50")
    assert sum((s.subtree_total() for s in snapshots), Decimal("0")) == total


def test_required_child_ignored_until_parent_selected(combo):
    # Dessert → Flavor is required, but Dessert itself is not selected
    _, total = price_and_snapshot(combo.extras, combo_selection())
    assert total == Decimal("0.50")


def test_required_child_enforced_once_parent_selected(combo):
    selections = combo_selection() + [sel("dessert")]
    with pytest.raises(RequiredExtraMissing) as exc:
        price_and_snapshot(combo.extras, selections)
    assert exc.value.name == "Flavor"


def test_missing_sibling_reported_before_descending(combo):
    # Entree has no required children; the missing Drink at the top level fails first
    with pytest.raises(RequiredExtraMissing) as exc:
        price_and_snapshot(combo.extras, [sel("entree")])
    assert exc.value.name == "Drink"


def test_unavailable_nested_extra(combo):
    selections = [
        sel("entree", sel("veggie")),
        sel("drink", sel("lemonade")),
    ]
    with pytest.raises(ExtraUnavailable) as exc:
        price_and_snapshot(combo.extras, selections)
    assert exc.value.name == "Lemonade"
    assert exc.value.kind is OrderErrorKind.EXTRA_UNAVAILABLE


def test_too_many_nested_selections(combo):
    selections = [
        sel("entree", sel("cheeseburger", sel("extra-cheese"), sel("bacon"), sel("pickles"))),
        sel("drink", sel("soda")),
    ]
    with pytest.raises(TooManySelections) as exc:
        price_and_snapshot(combo.extras, selections)
    assert exc.value.name == "Cheeseburger"


def test_depth_limit():
    # chain of 4 nested nodes, each with one child
    leaf = CatalogExtra(extra_id="n3", name="N3", price_delta=Decimal("0"))
    node = leaf
    for i in (2, 1, 0):
        node = CatalogExtra(
            extra_id=f"n{i}",
            name=f"N{i}",
            price_delta=Decimal("0"),
            extras=(node,)
        )
    selection = sel("n0", sel("n1", sel("n2", sel("n3"))))

    snapshots, _ = price_and_snapshot((node,), [selection], max_depth=4)
    assert snapshots[0].nested[0].nested[0].nested[0].extra_id == "n3"

    with pytest.raises(ExtraTreeTooDeep):
        price_and_snapshot((node,), [selection], max_depth=3)


def test_no_selections_and_nothing_required():
    snapshots, total = price_and_snapshot((), [])
    assert snapshots == ()
    assert total == Decimal("0")


# ---- price_item_line ----


def test_combo_scenario_line_subtotal(combo):
    line = price_item_line(combo, 2, combo_selection())

    assert line.line_subtotal == Decimal("22.98")
    assert line.unit_price == Decimal("10.99")
    assert line.quantity == 2
    assert line.item_name == "Combo"
    assert line.menu_item_id == "combo"
    assert line.recompute_subtotal() == line.line_subtotal


def test_item_unavailable_short_circuits_extras(menu):
    shake = menu.groups[0].items[1]
    # Extras are nonsense: availability must be reported first
    with pytest.raises(ItemUnavailable) as exc:
        price_item_line(shake, 1, [sel("does-not-exist")])
    assert str(exc.value) == "Milkshake is currently unavailable"


def test_quantity_above_max_per_order(combo):
    with pytest.raises(QuantityExceeded) as exc:
        price_item_line(combo, 6, combo_selection())
    assert exc.value.max_per_order == 5


def test_line_ids_are_fresh(combo):
    first = price_item_line(combo, 1, combo_selection())
    second = price_item_line(combo, 1, combo_selection())
    assert first.line_id != second.line_id
    assert first.extras == second.extras


def test_item_without_extras():
    item = CatalogItem(item_id="fries", name="Fries", base_price=Decimal("2.99"))
    line = price_item_line(item, 3, [])
    assert line.line_subtotal == Decimal("8.97")
    assert line.extras == ()


# ---- ExtraSelection ----


def test_selection_from_dict_nested_and_bare_ids():
    selection = ExtraSelection.from_dict({
        "extra_id": "entree",
        "extras": [{"extra_id": "cheeseburger", "extras": ["extra-cheese"]}],
    })
    assert selection == sel("entree", sel("cheeseburger", sel("extra-cheese")))
    assert ExtraSelection.from_dict(selection.to_dict()) == selection
    assert ExtraSelection.from_dict("soda") == sel("soda")


def test_selection_from_dict_accepts_nested_selections_key():
    selection = ExtraSelection.from_dict({
        "extra_id": "drink",
        "nested_selections": [{"extra_id": "soda"}],
    })
    assert selection == sel("drink", sel("soda"))


@pytest.mark.parametrize("empty", [None, []])
def test_selection_from_dict_empty_extras_defers_to_alias(empty):
    selection = ExtraSelection.from_dict({
        "extra_id": "drink",
        "extras": empty,
        "nested_selections": ["soda"],
    })
    assert selection == sel("drink", sel("soda"))
