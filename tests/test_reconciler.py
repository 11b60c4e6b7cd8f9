"""Cart-stock reconciliation: every cart mutation moves stock in lockstep.

Covers the six commands against in-memory stores:
  - add / update / remove / clear keep stock == initial - reserved in carts
  - strict paths refuse shortfalls, bulk paths (replace, merge) tolerate them
  - a failing cart write leaves stock exactly as it was
"""

import logging
import time
from decimal import Decimal

import pytest

from app.domain.errors import (
    InsufficientStock,
    InvalidLineItem,
    InvalidQuantity,
    ItemNotInCart,
    NotFound,
    StorageTimeout,
)
from app.domain.schemas import ItemType
from app.repos.memory import InMemoryCartStore, InMemoryInventoryStore
from app.services.lock_service import LocalLockService
from app.services.reconciler import CartStockReconciler

from conftest import make_line

P = ItemType.PRODUCT
C = ItemType.COMBO


def stock(inventory, item_id, item_type=P):
    return inventory.get(item_id, item_type).stock


def add(reconciler, item_id="urad", quantity=1, item_type=P, user_id=1, price="120.00"):
    return reconciler.add_item(
        user_id=user_id,
        item_id=item_id,
        item_type=item_type,
        quantity=quantity,
        unit_price=Decimal(price),
        display_name=item_id.title(),
    )


class FailingCartStore:
    """Delegates reads, fails every write (simulates a dead cart collection)."""

    def __init__(self, inner):
        self.inner = inner

    def get(self, user_id):
        return self.inner.get(user_id)

    def user_ids_with_items(self):
        return self.inner.user_ids_with_items()

    def _fail(self, *args, **kwargs):
        raise StorageTimeout("cart write timed out")

    replace = upsert_line = remove_line = _fail


class SlowReserveStore(InMemoryInventoryStore):
    """Kazda rezerwacja trwa `delay` sekund (przeciazona baza)."""

    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    def try_reserve(self, item_id, item_type, quantity):
        time.sleep(self.delay)
        return super().try_reserve(item_id, item_type, quantity)


class VanishingInventoryStore(InMemoryInventoryStore):
    """Rekord znika zaraz po pierwszym odczycie (admin usunal produkt w trakcie)."""

    def get(self, item_id, item_type):
        record = super().get(item_id, item_type)
        with self._lock:
            self._records.pop(self._key(item_id, item_type), None)
        return record


# ===========================================================================
# AddItem
# ===========================================================================

class TestAddItem:

    def test_reserves_stock_and_appends_line(self, reconciler, inventory):
        lines = add(reconciler, quantity=4)

        assert stock(inventory, "urad") == 6
        assert [(l.item_id, l.quantity) for l in lines] == [("urad", 4)]
        assert lines[0].unit_price == Decimal("120.00")

    def test_existing_line_is_incremented_not_duplicated(self, reconciler, inventory):
        add(reconciler, quantity=2)
        lines = add(reconciler, quantity=3, price="99.00")

        assert len(lines) == 1
        assert lines[0].quantity == 5
        # cena z chwili pierwszego dodania
        assert lines[0].unit_price == Decimal("120.00")
        assert stock(inventory, "urad") == 5

    def test_product_and_combo_with_same_id_are_separate_lines(self, reconciler, inventory):
        inventory.add("urad", C, "Urad Combo", Decimal("300.00"), stock=2)

        add(reconciler, "urad", 1, P)
        lines = add(reconciler, "urad", 2, C)

        assert {(l.item_type, l.quantity) for l in lines} == {(P, 1), (C, 2)}
        assert stock(inventory, "urad", P) == 9
        assert stock(inventory, "urad", C) == 0

    def test_insufficient_stock_leaves_everything_untouched(self, reconciler, inventory, carts):
        with pytest.raises(InsufficientStock) as exc:
            add(reconciler, "sampler", 4, C)

        assert exc.value.requested == 4
        assert exc.value.available == 3
        assert stock(inventory, "sampler", C) == 3
        assert carts.get(1) == []

    def test_unknown_item_is_not_found(self, reconciler, carts):
        with pytest.raises(NotFound):
            add(reconciler, "ghost", 1)
        assert carts.get(1) == []

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, None])
    def test_invalid_quantity(self, reconciler, inventory, quantity):
        with pytest.raises(InvalidQuantity):
            add(reconciler, quantity=quantity)
        assert stock(inventory, "urad") == 10

    def test_missing_display_name_is_invalid(self, reconciler, inventory):
        with pytest.raises(InvalidLineItem):
            reconciler.add_item(1, "urad", P, 1, Decimal("1.00"), "")
        assert stock(inventory, "urad") == 10

    def test_negative_price_is_invalid(self, reconciler):
        with pytest.raises(InvalidLineItem):
            reconciler.add_item(1, "urad", P, 1, Decimal("-1.00"), "Urad")

    def test_unknown_item_type_is_invalid(self, reconciler):
        with pytest.raises(InvalidLineItem):
            reconciler.add_item(1, "urad", "bundle", 1, Decimal("1.00"), "Urad")

    def test_failed_cart_write_releases_reservation(self, carts, inventory):
        reconciler = CartStockReconciler(FailingCartStore(carts), inventory, LocalLockService(), timeout=1)

        with pytest.raises(StorageTimeout):
            add(reconciler, quantity=4)

        assert stock(inventory, "urad") == 10

    def test_add_then_remove_restores_stock_exactly(self, reconciler, inventory):
        add(reconciler, "millet", 3)
        reconciler.remove_item(1, "millet", P)

        assert stock(inventory, "millet") == 5


# ===========================================================================
# UpdateQuantity
# ===========================================================================

class TestUpdateQuantity:

    def test_increase_reserves_delta(self, reconciler, inventory):
        add(reconciler, quantity=2)
        lines = reconciler.update_quantity(1, "urad", P, 7)

        assert lines[0].quantity == 7
        assert stock(inventory, "urad") == 3

    def test_decrease_releases_delta(self, reconciler, inventory):
        add(reconciler, quantity=6)
        lines = reconciler.update_quantity(1, "urad", P, 1)

        assert lines[0].quantity == 1
        assert stock(inventory, "urad") == 9

    def test_same_quantity_is_noop(self, reconciler, inventory):
        add(reconciler, quantity=3)
        before = stock(inventory, "urad")

        lines = reconciler.update_quantity(1, "urad", P, 3)

        assert lines[0].quantity == 3
        assert stock(inventory, "urad") == before

    def test_increase_beyond_stock_is_refused(self, reconciler, inventory, carts):
        add(reconciler, "millet", 2)

        with pytest.raises(InsufficientStock) as exc:
            reconciler.update_quantity(1, "millet", P, 9)

        assert exc.value.requested == 7
        assert exc.value.available == 3
        assert carts.get(1)[0].quantity == 2
        assert stock(inventory, "millet") == 3

    def test_item_must_be_in_cart(self, reconciler):
        with pytest.raises(ItemNotInCart):
            reconciler.update_quantity(1, "urad", P, 2)

    def test_zero_quantity_is_invalid(self, reconciler, inventory):
        add(reconciler, quantity=2)
        with pytest.raises(InvalidQuantity):
            reconciler.update_quantity(1, "urad", P, 0)
        assert stock(inventory, "urad") == 8

    def test_failed_cart_write_restores_released_stock(self, carts, inventory):
        healthy = CartStockReconciler(carts, inventory, LocalLockService(), timeout=1)
        add(healthy, quantity=5)
        broken = CartStockReconciler(FailingCartStore(carts), inventory, LocalLockService(), timeout=1)

        with pytest.raises(StorageTimeout):
            broken.update_quantity(1, "urad", P, 1)

        assert stock(inventory, "urad") == 5
        assert carts.get(1)[0].quantity == 5


# ===========================================================================
# RemoveItem / ClearCart
# ===========================================================================

class TestRemoveAndClear:

    def test_remove_is_idempotent(self, reconciler, inventory):
        add(reconciler, quantity=2)
        reconciler.remove_item(1, "urad", P)
        lines = reconciler.remove_item(1, "urad", P)

        assert lines == []
        assert stock(inventory, "urad") == 10

    def test_remove_keeps_other_lines(self, reconciler, inventory):
        add(reconciler, "urad", 2)
        add(reconciler, "sampler", 1, C)

        lines = reconciler.remove_item(1, "urad", P)

        assert [l.item_id for l in lines] == ["sampler"]
        assert stock(inventory, "sampler", C) == 2

    def test_remove_of_vanished_record_still_empties_line(self, reconciler, inventory, caplog):
        add(reconciler, "millet", 2)
        inventory._records.pop(("millet", P))

        with caplog.at_level(logging.WARNING):
            lines = reconciler.remove_item(1, "millet", P)

        assert lines == []
        assert any("no longer exists" in r.getMessage() for r in caplog.records)

    def test_clear_releases_every_line(self, reconciler, inventory, carts):
        add(reconciler, "urad", 4)
        add(reconciler, "millet", 5)
        add(reconciler, "sampler", 2, C)

        assert reconciler.clear_cart(1) == []
        assert carts.get(1) == []
        assert stock(inventory, "urad") == 10
        assert stock(inventory, "millet") == 5
        assert stock(inventory, "sampler", C) == 3

    def test_clear_empty_cart(self, reconciler):
        assert reconciler.clear_cart(1) == []

    def test_failed_clear_keeps_stock_reserved(self, carts, inventory):
        healthy = CartStockReconciler(carts, inventory, LocalLockService(), timeout=1)
        add(healthy, "urad", 4)
        add(healthy, "millet", 1)
        broken = CartStockReconciler(FailingCartStore(carts), inventory, LocalLockService(), timeout=1)

        with pytest.raises(StorageTimeout):
            broken.clear_cart(1)

        assert stock(inventory, "urad") == 6
        assert stock(inventory, "millet") == 4
        assert len(carts.get(1)) == 2


# ===========================================================================
# ReplaceCart (bulk sync, tolerant)
# ===========================================================================

class TestReplaceCart:

    def test_applies_increases_decreases_and_removals(self, reconciler, inventory):
        add(reconciler, "urad", 4)
        add(reconciler, "millet", 2)

        lines = reconciler.replace_cart(
            1,
            [make_line("urad", 1), make_line("sampler", 2, C)],
        )

        assert [(l.item_id, l.quantity) for l in lines] == [("urad", 1), ("sampler", 2)]
        assert stock(inventory, "urad") == 9
        assert stock(inventory, "millet") == 5
        assert stock(inventory, "sampler", C) == 1

    def test_replace_with_same_cart_is_noop(self, reconciler, inventory):
        add(reconciler, "urad", 3)
        reconciler.replace_cart(1, [make_line("urad", 3)])

        assert stock(inventory, "urad") == 7

    def test_duplicate_keys_are_summed(self, reconciler, inventory):
        lines = reconciler.replace_cart(1, [make_line("urad", 2), make_line("urad", 3)])

        assert [(l.item_id, l.quantity) for l in lines] == [("urad", 5)]
        assert stock(inventory, "urad") == 5

    def test_shortfall_does_not_abort_sync(self, reconciler, inventory, caplog):
        # znane ryzyko: koszyk trzyma wiecej niz zarezerwowano (oversell)
        with caplog.at_level(logging.WARNING):
            lines = reconciler.replace_cart(1, [make_line("sampler", 5, C), make_line("urad", 1)])

        assert {(l.item_id, l.quantity) for l in lines} == {("sampler", 5), ("urad", 1)}
        assert stock(inventory, "sampler", C) == 0
        assert stock(inventory, "urad") == 9
        assert any(
            r.levelno == logging.WARNING and "Insufficient stock" in r.getMessage()
            for r in caplog.records
        )

    def test_unknown_item_is_kept_unreserved(self, reconciler, caplog):
        with caplog.at_level(logging.WARNING):
            lines = reconciler.replace_cart(1, [make_line("ghost", 2)])

        assert [l.item_id for l in lines] == ["ghost"]
        assert any("not in inventory" in r.getMessage() for r in caplog.records)

    def test_failed_write_undoes_all_deltas(self, carts, inventory):
        healthy = CartStockReconciler(carts, inventory, LocalLockService(), timeout=1)
        add(healthy, "urad", 4)
        broken = CartStockReconciler(FailingCartStore(carts), inventory, LocalLockService(), timeout=1)

        with pytest.raises(StorageTimeout):
            broken.replace_cart(1, [make_line("millet", 2)])

        assert stock(inventory, "urad") == 6
        assert stock(inventory, "millet") == 5


# ===========================================================================
# MergeGuestCart (login, tolerant)
# ===========================================================================

class TestMergeGuestCart:

    def test_sums_duplicates_and_reserves_guest_quantities(self, reconciler, inventory):
        add(reconciler, "urad", 2)

        lines = reconciler.merge_guest_cart(1, [make_line("urad", 3), make_line("millet", 1)])

        assert [(l.item_id, l.quantity) for l in lines] == [("urad", 5), ("millet", 1)]
        assert stock(inventory, "urad") == 5
        assert stock(inventory, "millet") == 4

    def test_keeps_user_price_for_existing_line(self, reconciler):
        add(reconciler, "urad", 1, price="120.00")
        lines = reconciler.merge_guest_cart(1, [make_line("urad", 1, price="100.00")])

        assert lines[0].unit_price == Decimal("120.00")

    def test_oversized_guest_item_is_merged_with_warning(self, reconciler, inventory, caplog):
        # znane ryzyko: merge nie blokuje logowania, stan konczy na 0
        with caplog.at_level(logging.WARNING):
            lines = reconciler.merge_guest_cart(1, [make_line("sampler", 7, C)])

        assert [(l.item_id, l.quantity) for l in lines] == [("sampler", 7)]
        assert stock(inventory, "sampler", C) == 0
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert any("Insufficient stock" in r.getMessage() for r in warnings)

    def test_empty_guest_cart_is_noop(self, reconciler, inventory):
        add(reconciler, "urad", 2)
        lines = reconciler.merge_guest_cart(1, [])

        assert [(l.item_id, l.quantity) for l in lines] == [("urad", 2)]
        assert stock(inventory, "urad") == 8

    def test_record_removed_mid_shortfall_does_not_abort_merge(self, caplog):
        inventory = VanishingInventoryStore()
        inventory.add("sampler", C, "Sampler Combo", Decimal("399.00"), stock=3)
        inventory.add("urad", P, "Urad Classic", Decimal("120.00"), stock=10)
        reconciler = CartStockReconciler(InMemoryCartStore(), inventory, LocalLockService(), timeout=2)

        with caplog.at_level(logging.WARNING):
            lines = reconciler.merge_guest_cart(1, [make_line("sampler", 7, C), make_line("urad", 1)])

        assert [(l.item_id, l.quantity) for l in lines] == [("sampler", 7), ("urad", 1)]
        assert any("removed from inventory" in r.getMessage() for r in caplog.records)


# ===========================================================================
# Time budget per operation
# ===========================================================================

def slow_reconciler(delay, timeout, items=5, stock=10):
    inventory = SlowReserveStore(delay)
    for i in range(items):
        inventory.add(f"item{i}", P, f"Item {i}", Decimal("10.00"), stock=stock)
    carts = InMemoryCartStore()
    return CartStockReconciler(carts, inventory, LocalLockService(), timeout=timeout), inventory, carts


class TestOperationDeadline:

    def test_slow_replace_times_out_and_undoes_reservations(self):
        reconciler, inventory, carts = slow_reconciler(delay=0.2, timeout=0.1)
        lines = [make_line(f"item{i}", 1) for i in range(5)]

        started = time.monotonic()
        with pytest.raises(StorageTimeout) as exc:
            reconciler.replace_cart(1, lines)
        elapsed = time.monotonic() - started

        assert exc.value.retryable
        # przerwane po pierwszej wolnej rezerwacji, nie po pieciu
        assert elapsed < 0.6
        assert carts.get(1) == []
        assert all(stock(inventory, f"item{i}") == 10 for i in range(5))

    def test_slow_merge_times_out_and_undoes_reservations(self):
        reconciler, inventory, carts = slow_reconciler(delay=0.2, timeout=0.1)

        with pytest.raises(StorageTimeout):
            reconciler.merge_guest_cart(1, [make_line(f"item{i}", 2) for i in range(5)])

        assert carts.get(1) == []
        assert all(stock(inventory, f"item{i}") == 10 for i in range(5))

    def test_slow_add_does_not_write_cart_past_deadline(self):
        reconciler, inventory, carts = slow_reconciler(delay=0.2, timeout=0.1, items=1)

        with pytest.raises(StorageTimeout):
            add(reconciler, "item0", 3)

        assert carts.get(1) == []
        assert stock(inventory, "item0") == 10

    def test_fast_operations_fit_the_budget(self):
        reconciler, inventory, carts = slow_reconciler(delay=0.01, timeout=2)

        lines = reconciler.replace_cart(1, [make_line(f"item{i}", 1) for i in range(5)])

        assert len(lines) == 5
        assert all(stock(inventory, f"item{i}") == 9 for i in range(5))


# ===========================================================================
# Queries
# ===========================================================================

class TestSummary:

    def test_totals(self, reconciler):
        add(reconciler, "urad", 2, price="120.00")
        add(reconciler, "millet", 3, price="80.50")

        summary = reconciler.summarize(1)

        assert summary.total_items == 5
        assert summary.item_count == 2
        assert summary.total_price == Decimal("481.50")

    def test_empty_cart(self, reconciler):
        summary = reconciler.summarize(42)
        assert (summary.total_items, summary.item_count) == (0, 0)
        assert summary.total_price == Decimal("0.00")


# ===========================================================================
# Scenario: stock 10 -> add 4 -> update 2 -> remove
# ===========================================================================

def test_add_update_remove_scenario(reconciler, inventory):
    lines = add(reconciler, "urad", 4)
    assert stock(inventory, "urad") == 6
    assert [l.quantity for l in lines] == [4]

    lines = reconciler.update_quantity(1, "urad", P, 2)
    assert stock(inventory, "urad") == 8
    assert [l.quantity for l in lines] == [2]

    lines = reconciler.remove_item(1, "urad", P)
    assert stock(inventory, "urad") == 10
    assert lines == []
