"""Tests for the shared inventory ledger."""
import pytest

from errors import ConflictError, NotFoundError, ValidationError
from ledger import InventoryLedger, requested_quantities
from schemas import LineIn


def test_requested_quantities_merges_duplicate_lines():
    lines = [LineIn(item_id=1, quantity=2), LineIn(item_id=2, quantity=1), LineIn(item_id=1, quantity=3)]
    assert requested_quantities(lines) == {1: 5, 2: 1}


@pytest.mark.parametrize("qty", [0, -1])
def test_requested_quantities_rejects_non_positive_quantity(qty):
    with pytest.raises(ValidationError) as exc:
        requested_quantities([LineIn(item_id=1, quantity=1), LineIn(item_id=2, quantity=qty)])
    assert exc.value.details["line"] == 2


def test_requested_quantities_rejects_empty_and_missing_id():
    with pytest.raises(ValidationError):
        requested_quantities([])
    with pytest.raises(ValidationError):
        requested_quantities([LineIn.model_construct(item_id=None, quantity=1)])


def test_reserve_decrements_every_item(store, stock_of):
    ledger = InventoryLedger(store)

    locked = ledger.reserve({1: 2, 2: 3})
    store.commit()

    assert sorted(locked) == [1, 2]
    assert stock_of(1) == 3
    assert stock_of(2) == 7


def test_reserve_checks_all_lines_before_writing(store, stock_of):
    """A shortfall on any line leaves every other line untouched."""
    ledger = InventoryLedger(store)

    with pytest.raises(ConflictError) as exc:
        ledger.reserve({1: 1, 3: 5, 2: 1})
    store.rollback()

    assert exc.value.details == {"item_id": 3, "available": 2, "requested": 5}
    assert stock_of(1) == 5
    assert stock_of(2) == 10
    assert stock_of(3) == 2


def test_reserve_unknown_item(store):
    with pytest.raises(NotFoundError):
        InventoryLedger(store).reserve({999: 1})


def test_release_increments(store, stock_of):
    ledger = InventoryLedger(store)
    ledger.release({4: 3})
    store.commit()
    assert stock_of(4) == 3


def test_adjust_has_a_floor_at_zero(store, stock_of):
    ledger = InventoryLedger(store)

    assert ledger.adjust(3, -2) == 0
    with pytest.raises(ConflictError):
        ledger.adjust(3, -1)
    assert ledger.adjust(3, 4) == 4
    store.commit()

    assert stock_of(3) == 4
