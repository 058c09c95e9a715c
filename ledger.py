"""
Inventory ledger

The stock quantity of each catalog item is shared by online orders and
point-of-sale invoices. Both paths go through InventoryLedger so they get
the same locking discipline: rows are locked FOR UPDATE in ascending id
order, every line is checked before anything is written, and the lock is
held until the caller's unit of work ends.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import ConflictError, NotFoundError, ValidationError
from models import CatalogItem

logger = logging.getLogger(__name__)


def requested_quantities(lines: Sequence) -> Dict[int, int]:
    """Validate purchase lines and collapse them into one quantity per item.

    Each line needs `item_id` and a positive `quantity`.
    """
    if not lines:
        raise ValidationError("At least one line is required")
    merged: Dict[int, int] = {}
    for idx, line in enumerate(lines, start=1):
        item_id = getattr(line, "item_id", None)
        qty = getattr(line, "quantity", None)
        if item_id is None:
            raise ValidationError(f"Line {idx}: book id is required", line=idx)
        if qty is None or qty <= 0:
            raise ValidationError(f"Line {idx}: quantity must be > 0", line=idx, item_id=item_id)
        merged[item_id] = merged.get(item_id, 0) + qty
    return merged


class InventoryLedger:
    def __init__(self, session: Session):
        self.session = session

    def get_item(self, item_id: int) -> CatalogItem:
        item = self.session.get(CatalogItem, item_id)
        if item is None:
            raise NotFoundError(f"Book {item_id} not found", item_id=item_id)
        return item

    def lock_items(self, item_ids: Iterable[int]) -> Dict[int, CatalogItem]:
        ids: List[int] = sorted(set(item_ids))
        if not ids:
            return {}
        stmt = (
            select(CatalogItem)
            .where(CatalogItem.id.in_(ids))
            .order_by(CatalogItem.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        locked = {item.id: item for item in self.session.execute(stmt).scalars()}
        missing = [i for i in ids if i not in locked]
        if missing:
            raise NotFoundError(f"Book {missing[0]} not found", item_id=missing[0])
        return locked

    def reserve(self, quantities: Mapping[int, int]) -> Dict[int, CatalogItem]:
        """Decrement stock for every item, or for none of them.

        Returns the locked rows so callers can read frozen prices from them.
        """
        self._check_quantities(quantities)
        locked = self.lock_items(quantities)

        for item_id in sorted(quantities):
            item = locked[item_id]
            need = quantities[item_id]
            if item.quantity_in_stock < need:
                logger.warning(
                    "insufficient stock: book=%s have=%s need=%s", item_id, item.quantity_in_stock, need
                )
                raise ConflictError(
                    f"Insufficient stock for '{item.title}' (book {item_id}): "
                    f"available {item.quantity_in_stock}, requested {need}",
                    item_id=item_id,
                    available=item.quantity_in_stock,
                    requested=need,
                )

        for item_id in sorted(quantities):
            item = locked[item_id]
            item.quantity_in_stock -= quantities[item_id]
            logger.info("stock reserved: book=%s qty=%s (on_hand=%s)", item_id, quantities[item_id], item.quantity_in_stock)
        self.session.flush()
        return locked

    def release(self, quantities: Mapping[int, int]) -> Dict[int, CatalogItem]:
        self._check_quantities(quantities)
        locked = self.lock_items(quantities)
        for item_id in sorted(quantities):
            item = locked[item_id]
            item.quantity_in_stock += quantities[item_id]
            logger.info("stock released: book=%s qty=%s (on_hand=%s)", item_id, quantities[item_id], item.quantity_in_stock)
        self.session.flush()
        return locked

    def adjust(self, item_id: int, delta: int) -> int:
        """Apply a signed delta to one item; the result may not go below zero."""
        item = self.lock_items([item_id])[item_id]
        new_qty = item.quantity_in_stock + delta
        if new_qty < 0:
            raise ConflictError(
                f"Insufficient stock for '{item.title}' (book {item_id}): "
                f"available {item.quantity_in_stock}, requested {-delta}",
                item_id=item_id,
                available=item.quantity_in_stock,
                requested=-delta,
            )
        item.quantity_in_stock = new_qty
        self.session.flush()
        return new_qty

    @staticmethod
    def _check_quantities(quantities: Mapping[int, int]) -> None:
        for item_id, qty in quantities.items():
            if item_id is None:
                raise ValidationError("Book id is required")
            if qty is None or qty <= 0:
                raise ValidationError(f"Quantity for book {item_id} must be > 0", item_id=item_id)
