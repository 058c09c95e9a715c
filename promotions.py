"""
Promotion validation and administration

A promotion code is checked against the order amount (window, quota,
minimum order value) and yields the discount. Item-scoped promotions may
not share an item with another promotion whose date window overlaps.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from database import unit_of_work
from errors import (
    BelowMinimumError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    NotYetActiveError,
    QuotaExhaustedError,
    ValidationError,
)
from ledger import InventoryLedger
from models import CatalogItem, DiscountType, Invoice, Order, Promotion, promotion_items
from schemas import PromotionIn

logger = logging.getLogger(__name__)

CODE_PREFIX = "KM"
_CODE_RE = re.compile(rf"^{CODE_PREFIX}(\d+)$")


@dataclass(slots=True)
class PromotionQuote:
    promotion_id: int
    promotion_code: str
    name: str
    type: str
    discount: int
    discount_amount: int
    final_amount: int


def compute_discount(discount_type: DiscountType, discount: int, total_amount: int) -> int:
    if discount_type == DiscountType.PERCENT:
        amount = (Decimal(total_amount) * Decimal(discount) / Decimal(100)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        amount = int(amount)
    else:
        amount = discount
    # a fixed discount bigger than the order is capped at the order total
    return max(0, min(amount, total_amount))


class PromotionService:
    def __init__(self, session: Session, clock: Callable[[], date] = date.today):
        self.session = session
        self.clock = clock

    # ----- Validation -----

    def check_promotion(self, code: Optional[str], total_amount: Optional[int], today: Optional[date] = None) -> PromotionQuote:
        """Quote the discount for `code` on `total_amount` without using it up."""
        self._require_code_and_amount(code, total_amount)
        promo = self.session.execute(
            select(Promotion).where(Promotion.promotion_code == code)
        ).scalar_one_or_none()
        return self._quote(promo, code, total_amount, today or self.clock())

    def consume(self, code: str, total_amount: int, today: Optional[date] = None) -> PromotionQuote:
        """Validate against the locked promotion row and count one use.

        Must run inside the caller's unit of work so the usage increment
        commits or rolls back together with the stock it pays for.
        """
        self._require_code_and_amount(code, total_amount)
        promo = self.session.execute(
            select(Promotion)
            .where(Promotion.promotion_code == code)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        quote = self._quote(promo, code, total_amount, today or self.clock())
        promo.used_quantity += 1
        self.session.flush()
        logger.info("promotion consumed: %s (used=%s quota=%s)", code, promo.used_quantity, promo.quantity)
        return quote

    def _quote(self, promo: Optional[Promotion], code: str, total_amount: int, today: date) -> PromotionQuote:
        if promo is None:
            logger.warning("promotion rejected: %s not found", code)
            raise NotFoundError(f"Promotion code {code} is not valid", promotion_code=code)
        if today < promo.start_date:
            logger.warning("promotion rejected: %s starts %s", code, promo.start_date)
            raise NotYetActiveError(
                f"Promotion code {code} is not active until {promo.start_date.isoformat()}",
                code=code,
                start_date=promo.start_date.isoformat(),
            )
        if today > promo.end_date:
            logger.warning("promotion rejected: %s ended %s", code, promo.end_date)
            raise ExpiredError(
                f"Promotion code {code} expired on {promo.end_date.isoformat()}",
                code=code,
                end_date=promo.end_date.isoformat(),
            )
        if promo.quantity is not None and promo.used_quantity >= promo.quantity:
            logger.warning("promotion rejected: %s quota exhausted", code)
            raise QuotaExhaustedError(
                f"Promotion code {code} has no remaining uses",
                code=code,
                quantity=promo.quantity,
                used_quantity=promo.used_quantity,
            )
        if promo.min_price is not None and total_amount < promo.min_price:
            logger.warning("promotion rejected: %s below minimum %s < %s", code, total_amount, promo.min_price)
            raise BelowMinimumError(
                f"Minimum order value is {promo.min_price:,}",
                code=code,
                min_price=promo.min_price,
            )

        discount_amount = compute_discount(promo.type, promo.discount, total_amount)
        return PromotionQuote(
            promotion_id=promo.id,
            promotion_code=promo.promotion_code,
            name=promo.name,
            type=promo.type.value,
            discount=promo.discount,
            discount_amount=discount_amount,
            final_amount=total_amount - discount_amount,
        )

    @staticmethod
    def _require_code_and_amount(code, total_amount) -> None:
        if not code or total_amount is None:
            raise ValidationError("Promotion code and order total are required")
        if total_amount < 0:
            raise ValidationError("Order total must not be negative")

    def find_conflicting_items(
        self,
        item_ids: Iterable[int],
        start_date: date,
        end_date: date,
        exclude_promotion_id: Optional[int] = None,
    ) -> List[int]:
        """Return the items already on another promotion whose window overlaps."""
        ids = sorted(set(item_ids))
        if not ids:
            return []
        stmt = (
            select(promotion_items.c.book_id)
            .join(Promotion, Promotion.id == promotion_items.c.promotion_id)
            .where(
                promotion_items.c.book_id.in_(ids),
                Promotion.start_date <= end_date,
                Promotion.end_date >= start_date,
            )
            .distinct()
        )
        if exclude_promotion_id is not None:
            stmt = stmt.where(Promotion.id != exclude_promotion_id)
        return sorted(self.session.execute(stmt).scalars())

    # ----- Administration -----

    def list_promotions(self) -> List[Promotion]:
        return list(self.session.execute(select(Promotion).order_by(Promotion.id)).scalars())

    def get_promotion(self, promotion_id: int) -> Promotion:
        promo = self.session.get(Promotion, promotion_id)
        if promo is None:
            raise NotFoundError(f"Promotion {promotion_id} not found", promotion_id=promotion_id)
        return promo

    def available_promotions(self, total_price: int, today: Optional[date] = None) -> List[Promotion]:
        today = today or self.clock()
        stmt = (
            select(Promotion)
            .where(
                Promotion.start_date <= today,
                Promotion.end_date >= today,
                or_(Promotion.quantity.is_(None), Promotion.used_quantity < Promotion.quantity),
                or_(Promotion.min_price.is_(None), Promotion.min_price <= total_price),
            )
            .order_by(Promotion.id)
        )
        return list(self.session.execute(stmt).scalars())

    def generate_promotion_code(self) -> str:
        codes = self.session.execute(
            select(Promotion.promotion_code).where(Promotion.promotion_code.like(f"{CODE_PREFIX}%"))
        ).scalars()
        numbers = [int(m.group(1)) for m in (_CODE_RE.match(c) for c in codes) if m]
        return f"{CODE_PREFIX}{(max(numbers, default=0) + 1):02d}"

    def create_promotion(self, data: PromotionIn) -> Promotion:
        self._validate(data)
        with unit_of_work(self.session):
            items = self._lock_free_items(data.item_ids or [], data.start_date, data.end_date)
            promo = Promotion(
                promotion_code=self.generate_promotion_code(),
                name=data.name,
                type=data.type,
                discount=data.discount,
                start_date=data.start_date,
                end_date=data.end_date,
                min_price=data.min_price,
                quantity=data.quantity,
                used_quantity=0,
                items=items,
            )
            self.session.add(promo)
            self.session.flush()
        logger.info("promotion created: %s (%s)", promo.promotion_code, promo.id)
        return promo

    def update_promotion(self, promotion_id: int, data: PromotionIn) -> Promotion:
        self._validate(data)
        with unit_of_work(self.session):
            current = self.session.get(Promotion, promotion_id)
            if current is None:
                raise NotFoundError(f"Promotion {promotion_id} not found", promotion_id=promotion_id)
            item_ids = current.item_ids if data.item_ids is None else data.item_ids
            # books before the promotion row, the same order checkout takes them in
            items = self._lock_free_items(item_ids, data.start_date, data.end_date, exclude_promotion_id=promotion_id)
            promo = self.session.execute(
                select(Promotion)
                .where(Promotion.id == promotion_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()
            used = promo.used_quantity if data.used_quantity is None else data.used_quantity
            if data.quantity is not None and used > data.quantity:
                raise ValidationError(
                    f"Quota {data.quantity} is below the {used} uses already made",
                    quantity=data.quantity,
                    used_quantity=used,
                )
            promo.name = data.name
            promo.type = data.type
            promo.discount = data.discount
            promo.start_date = data.start_date
            promo.end_date = data.end_date
            promo.min_price = data.min_price
            promo.quantity = data.quantity
            promo.used_quantity = used
            promo.items = items
        logger.info("promotion updated: %s", promo.promotion_code)
        return promo

    def delete_promotion(self, promotion_id: int) -> None:
        with unit_of_work(self.session):
            promo = self.session.get(Promotion, promotion_id)
            if promo is None:
                raise NotFoundError(f"Promotion {promotion_id} not found", promotion_id=promotion_id)
            code = promo.promotion_code
            self.session.execute(update(Invoice).where(Invoice.promotion_code == code).values(promotion_code=None))
            self.session.execute(update(Order).where(Order.promotion_code == code).values(promotion_code=None))
            self.session.delete(promo)
        logger.info("promotion deleted: %s", code)

    def _lock_free_items(
        self,
        item_ids: Iterable[int],
        start_date: date,
        end_date: date,
        exclude_promotion_id: Optional[int] = None,
    ) -> List[CatalogItem]:
        # item rows stay locked until commit; a concurrent assignment of the
        # same items waits here and then sees this one
        if not item_ids:
            return []
        locked = InventoryLedger(self.session).lock_items(item_ids)
        conflicts = self.find_conflicting_items(
            locked, start_date, end_date, exclude_promotion_id=exclude_promotion_id
        )
        if conflicts:
            logger.warning("promotion window overlap on books %s", conflicts)
            raise ConflictError(
                "Books already on another promotion in this period: " + ", ".join(str(i) for i in conflicts),
                conflicting_items=conflicts,
            )
        return [locked[i] for i in sorted(locked)]

    @staticmethod
    def _validate(data: PromotionIn) -> None:
        if not data.name or not data.name.strip():
            raise ValidationError("Promotion name is required")
        if data.discount <= 0:
            raise ValidationError("Discount must be > 0")
        if data.type == DiscountType.PERCENT and data.discount > 100:
            raise ValidationError("Percent discount must be between 1 and 100")
        if data.start_date > data.end_date:
            raise ValidationError("Start date must be on or before end date")
        if data.min_price is not None and data.min_price < 0:
            raise ValidationError("Minimum order value must not be negative")
        if data.quantity is not None and data.quantity < 0:
            raise ValidationError("Quota must not be negative")
        if data.used_quantity is not None and data.used_quantity < 0:
            raise ValidationError("Used quantity must not be negative")
