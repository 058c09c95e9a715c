"""
Online order lifecycle

    pending -> confirmed -> delivering -> delivered
    pending | confirmed | delivering -> cancelled   (stock restored)
    delivered -> cancelled                          (stock kept)

Every transition runs in one unit of work with the order row locked, so
concurrent calls on the same order are applied one after the other.
"""
import logging
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import unit_of_work
from errors import ConflictError, NotFoundError, ValidationError
from ledger import InventoryLedger, requested_quantities
from models import Order, OrderAssignment, OrderLine, OrderStatus, ShippingMethod, utcnow
from promotions import PromotionService
from schemas import ShippingInfo

logger = logging.getLogger(__name__)

RESTOCKABLE = (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.DELIVERING)


class OrderService:
    def __init__(self, session: Session, clock: Callable[[], date] = date.today):
        self.session = session
        self.ledger = InventoryLedger(session)
        self.promotions = PromotionService(session, clock=clock)

    # ----- Queries -----

    def get_order(self, order_id: int) -> Order:
        order = self.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
        return order

    def list_orders(
        self,
        user_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Tuple[List[Order], int]:
        query = select(Order)
        if user_id is not None:
            query = query.where(Order.user_id == user_id)
        if status is not None:
            query = query.where(Order.status == status)
        return self._paginate(query, page, page_size)

    def list_orders_for_shipper(
        self,
        shipper_id: int,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Tuple[List[Order], int]:
        query = select(Order).join(OrderAssignment, OrderAssignment.order_id == Order.id).where(
            OrderAssignment.shipper_id == shipper_id
        )
        if status is not None:
            query = query.where(Order.status == status)
        return self._paginate(query, page, page_size)

    def _paginate(self, query, page: int, page_size: int) -> Tuple[List[Order], int]:
        if page < 1 or page_size < 1:
            raise ValidationError("page and page_size must be >= 1")
        total = self.session.execute(select(func.count()).select_from(query.subquery())).scalar() or 0
        query = query.order_by(Order.order_date.desc(), Order.id.desc()).offset((page - 1) * page_size).limit(page_size)
        return list(self.session.execute(query).scalars()), total

    # ----- Transitions -----

    def create_order(
        self,
        user_id: Optional[int],
        shipping_info: Optional[ShippingInfo],
        promotion_code: Optional[str],
        lines: Sequence,
    ) -> Order:
        """Reserve stock for every line and persist a pending order.

        Either all lines are reserved and the order is written, or the
        store is left exactly as it was.
        """
        if user_id is None:
            raise ValidationError("User id is required")
        if shipping_info is None:
            raise ValidationError("Shipping information is required")
        quantities = requested_quantities(lines)

        with unit_of_work(self.session):
            shipping = self._shipping_method(shipping_info.shipping_method_id)
            locked = self.ledger.reserve(quantities)
            subtotal = sum(locked[item_id].price * qty for item_id, qty in quantities.items())

            discount = 0
            if promotion_code:
                discount = self.promotions.consume(promotion_code, subtotal).discount_amount

            order = Order(
                user_id=user_id,
                shipping_method_id=shipping.id,
                shipping_address=shipping_info.shipping_address,
                payment_method=shipping_info.payment_method,
                promotion_code=promotion_code or None,
                total_amount=subtotal,
                shipping_fee=shipping.fee,
                discount_amount=discount,
                final_amount=subtotal - discount + shipping.fee,
                status=OrderStatus.PENDING,
                lines=[
                    OrderLine(book_id=item_id, quantity=qty, unit_price=locked[item_id].price)
                    for item_id, qty in sorted(quantities.items())
                ],
            )
            self.session.add(order)
            self.session.flush()

        logger.info(
            "[order=%s] created user=%s lines=%s total=%s discount=%s final=%s",
            order.id, user_id, len(order.lines), order.total_amount, order.discount_amount, order.final_amount,
        )
        return order

    def confirm_order(self, order_id: int) -> Order:
        with unit_of_work(self.session):
            order = self._lock_order(order_id)
            self._require_status(order, (OrderStatus.PENDING,), "confirm")
            order.status = OrderStatus.CONFIRMED
        logger.info("[order=%s] confirmed", order_id)
        return order

    def assign_order_to_shipper(
        self, order_id: Optional[int], shipper_id: Optional[int], assigner_id: Optional[int]
    ) -> Order:
        """Hand the order to a shipper and move it to delivering.

        Re-assigning an order that is already out for delivery replaces the
        previous assignment.
        """
        if order_id is None or shipper_id is None or assigner_id is None:
            raise ValidationError(
                "orderId, shipperId and assignedBy are all required",
                order_id=order_id,
                shipper_id=shipper_id,
                assigned_by=assigner_id,
            )
        with unit_of_work(self.session):
            order = self._lock_order(order_id)
            self._require_status(order, (OrderStatus.CONFIRMED, OrderStatus.DELIVERING), "assign")
            order.status = OrderStatus.DELIVERING
            if order.assignment is None:
                order.assignment = OrderAssignment(shipper_id=shipper_id, assigned_by=assigner_id)
            else:
                order.assignment.shipper_id = shipper_id
                order.assignment.assigned_by = assigner_id
                order.assignment.assigned_at = utcnow()
                order.assignment.completion_date = None
            self.session.flush()
        logger.info("[order=%s] assigned to shipper=%s by=%s", order_id, shipper_id, assigner_id)
        return order

    def complete_order(self, order_id: int) -> Order:
        with unit_of_work(self.session):
            order = self._lock_order(order_id)
            self._require_status(order, (OrderStatus.DELIVERING,), "complete")
            order.status = OrderStatus.DELIVERED
            if order.assignment is not None:
                order.assignment.completion_date = utcnow()
        logger.info("[order=%s] delivered", order_id)
        return order

    def cancel_order(self, order_id: int) -> Dict[str, object]:
        """Cancel an order. Safe to call again on a cancelled order."""
        with unit_of_work(self.session):
            order = self._lock_order(order_id)
            if order.status == OrderStatus.CANCELLED:
                logger.info("[order=%s] already cancelled", order_id)
                return {"success": True, "message": "Order is already cancelled"}

            if order.status in RESTOCKABLE:
                self.ledger.release(requested_quantities(order.lines))
                message = "Order cancelled, stock restored"
            else:
                # delivered goods are not returned to inventory here
                message = "Order cancelled, delivered stock not restored"
            order.status = OrderStatus.CANCELLED

        logger.info("[order=%s] cancelled: %s", order_id, message)
        return {"success": True, "message": message}

    # ----- Helpers -----

    def _lock_order(self, order_id: int) -> Order:
        order = self.session.execute(
            select(Order).where(Order.id == order_id).with_for_update().execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
        return order

    def _shipping_method(self, method_id: Optional[int]) -> ShippingMethod:
        if method_id is None:
            raise ValidationError("Shipping method is required")
        method = self.session.get(ShippingMethod, method_id)
        if method is None or not method.is_active:
            raise NotFoundError(f"Shipping method {method_id} not found", shipping_method_id=method_id)
        return method

    @staticmethod
    def _require_status(order: Order, allowed, action: str) -> None:
        if order.status not in allowed:
            raise ConflictError(
                f"Cannot {action} order {order.id} in status '{order.status.value}'",
                order_id=order.id,
                status=order.status.value,
            )
