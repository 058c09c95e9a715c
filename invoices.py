"""
Point-of-sale invoices

Walk-in sales draw from the same stock as online orders and go through
the same InventoryLedger. An invoice is final once written.
"""
import logging
from datetime import date
from typing import Callable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import unit_of_work
from errors import NotFoundError, ValidationError
from ledger import InventoryLedger, requested_quantities
from models import Invoice, InvoiceLine
from promotions import PromotionService

logger = logging.getLogger(__name__)


class InvoiceService:
    def __init__(self, session: Session, clock: Callable[[], date] = date.today):
        self.session = session
        self.ledger = InventoryLedger(session)
        self.promotions = PromotionService(session, clock=clock)

    def create_invoice(
        self,
        created_by: Optional[int],
        lines: Sequence,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        promotion_code: Optional[str] = None,
    ) -> Invoice:
        if created_by is None:
            raise ValidationError("Cashier id is required")
        quantities = requested_quantities(lines)

        with unit_of_work(self.session):
            locked = self.ledger.reserve(quantities)
            total = sum(locked[item_id].price * qty for item_id, qty in quantities.items())
            discount = 0
            if promotion_code:
                discount = self.promotions.consume(promotion_code, total).discount_amount

            invoice = Invoice(
                customer_name=customer_name,
                customer_phone=customer_phone,
                total_amount=total,
                discount_amount=discount,
                final_amount=total - discount,
                promotion_code=promotion_code or None,
                created_by=created_by,
                lines=[
                    InvoiceLine(book_id=item_id, quantity=qty, unit_price=locked[item_id].price)
                    for item_id, qty in sorted(quantities.items())
                ],
            )
            self.session.add(invoice)
            self.session.flush()

        logger.info("[invoice=%s] created by=%s total=%s final=%s", invoice.id, created_by, total, invoice.final_amount)
        return invoice

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)
        return invoice

    def list_invoices(self, created_by: Optional[int] = None) -> List[Invoice]:
        query = select(Invoice).order_by(Invoice.created_at.desc(), Invoice.id.desc())
        if created_by is not None:
            query = query.where(Invoice.created_by == created_by)
        return list(self.session.execute(query).scalars())
