# Overview: Abandoned saved-cart reminders.

from __future__ import annotations

from ..extensions import db
from ..models import Customer, SavedCart, Transaction
from ..models.sales import TXN_COMPLETED
from ..money import quantize_money
from ..time_utils import hours_before
from .base import AutomationJob, JobContext, OptionSpec


class AbandonedCartJob(AutomationJob):
    """
    Email customers whose saved cart has been idle for hoursAgo and who have
    not completed a purchase since.

    Guard: SavedCart.reminder_sent_at; each cart is reminded at most once.
    """
    name = "abandoned-carts"
    path = "carts/abandoned"
    description = "Remind customers about abandoned saved carts"
    options = (
        OptionSpec("hoursAgo", float, default=24.0, minimum=0),
        OptionSpec("limit", int, default=100, minimum=1, maximum=1000),
    )

    def run_for_tenant(self, ctx: JobContext) -> None:
        if not ctx.settings.email_notifications:
            return

        cutoff = hours_before(ctx.now, ctx.options["hours_ago"])
        rows = (
            db.session.query(SavedCart.id)
            .filter(
                SavedCart.tenant_id == ctx.tenant_id,
                SavedCart.reminder_sent_at.is_(None),
                SavedCart.customer_id.isnot(None),
                SavedCart.updated_at < cutoff,
            )
            .order_by(SavedCart.updated_at.asc(), SavedCart.id.asc())
            .limit(ctx.options["limit"])
            .all()
        )
        for (cart_id,) in rows:
            ctx.attempt(f"Cart {cart_id}", lambda cid=cart_id: self._remind(ctx, cid))

    def _remind(self, ctx: JobContext, cart_id: int):
        cart = db.session.get(SavedCart, cart_id)
        if cart is None or cart.reminder_sent_at is not None:
            return False

        customer = db.session.get(Customer, cart.customer_id)
        if customer is None or not customer.email:
            return False

        purchased = (
            db.session.query(Transaction.id)
            .filter(
                Transaction.tenant_id == ctx.tenant_id,
                Transaction.customer_id == customer.id,
                Transaction.status == TXN_COMPLETED,
                Transaction.created_at >= cart.updated_at,
            )
            .first()
        )
        if purchased is not None:
            return False

        company = ctx.company_name
        item_count = len(cart.items or [])
        ctx.send_email(
            customer.email,
            f"You left something behind - {company}",
            f"Hello {customer.name},\n\n"
            f"Your saved cart with {item_count} item(s) totalling {quantize_money(cart.total)} "
            f"is still waiting for you at {company}.\n\n{company}",
            required=True,
        )
        cart.reminder_sent_at = ctx.now
        ctx.audit("cart.reminder_sent", "saved_cart", cart.id, {"customer_id": customer.id})

    def summarize(self, result, options) -> str:
        message = f"Sent {result.processed} abandoned cart reminders"
        if result.failed:
            message += f", {result.failed} failed"
        return message
