"""Order notifier that records confirmations in the log."""

import structlog

from checkoutflow.application.ports import OrderNotifier
from checkoutflow.domain.entities import Order

logger = structlog.get_logger()


class LoggingOrderNotifier(OrderNotifier):
    """Logs order confirmations instead of sending email.

    Stands in for a mail integration in development and tests.
    """

    def __init__(self) -> None:
        self.sent: list[str] = []

    async def send_order_confirmation(self, order: Order) -> None:
        email = order.billing_address.email if order.billing_address else ""
        logger.info(
            "Order confirmation sent",
            order_id=order.id,
            order_number=order.number,
            email=email,
            total=str(order.total),
            currency=order.currency,
        )
        self.sent.append(order.id)
