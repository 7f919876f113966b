import logging

import requests

from app.models import PaymentStatus

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


def build_payment_message(outcome) -> str:
    order_ref = outcome.order_number or outcome.order_id
    if outcome.payment_status == PaymentStatus.SUCCESS:
        return (
            f"Payment received for order {order_ref}.\n"
            f"Amount: {outcome.currency} {outcome.amount}\n"
            "We are preparing your order."
        )
    if outcome.payment_status == PaymentStatus.TIMEOUT:
        return (
            f"Your payment request for order {order_ref} expired and the order was cancelled.\n"
            "Start checkout again to place a new order."
        )
    return (
        f"Payment for order {order_ref} was not completed and the order was cancelled.\n"
        "Start checkout again or contact support."
    )


class LoggingNotifier:
    def payment_transitioned(self, outcome) -> None:
        logger.info(
            "Payment notification: order=%s payment=%s status=%s",
            outcome.order_number or outcome.order_id,
            outcome.payment_id,
            outcome.payment_status.value if outcome.payment_status else None,
        )


class TelegramNotifier:
    """Tells the customer about a payment outcome through the bot."""

    def __init__(self, bot_token: str, timeout_seconds: int = 10, session: requests.Session | None = None):
        self.bot_token = bot_token
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def payment_transitioned(self, outcome) -> None:
        if not outcome.customer_telegram_id:
            logger.warning("No Telegram chat for order %s, skipping notification", outcome.order_id)
            return
        try:
            response = self.session.post(
                f"{TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage",
                json={"chat_id": outcome.customer_telegram_id, "text": build_payment_message(outcome)},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Telegram notification for order %s failed: %s", outcome.order_id, exc)


def build_notifier(settings):
    if settings.TELEGRAM_BOT_TOKEN:
        return TelegramNotifier(settings.TELEGRAM_BOT_TOKEN)
    return LoggingNotifier()
