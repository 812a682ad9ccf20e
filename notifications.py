"""
Order notification emails.

Sending happens in a FastAPI background task after the response is written,
with a small retry loop; a failed email never affects the order itself.
"""
import re
import smtplib
import time
from email.message import EmailMessage
from typing import Any, Dict, Optional

import structlog
from fastapi import BackgroundTasks, Request

from config import Settings

logger = structlog.get_logger(__name__)

PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}")

ORDER_SUCCESS_TEMPLATE = """\
<html>
  <body>
    <h2>New order received</h2>
    <p>Customer: {{name}}</p>
    <p>Order ID: {{orderId}}</p>
    <p>Items: {{orderItems}}</p>
    <p>Total amount: {{totalAmount}}</p>
    <p>Ship to: {{address}}</p>
    <p>Payment mode: {{paymentMode}}</p>
  </body>
</html>
"""


def render_template(template: str, variables: Dict[str, Any]) -> str:
    def substitute(match):
        value = variables.get(match.group(1).strip())
        return "" if value is None else str(value)

    return PLACEHOLDER.sub(substitute, template)


def format_address(address: Optional[dict]) -> str:
    if not address:
        return ""
    keys = ("name", "street", "city", "state", "pincode", "phone")
    parts = [str(address[k]) for k in keys if address.get(k)]
    return ", ".join(parts)


class EmailSender:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.disabled = (
            settings.email_disabled
            or not settings.smtp_host
            or not settings.smtp_user
            or not settings.smtp_password
        )

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        if self.disabled:
            logger.info("email_disabled_skipping_send", to=to, subject=subject)
            return False

        message = EmailMessage()
        message["From"] = f'"{self.settings.email_sender_name}" <{self.settings.smtp_user}>'
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)
        if html:
            message.add_alternative(html, subtype="html")

        if self.settings.smtp_port == 465:
            smtp = smtplib.SMTP_SSL(self.settings.smtp_host, self.settings.smtp_port, timeout=10)
        else:
            smtp = smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=10)
        with smtp:
            if self.settings.smtp_use_tls and self.settings.smtp_port != 465:
                smtp.starttls()
            smtp.login(self.settings.smtp_user, self.settings.smtp_password)
            smtp.send_message(message)
        logger.info("email_sent", to=to, subject=subject)
        return True


class OrderNotifier:
    def __init__(self, sender: EmailSender, recipient: Optional[str], max_attempts: int = 3, backoff_seconds: float = 1.0):
        self.sender = sender
        self.recipient = recipient
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    def build(self, user: dict, order_id: str, item_names: str, total_amount: float, payment_mode: str) -> Dict[str, str]:
        html = render_template(ORDER_SUCCESS_TEMPLATE, {
            "name": user.get("name"),
            "orderId": order_id,
            "orderItems": item_names,
            "totalAmount": total_amount,
            "address": format_address(user.get("address")),
            "paymentMode": payment_mode,
        })
        return {
            "to": self.recipient or "",
            "subject": "New order received",
            "text": "You have received a new order",
            "html": html,
        }

    def queue(self, background_tasks: BackgroundTasks, user: dict, order_id: str, item_names: str, total_amount: float, payment_mode: str) -> None:
        if not self.recipient:
            logger.info("order_email_no_recipient", order_id=order_id)
            return
        message = self.build(user, order_id, item_names, total_amount, payment_mode)
        background_tasks.add_task(self.deliver, message)

    def deliver(self, message: Dict[str, str]) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.sender.send(**message)
                return True
            except Exception as exc:
                logger.warning("order_email_attempt_failed", attempt=attempt, error=str(exc))
                if attempt < self.max_attempts:
                    time.sleep(self.backoff_seconds * attempt)
        logger.error("order_email_failed", to=message.get("to"), attempts=self.max_attempts)
        return False


def get_notifier(request: Request) -> OrderNotifier:
    return request.app.state.notifier
