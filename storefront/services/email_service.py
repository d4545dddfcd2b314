"""
Transactional email through Brevo's REST API.

Sending is best-effort: ``send`` returns an ``EmailResult`` and never raises,
so callers (order creation, password reset) decide what a failure means for
them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import bleach
import requests
from markupsafe import escape

from storefront.config import Config
from storefront.observability import increment_counter, record_event, timed

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    subject: str
    recipients: List[str]
    html_body: str
    text_body: str = ""
    sender_email: str = Config.EMAIL_SENDER
    sender_name: str = Config.EMAIL_SENDER_NAME
    tags: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "sender": {"email": self.sender_email, "name": self.sender_name},
            "to": [{"email": address} for address in self.recipients],
            "subject": self.subject,
            "htmlContent": self.html_body,
        }
        if self.text_body:
            payload["textContent"] = self.text_body
        if self.tags:
            payload["tags"] = self.tags
        return payload


@dataclass(frozen=True)
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def _clean(value: Any) -> str:
    """Strip markup from user-supplied text before it is placed in HTML."""
    if value is None:
        return ""
    return bleach.clean(str(value), tags=[], strip=True)


def _money(value: Any) -> str:
    return f"Rs.{Decimal(str(value or 0)):.2f}"


class EmailService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[int] = None,
        http: Any = requests,
    ) -> None:
        self.api_key = Config.BREVO_API_KEY if api_key is None else api_key
        self.api_url = api_url or Config.BREVO_API_URL
        self.timeout = timeout or Config.EMAIL_TIMEOUT_SECONDS
        self.http = http

    def send(self, message: EmailMessage) -> EmailResult:
        if not self.api_key:
            logger.warning("BREVO_API_KEY not set, skipping email '%s'", message.subject)
            increment_counter("emails_failed_total", labels={"reason": "not_configured"})
            return EmailResult(False, error="BREVO_API_KEY not configured")
        if not message.recipients:
            return EmailResult(False, error="No recipients")

        try:
            with timed("email_send_latency_ms"):
                response = self.http.post(
                    self.api_url,
                    json=message.to_payload(),
                    headers={
                        "accept": "application/json",
                        "api-key": self.api_key,
                        "content-type": "application/json",
                    },
                    timeout=self.timeout,
                )
        except requests.RequestException as exc:
            logger.error("Error sending email via Brevo: %s", exc)
            increment_counter("emails_failed_total", labels={"reason": "transport"})
            return EmailResult(False, error=str(exc))

        if 200 <= response.status_code < 300:
            try:
                message_id = response.json().get("messageId")
            except ValueError:
                message_id = None
            increment_counter("emails_sent_total")
            record_event("email_sent", {"subject": message.subject, "message_id": message_id})
            return EmailResult(True, message_id=message_id)

        logger.error("Brevo email error (%s): %s", response.status_code, response.text)
        increment_counter("emails_failed_total", labels={"reason": f"http_{response.status_code}"})
        return EmailResult(False, error=response.text)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    def send_order_notification(self, order_data: Dict[str, Any], admin_email: Optional[str] = None) -> EmailResult:
        """Tell the shop owner a new order came in."""
        recipient = admin_email if admin_email is not None else Config.ADMIN_NOTIFICATION_EMAIL
        if not recipient:
            return EmailResult(False, error="Admin notification email not configured")

        customer = order_data.get("customer", {})
        html = (
            f"<h2>New order {_clean(order_data['order_number'])}</h2>"
            f"<p><strong>Customer:</strong> {_clean(customer.get('name'))}<br>"
            f"<strong>Phone:</strong> {_clean(customer.get('phone'))}<br>"
            f"<strong>Email:</strong> {_clean(customer.get('email')) or 'N/A'}<br>"
            f"<strong>Address:</strong> {_clean(customer.get('address'))}</p>"
            f"{self._items_table(order_data.get('items', []), with_category=True)}"
            f"<p><strong>Total:</strong> {_money(order_data.get('total_amount'))}<br>"
            f"<strong>Payment method:</strong> {_clean(order_data.get('payment_method'))}</p>"
        )
        screenshot = str(order_data.get("payment_screenshot_url") or "")
        if screenshot.startswith("https://"):
            html += f'<p><a href="{escape(screenshot)}">Payment screenshot</a></p>'
        elif screenshot:
            html += f"<p>Payment screenshot: {escape(screenshot)}</p>"

        text = "\n".join(
            [
                f"New order {order_data['order_number']}",
                f"Customer: {customer.get('name')} ({customer.get('phone')})",
                f"Address: {customer.get('address')}",
                *self._items_text(order_data.get("items", [])),
                f"Total: {_money(order_data.get('total_amount'))}",
            ]
        )
        return self.send(
            EmailMessage(
                subject=f"New Order Received - {order_data['order_number']}",
                recipients=[recipient],
                html_body=html,
                text_body=text,
                tags=["order-notification"],
            )
        )

    def send_order_confirmation(self, order_data: Dict[str, Any]) -> EmailResult:
        customer = order_data.get("customer", {})
        recipient = customer.get("email")
        if not recipient:
            return EmailResult(False, error="Customer email not available")

        placed_at = order_data.get("created_at")
        placed_text = placed_at.strftime("%d %b %Y, %H:%M") if isinstance(placed_at, datetime) else ""
        html = (
            f"<h2>Thank you for your order, {_clean(customer.get('name'))}!</h2>"
            f"<p>Your order number is <strong>{_clean(order_data['order_number'])}</strong>"
            f"{' placed on ' + placed_text if placed_text else ''}.</p>"
            f"{self._items_table(order_data.get('items', []))}"
            f"<p><strong>Total:</strong> {_money(order_data.get('total_amount'))}</p>"
            "<p>We will let you know as soon as your order is confirmed.</p>"
        )
        text = "\n".join(
            [
                f"Thank you for your order, {customer.get('name')}!",
                f"Order number: {order_data['order_number']}",
                *self._items_text(order_data.get("items", [])),
                f"Total: {_money(order_data.get('total_amount'))}",
            ]
        )
        return self.send(
            EmailMessage(
                subject=f"Order Confirmation - {order_data['order_number']}",
                recipients=[recipient],
                html_body=html,
                text_body=text,
                tags=["order-confirmation"],
            )
        )

    def send_password_reset(self, email: str, token: str) -> EmailResult:
        link = f"{Config.FRONTEND_URL.rstrip('/')}/reset-password?token={token}"
        minutes = Config.PASSWORD_RESET_EXPIRY_MINUTES
        html = (
            "<h2>Password reset</h2>"
            f'<p>Click <a href="{link}">here</a> to choose a new password. '
            f"The link expires in {minutes} minutes.</p>"
            "<p>If you did not request this, you can ignore this email.</p>"
        )
        text = f"Reset your password: {link}\nThe link expires in {minutes} minutes."
        return self.send(
            EmailMessage(
                subject="Reset your password",
                recipients=[email],
                html_body=html,
                text_body=text,
                tags=["password-reset"],
            )
        )

    @staticmethod
    def _items_table(items: Iterable[Dict[str, Any]], with_category: bool = False) -> str:
        rows = []
        for item in items:
            name = _clean(item.get("name"))
            if with_category and item.get("category"):
                name += f"<br><small>{_clean(item['category'])}</small>"
            quantity = int(item.get("quantity") or 0)
            rows.append(
                f"<tr><td>{name}</td><td>{quantity}</td>"
                f"<td>{_money(item.get('price'))}</td>"
                f"<td>{_money(Decimal(str(item.get('price') or 0)) * quantity)}</td></tr>"
            )
        return (
            "<table><thead><tr><th>Item</th><th>Qty</th><th>Price</th><th>Subtotal</th></tr></thead>"
            f"<tbody>{''.join(rows)}</tbody></table>"
        )

    @staticmethod
    def _items_text(items: Iterable[Dict[str, Any]]) -> List[str]:
        return [
            f"- {item.get('name')} x{item.get('quantity')} @ {_money(item.get('price'))}"
            for item in items
        ]
