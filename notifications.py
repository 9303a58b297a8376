"""
Transactional email

Order confirmations, verification and reset links go out through a
NotificationSender. main.py builds one at startup: SendGrid when an API key is
configured, otherwise a sender that only logs.
"""
import logging

import httpx
from fastapi import Request

import config

logger = logging.getLogger(__name__)

SHOP_NAME = "Electronics Hub"


class NotificationSender:
    def send_verification(self, email: str, name: str, token: str):
        raise NotImplementedError

    def send_password_reset(self, email: str, name: str, token: str):
        raise NotImplementedError

    def send_order_confirmation(self, email: str, name: str, order: dict):
        raise NotImplementedError


def verification_url(token: str) -> str:
    return f"{config.FRONTEND_URL}/verify-email?token={token}"


def reset_url(token: str) -> str:
    return f"{config.FRONTEND_URL}/reset-password?token={token}"


def verification_message(name: str, token: str):
    url = verification_url(token)
    subject = f"Verify Your Email - {SHOP_NAME}"
    text = (
        f"Hi {name},\n\nThank you for signing up with {SHOP_NAME}! "
        f"Please verify your email by clicking the link below:\n\n{url}\n\n"
        "This link will expire in 24 hours.\n\n"
        "If you didn't create an account, please ignore this email.\n\n"
        f"Best regards,\n{SHOP_NAME} Team"
    )
    html = (
        f"<h2>Hi {name},</h2>"
        f"<p>Thank you for signing up with {SHOP_NAME}! Please verify your email address:</p>"
        f'<p><a href="{url}">Verify Email Address</a></p>'
        "<p><strong>Note:</strong> This link will expire in 24 hours.</p>"
    )
    return subject, text, html


def reset_message(name: str, token: str):
    url = reset_url(token)
    subject = f"Password Reset Request - {SHOP_NAME}"
    text = (
        f"Hi {name},\n\nWe received a request to reset your password. "
        f"Click the link below to reset it:\n\n{url}\n\n"
        "This link will expire in 1 hour.\n\n"
        "If you didn't request a password reset, please ignore this email.\n\n"
        f"Best regards,\n{SHOP_NAME} Team"
    )
    html = (
        f"<h2>Hi {name},</h2>"
        "<p>We received a request to reset your password.</p>"
        f'<p><a href="{url}">Reset Password</a></p>'
        "<p><strong>Note:</strong> This link will expire in 1 hour.</p>"
    )
    return subject, text, html


def order_message(name: str, order: dict):
    short_id = str(order["id"])[:8]
    subject = f"Order Confirmation #{short_id} - {SHOP_NAME}"
    text = (
        f"Hi {name},\n\nThank you for your order!\n\n"
        f"Order ID: {order['id']}\n"
        f"Total Amount: ₹{order['total_amount']:.2f}\n"
        f"Payment Method: {order['payment_method']}\n\n"
        "We'll send you another email when your order ships.\n\n"
        f"Best regards,\n{SHOP_NAME} Team"
    )
    html = (
        f"<h2>Hi {name},</h2>"
        "<p>Thank you for your order! We're processing it now.</p>"
        f"<p><strong>Order ID:</strong> {short_id}</p>"
        f"<p><strong>Total Amount:</strong> ₹{order['total_amount']:.2f}</p>"
        f"<p><strong>Payment Method:</strong> {order['payment_method']}</p>"
        f"<p><strong>Status:</strong> {order['order_status']}</p>"
    )
    return subject, text, html


class SendGridNotificationSender(NotificationSender):
    """SendGrid v3 mail/send API."""

    url = "https://api.sendgrid.com/v3/mail/send"

    def __init__(self, api_key: str, from_email: str, from_name: str, timeout: float = 10.0, transport=None):
        self.client = httpx.Client(
            headers={"Authorization": f"Bearer {api_key}"}, timeout=timeout, transport=transport
        )
        self.sender = {"email": from_email, "name": from_name}

    def _send(self, email: str, subject: str, text: str, html: str):
        response = self.client.post(self.url, json={
            "personalizations": [{"to": [{"email": email}]}],
            "from": self.sender,
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text},
                {"type": "text/html", "value": html},
            ],
        })
        response.raise_for_status()
        logger.info("Email '%s' sent to %s (status %s)", subject, email, response.status_code)

    def send_verification(self, email, name, token):
        self._send(email, *verification_message(name, token))

    def send_password_reset(self, email, name, token):
        self._send(email, *reset_message(name, token))

    def send_order_confirmation(self, email, name, order):
        self._send(email, *order_message(name, order))


class LogNotificationSender(NotificationSender):
    """Used when SendGrid is not configured; writes the mail to the log."""

    def _send(self, email: str, subject: str, text: str, html: str):
        logger.info("Email not sent (SendGrid not configured) to=%s subject=%s\n%s", email, subject, text)

    def send_verification(self, email, name, token):
        self._send(email, *verification_message(name, token))

    def send_password_reset(self, email, name, token):
        self._send(email, *reset_message(name, token))

    def send_order_confirmation(self, email, name, order):
        self._send(email, *order_message(name, order))


def build_notifier() -> NotificationSender:
    if config.SENDGRID_API_KEY:
        logger.info("SendGrid email delivery configured")
        return SendGridNotificationSender(
            config.SENDGRID_API_KEY, config.SENDGRID_FROM_EMAIL, config.SENDGRID_FROM_NAME
        )
    logger.warning("SENDGRID_API_KEY not set. Emails will only be logged.")
    return LogNotificationSender()


def notify_quietly(send, *args) -> bool:
    """Call a sender method; failures are logged, never raised."""
    try:
        send(*args)
        return True
    except Exception as e:
        logger.error("Failed to send %s: %s", getattr(send, "__name__", "notification"), e)
        return False


def get_notifier(request: Request) -> NotificationSender:
    notifier = getattr(request.app.state, "notifier", None)
    return notifier if notifier is not None else LogNotificationSender()
