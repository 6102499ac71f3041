# storefront/services/notification_service.py
import logging
import smtplib
from email.message import EmailMessage

from flask import current_app

from ..extensions import db
from ..model import Notification, Order, User
from ..utils.money import money_float

logger = logging.getLogger(__name__)


def get_notifier() -> "NotificationSender":
    return current_app.extensions.setdefault("notifier", NotificationSender())


class NotificationSender:
    """Order confirmations (in-app row plus mail) and account mails; mail only goes out when SMTP is configured."""

    def deliver(self, order: Order, user: User):
        note = Notification(
            user_id=user.id,
            order_id=order.id,
            message=f"Order {order.order_number} received. Total {money_float(order.total_price):.2f} {order.currency}",
        )
        db.session.add(note)
        db.session.commit()

        if current_app.config.get("MAIL_SERVER") and user.email:
            self._send_mail(user.email, f"Order confirmation {order.order_number}", self._render(order, user))

    def send_verification(self, user: User, token: str):
        link = f"{current_app.config.get('FRONTEND_URL', '').rstrip('/')}/verify-email/{token}"
        hours = current_app.config.get("VERIFY_TOKEN_TTL_HOURS", 24)
        self._account_mail(user, "Verify your e-mail address", [
            "Please confirm your e-mail address by opening the link below:",
            "",
            f"  {link}",
            "",
            f"The link expires in {hours} hours.",
        ])

    def send_password_reset(self, user: User, token: str):
        link = f"{current_app.config.get('FRONTEND_URL', '').rstrip('/')}/reset-password/{token}"
        minutes = current_app.config.get("RESET_TOKEN_TTL_MINUTES", 60)
        self._account_mail(user, "Password reset", [
            "Someone asked to reset the password of your account. Open the link below to choose a new one:",
            "",
            f"  {link}",
            "",
            f"The link expires in {minutes} minutes. Ignore this mail if it wasn't you.",
        ])

    def _account_mail(self, user: User, subject: str, lines: list):
        if not current_app.config.get("MAIL_SERVER"):
            logger.info(f"mail disabled, '{subject}' for user {user.id} not sent")
            return
        body = "\n".join([f"Hi {user.name or user.email},", "", *lines])
        self._send_mail(user.email, subject, body)

    def _render(self, order: Order, user: User) -> str:
        lines = [f"Hi {user.name or user.email},", "", f"Thank you for your order {order.order_number}.", ""]
        for it in order.items:
            lines.append(f"  {it.quantity} x {it.name} ({it.sku})  {money_float(it.total):.2f}")
        lines += [
            "",
            f"Items:    {money_float(order.items_price):.2f}",
            f"Shipping: {money_float(order.shipping_price):.2f}",
            f"Tax:      {money_float(order.tax_price):.2f}",
        ]
        if order.coupon_code:
            lines.append(f"Coupon {order.coupon_code}: -{money_float(order.coupon_discount):.2f}")
        lines.append(f"Total:    {money_float(order.total_price):.2f} {order.currency}")
        return "\n".join(lines)

    def _send_mail(self, to: str, subject: str, body: str):
        cfg = current_app.config
        msg = EmailMessage()
        msg["From"] = cfg.get("MAIL_DEFAULT_SENDER")
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        with smtplib.SMTP(cfg["MAIL_SERVER"], cfg.get("MAIL_PORT", 587), timeout=10) as smtp:
            if cfg.get("MAIL_USE_TLS"):
                smtp.starttls()
            if cfg.get("MAIL_USERNAME"):
                smtp.login(cfg["MAIL_USERNAME"], cfg.get("MAIL_PASSWORD") or "")
            smtp.send_message(msg)
        logger.info(f"mail '{subject}' sent to {to}")


def mark_read(note: Notification):
    note.is_read = True
    db.session.commit()
