import asyncio
import smtplib
from email.message import EmailMessage
from typing import Optional
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def _build_message(subject: str, to_email: str, html_body: str, text_body: Optional[str] = None) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>" if settings.SMTP_FROM_NAME and settings.SMTP_FROM_EMAIL else (settings.SMTP_FROM_EMAIL or "no-reply@example.com")
    msg["To"] = to_email
    if text_body:
        msg.set_content(text_body)
    msg.add_alternative(html_body, subtype="html")
    return msg


def send_email(subject: str, to_email: str, html_body: str, text_body: Optional[str] = None) -> bool:
    if not settings.SMTP_HOST or not settings.SMTP_FROM_EMAIL:
        logger.warning("SMTP not configured; skipping email send")
        return False
    try:
        msg = _build_message(subject, to_email, html_body, text_body)
        timeout = settings.SMTP_TIMEOUT or 15
        debug = 1 if settings.SMTP_DEBUG else 0
        if settings.SMTP_USE_SSL:
            with smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=timeout) as server:
                server.set_debuglevel(debug)
                if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                    server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
                server.send_message(msg)
        else:
            with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=timeout) as server:
                server.set_debuglevel(debug)
                if settings.SMTP_USE_TLS:
                    server.starttls()
                if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                    server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
                server.send_message(msg)
        logger.info(f"Sent email to {to_email} with subject '{subject}'")
        return True
    except (smtplib.SMTPException, OSError) as exc:
        logger.error(f"Failed to send email to {to_email}: {exc}")
        return False


def render_otp_email(otp_code: str, ttl_minutes: int):
    subject = "Password Reset OTP"
    text = f"Your password reset OTP is: {otp_code}. It expires in {ttl_minutes} minutes."
    html = f"""
    <div style='font-family: Arial, sans-serif; line-height: 1.5;'>
      <h2>Reset your password</h2>
      <p>Use the following One-Time Password (OTP) to reset your password. This code will expire in <strong>{ttl_minutes} minutes</strong>.</p>
      <p style='font-size: 24px; font-weight: bold; letter-spacing: 4px;'>{otp_code}</p>
      <p>If you did not request a password reset, you can safely ignore this email.</p>
      <p>{settings.SMTP_FROM_NAME or 'Authgate'} Team</p>
    </div>
    """
    return subject, text, html


class NotificationSender:
    """Delivers a reset OTP to an email address. Returns True on delivery."""

    async def send_reset_otp(self, to_email: str, otp_code: str, ttl_minutes: int) -> bool:
        raise NotImplementedError


class SmtpNotificationSender(NotificationSender):
    async def send_reset_otp(self, to_email: str, otp_code: str, ttl_minutes: int) -> bool:
        subject, text, html = render_otp_email(otp_code, ttl_minutes)
        # smtplib blocks; keep it off the event loop
        return await asyncio.to_thread(send_email, subject, to_email, html, text)


class ConsoleNotificationSender(NotificationSender):
    """Development sender: writes the message to the log instead of mailing it."""

    async def send_reset_otp(self, to_email: str, otp_code: str, ttl_minutes: int) -> bool:
        _, text, _ = render_otp_email(otp_code, ttl_minutes)
        logger.info(f"[console-email] to={to_email} {text}")
        return True


def build_notification_sender() -> NotificationSender:
    backend = (settings.EMAIL_BACKEND or "smtp").lower()
    if backend == "console":
        return ConsoleNotificationSender()
    if backend != "smtp":
        raise ValueError(f"Unknown EMAIL_BACKEND: {settings.EMAIL_BACKEND}")
    return SmtpNotificationSender()
