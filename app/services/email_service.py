import smtplib
import logging
from email.message import EmailMessage
from app.core.config import settings

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str, html: str | None = None) -> bool:
    if settings.EMAIL_BACKEND == "console":
        logger.info("Email to %s: %s\n%s", to_email, subject, body)
        return True

    smtp_host = settings.SMTP_HOST
    smtp_port = settings.SMTP_PORT
    smtp_user = settings.SMTP_USER
    smtp_pass = settings.SMTP_PASSWORD

    if not smtp_user or not smtp_pass:
        raise RuntimeError("SMTP credentials not configured (SMTP_USER / SMTP_PASSWORD)")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"{settings.SENDER_NAME} <{smtp_user}>"
    msg["To"] = to_email
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(smtp_host, smtp_port, timeout=10) as server:
            server.ehlo()
            if smtp_port == 587:
                server.starttls()
                server.ehlo()
            server.login(smtp_user, smtp_pass)
            server.send_message(msg)
        return True
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send email")
        raise


def send_otp_email(to_email: str, recipient_name: str, otp_code: str, purpose: str) -> bool:
    """Send a one-time code for 2FA, email verification or password reset."""
    subject = f"Your {settings.APP_NAME} verification code"
    body = (
        f"Hi {recipient_name},\n\n"
        f"Your verification code is: {otp_code}\n\n"
        f"Use it to complete your {purpose.replace('_', ' ')} request. "
        f"It expires in {settings.OTP_EXPIRE_MINUTES} minutes.\n\n"
        "If you did not request this, please ignore this email.\n\n"
        f"{settings.SENDER_NAME}"
    )
    html = (
        f"<p>Hi {recipient_name},</p>"
        f"<p>Your verification code is: <strong>{otp_code}</strong></p>"
        f"<p>It expires in {settings.OTP_EXPIRE_MINUTES} minutes.</p>"
        f"<p>If you did not request this, please ignore this email.</p>"
        f"<br/><p>{settings.SENDER_NAME}</p>"
    )

    return send_email(to_email, subject, body, html)


def send_password_reset_email(to_email: str, recipient_name: str, reset_token: str) -> bool:
    link = f"{settings.FRONTEND_URL.rstrip('/')}/reset-password?token={reset_token}"
    subject = f"Reset your {settings.APP_NAME} password"
    body = (
        f"Hi {recipient_name},\n\n"
        f"Click the link below to reset your password:\n{link}\n\n"
        f"The link expires in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes and can be used once.\n\n"
        f"If you did not request a password reset, please ignore this email.\n\n"
        f"{settings.SENDER_NAME}"
    )
    html = (
        f"<p>Hi {recipient_name},</p>"
        f"<p>Click the link below to reset your password:</p>"
        f"<p><a href=\"{link}\">Reset password</a></p>"
        f"<p>If you did not request a password reset, please ignore this email.</p>"
        f"<br/><p>{settings.SENDER_NAME}</p>"
    )

    return send_email(to_email, subject, body, html)
