"""Transactional e-mail (verification codes, welcome, password resets). Best-effort: never raises."""

import logging
from email.message import EmailMessage

import aiosmtplib

from timewise.core.config import get_settings

logger = logging.getLogger(__name__)

SEND_TIMEOUT = 10.0


async def send_email(to: str, subject: str, text: str) -> bool:
    settings = get_settings()
    if not settings.smtp_host:
        logger.warning("SMTP not configured, skipping email to %s", to)
        return False

    message = EmailMessage()
    message["From"] = settings.email_from
    message["To"] = to
    message["Subject"] = subject
    message.set_content(text)

    try:
        await aiosmtplib.send(
            message,
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user or None,
            password=settings.smtp_password or None,
            start_tls=settings.smtp_port == 587,
            timeout=SEND_TIMEOUT,
        )
    except (aiosmtplib.SMTPException, OSError) as exc:
        logger.error("Failed to send email to %s: %s", to, exc)
        return False
    logger.info("Email sent to %s: %s", to, subject)
    return True


async def send_otp_email(to: str, name: str, code: str) -> bool:
    return await send_email(
        to,
        "Your TimeWise verification code",
        f"Hi {name or 'there'},\n\n"
        f"Your verification code is {code}. It expires in 10 minutes.\n\n"
        "If you did not request this, you can ignore this email.\n",
    )


async def send_welcome_email(to: str, name: str, organization_name: str) -> bool:
    return await send_email(
        to,
        "Welcome to TimeWise",
        f"Hi {name or 'there'},\n\n"
        f"{organization_name} is set up and your 14-day trial has started.\n",
    )


async def send_password_reset_email(to: str, name: str, token: str) -> bool:
    link = f"{get_settings().app_url.rstrip('/')}/reset-password?token={token}"
    return await send_email(
        to,
        "Reset your TimeWise password",
        f"Hi {name or 'there'},\n\n"
        f"Use this link to choose a new password. It expires in 1 hour.\n\n{link}\n\n"
        "If you did not request this, you can ignore this email.\n",
    )


async def send_temporary_password_email(to: str, name: str, password: str) -> bool:
    return await send_email(
        to,
        "Your TimeWise password has been reset",
        f"Hi {name or 'there'},\n\n"
        "A platform administrator has reset your password.\n"
        f"Your temporary password is: {password}\n\n"
        "Please sign in and change it straight away.\n",
    )
