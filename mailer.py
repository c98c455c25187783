import logging
from email.message import EmailMessage

import aiosmtplib

import config

logger = logging.getLogger(__name__)


async def send_email(to: str, subject: str, text: str) -> None:
    """Send a plain-text message through the configured SMTP relay.

    Port 465 connects over TLS directly, any other port upgrades with STARTTLS.
    """
    message = EmailMessage()
    message["From"] = f"Clothy <{config.MAIL_FROM}>"
    message["To"] = to
    message["Subject"] = subject
    message.set_content(text)

    use_tls = config.SMTP_PORT == 465
    await aiosmtplib.send(
        message,
        hostname=config.SMTP_HOST,
        port=config.SMTP_PORT,
        username=config.SMTP_USER or None,
        password=config.SMTP_PASSWORD or None,
        use_tls=use_tls,
        start_tls=not use_tls,
    )
    logger.info("Sent '%s' to %s", subject, to)
