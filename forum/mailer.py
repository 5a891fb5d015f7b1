"""
Outgoing mail.

Delivery is handled outside this service; here the message is only
logged so the reset link is visible in development.
"""
import logging

logger = logging.getLogger(__name__)


def send_email(to: str, html: str) -> None:
    logger.info("Email to %s: %s", to, html)
