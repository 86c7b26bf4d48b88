"""Report delivery over SMTP."""

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol, Sequence

import click

from .errors import MailDeliveryFailed

logger = logging.getLogger(__name__)


class MailCredentials(Protocol):
    def apply(self, smtp: smtplib.SMTP) -> None: ...


class AmbientCredentials:
    """Send as the host's service identity; the relay decides whether to accept it."""

    def apply(self, smtp: smtplib.SMTP) -> None:
        logger.debug("Using ambient identity for SMTP")


class InteractiveCredentials:
    """Explicit SMTP credentials, used with STARTTLS and login."""

    def __init__(self, username: str, password: str) -> None:
        self.username = username
        self._password = password

    @classmethod
    def prompt(cls) -> "InteractiveCredentials":
        username = click.prompt("Mail username")
        password = click.prompt("Mail password", hide_input=True)
        return cls(username, password)

    def apply(self, smtp: smtplib.SMTP) -> None:
        smtp.starttls()
        smtp.login(self.username, self._password)


def credentials_for(interactive: bool) -> MailCredentials:
    """Pick the credential provider; prompts immediately when *interactive*."""
    if interactive:
        return InteractiveCredentials.prompt()
    return AmbientCredentials()


def build_message(sender: str, recipients: Sequence[str], subject: str, body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg["Subject"] = subject
    msg.set_content(body)
    return msg


def send_report(
    server: str,
    sender: str,
    recipients: Sequence[str],
    subject: str,
    body: str,
    credentials: Optional[MailCredentials] = None,
    port: int = 25,
) -> None:
    """Send *body* as a plain-text mail, raising :class:`MailDeliveryFailed` on any failure."""
    credentials = credentials or AmbientCredentials()
    msg = build_message(sender, recipients, subject, body)
    try:
        with smtplib.SMTP(server, port, timeout=60) as smtp:
            credentials.apply(smtp)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise MailDeliveryFailed(f"Could not send report via {server}:{port}: {exc}") from exc
    logger.info("Report sent to %s via %s", ", ".join(recipients), server)
