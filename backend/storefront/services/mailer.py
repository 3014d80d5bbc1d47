# Overview: Outbound mail transports selected by MAIL_BACKEND.

"""
Mail transports.

smtp    Deliver through MAIL_SERVER with smtplib.
log     Write the message to app.logger (development default).
memory  Append to an in-process outbox (tests).

The transport for an app is built once and kept in app.extensions.
"""

from __future__ import annotations

import smtplib
from email.message import EmailMessage

from flask import current_app

from ..errors import ExternalServiceError


EXTENSION_KEY = "storefront_mailer"


class SmtpTransport:
    name = "smtp"

    def __init__(self, config):
        self.host = config["MAIL_SERVER"]
        self.port = config["MAIL_PORT"]
        self.username = config.get("MAIL_USERNAME")
        self.password = config.get("MAIL_PASSWORD")
        self.use_tls = config.get("MAIL_USE_TLS", False)
        self.timeout = config.get("MAIL_TIMEOUT_SECONDS", 10)

    def send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)


class LogTransport:
    name = "log"

    def send(self, message: EmailMessage) -> None:
        current_app.logger.info(
            "Mail to %s: %s\n%s", message["To"], message["Subject"], message.get_content()
        )


class MemoryTransport:
    name = "memory"

    def __init__(self):
        self.outbox: list[EmailMessage] = []

    def send(self, message: EmailMessage) -> None:
        self.outbox.append(message)


TRANSPORTS = {
    "smtp": SmtpTransport,
    "log": LogTransport,
    "memory": MemoryTransport,
}


def init_mailer(app) -> None:
    backend = app.config.get("MAIL_BACKEND", "log")
    if backend not in TRANSPORTS:
        raise RuntimeError(f"Unknown MAIL_BACKEND {backend!r}; expected one of {sorted(TRANSPORTS)}")
    transport_cls = TRANSPORTS[backend]
    app.extensions[EXTENSION_KEY] = transport_cls(app.config) if backend == "smtp" else transport_cls()


def get_transport():
    return current_app.extensions[EXTENSION_KEY]


def build_message(recipient: str, subject: str, body: str) -> EmailMessage:
    message = EmailMessage()
    message["From"] = current_app.config["MAIL_FROM"]
    message["To"] = recipient
    message["Subject"] = subject
    message.set_content(body)
    return message


def send_mail(recipient: str, subject: str, body: str) -> None:
    """Send one plain-text message. Raises ExternalServiceError if the transport fails."""
    transport = get_transport()
    try:
        transport.send(build_message(recipient, subject, body))
    except (smtplib.SMTPException, OSError) as exc:
        raise ExternalServiceError(
            f"Mail transport {transport.name} failed: {exc}",
            details={"transport": transport.name, "cause": type(exc).__name__},
        ) from exc
