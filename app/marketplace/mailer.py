from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app

logger = logging.getLogger(__name__)


class MailError(RuntimeError):
    pass


@dataclass(frozen=True)
class OutgoingMessage:
    to: str
    subject: str
    body: str
    html: str | None = None


class Mailer:
    def send(self, message: OutgoingMessage) -> None:
        raise NotImplementedError


@dataclass
class ConsoleMailer(Mailer):
    """Logs messages and keeps them in memory (dev + tests)."""

    outbox: list[OutgoingMessage] = field(default_factory=list)

    def send(self, message: OutgoingMessage) -> None:
        self.outbox.append(message)
        logger.info("mail (console) to=%s subject=%s", message.to, message.subject)


@dataclass(frozen=True)
class SmtpMailer(Mailer):
    server: str
    port: int
    use_tls: bool
    username: str
    password: str
    sender: str
    timeout_s: int = 20

    def send(self, message: OutgoingMessage) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self.sender
        msg["To"] = message.to
        msg.attach(MIMEText(message.body, "plain"))
        if message.html:
            msg.attach(MIMEText(message.html, "html"))
        try:
            with smtplib.SMTP(self.server, self.port, timeout=self.timeout_s) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.sendmail(self.sender, [message.to], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise MailError(f"SMTP send failed to {message.to}: {e}") from e
        logger.info("mail (smtp) to=%s subject=%s", message.to, message.subject)


def mailer_from_config(config: dict) -> Mailer:
    backend = (config.get("MAIL_BACKEND") or "console").strip().lower()
    if backend == "smtp":
        return SmtpMailer(
            server=config.get("MAIL_SERVER") or "localhost",
            port=int(config.get("MAIL_PORT") or 587),
            use_tls=bool(config.get("MAIL_USE_TLS")),
            username=config.get("MAIL_USERNAME") or "",
            password=config.get("MAIL_PASSWORD") or "",
            sender=config.get("MAIL_FROM") or "no-reply@marketplace.local",
        )
    return ConsoleMailer()


def send_mail(to: str, subject: str, body: str, html: str | None = None) -> None:
    """
    Send through the app's configured mailer. Failures are logged and re-raised.
    """
    mailer: Mailer = current_app.extensions["mailer"]
    try:
        mailer.send(OutgoingMessage(to=to, subject=subject, body=body, html=html))
    except MailError:
        current_app.logger.exception("Mail delivery failed (to=%s subject=%s)", to, subject)
        raise
