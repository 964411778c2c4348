"""
Out-of-band delivery of verification codes.

Codes never travel back through the API response; they go through one of
these backends. `memory` keeps messages in-process (tests, local demos).
"""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingMail:
    to: str
    subject: str
    body: str
    purpose: str
    code: str | None = None


class Mailer:
    def send(self, mail: OutgoingMail) -> None:
        raise NotImplementedError


class LogMailer(Mailer):
    def send(self, mail: OutgoingMail) -> None:
        # Never log the code itself.
        logger.info("MAIL: to=%s purpose=%s subject=%r (log backend, not delivered)", mail.to, mail.purpose, mail.subject)


@dataclass
class MemoryMailer(Mailer):
    outbox: list[OutgoingMail] = field(default_factory=list)

    def send(self, mail: OutgoingMail) -> None:
        self.outbox.append(mail)

    def last_code_for(self, to: str) -> str | None:
        for mail in reversed(self.outbox):
            if mail.to == to:
                return mail.code
        return None


@dataclass(frozen=True)
class SmtpMailer(Mailer):
    host: str
    port: int
    username: str
    password: str
    sender: str

    def send(self, mail: OutgoingMail) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = mail.to
        msg["Subject"] = mail.subject
        msg.set_content(mail.body)
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)
        logger.info("MAIL: sent purpose=%s to=%s", mail.purpose, mail.to)


def mailer_from_config(config: dict) -> Mailer:
    backend = (config.get("MAIL_BACKEND") or "log").strip().lower()
    if backend == "memory":
        return MemoryMailer()
    if backend == "smtp":
        if not config.get("SMTP_HOST"):
            raise RuntimeError("MAIL_BACKEND=smtp requires SMTP_HOST.")
        return SmtpMailer(
            host=config["SMTP_HOST"],
            port=int(config.get("SMTP_PORT") or 587),
            username=config.get("SMTP_USERNAME") or "",
            password=config.get("SMTP_PASSWORD") or "",
            sender=config.get("MAIL_FROM") or "no-reply@mistery.local",
        )
    return LogMailer()
