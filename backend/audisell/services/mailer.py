"""Transactional email (verification and password reset links).

Without SMTP_HOST nothing leaves the process: messages are logged and kept
in ``mailer.outbox`` for local development and tests.
"""
from __future__ import annotations

import logging
import os
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

logger = logging.getLogger(__name__)

OUTBOX_LIMIT = 50


@dataclass(frozen=True)
class SmtpConfig:
    host: Optional[str]
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    sender: str = "no-reply@audisell.com"
    sender_name: str = "Audisell"
    timeout: float = 20.0

    @classmethod
    def from_env(cls) -> "SmtpConfig":
        return cls(
            host=os.getenv("SMTP_HOST") or None,
            port=int(os.getenv("SMTP_PORT", "587")),
            user=os.getenv("SMTP_USER") or None,
            password=os.getenv("SMTP_PASS") or os.getenv("SMTP_PASSWORD") or None,
            sender=os.getenv("SMTP_FROM", "no-reply@audisell.com"),
            sender_name=os.getenv("SMTP_FROM_NAME", "Audisell"),
        )

    @property
    def authenticated(self) -> bool:
        return bool(self.user and self.password)


def build_message(config: SmtpConfig, to: str, subject: str, text: str, html: Optional[str] = None) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = formataddr((config.sender_name, config.sender)) if config.sender_name else config.sender
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    return msg


class Mailer:
    def __init__(self, config: Optional[SmtpConfig] = None) -> None:
        self.config = config or SmtpConfig.from_env()
        self.outbox: list[dict[str, str]] = []
        logger.info("[mailer] transport=%s", "smtp" if self.config.host else "log-only")

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        """True when the SMTP server accepted the message (always True in log-only mode)."""
        if not self.config.host:
            logger.info("[mailer] to=%s subject=%r (not sent, no SMTP_HOST)", to, subject)
            self.outbox.append({"to": to, "subject": subject, "text": text})
            del self.outbox[:-OUTBOX_LIMIT]
            return True
        try:
            self._deliver(build_message(self.config, to, subject, text, html))
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("[mailer] auth rejected code=%s", exc.smtp_code)
            return False
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("[mailer] send failed to=%s host=%s err=%s", to, self.config.host, exc)
            return False
        logger.info("[mailer] accepted to=%s", to)
        return True

    def _deliver(self, msg: EmailMessage) -> None:
        cfg = self.config
        with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout) as server:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            if cfg.authenticated:
                server.login(cfg.user, cfg.password)
            server.send_message(msg)


mailer = Mailer()
