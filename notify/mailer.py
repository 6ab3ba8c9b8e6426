"""
notify/mailer.py -- Fire-and-forget mail delivery.

Callers never send mail on the request path. Routes hand a Mail to FastAPI's
BackgroundTasks with deliver() as the task; deliver() logs any failure and
returns, so a broken SMTP server can never change a response that has
already been computed. There is no synchronous retry.

Two notifiers ship:
  SmtpNotifier -- stdlib smtplib with STARTTLS, used when SMTP_HOST is set.
  LogNotifier  -- writes the subject and recipient to the log. Default for
                  development and tests.
"""

from __future__ import annotations

import html
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("forsetti.notify")


@dataclass(frozen=True)
class Mail:
    recipient: str
    subject: str
    body: str  # HTML


class Notifier(Protocol):
    def send(self, mail: Mail) -> None: ...


class SmtpNotifier:
    """Send mail through an SMTP relay. One connection per message."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str = "",
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender

    def send(self, mail: Mail) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = mail.subject
        msg["From"] = self.sender
        msg["To"] = mail.recipient
        msg.attach(MIMEText(mail.body, "html", "utf-8"))

        with smtplib.SMTP(self.host, self.port, timeout=10) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)
        logger.info("Mail sent to %s (%s)", mail.recipient, mail.subject)


class LogNotifier:
    def send(self, mail: Mail) -> None:
        logger.info("Mail to %s (%s) not sent: SMTP is not configured", mail.recipient, mail.subject)


def build_notifier(settings: Settings) -> Notifier:
    if settings.smtp_host:
        return SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender=settings.mail_from,
        )
    return LogNotifier()


def deliver(notifier: Notifier, mail: Mail) -> None:
    """Background-task entry point. Failures are logged, never raised."""
    try:
        notifier.send(mail)
    except Exception:
        logger.exception("Mail delivery to %s failed (%s)", mail.recipient, mail.subject)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def mail_template(title: str, content: str) -> str:
    """Wrap an HTML fragment in the shared Authors Haven layout."""
    return (
        "<div style='font-family: Arial, sans-serif; max-width: 600px; margin: auto;'>"
        f"<h2 style='color: #1a1a1a;'>{html.escape(title)}</h2>"
        f"{content}"
        "<p style='color: #888;'>Authors Haven</p>"
        "</div>"
    )


def welcome_mail(email: str, firstname: str) -> Mail:
    content = (
        f"<h3>Hi {html.escape(firstname)},</h3>"
        "<p>Thanks for joining and we hope you read stories that change your life forever!</p>"
        "<p>Warm regards.</p>"
    )
    return Mail(email, "Welcome to Author's Haven", mail_template("Welcome to Author's Haven", content))


def signin_alert_mail(email: str, firstname: str) -> Mail:
    content = (
        "<h5>Someone has just accessed your account at Author's Haven. "
        "If you are the one, please ignore this mail.</h5>"
    )
    return Mail(email, f"Hi {firstname}", mail_template("Forsetti Backend", content))


def reset_password_mail(email: str, firstname: str, link: str, ttl_minutes: int) -> Mail:
    content = (
        f"<p>Hello {html.escape(firstname)}</p>"
        "<p>You are receiving this mail because you requested a password reset. "
        "If it was not you, please ignore it.</p>"
        f"<p>Follow this link to reset your password: <a href='{html.escape(link, quote=True)}'>reset password</a></p>"
        f"<p><b style='color:black;'>Note</b> this link will expire in {ttl_minutes} minutes</p>"
    )
    subject = "Authors Haven Reset Password"
    return Mail(email, subject, mail_template(subject, content))
