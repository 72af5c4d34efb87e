"""
notify/email.py -- Outbound transactional email (SMTP) with Jinja2 templates.

Contract used by auth/service.py:
    send(to, subject, html) -> None, raising on delivery failure.

The auth service treats every send as fire-and-forget: it catches and logs
whatever this module raises. Nothing here decides whether a failure matters.

Dev mode:
    With no EMAIL_HOST configured, messages are logged (recipient redacted,
    body not included) instead of sent. Local registration and reset flows
    then work without an SMTP server.

Layer rule: notify/ may import from core/ only.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from urllib.parse import quote

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import Settings

logger = logging.getLogger("credkeep.email")

_TEMPLATE_DIR = Path(__file__).parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


def redact_email(email: str) -> str:
    """Keep the first two characters of the local part and the domain."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def render(template_name: str, **context) -> str:
    return _env.get_template(template_name).render(**context)


class EmailSender:
    """SMTP sender plus the three account emails the auth flows need.

    Usage:
        sender = EmailSender.from_settings(get_settings())
        sender.send_verification("ann@x.com", "Ann", token)
    """

    def __init__(
        self,
        *,
        host: str = "",
        port: int = 587,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str = "",
        from_name: str = "CredKeep",
        frontend_url: str = "http://localhost:3000",
        app_name: str = "CredKeep",
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email or user
        self.from_name = from_name
        self.frontend_url = frontend_url.rstrip("/")
        self.app_name = app_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailSender":
        return cls(
            host=settings.email_host,
            port=settings.email_port,
            user=settings.email_user,
            password=settings.email_password,
            use_tls=settings.email_use_tls,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
            frontend_url=settings.frontend_url,
            app_name=settings.app_name,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def send(self, to: str, subject: str, html: str) -> None:
        """Deliver one HTML message. Raises smtplib/ssl/OS errors on failure."""
        if not self.is_configured:
            logger.info("Email dev mode: would send %r to %s", subject, redact_email(to))
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg.attach(MIMEText(html, "html"))

        context = ssl.create_default_context()
        if self.use_tls:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                server.starttls(context=context)
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_email, [to], msg.as_string())
        else:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=30) as server:
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_email, [to], msg.as_string())
        logger.info("Email sent: %r to %s", subject, redact_email(to))

    # ------------------------------------------------------------------
    # Account emails
    # ------------------------------------------------------------------

    def send_verification(self, to: str, name: str, token: str) -> None:
        url = f"{self.frontend_url}/verify-email?token={quote(token)}"
        html = render("verification.html", name=name, url=url, app_name=self.app_name)
        self.send(to, f"Verify your {self.app_name} email address", html)

    def send_password_reset(self, to: str, name: str, token: str) -> None:
        url = f"{self.frontend_url}/reset-password?token={quote(token)}"
        html = render("password_reset.html", name=name, url=url, app_name=self.app_name)
        self.send(to, f"Reset your {self.app_name} password", html)

    def send_password_changed(self, to: str, name: str) -> None:
        html = render("password_changed.html", name=name, app_name=self.app_name)
        self.send(to, f"Your {self.app_name} password was changed", html)
