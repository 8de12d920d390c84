import json
import logging
from pathlib import Path
from typing import Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import escape

from config import get_settings
from errors import EmailDeliveryError


logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

templates = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


class Mailer:
    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key or settings.sendgrid_api_key
        self.from_email = from_email or settings.sendgrid_from_email
        self.timeout = timeout or settings.mail_timeout_secs

    def send(
        self, to: str, subject: str, text: str, html: Optional[str] = None
    ) -> None:
        if not self.api_key or not self.from_email:
            logger.error("email_not_configured: missing SendGrid key or sender")
            raise EmailDeliveryError("No se pudo enviar el correo")

        body = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text},
                {"type": "text/html", "value": html or f"<p>{escape(text)}</p>"},
            ],
        }
        req = Request(
            SENDGRID_URL,
            data=json.dumps(body).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                status = resp.status
        except (URLError, TimeoutError) as exc:
            logger.error(f"email_failed: to={to} error={exc}")
            raise EmailDeliveryError("No se pudo enviar el correo") from exc
        if status >= 300:
            logger.error(f"email_failed: to={to} status={status}")
            raise EmailDeliveryError("No se pudo enviar el correo")
        logger.info(f"email_sent: to={to} subject={subject!r}")

    def send_password_reset(
        self, to: str, reset_link: str, nickname: Optional[str] = None
    ) -> None:
        context = {
            "nickname": nickname,
            "reset_link": reset_link,
            "expires_minutes": 60,
        }
        text = templates.get_template("email/password_reset.txt").render(**context)
        html = templates.get_template("email/password_reset.html").render(**context)
        self.send(to, "Restablecer contraseña", text, html)
