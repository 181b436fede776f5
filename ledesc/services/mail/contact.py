"""
Contact-form relay.

Sends contact messages to the app's mailbox through the Resend SMTP relay.
The sender's address goes into Reply-To so the reply reaches them directly.
Failures come back as a ContactResult instead of an exception; the contact
form only needs to tell the user whether the message went out.
"""

import html
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, Optional

from pydantic import BaseModel

from ledesc.config import MailSettings, get_settings
from ledesc.models.benefit import ContactMessage
from ledesc.notifications import get_logger

SmtpFactory = Callable[[str, int, float], smtplib.SMTP]


class ContactResult(BaseModel):
    success: bool
    message: str


def build_contact_email(message: ContactMessage, mail: MailSettings, app_name: str) -> MIMEMultipart:
    reason = message.reason.value
    body = html.escape(message.message)

    msg = MIMEMultipart("alternative")
    msg["Subject"] = f"Contacto ({app_name}): {reason}"
    msg["From"] = mail.from_address
    msg["To"] = mail.destination or ""
    msg["Reply-To"] = message.email

    plain_text = (
        f"Mensaje Recibido - {app_name}\n\n"
        f"De: {message.email}\n"
        f"Motivo: {reason}\n\n"
        f"{message.message}\n"
    )
    html_content = (
        f"<h1>Mensaje Recibido - {html.escape(app_name)}</h1>"
        f"<p><strong>De:</strong> {html.escape(message.email)}</p>"
        f"<p><strong>Motivo:</strong> {html.escape(reason)}</p>"
        "<hr/>"
        "<p><strong>Mensaje:</strong></p>"
        f'<p style="white-space: pre-wrap;">{body}</p>'
    )
    msg.attach(MIMEText(plain_text, "plain", "utf-8"))
    msg.attach(MIMEText(html_content, "html", "utf-8"))
    return msg


class ContactRelay:
    """Relays ContactMessages by SMTP."""

    def __init__(
        self,
        mail: Optional[MailSettings] = None,
        smtp_factory: SmtpFactory = smtplib.SMTP,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self._mail = mail or settings.mail
        self._app_name = settings.app.app_name
        self._smtp_factory = smtp_factory
        self._timeout = timeout if timeout is not None else settings.app.remote_timeout_seconds
        self._logger = get_logger("ledesc.mail.contact")

    def send(self, message: ContactMessage) -> ContactResult:
        if not self._mail.is_configured:
            self._logger.error("contact_relay_not_configured")
            return ContactResult(
                success=False,
                message="Servicio de correo no configurado correctamente.",
            )

        msg = build_contact_email(message, self._mail, self._app_name)
        try:
            with self._smtp_factory(self._mail.smtp_host, self._mail.smtp_port, self._timeout) as server:
                server.starttls()
                server.login(self._mail.smtp_user, self._mail.api_key)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            self._logger.error("contact_send_failed", error=str(e), reason=message.reason.value)
            return ContactResult(
                success=False,
                message=f"Error al enviar el correo: {e}",
            )

        self._logger.info("contact_sent", reason=message.reason.value)
        return ContactResult(
            success=True,
            message=f'Tu mensaje sobre "{message.reason.value}" ha sido enviado correctamente.',
        )
