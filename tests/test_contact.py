"""Tests for the contact relay."""

import smtplib
from unittest.mock import MagicMock

from ledesc.config import MailSettings
from ledesc.models.benefit import ContactMessage, ContactReason
from ledesc.services.mail import ContactRelay
from ledesc.services.mail.contact import build_contact_email

MESSAGE = ContactMessage(
    reason=ContactReason.SUGGESTIONS,
    email="ana@example.com",
    message="Sería útil ver <gráficos> por mes.",
)


def configured() -> MailSettings:
    return MailSettings(api_key="re_test", destination="inbox@example.com")


class TestContactRelay:
    """Tests for ContactRelay."""

    def test_not_configured(self):
        relay = ContactRelay(mail=MailSettings(api_key=None, destination=None))
        result = relay.send(MESSAGE)
        assert not result.success
        assert result.message == "Servicio de correo no configurado correctamente."

    def test_sends_over_smtp(self):
        """Test STARTTLS, login with the API key, and one message sent."""
        server = MagicMock()
        factory = MagicMock()
        factory.return_value.__enter__.return_value = server

        result = ContactRelay(mail=configured(), smtp_factory=factory, timeout=2).send(MESSAGE)

        assert result.success
        assert result.message == 'Tu mensaje sobre "sugerencias" ha sido enviado correctamente.'
        factory.assert_called_once_with("smtp.resend.com", 587, 2)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("resend", "re_test")
        sent = server.send_message.call_args.args[0]
        assert sent["Reply-To"] == "ana@example.com"
        assert sent["To"] == "inbox@example.com"

    def test_smtp_failure_is_reported(self):
        server = MagicMock()
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad key")
        factory = MagicMock()
        factory.return_value.__enter__.return_value = server

        result = ContactRelay(mail=configured(), smtp_factory=factory, timeout=2).send(MESSAGE)

        assert not result.success
        assert result.message.startswith("Error al enviar el correo:")
        server.send_message.assert_not_called()

    def test_body_is_escaped(self):
        msg = build_contact_email(MESSAGE, configured(), "LEDESC")
        html_part = msg.get_payload()[1].get_payload(decode=True).decode("utf-8")

        assert msg["Subject"] == "Contacto (LEDESC): sugerencias"
        assert "&lt;gráficos&gt;" in html_part
