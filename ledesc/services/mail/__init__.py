"""Outgoing mail."""

from ledesc.services.mail.contact import ContactRelay, ContactResult

__all__ = ["ContactRelay", "ContactResult"]
