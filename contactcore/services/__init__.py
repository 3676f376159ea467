"""Service layer."""

from .contacts import ContactsService

__all__ = ["ContactsService"]
