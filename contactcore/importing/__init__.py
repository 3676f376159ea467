"""Bulk contact import: reconciliation and external contact sources."""

from .reconciler import ImportReconciler
from .sources import ContactSourceClient, WuzapiContactSource

__all__ = ["ImportReconciler", "ContactSourceClient", "WuzapiContactSource"]
