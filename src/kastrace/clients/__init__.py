"""Clients for external services."""

from kastrace.clients.kaspa import DEFAULT_BASE_URL, KaspaClient

__all__ = ["DEFAULT_BASE_URL", "KaspaClient"]
