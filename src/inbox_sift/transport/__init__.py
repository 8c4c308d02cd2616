"""Transport adapters for remote mail services."""

from .imap_client import ImapMailProvider

__all__ = ["ImapMailProvider"]
