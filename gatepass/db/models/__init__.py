"""Database models for gatepass."""

from gatepass.db.models.document import Document

__all__ = [
    "Document",
]
