"""Generic document table.

Every record kind (leave requests, users, notifications, notification
markers) is stored as a JSON body keyed by (kind, id). The version column
backs optimistic concurrency: each write increments it, and conditional
writes only succeed against the version they read.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Integer

from gatepass.db.base import Base


class Document(Base):
    """A stored document of one kind."""
    __tablename__ = "documents"

    kind = Column(String(64), primary_key=True)
    id = Column(String(128), primary_key=True)
    version = Column(Integer, nullable=False, default=1)
    body = Column(JSON, nullable=False, default=dict)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Document {self.kind}/{self.id} v{self.version}>"
