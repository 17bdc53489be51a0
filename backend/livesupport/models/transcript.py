"""
SQLAlchemy models for archived session transcripts.
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from ..database import Base


class ArchivedSession(Base):
    """
    A closed chat session.
    """
    __tablename__ = "archived_sessions"

    id = Column(String(36), primary_key=True)
    customer_id = Column(String(255), nullable=False, index=True)
    assigned_agent = Column(String(36), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="closed")
    priority = Column(String(10), nullable=True)
    transfer_reason = Column(String(500), nullable=True)

    created_at = Column(DateTime, nullable=False)
    closed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    archived_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    session_metadata = Column("metadata", JSON, default=dict)

    messages = relationship(
        "ArchivedMessage",
        back_populates="session",
        order_by="ArchivedMessage.position",
        cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<ArchivedSession(id={self.id}, customer={self.customer_id})>"


class ArchivedMessage(Base):
    """
    A message of an archived session; ``position`` preserves delivery order.
    """
    __tablename__ = "archived_messages"

    id = Column(String(36), primary_key=True)
    session_id = Column(String(36), ForeignKey("archived_sessions.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    sender = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, nullable=False, index=True)

    message_metadata = Column("metadata", JSON, nullable=True)

    session = relationship("ArchivedSession", back_populates="messages")

    def __repr__(self):
        return f"<ArchivedMessage(id={self.id}, session={self.session_id}, sender={self.sender})>"
