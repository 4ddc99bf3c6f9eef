from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Text, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from chatnotes.database.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    receiver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    content = Column(Text, nullable=False)
    message_type = Column(String(20), default="text")  # text, image, file, system
    status = Column(String(20), default="sent")  # sent, delivered, read

    # Recall for everyone keeps the row as a placeholder
    is_deleted_for_all = Column(Boolean, default=False)
    # JSON list of user ids the message is hidden for, see visibility.py
    deleted_for_user_ids = Column(Text, nullable=False, default="[]")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])
    reads = relationship("MessageRead", back_populates="message", cascade="all, delete-orphan")

    __table_args__ = (
        Index('ix_messages_pair_created', 'sender_id', 'receiver_id', 'created_at'),
    )


class MessageRead(Base):
    __tablename__ = "message_reads"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    read_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    message = relationship("Message", back_populates="reads")

    __table_args__ = (
        UniqueConstraint('message_id', 'user_id', name='unique_message_read'),
    )
