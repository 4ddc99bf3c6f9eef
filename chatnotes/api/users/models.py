from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint

from chatnotes.database.database import Base


class User(Base):
    """
    Users table
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)

    avatar_url = Column(String(255), default="/static/images/avatar.webp")

    role = Column(String(20), default="user")  # user, admin
    is_active = Column(Boolean, default=True)

    message_privacy = Column(String(20), default="all")  # all, friends_only, nobody
    read_status_enabled = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)


class BlockedUser(Base):
    """
    One-way block; messaging is refused in both directions while it exists
    """
    __tablename__ = "blocked_users"
    __table_args__ = (
        UniqueConstraint("user_id", "blocked_user_id", name="uq_blocked_users_pair"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    blocked_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
