"""
SQLAlchemy ORM models for spamguard.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, DateTime, String, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class WhitelistedChat(Base):
    __tablename__ = "whitelisted_chats"

    chat_id = Column(BigInteger, primary_key=True, autoincrement=False)
    title = Column(String(255))
    added_by = Column(BigInteger)
    added_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"WhitelistedChat(chat_id={self.chat_id!r}, title={self.title!r})"
