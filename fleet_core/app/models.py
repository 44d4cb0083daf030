from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text
from .db import Base


class StoreEntry(Base):
    """One durable key->string slot of the local store (materials, requests, movements)"""
    __tablename__ = "local_store"
    key = Column(String(50), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
