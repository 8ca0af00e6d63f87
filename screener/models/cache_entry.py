from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from screener.database import Base

class CacheEntry(Base):
    __tablename__ = "cache_entries"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(512), unique=True, index=True, nullable=False)
    value = Column(JSON, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
