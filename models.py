"""
SQLAlchemy ORM Models for the SmartCart optimization service

Tables:
- stores: Integrated stores in catalog order, with their flat delivery fee
- optimization_cache: Serialized optimization results with an expiry time
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, Text, Index
)
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class Store(Base):
    """Integrated grocery store"""
    __tablename__ = 'stores'

    id = Column(Integer, primary_key=True)
    store_id = Column(String(50), unique=True, nullable=False)  # e.g., "kroger"
    name = Column(String(255), nullable=False)
    delivery_fee = Column(Numeric(10, 2), nullable=False)
    position = Column(Integer, nullable=False, default=0)  # Catalog order
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Store {self.store_id}>"


class OptimizationCacheEntry(Base):
    """Cached optimization result, keyed by cart contents and strategy"""
    __tablename__ = 'optimization_cache'
    __table_args__ = (
        Index('idx_cache_expires_at', 'expires_at'),
    )

    id = Column(Integer, primary_key=True)
    cache_key = Column(String(2048), unique=True, nullable=False)
    payload = Column(Text, nullable=False)  # JSON-encoded OptimizedCart
    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<OptimizationCacheEntry {self.cache_key[:40]} expires={self.expires_at}>"
