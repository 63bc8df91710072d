"""
Declarative base and shared audit columns
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import declarative_base

from ..utils.clock import utcnow

Base = declarative_base()


class BaseModel(Base):
    __abstract__ = True

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=True)
    created_by = Column(String(100), nullable=True)
    updated_by = Column(String(100), nullable=True)
