"""
User model

Accounts are managed by the identity service; this table is read here for
token verification and display identity (username, avatar).
"""

from sqlalchemy import Column, String, Boolean
from .base import BaseModel


class User(BaseModel):
    __tablename__ = "users"

    username = Column(String(100), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True, unique=True)
    profile_image = Column(String(500), nullable=True)
    wallet_address = Column(String(100), nullable=True, unique=True)
    is_active = Column(Boolean, default=True, nullable=False)
