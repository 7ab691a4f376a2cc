"""User ORM model: one row per corporate identity."""
import uuid
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from pulse.database import Base


class User(Base):
    __tablename__ = "users"

    user_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), nullable=False, unique=True)
    domain = Column(String(255), nullable=False, index=True)
    display_name = Column(String(100), nullable=False)
    avatar_url = Column(String(1000), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
