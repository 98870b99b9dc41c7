from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .db import Base

# Informal status vocabularies; nothing enforces transitions between them
GENERATION_PROCESSING = "processing"
GENERATION_FRONT_GENERATED = "front_generated"
GENERATION_COMPLETED = "completed"
GENERATION_FAILED = "failed"

ORDER_CREATED = "created"
ORDER_COMPLETED = "completed"
ORDER_FAILED = "failed"

TX_PURCHASE = "purchase"
TX_USAGE = "usage"
TX_REFUND = "refund"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    credits = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")
    generations = relationship("Generation", back_populates="user", cascade="all, delete-orphan")
    orders = relationship("PaymentOrder", back_populates="user", cascade="all, delete-orphan")


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    access_token = Column(String(64), nullable=False, unique=True, index=True)
    login_at = Column(DateTime, server_default=func.now(), nullable=False)
    # NULL while the session is live
    logout_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="sessions")


class Generation(Base):
    __tablename__ = "generations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    garment_type = Column(String, nullable=False)
    # uploads and renders are stored inline as data URLs
    front_view_url = Column(Text, nullable=True)
    back_view_url = Column(Text, nullable=True)
    generated_front1 = Column(Text, nullable=True)
    generated_front2 = Column(Text, nullable=True)
    generated_front3 = Column(Text, nullable=True)
    generated_side = Column(Text, nullable=True)
    generated_back = Column(Text, nullable=True)
    selected_front_index = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default=GENERATION_PROCESSING, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="generations")


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan = Column(String, nullable=False)
    # minor currency units (paise)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    credits = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=ORDER_CREATED, index=True)
    payment_id = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="orders")


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # positive for purchases and refunds, negative for usage
    amount = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    description = Column(String, nullable=True)
    order_id = Column(String, nullable=True)
    payment_id = Column(String, nullable=True)
    generation_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
