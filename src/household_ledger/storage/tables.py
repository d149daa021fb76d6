"""
ORM tables for the ledger.

Amounts are stored as non-negative ``Numeric`` magnitudes with a separate
``direction`` column; there is no signed amount anywhere in the store.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from household_ledger.storage.db import Base


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BankConnection(Base):
    __tablename__ = "bank_connections"

    id = Column(String(32), primary_key=True, default=_new_id)
    external_user_id = Column(String, nullable=False)
    external_connection_id = Column(String, nullable=False)
    institution_name = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")
    last_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    accounts = relationship("Account", back_populates="connection")


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    # transaction / savings / loan / personal-loan / credit / other
    type = Column(String, nullable=False, default="transaction")
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="AUD")
    institution = Column(String, nullable=True)
    external_id = Column(String, nullable=True, unique=True)
    connection_id = Column(String(32), ForeignKey("bank_connections.id", ondelete="SET NULL"), nullable=True)
    last_updated = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    connection = relationship("BankConnection", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account")


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(String, nullable=False, unique=True)
    parent_id = Column(String(32), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    is_system = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=_utcnow)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "date", "description", "amount", "direction",
            name="uq_transactions_natural_key",
        ),
        Index("ix_transactions_account_date", "account_id", "date"),
    )

    id = Column(String(32), primary_key=True, default=_new_id)
    external_id = Column(String, nullable=True, unique=True)
    account_id = Column(String(32), ForeignKey("accounts.id"), nullable=False)
    date = Column(Date, nullable=False, index=True)
    description = Column(String, nullable=False)
    clean_description = Column(String, nullable=True)
    merchant_name = Column(String, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    direction = Column(String(6), nullable=False)
    category_id = Column(String(32), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    # rule / ai / manual / auto, or NULL when never categorised
    category_source = Column(String(8), nullable=True)
    is_excluded = Column(Boolean, nullable=False, default=False)
    is_transfer = Column(Boolean, nullable=False, default=False)
    # Who raised is_transfer: keyword / linked / ai, independent of category_source
    transfer_source = Column(String(8), nullable=True)
    linked_transaction_id = Column(String(32), ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    account = relationship("Account", back_populates="transactions")
    category = relationship("Category")


class CategoryRule(Base):
    __tablename__ = "category_rules"

    id = Column(String(32), primary_key=True, default=_new_id)
    pattern = Column(String, nullable=False, unique=True)
    category_id = Column(String(32), ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    confidence = Column(Float, nullable=False, default=1.0)
    source = Column(String(8), nullable=False, default="manual")
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    category = relationship("Category")
