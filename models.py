"""
Payment Link Ledger - Database Schema
=====================================

Two tables back the whole system:
- payment_links: one row per shareable link and its claim state
- link_transactions: immutable audit entries (deposits and withdrawals)

Amounts are integer base units (lamports for SOL, token base units for SPL assets).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from sqlalchemy import (
    BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class LinkState(Enum):
    """Payment link lifecycle states (derived from columns, never stored)"""
    PENDING_DEPOSIT = "pending_deposit"
    DEPOSITED = "deposited"
    CLAIMED = "claimed"  # terminal

    @classmethod
    def from_columns(cls, deposit_transaction_ref: Optional[str], claimed: bool) -> "LinkState":
        if claimed:
            return cls.CLAIMED
        if deposit_transaction_ref:
            return cls.DEPOSITED
        return cls.PENDING_DEPOSIT


class TransactionRecordType(Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class TransactionRecordStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# ============================================================================
# MODELS
# ============================================================================

class PaymentLink(Base):
    """Shareable payment link backed by a shielded-pool deposit"""
    __tablename__ = 'payment_links'

    # Public link token, also the key-derivation password for the spend key
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    asset_type: Mapped[str] = mapped_column(String(16), nullable=False, default="SOL")

    # Deposit / claim state
    deposit_transaction_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claimed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    withdraw_transaction_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Non-custodial spend key material (multi-wallet claiming)
    encrypted_spend_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    encryption_iv: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    encryption_salt: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    creator_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    # Relationships
    transactions: Mapped[List["TransactionRecord"]] = relationship(
        "TransactionRecord",
        back_populates="link",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TransactionRecord.id",
    )

    # Constraints and indexes
    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_payment_link_amount_positive'),
        # claimed implies claimed_by, withdraw ref and deposit ref are all set
        CheckConstraint(
            'NOT claimed OR (claimed_by IS NOT NULL AND withdraw_transaction_ref IS NOT NULL '
            'AND deposit_transaction_ref IS NOT NULL)',
            name='ck_payment_link_claim_complete',
        ),
        Index('ix_payment_links_creator', 'creator_address'),
        Index('ix_payment_links_claimed_by', 'claimed_by'),
        Index('ix_payment_links_created', 'created_at'),
    )

    @property
    def state(self) -> LinkState:
        return LinkState.from_columns(self.deposit_transaction_ref, self.claimed)

    def __repr__(self):
        return f"<PaymentLink(id={self.id[:8]}..., amount={self.amount} {self.asset_type}, state={self.state.value})>"


class TransactionRecord(Base):
    """Immutable audit entry for a link deposit or withdrawal"""
    __tablename__ = 'link_transactions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    link_id: Mapped[str] = mapped_column(
        String(64), ForeignKey('payment_links.id', ondelete='CASCADE'), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    asset_type: Mapped[str] = mapped_column(String(16), nullable=False)
    # Depositor for deposits, recipient for withdrawals
    counterparty_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # Not unique: retries may leave several pending/failed rows before a confirmed one
    transaction_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TransactionRecordStatus.PENDING.value
    )
    fee_amount: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    link: Mapped["PaymentLink"] = relationship("PaymentLink", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("type IN ('deposit', 'withdraw')", name='ck_link_transaction_type_valid'),
        CheckConstraint("status IN ('pending', 'confirmed', 'failed')", name='ck_link_transaction_status_valid'),
        Index('ix_link_transactions_link_id', 'link_id'),
        Index('ix_link_transactions_counterparty', 'counterparty_address', 'type'),
    )

    def __repr__(self):
        return f"<TransactionRecord(id={self.id}, type={self.type}, link={self.link_id[:8]}..., status={self.status})>"
