"""
Link Ledger
Creates payment links, records their deposits and answers read queries.

Every state change goes through a conditional update (see
utils/optimistic_locking.py); reads never mutate. The ledger owns no
connection state of its own: it is built around an injected ``Database``.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select

from config import Config
from database import Database
from models import (
    LinkState,
    PaymentLink,
    TransactionRecord,
    TransactionRecordStatus,
    TransactionRecordType,
)
from services.fee_engine import FeeCalculator
from services.key_vault import KeyVault
from utils.constants import get_asset
from utils.exceptions import (
    DepositAlreadyRecorded,
    InvalidAmount,
    InvalidRequest,
    LinkNotFound,
    SpendKeyAlreadyAttached,
    SpendKeyMissing,
)
from utils.optimistic_locking import ConditionalUpdateManager

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; every stored timestamp is UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = _as_utc(value)
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class TransactionRecordView:
    """Detached read-only copy of a TransactionRecord row"""
    id: int
    type: str
    link_id: str
    amount: int
    asset_type: str
    counterparty_address: Optional[str]
    transaction_hash: Optional[str]
    status: str
    fee_amount: Optional[int]
    created_at: Optional[datetime]

    @classmethod
    def from_model(cls, record: TransactionRecord) -> "TransactionRecordView":
        return cls(
            id=record.id,
            type=record.type,
            link_id=record.link_id,
            amount=record.amount,
            asset_type=record.asset_type,
            counterparty_address=record.counterparty_address,
            transaction_hash=record.transaction_hash,
            status=record.status,
            fee_amount=record.fee_amount,
            created_at=_as_utc(record.created_at),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "linkId": self.link_id,
            "amount": self.amount,
            "assetType": self.asset_type,
            "counterpartyAddress": self.counterparty_address,
            "transactionHash": self.transaction_hash,
            "status": self.status,
            "feeAmount": self.fee_amount,
            "createdAt": _iso(self.created_at),
        }


@dataclass(frozen=True)
class PaymentLinkView:
    """Detached read-only projection of a PaymentLink row"""
    id: str
    amount: int
    asset_type: str
    deposit_transaction_ref: Optional[str]
    claimed: bool
    claimed_by: Optional[str]
    withdraw_transaction_ref: Optional[str]
    encrypted_spend_key: Optional[str]
    encryption_iv: Optional[str]
    encryption_salt: Optional[str]
    creator_address: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_model(cls, link: PaymentLink) -> "PaymentLinkView":
        return cls(
            id=link.id,
            amount=link.amount,
            asset_type=link.asset_type,
            deposit_transaction_ref=link.deposit_transaction_ref,
            claimed=bool(link.claimed),
            claimed_by=link.claimed_by,
            withdraw_transaction_ref=link.withdraw_transaction_ref,
            encrypted_spend_key=link.encrypted_spend_key,
            encryption_iv=link.encryption_iv,
            encryption_salt=link.encryption_salt,
            creator_address=link.creator_address,
            created_at=_as_utc(link.created_at),
            updated_at=_as_utc(link.updated_at),
        )

    @property
    def state(self) -> LinkState:
        return LinkState.from_columns(self.deposit_transaction_ref, self.claimed)

    @property
    def has_spend_key(self) -> bool:
        return bool(self.encrypted_spend_key and self.encryption_iv)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "assetType": self.asset_type,
            "state": self.state.value,
            "depositTransactionRef": self.deposit_transaction_ref,
            "claimed": self.claimed,
            "claimedBy": self.claimed_by,
            "withdrawTransactionRef": self.withdraw_transaction_ref,
            "encryptedSpendKey": self.encrypted_spend_key,
            "encryptionIv": self.encryption_iv,
            "encryptionSalt": self.encryption_salt,
            "creatorAddress": self.creator_address,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class LinkLedger:
    """Persistence-facing operations on payment links"""

    def __init__(self, database: Database, vault: Optional[KeyVault] = None):
        self.database = database
        self.vault = vault

    def _require_vault(self) -> KeyVault:
        if self.vault is None:
            self.vault = KeyVault()
        return self.vault

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        amount: int,
        asset_type: str,
        creator_address: Optional[str] = None,
        spend_key: Optional[str] = None,
    ) -> str:
        """
        Create a link in PENDING_DEPOSIT and return its id.

        Raises:
            InvalidAmount: amount is not a positive integer
            UnsupportedAsset: asset symbol is not registered
            AmountTooSmallForFees: the link could never be withdrawn
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(f"Amount must be a positive integer number of base units, got {amount!r}")
        asset = get_asset(asset_type)
        FeeCalculator.compute_fee(amount, asset.symbol)

        link_id = secrets.token_hex(16)
        link = PaymentLink(
            id=link_id,
            amount=amount,
            asset_type=asset.symbol,
            claimed=False,
            creator_address=creator_address or None,
        )
        if spend_key:
            encrypted = self._require_vault().encrypt(spend_key, link_id)
            link.encrypted_spend_key = encrypted.ciphertext
            link.encryption_iv = encrypted.iv
            link.encryption_salt = encrypted.salt

        with self.database.managed_session() as session:
            session.add(link)

        logger.info(
            f"🔗 LINK_LEDGER: Created link {link_id[:8]}... for {amount} {asset.symbol}"
            f"{' (spend key attached)' if spend_key else ''}"
        )
        return link_id

    def record_deposit(
        self,
        link_id: str,
        deposit_transaction_ref: str,
        depositor_address: Optional[str] = None,
    ) -> PaymentLinkView:
        """
        Attach the deposit reference and move the link to DEPOSITED.

        Replaying the same reference is a no-op. A different reference on an
        already-deposited link raises DepositAlreadyRecorded.
        """
        if not deposit_transaction_ref:
            raise InvalidRequest("depositTransactionRef is required", link_id=link_id)

        with self.database.managed_session() as session:
            won = ConditionalUpdateManager(session).compare_and_set(
                PaymentLink,
                link_id,
                [PaymentLink.deposit_transaction_ref.is_(None)],
                {"deposit_transaction_ref": deposit_transaction_ref},
            )
            link = session.get(PaymentLink, link_id, populate_existing=True)

            if link is None:
                raise LinkNotFound(f"Payment link {link_id} not found", link_id=link_id)

            if not won:
                if link.deposit_transaction_ref == deposit_transaction_ref:
                    logger.info(f"♻️ LINK_LEDGER: Deposit replay ignored for link {link_id[:8]}...")
                    return PaymentLinkView.from_model(link)
                logger.warning(
                    f"🚫 LINK_LEDGER: Link {link_id[:8]}... already has deposit "
                    f"{link.deposit_transaction_ref}, rejected {deposit_transaction_ref}"
                )
                raise DepositAlreadyRecorded(
                    f"Deposit already recorded for link {link_id}", link_id=link_id
                )

            session.add(TransactionRecord(
                type=TransactionRecordType.DEPOSIT.value,
                link_id=link_id,
                amount=link.amount,
                asset_type=link.asset_type,
                counterparty_address=depositor_address or None,
                transaction_hash=deposit_transaction_ref,
                status=TransactionRecordStatus.CONFIRMED.value,
            ))
            view = PaymentLinkView.from_model(link)

        logger.info(f"💰 LINK_LEDGER: Deposit recorded for link {link_id[:8]}... ref={deposit_transaction_ref}")
        return view

    def attach_spend_key(self, link_id: str, spend_key: str) -> PaymentLinkView:
        """Encrypt and store a spend key on a link that has none yet"""
        if not spend_key:
            raise InvalidRequest("spendKey is required", link_id=link_id)
        encrypted = self._require_vault().encrypt(spend_key, link_id)

        with self.database.managed_session() as session:
            won = ConditionalUpdateManager(session).compare_and_set(
                PaymentLink,
                link_id,
                [PaymentLink.encrypted_spend_key.is_(None)],
                {
                    "encrypted_spend_key": encrypted.ciphertext,
                    "encryption_iv": encrypted.iv,
                    "encryption_salt": encrypted.salt,
                },
            )
            link = session.get(PaymentLink, link_id, populate_existing=True)
            if link is None:
                raise LinkNotFound(f"Payment link {link_id} not found", link_id=link_id)
            if not won:
                raise SpendKeyAlreadyAttached(
                    f"Payment link {link_id} already has a spend key", link_id=link_id
                )
            view = PaymentLinkView.from_model(link)

        logger.info(f"🔐 LINK_LEDGER: Spend key attached to link {link_id[:8]}...")
        return view

    def delete(self, link_id: str) -> None:
        """Delete a link; its transaction records go with it"""
        with self.database.managed_session() as session:
            link = session.get(PaymentLink, link_id)
            if link is None:
                raise LinkNotFound(f"Payment link {link_id} not found", link_id=link_id)
            session.delete(link)
        logger.info(f"🗑️ LINK_LEDGER: Deleted link {link_id[:8]}...")

    def purge_undeposited(self, older_than: timedelta, dry_run: bool = False) -> List[str]:
        """
        Remove links still waiting for a deposit after ``older_than``.

        Returns the ids that were (or, with dry_run, would be) removed. The
        delete re-checks the pending predicate so a deposit landing between
        the scan and the delete keeps its link.
        """
        cutoff = datetime.now(timezone.utc) - older_than
        with self.database.managed_session() as session:
            stale_ids = list(session.scalars(
                select(PaymentLink.id).where(
                    PaymentLink.deposit_transaction_ref.is_(None),
                    PaymentLink.created_at < cutoff,
                )
            ))
            if dry_run or not stale_ids:
                return stale_ids

            result = session.execute(
                delete(PaymentLink)
                .where(
                    PaymentLink.id.in_(stale_ids),
                    PaymentLink.deposit_transaction_ref.is_(None),
                )
                .execution_options(synchronize_session=False)
            )
            logger.info(f"🧹 LINK_LEDGER: Purged {result.rowcount} undeposited link(s) older than {cutoff.isoformat()}")
        return stale_ids

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, link_id: str) -> Optional[PaymentLinkView]:
        if not link_id:
            return None
        with self.database.managed_session() as session:
            link = session.get(PaymentLink, link_id)
            return PaymentLinkView.from_model(link) if link is not None else None

    def get(self, link_id: str) -> PaymentLinkView:
        view = self.find(link_id)
        if view is None:
            raise LinkNotFound(f"Payment link {link_id} not found", link_id=link_id)
        return view

    def is_available(self, link_id: str) -> bool:
        """True when the link is deposited and still unclaimed"""
        view = self.find(link_id)
        return view is not None and view.state == LinkState.DEPOSITED

    def list_links(self, limit: Optional[int] = None) -> List[PaymentLinkView]:
        limit = limit or Config.LINK_HISTORY_LIMIT
        with self.database.managed_session() as session:
            links = session.scalars(
                select(PaymentLink).order_by(PaymentLink.created_at.desc()).limit(limit)
            )
            return [PaymentLinkView.from_model(link) for link in links]

    def transactions(self, link_id: str) -> List[TransactionRecordView]:
        with self.database.managed_session() as session:
            link = session.get(PaymentLink, link_id)
            if link is None:
                raise LinkNotFound(f"Payment link {link_id} not found", link_id=link_id)
            return [TransactionRecordView.from_model(record) for record in link.transactions]

    def history(self, address: str, limit: Optional[int] = None) -> Dict[str, List[PaymentLinkView]]:
        """Links an address created (sent) and links it claimed (received), newest first"""
        if not address:
            raise InvalidRequest("address is required")
        limit = limit or Config.LINK_HISTORY_LIMIT

        def _query(column):
            return (
                select(PaymentLink)
                .where(column == address)
                .order_by(PaymentLink.created_at.desc())
                .limit(limit)
            )

        with self.database.managed_session() as session:
            sent = [PaymentLinkView.from_model(link) for link in session.scalars(_query(PaymentLink.creator_address))]
            received = [PaymentLinkView.from_model(link) for link in session.scalars(_query(PaymentLink.claimed_by))]

        return {"sent": sent, "received": received}

    def reveal_spend_key(self, link_id: str) -> str:
        """
        Decrypt the link's spend key with its id.

        Raises:
            LinkNotFound: no such link
            SpendKeyMissing: link carries no encrypted key
            DecryptionFailed: stored material did not authenticate
        """
        view = self.get(link_id)
        if not view.has_spend_key:
            raise SpendKeyMissing(f"Payment link {link_id} has no spend key", link_id=link_id)
        # PBKDF2 runs outside the session so no connection is held during derivation
        return self._require_vault().decrypt(view.encrypted_spend_key, view.encryption_iv, link_id)
