"""
Claim Orchestrator
Moves a deposited payment link to CLAIMED exactly once.

    PENDING_DEPOSIT --record_deposit--> DEPOSITED --claim--> CLAIMED (terminal)

The transition is a single conditional UPDATE
(``claimed = false AND deposit_transaction_ref IS NOT NULL``) whose affected
row count decides the winner. The withdraw record is inserted in the same
transaction, so a losing claim leaves no trace. There are no in-process
locks and no retries: AlreadyClaimed is a final answer.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from database import Database
from models import PaymentLink, TransactionRecord, TransactionRecordStatus, TransactionRecordType
from services.fee_engine import FeeBreakdown, FeeCalculator
from utils.exceptions import AlreadyClaimed, DepositMissing, InvalidAmount, InvalidClaimRequest, LinkNotFound
from utils.optimistic_locking import ConditionalUpdateManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimResult:
    """Outcome of a successful claim"""
    link_id: str
    recipient_address: str
    withdraw_transaction_ref: str
    amount: int
    asset_type: str
    fees: Optional[FeeBreakdown]  # None when current fee settings exceed the amount
    transaction_record_id: int

    @property
    def net_amount(self) -> Optional[int]:
        return self.fees.net_amount if self.fees is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "linkId": self.link_id,
            "claimedBy": self.recipient_address,
            "withdrawTransactionRef": self.withdraw_transaction_ref,
            "amount": self.amount,
            "assetType": self.asset_type,
            "fees": {
                "baseFee": self.fees.base_fee,
                "percentageFee": self.fees.percentage_fee,
                "totalFee": self.fees.total_fee,
            } if self.fees is not None else None,
            "netAmount": self.net_amount,
            "transactionRecordId": self.transaction_record_id,
        }


class ClaimOrchestrator:
    """Claim-exactly-once state transition for payment links"""

    def __init__(self, database: Database):
        self.database = database

    def claim(self, link_id: str, recipient_address: str, withdraw_transaction_ref: str) -> ClaimResult:
        """
        Mark a deposited link claimed by ``recipient_address``.

        Raises:
            InvalidClaimRequest: empty recipient or withdraw reference
            LinkNotFound: no such link
            DepositMissing: link has no recorded deposit yet
            AlreadyClaimed: another claim already won
        """
        if not link_id or not recipient_address or not withdraw_transaction_ref:
            raise InvalidClaimRequest(
                "linkId, recipientAddress and withdrawTransactionRef are required", link_id=link_id
            )

        with self.database.managed_session() as session:
            link = session.get(PaymentLink, link_id)
            if link is None:
                raise LinkNotFound(f"Payment link {link_id} not found", link_id=link_id)
            if not link.deposit_transaction_ref:
                raise DepositMissing(f"Payment link {link_id} has no recorded deposit", link_id=link_id)

            amount, asset_type = link.amount, link.asset_type

            # The only place a link becomes claimed
            won = ConditionalUpdateManager(session).compare_and_set(
                PaymentLink,
                link_id,
                [
                    PaymentLink.claimed.is_(False),
                    PaymentLink.deposit_transaction_ref.isnot(None),
                ],
                {
                    "claimed": True,
                    "claimed_by": recipient_address,
                    "withdraw_transaction_ref": withdraw_transaction_ref,
                },
            )
            if not won:
                logger.warning(f"🔒 CLAIM: Link {link_id[:8]}... already claimed, rejecting {recipient_address}")
                raise AlreadyClaimed(f"Payment link {link_id} has already been claimed", link_id=link_id)

            # The withdrawal already happened on-chain; fee settings never block recording it
            try:
                fees = FeeCalculator.compute_fee(amount, asset_type)
            except InvalidAmount as e:
                logger.warning(f"⚠️ CLAIM: No fee breakdown for link {link_id[:8]}... under current settings: {e}")
                fees = None

            record = TransactionRecord(
                type=TransactionRecordType.WITHDRAW.value,
                link_id=link_id,
                amount=amount,
                asset_type=asset_type,
                counterparty_address=recipient_address,
                transaction_hash=withdraw_transaction_ref,
                status=TransactionRecordStatus.CONFIRMED.value,
                fee_amount=fees.total_fee if fees is not None else None,
            )
            session.add(record)
            session.flush()
            record_id = record.id

        logger.info(
            f"✅ CLAIM: Link {link_id[:8]}... claimed by {recipient_address} - "
            f"{amount} {asset_type} gross, {fees.net_amount if fees else 'unknown'} net, "
            f"ref={withdraw_transaction_ref}"
        )
        return ClaimResult(
            link_id=link_id,
            recipient_address=recipient_address,
            withdraw_transaction_ref=withdraw_transaction_ref,
            amount=amount,
            asset_type=asset_type,
            fees=fees,
            transaction_record_id=record_id,
        )
