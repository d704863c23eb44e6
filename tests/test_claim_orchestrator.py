"""
Tests for the claim-exactly-once transition
Covers the happy path, every rejection and concurrent claim races
"""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from sqlalchemy import select

from config import Config
from models import LinkState, TransactionRecord
from tests.conftest import CREATOR, ONE_SOL, RECIPIENT
from utils.exceptions import (
    AlreadyClaimed,
    DepositMissing,
    InvalidClaimRequest,
    LinkNotFound,
)


def _withdraw_records(database, link_id):
    with database.managed_session() as session:
        return list(session.scalars(
            select(TransactionRecord).where(
                TransactionRecord.link_id == link_id,
                TransactionRecord.type == "withdraw",
            )
        ))


@pytest.mark.integration
class TestClaim:

    def test_full_lifecycle(self, ledger, orchestrator, database):
        """Create, deposit, claim: the link ends CLAIMED with both records"""
        link_id = ledger.create(ONE_SOL, "SOL", creator_address=CREATOR)
        ledger.record_deposit(link_id, "deposit_sig")

        result = orchestrator.claim(link_id, RECIPIENT, "withdraw_sig")

        assert result.link_id == link_id
        assert result.recipient_address == RECIPIENT
        assert result.amount == ONE_SOL
        assert result.fees.total_fee == 6_000_000 + 3_500_000
        assert result.net_amount == ONE_SOL - 9_500_000

        link = ledger.get(link_id)
        assert link.state == LinkState.CLAIMED
        assert link.claimed is True
        assert link.claimed_by == RECIPIENT
        assert link.withdraw_transaction_ref == "withdraw_sig"
        assert ledger.is_available(link_id) is False

        records = ledger.transactions(link_id)
        assert [record.type for record in records] == ["deposit", "withdraw"]
        withdraw = records[1]
        assert withdraw.id == result.transaction_record_id
        assert withdraw.status == "confirmed"
        assert withdraw.counterparty_address == RECIPIENT
        assert withdraw.transaction_hash == "withdraw_sig"
        assert withdraw.fee_amount == result.fees.total_fee

    def test_second_claim_is_rejected(self, ledger, orchestrator, database, deposited_link):
        orchestrator.claim(deposited_link, RECIPIENT, "withdraw_sig_1")

        with pytest.raises(AlreadyClaimed) as exc_info:
            orchestrator.claim(deposited_link, "AnotherRecipient", "withdraw_sig_2")

        assert exc_info.value.status_code == 409
        link = ledger.get(deposited_link)
        assert link.claimed_by == RECIPIENT
        assert link.withdraw_transaction_ref == "withdraw_sig_1"
        assert len(_withdraw_records(database, deposited_link)) == 1

    def test_same_recipient_cannot_claim_twice(self, orchestrator, deposited_link):
        orchestrator.claim(deposited_link, RECIPIENT, "withdraw_sig_1")

        with pytest.raises(AlreadyClaimed):
            orchestrator.claim(deposited_link, RECIPIENT, "withdraw_sig_1")

    def test_claim_before_deposit(self, ledger, orchestrator, database):
        link_id = ledger.create(ONE_SOL, "SOL")

        with pytest.raises(DepositMissing):
            orchestrator.claim(link_id, RECIPIENT, "withdraw_sig")

        link = ledger.get(link_id)
        assert link.state == LinkState.PENDING_DEPOSIT
        assert link.claimed_by is None
        assert _withdraw_records(database, link_id) == []

    def test_claim_missing_link(self, orchestrator):
        with pytest.raises(LinkNotFound):
            orchestrator.claim("missing", RECIPIENT, "withdraw_sig")

    @pytest.mark.parametrize("recipient,ref", [("", "withdraw_sig"), (RECIPIENT, ""), (None, "sig")])
    def test_claim_requires_recipient_and_ref(self, ledger, orchestrator, deposited_link, recipient, ref):
        with pytest.raises(InvalidClaimRequest):
            orchestrator.claim(deposited_link, recipient, ref)

        assert ledger.is_available(deposited_link)

    def test_spl_claim_fee(self, ledger, orchestrator):
        link_id = ledger.create(10_000_000, "USDC")
        ledger.record_deposit(link_id, "deposit_sig")

        result = orchestrator.claim(link_id, RECIPIENT, "withdraw_sig")

        assert result.fees.base_fee == 0
        assert result.fees.percentage_fee == 35_000
        assert result.net_amount == 9_965_000

    def test_claim_recorded_when_fees_raised_after_creation(self, ledger, orchestrator, database):
        """A withdrawal that already happened is recorded even if fees now exceed the amount"""
        link_id = ledger.create(6_100_000, "SOL")
        ledger.record_deposit(link_id, "deposit_sig")

        with patch.object(Config, "WITHDRAW_BASE_FEE_LAMPORTS", 7_000_000):
            result = orchestrator.claim(link_id, RECIPIENT, "withdraw_sig")

        assert result.fees is None
        assert result.net_amount is None
        assert result.to_dict()["fees"] is None
        link = ledger.get(link_id)
        assert link.state == LinkState.CLAIMED
        assert link.claimed_by == RECIPIENT

        records = _withdraw_records(database, link_id)
        assert len(records) == 1
        assert records[0].fee_amount is None

        with pytest.raises(AlreadyClaimed):
            orchestrator.claim(link_id, "AnotherRecipient", "withdraw_sig_2")

    def test_claim_result_serialization(self, orchestrator, deposited_link):
        data = orchestrator.claim(deposited_link, RECIPIENT, "withdraw_sig").to_dict()

        assert data["success"] is True
        assert data["claimedBy"] == RECIPIENT
        assert data["netAmount"] == ONE_SOL - 9_500_000
        assert data["fees"]["baseFee"] == 6_000_000


@pytest.mark.concurrent
class TestConcurrentClaims:
    """At most one of N simultaneous claims may win"""

    @pytest.mark.parametrize("contenders", [2, 8])
    def test_exactly_one_winner(self, ledger, orchestrator, database, deposited_link, contenders):
        def attempt(index):
            try:
                return orchestrator.claim(deposited_link, f"Recipient{index}", f"withdraw_sig_{index}")
            except AlreadyClaimed as e:
                return e

        with ThreadPoolExecutor(max_workers=contenders) as executor:
            outcomes = list(executor.map(attempt, range(contenders)))

        winners = [outcome for outcome in outcomes if not isinstance(outcome, AlreadyClaimed)]
        losers = [outcome for outcome in outcomes if isinstance(outcome, AlreadyClaimed)]

        assert len(winners) == 1
        assert len(losers) == contenders - 1

        link = ledger.get(deposited_link)
        assert link.claimed_by == winners[0].recipient_address
        assert link.withdraw_transaction_ref == winners[0].withdraw_transaction_ref

        records = _withdraw_records(database, deposited_link)
        assert len(records) == 1
        assert records[0].counterparty_address == winners[0].recipient_address

    def test_independent_links_claim_in_parallel(self, ledger, orchestrator):
        link_ids = []
        for index in range(5):
            link_id = ledger.create(ONE_SOL, "SOL")
            ledger.record_deposit(link_id, f"deposit_sig_{index}")
            link_ids.append(link_id)

        with ThreadPoolExecutor(max_workers=5) as executor:
            results = list(executor.map(
                lambda link_id: orchestrator.claim(link_id, RECIPIENT, f"withdraw_{link_id}"),
                link_ids,
            ))

        assert sorted(result.link_id for result in results) == sorted(link_ids)
        assert all(ledger.get(link_id).claimed for link_id in link_ids)
