"""
Tests for link creation, deposit recording and ledger queries
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update

from models import LinkState, PaymentLink, TransactionRecord
from services.link_ledger import LinkLedger
from tests.conftest import CREATOR, ONE_SOL, RECIPIENT
from utils.exceptions import (
    AmountTooSmallForFees,
    DecryptionFailed,
    DepositAlreadyRecorded,
    InvalidAmount,
    InvalidRequest,
    LinkNotFound,
    SpendKeyAlreadyAttached,
    SpendKeyMissing,
    UnsupportedAsset,
)


def _record_count(database, link_id=None):
    with database.managed_session() as session:
        stmt = select(func.count(TransactionRecord.id))
        if link_id is not None:
            stmt = stmt.where(TransactionRecord.link_id == link_id)
        return session.scalar(stmt)


@pytest.mark.integration
class TestCreateLink:

    def test_create_and_get(self, ledger):
        """A new link starts unfunded and unclaimed"""
        link_id = ledger.create(ONE_SOL, "SOL")

        link = ledger.get(link_id)
        assert len(link_id) == 32
        assert link.amount == ONE_SOL
        assert link.asset_type == "SOL"
        assert link.deposit_transaction_ref is None
        assert link.claimed is False
        assert link.claimed_by is None
        assert link.state == LinkState.PENDING_DEPOSIT

    def test_ids_are_unique(self, ledger):
        ids = {ledger.create(ONE_SOL, "SOL") for _ in range(20)}

        assert len(ids) == 20

    def test_asset_symbol_normalized(self, ledger):
        link_id = ledger.create(5_000_000, "usdc", creator_address=CREATOR)

        link = ledger.get(link_id)
        assert link.asset_type == "USDC"
        assert link.creator_address == CREATOR

    @pytest.mark.parametrize("amount", [0, -1, 2.5, "100", True])
    def test_rejects_invalid_amount(self, ledger, database, amount):
        with pytest.raises(InvalidAmount):
            ledger.create(amount, "SOL")

        assert ledger.list_links() == []

    def test_rejects_unknown_asset(self, ledger):
        with pytest.raises(UnsupportedAsset):
            ledger.create(ONE_SOL, "DOGE")

    def test_rejects_amount_that_fees_would_consume(self, ledger):
        with pytest.raises(AmountTooSmallForFees):
            ledger.create(6_000_000, "SOL")

    def test_create_with_spend_key_stores_ciphertext_only(self, ledger, database):
        link_id = ledger.create(ONE_SOL, "SOL", spend_key="secret-spend-key")

        with database.managed_session() as session:
            row = session.get(PaymentLink, link_id)
            assert row.encrypted_spend_key
            assert "secret-spend-key" not in row.encrypted_spend_key
            assert row.encryption_iv and row.encryption_salt

        assert ledger.reveal_spend_key(link_id) == "secret-spend-key"


@pytest.mark.integration
class TestRecordDeposit:

    def test_deposit_moves_link_to_deposited(self, ledger, database):
        link_id = ledger.create(ONE_SOL, "SOL")

        view = ledger.record_deposit(link_id, "sig_deposit_1", depositor_address=CREATOR)

        assert view.state == LinkState.DEPOSITED
        assert ledger.get(link_id).deposit_transaction_ref == "sig_deposit_1"
        assert ledger.is_available(link_id)

        records = ledger.transactions(link_id)
        assert len(records) == 1
        assert records[0].type == "deposit"
        assert records[0].status == "confirmed"
        assert records[0].amount == ONE_SOL
        assert records[0].counterparty_address == CREATOR
        assert records[0].transaction_hash == "sig_deposit_1"

    def test_same_ref_replay_is_a_no_op(self, ledger, database):
        link_id = ledger.create(ONE_SOL, "SOL")
        ledger.record_deposit(link_id, "sig_deposit_1")

        view = ledger.record_deposit(link_id, "sig_deposit_1")

        assert view.deposit_transaction_ref == "sig_deposit_1"
        assert _record_count(database, link_id) == 1

    def test_different_ref_is_rejected(self, ledger, database):
        link_id = ledger.create(ONE_SOL, "SOL")
        ledger.record_deposit(link_id, "sig_deposit_1")

        with pytest.raises(DepositAlreadyRecorded) as exc_info:
            ledger.record_deposit(link_id, "sig_deposit_2")

        assert exc_info.value.status_code == 409
        assert ledger.get(link_id).deposit_transaction_ref == "sig_deposit_1"
        assert _record_count(database, link_id) == 1

    def test_unknown_link(self, ledger):
        with pytest.raises(LinkNotFound):
            ledger.record_deposit("does-not-exist", "sig")

    def test_empty_ref(self, ledger):
        link_id = ledger.create(ONE_SOL, "SOL")

        with pytest.raises(InvalidRequest):
            ledger.record_deposit(link_id, "")

    def test_is_available_false_for_pending_and_missing(self, ledger):
        link_id = ledger.create(ONE_SOL, "SOL")

        assert ledger.is_available(link_id) is False
        assert ledger.is_available("missing") is False


@pytest.mark.integration
class TestQueries:

    def test_get_missing_link(self, ledger):
        with pytest.raises(LinkNotFound) as exc_info:
            ledger.get("nonexistent")

        assert exc_info.value.status_code == 404
        assert ledger.find("nonexistent") is None

    def test_get_does_not_mutate(self, ledger, database):
        link_id = ledger.create(ONE_SOL, "SOL")
        before = ledger.get(link_id)

        for _ in range(3):
            ledger.get(link_id)

        assert ledger.get(link_id) == before

    def test_list_links_newest_first_with_limit(self, ledger, database):
        ids = [ledger.create(ONE_SOL, "SOL") for _ in range(3)]
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        with database.managed_session() as session:
            for offset, link_id in enumerate(ids):
                session.execute(
                    update(PaymentLink)
                    .where(PaymentLink.id == link_id)
                    .values(created_at=base + timedelta(minutes=offset))
                )

        listed = ledger.list_links(limit=2)

        assert [view.id for view in listed] == [ids[2], ids[1]]

    def test_history_splits_sent_and_received(self, ledger, orchestrator):
        sent_id = ledger.create(ONE_SOL, "SOL", creator_address=CREATOR)
        ledger.record_deposit(sent_id, "sig_a")
        received_id = ledger.create(ONE_SOL, "SOL", creator_address="SomeoneElse")
        ledger.record_deposit(received_id, "sig_b")
        orchestrator.claim(received_id, CREATOR, "withdraw_sig_b")
        ledger.create(ONE_SOL, "SOL", creator_address="Unrelated")

        history = ledger.history(CREATOR)

        assert [view.id for view in history["sent"]] == [sent_id]
        assert [view.id for view in history["received"]] == [received_id]
        assert history["received"][0].state == LinkState.CLAIMED

    def test_history_requires_address(self, ledger):
        with pytest.raises(InvalidRequest):
            ledger.history("")

    def test_view_serialization(self, ledger):
        link_id = ledger.create(ONE_SOL, "SOL", creator_address=CREATOR)

        data = ledger.get(link_id).to_dict()

        assert data["id"] == link_id
        assert data["state"] == "pending_deposit"
        assert data["assetType"] == "SOL"
        assert data["claimed"] is False
        assert data["createdAt"] is not None

    def test_timestamps_are_utc_aware(self, ledger):
        link_id = ledger.create(ONE_SOL, "SOL")
        ledger.record_deposit(link_id, "sig")

        view = ledger.get(link_id)
        record = ledger.transactions(link_id)[0]

        assert view.created_at.tzinfo is not None
        assert view.created_at.utcoffset() == timedelta(0)
        assert view.to_dict()["createdAt"].endswith("+00:00")
        assert view.to_dict()["updatedAt"].endswith("+00:00")
        assert record.to_dict()["createdAt"].endswith("+00:00")


@pytest.mark.integration
class TestSpendKeys:

    def test_attach_then_reveal(self, ledger):
        link_id = ledger.create(ONE_SOL, "SOL")

        view = ledger.attach_spend_key(link_id, "late-attached-key")

        assert view.has_spend_key
        assert ledger.reveal_spend_key(link_id) == "late-attached-key"

    def test_attach_twice_is_rejected(self, ledger):
        link_id = ledger.create(ONE_SOL, "SOL", spend_key="first")

        with pytest.raises(SpendKeyAlreadyAttached):
            ledger.attach_spend_key(link_id, "second")

        assert ledger.reveal_spend_key(link_id) == "first"

    def test_attach_to_missing_link(self, ledger):
        with pytest.raises(LinkNotFound):
            ledger.attach_spend_key("missing", "key")

    def test_reveal_without_key(self, ledger):
        link_id = ledger.create(ONE_SOL, "SOL")

        with pytest.raises(SpendKeyMissing):
            ledger.reveal_spend_key(link_id)

    def test_reveal_missing_link(self, ledger):
        with pytest.raises(LinkNotFound):
            ledger.reveal_spend_key("missing")

    def test_tampered_ciphertext_is_distinct_from_missing(self, ledger, database):
        link_id = ledger.create(ONE_SOL, "SOL", spend_key="secret")
        with database.managed_session() as session:
            row = session.get(PaymentLink, link_id)
            raw = bytearray(bytes.fromhex(row.encrypted_spend_key))
            raw[0] ^= 0xFF
            row.encrypted_spend_key = raw.hex()

        with pytest.raises(DecryptionFailed):
            ledger.reveal_spend_key(link_id)

    def test_ledger_builds_default_vault(self, database):
        ledger = LinkLedger(database)

        link_id = ledger.create(ONE_SOL, "SOL", spend_key="k")

        assert ledger.reveal_spend_key(link_id) == "k"


@pytest.mark.integration
class TestDeletion:

    def test_delete_cascades_to_records(self, ledger, orchestrator, database, deposited_link):
        orchestrator.claim(deposited_link, RECIPIENT, "withdraw_sig")
        assert _record_count(database, deposited_link) == 2

        ledger.delete(deposited_link)

        assert ledger.find(deposited_link) is None
        assert _record_count(database, deposited_link) == 0

    def test_delete_missing_link(self, ledger):
        with pytest.raises(LinkNotFound):
            ledger.delete("missing")

    def test_purge_undeposited_only_touches_stale_pending_links(self, ledger, database):
        stale_pending = ledger.create(ONE_SOL, "SOL")
        fresh_pending = ledger.create(ONE_SOL, "SOL")
        stale_deposited = ledger.create(ONE_SOL, "SOL")
        ledger.record_deposit(stale_deposited, "sig")

        old = datetime.now(timezone.utc) - timedelta(days=3)
        with database.managed_session() as session:
            session.execute(
                update(PaymentLink)
                .where(PaymentLink.id.in_([stale_pending, stale_deposited]))
                .values(created_at=old)
            )

        assert ledger.purge_undeposited(timedelta(hours=24), dry_run=True) == [stale_pending]
        assert ledger.find(stale_pending) is not None

        assert ledger.purge_undeposited(timedelta(hours=24)) == [stale_pending]

        assert ledger.find(stale_pending) is None
        assert ledger.find(fresh_pending) is not None
        assert ledger.find(stale_deposited) is not None
