"""Celery tasks: mint_purchase_nft and the unminted-purchase sweep."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from bookvault.schemas.purchases import ContentLocator, PurchaseRecord
from bookvault.services.chain.client import MintReceipt
from bookvault.services.entitlements.store import EntitlementStore
from bookvault.workers.tasks import mint_nft


def _add_purchase(db, payment_id, book_id, purchased_at=None):
    record = PurchaseRecord.new("1001", payment_id, ContentLocator(book_id=book_id, blob_id=f"blob-{book_id}"))
    if purchased_at is not None:
        record = record.model_copy(update={"purchased_at": purchased_at})
    EntitlementStore(db).insert_if_absent(record)
    db.commit()


class TestMintTask:
    def test_mints_and_notifies_buyer(self, session_factory, db):
        _add_purchase(db, "p1", "b1")
        container = MagicMock()
        container.wallet.address = "0xservice"
        container.chain.submit_mint.return_value = MintReceipt(
            transaction_id="tx-1", nft_address=None, minted_at=datetime.now(timezone.utc)
        )

        with patch.object(mint_nft, "SessionLocal", session_factory), patch.object(
            mint_nft, "get_worker_container", return_value=container
        ):
            result = mint_nft.mint_purchase_nft.run("p1")
            again = mint_nft.mint_purchase_nft.run("p1")

        assert result == {"ok": True, "payment_id": "p1", "transaction_id": "tx-1"}
        assert again["transaction_id"] == "tx-1"
        container.chain.submit_mint.assert_called_once_with("b1", "p1", "0xservice")
        # only the mint that actually happened is announced
        container.telegram.send_message.assert_called_once()
        assert container.telegram.send_message.call_args.args[0] == "1001"

    def test_notification_failure_is_ignored(self, session_factory, db):
        _add_purchase(db, "p1", "b1")
        container = MagicMock()
        container.wallet.address = "0xservice"
        container.chain.submit_mint.return_value = MintReceipt(
            transaction_id="tx-1", nft_address=None, minted_at=datetime.now(timezone.utc)
        )
        container.telegram.send_message.side_effect = RuntimeError("blocked by user")

        with patch.object(mint_nft, "SessionLocal", session_factory), patch.object(
            mint_nft, "get_worker_container", return_value=container
        ):
            assert mint_nft.mint_purchase_nft.run("p1")["ok"] is True


class TestSweep:
    def test_reschedules_old_unminted_purchases(self, session_factory, db):
        old = datetime.now(timezone.utc) - timedelta(hours=2)
        _add_purchase(db, "p-old", "b1", purchased_at=old)
        _add_purchase(db, "p-new", "b2")
        container = MagicMock()
        container.mint_scheduler.schedule.return_value = True

        with patch.object(mint_nft, "SessionLocal", session_factory), patch.object(
            mint_nft, "get_worker_container", return_value=container
        ):
            result = mint_nft.sweep_unminted_purchases.run()

        assert result == {"ok": True, "found": 1, "scheduled": 1}
        container.mint_scheduler.schedule.assert_called_once_with("p-old")

    def test_schedule_errors_do_not_stop_the_sweep(self, session_factory, db):
        old = datetime.now(timezone.utc) - timedelta(hours=2)
        _add_purchase(db, "p-a", "b1", purchased_at=old)
        _add_purchase(db, "p-b", "b2", purchased_at=old)
        container = MagicMock()
        container.mint_scheduler.schedule.side_effect = [ConnectionError("redis down"), True]

        with patch.object(mint_nft, "SessionLocal", session_factory), patch.object(
            mint_nft, "get_worker_container", return_value=container
        ):
            result = mint_nft.sweep_unminted_purchases.run()

        assert result["found"] == 2
        assert result["scheduled"] == 1
