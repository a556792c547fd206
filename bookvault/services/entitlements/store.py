"""
EntitlementStore: repository over the purchases table.

insert_if_absent is the primitive the confirmation flow relies on:
one INSERT ... ON CONFLICT DO NOTHING covering both unique constraints
(payment_id; buyer_id + book_id), so concurrent duplicate confirmations
cannot create two rows and nobody sees an IntegrityError.
Returns frozen PurchaseRecord objects; ORM rows never leave this module.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from bookvault.models.purchase import Purchase
from bookvault.schemas.purchases import NftStatus, PurchaseRecord

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class EntitlementStore:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, buyer_id: str, book_id: str) -> PurchaseRecord | None:
        row = (
            self.db.query(Purchase)
            .filter(Purchase.buyer_id == buyer_id, Purchase.book_id == book_id)
            .one_or_none()
        )
        return PurchaseRecord.model_validate(row) if row else None

    def get_by_payment(self, payment_id: str) -> PurchaseRecord | None:
        row = self.db.query(Purchase).filter(Purchase.payment_id == payment_id).one_or_none()
        return PurchaseRecord.model_validate(row) if row else None

    def list(self, buyer_id: str) -> list[PurchaseRecord]:
        """All purchases of a buyer, oldest first."""
        rows = (
            self.db.query(Purchase)
            .filter(Purchase.buyer_id == buyer_id)
            .order_by(Purchase.purchased_at.asc(), Purchase.id.asc())
            .all()
        )
        return [PurchaseRecord.model_validate(r) for r in rows]

    def list_unminted(
        self, older_than: datetime, stale_before: datetime, limit: int = 100
    ) -> list[PurchaseRecord]:
        """Purchases the sweep should (re)schedule: NONE past older_than, or PENDING stuck since stale_before."""
        rows = (
            self.db.query(Purchase)
            .filter(
                Purchase.transaction_id.is_(None),
                or_(
                    (Purchase.nft_status == NftStatus.NONE.value) & (Purchase.purchased_at < older_than),
                    (Purchase.nft_status == NftStatus.PENDING.value) & (Purchase.mint_started_at < stale_before),
                ),
            )
            .order_by(Purchase.purchased_at.asc())
            .limit(limit)
            .all()
        )
        return [PurchaseRecord.model_validate(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_if_absent(self, record: PurchaseRecord) -> tuple[bool, PurchaseRecord | None]:
        """
        Atomically insert record unless (buyer_id, book_id) or payment_id already exists.
        Returns (inserted, row for (buyer_id, book_id)). The row is None only when
        payment_id is already bound to a different buyer/book.
        Does not commit.
        """
        dialect = self.db.get_bind().dialect.name
        insert_fn = _INSERT_BY_DIALECT.get(dialect)
        if insert_fn is None:
            raise RuntimeError(f"insert_if_absent is not supported for dialect {dialect!r}")

        values = {
            "id": record.id,
            "buyer_id": record.buyer_id,
            "book_id": record.book_id,
            "payment_id": record.payment_id,
            "blob_id": record.blob_id,
            "encryption_iv": record.encryption_iv,
            "encryption_tag": record.encryption_tag,
            "mime_type": record.mime_type,
            "file_name": record.file_name,
            "recipient_address": record.recipient_address,
            "purchased_at": record.purchased_at,
            "nft_status": NftStatus.NONE.value,
            "mint_attempts": 0,
            "updated_at": datetime.now(timezone.utc),
        }
        stmt = insert_fn(Purchase).values(**values).on_conflict_do_nothing()
        result = self.db.execute(stmt)
        inserted = result.rowcount == 1
        # rows loaded earlier in this session may be stale after a core INSERT
        self.db.expire_all()

        existing = self.get(record.buyer_id, record.book_id)
        logger.info(
            "purchase_insert_if_absent",
            extra={
                "buyer_id": record.buyer_id,
                "book_id": record.book_id,
                "payment_id": record.payment_id,
                "inserted": inserted,
            },
        )
        return inserted, existing

    def claim_for_minting(self, payment_id: str, stale_before: datetime) -> bool:
        """
        Move the purchase to PENDING for this worker. Claimable: no transaction yet and
        status NONE/FAILED, or PENDING left behind by a worker that died before stale_before.
        """
        now = datetime.now(timezone.utc)
        res = self.db.execute(
            update(Purchase)
            .where(
                Purchase.payment_id == payment_id,
                Purchase.transaction_id.is_(None),
                or_(
                    Purchase.nft_status.in_([NftStatus.NONE.value, NftStatus.FAILED.value]),
                    (Purchase.nft_status == NftStatus.PENDING.value)
                    & ((Purchase.mint_started_at.is_(None)) | (Purchase.mint_started_at < stale_before)),
                ),
            )
            .values(
                nft_status=NftStatus.PENDING.value,
                mint_started_at=now,
                last_mint_error=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def record_mint_attempt(self, payment_id: str, error: str | None = None) -> None:
        self.db.execute(
            update(Purchase)
            .where(Purchase.payment_id == payment_id)
            .values(
                mint_attempts=Purchase.mint_attempts + 1,
                last_mint_error=error,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

    def update_mint_result(
        self,
        payment_id: str,
        transaction_id: str | None,
        status: NftStatus,
        *,
        nft_address: str | None = None,
        minted_at: datetime | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Persist the outcome of a mint. MINTED is written only while transaction_id is
        still NULL, so a second transaction can never overwrite the first.
        Returns True if the row changed.
        """
        now = datetime.now(timezone.utc)
        stmt = update(Purchase).where(Purchase.payment_id == payment_id)
        if status == NftStatus.MINTED:
            if not transaction_id:
                raise ValueError("transaction_id is required for MINTED")
            stmt = stmt.where(Purchase.transaction_id.is_(None)).values(
                nft_status=NftStatus.MINTED.value,
                transaction_id=transaction_id,
                nft_address=nft_address,
                nft_minted_at=minted_at or now,
                last_mint_error=None,
                updated_at=now,
            )
        else:
            stmt = stmt.where(Purchase.transaction_id.is_(None)).values(
                nft_status=status.value,
                last_mint_error=error,
                updated_at=now,
            )
        res = self.db.execute(stmt.execution_options(synchronize_session=False))
        changed = res.rowcount == 1
        logger.info(
            "purchase_mint_result_recorded",
            extra={
                "payment_id": payment_id,
                "transaction_id": transaction_id,
                "nft_status": status.value,
                "inserted": changed,
            },
        )
        return changed
