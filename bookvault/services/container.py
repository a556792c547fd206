"""
Process-scoped services: HTTP clients, blob cache, cipher, wallet.

The API creates one ServiceContainer in its lifespan and keeps it on app.state;
each Celery worker process builds its own lazily via get_worker_container().
Per-request objects (sessions, stores, coordinators) are built on top of it.
"""
import logging
import threading

from bookvault.core.config import settings
from bookvault.services.blob_cache import BlobCache
from bookvault.services.chain.client import ChainClient
from bookvault.services.circuit_breaker import get_circuit_breaker
from bookvault.services.encryption import BookCipher
from bookvault.services.idempotency import IdempotencyStore
from bookvault.services.minting.service import MintScheduler
from bookvault.services.payments.service import StarsPaymentVerifier
from bookvault.services.telegram.client import TelegramClient
from bookvault.services.wallet.service import WalletBalanceService
from bookvault.storage.base import BlobStorage
from bookvault.storage.walrus import WalrusBlobStorage

logger = logging.getLogger(__name__)


class ServiceContainer:
    def __init__(
        self,
        *,
        telegram: TelegramClient | None = None,
        storage: BlobStorage | None = None,
        chain: ChainClient | None = None,
        blob_cache: BlobCache | None = None,
        cipher: BookCipher | None = None,
        wallet: WalletBalanceService | None = None,
        mint_scheduler: MintScheduler | None = None,
    ) -> None:
        self.telegram = telegram or TelegramClient(breaker=get_circuit_breaker("telegram"))
        self.storage = storage or WalrusBlobStorage(breaker=get_circuit_breaker("walrus_storage"))
        self.chain = chain or ChainClient(breaker=get_circuit_breaker("chain_rpc"))
        self.blob_cache = blob_cache if blob_cache is not None else BlobCache(settings.blob_cache_max_entries)
        self.cipher = cipher or BookCipher.from_settings()
        self.wallet = wallet or WalletBalanceService(self.chain)
        self.mint_scheduler = mint_scheduler or MintScheduler(IdempotencyStore())
        self.verifier = StarsPaymentVerifier(self.telegram)

    def close(self) -> None:
        """Drop cached state and release HTTP connections."""
        self.blob_cache.clear()
        self.wallet.clear()
        for client in (self.telegram, self.storage, self.chain):
            close = getattr(client, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as e:
                logger.warning("Failed to close client", extra={"error": str(e)})


_worker_container: ServiceContainer | None = None
_worker_lock = threading.Lock()


def get_worker_container() -> ServiceContainer:
    """One container per Celery worker process."""
    global _worker_container
    if _worker_container is None:
        with _worker_lock:
            if _worker_container is None:
                _worker_container = ServiceContainer()
    return _worker_container
