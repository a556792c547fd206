"""
Service wallet: address derivation and coin balances.

The wallet is the default recipient of proof-of-purchase NFTs and pays for
storage, so operators watch its SUI / WAL balances.
"""
import base64
import hashlib
import logging
import threading
import time
from datetime import datetime, timezone

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from bookvault.core.config import settings
from bookvault.schemas.purchases import CoinBalance, WalletBalanceSnapshot
from bookvault.services.chain.client import ChainClient
from bookvault.services.errors import ChainUnavailable

logger = logging.getLogger(__name__)

ED25519_FLAG = b"\x00"
SEED_LENGTH = 32


def derive_address(secret_key: bytes) -> str:
    """
    Sui address of an Ed25519 key: "0x" + hex(BLAKE2b-256(flag || public_key)).
    secret_key is the 32-byte seed, optionally prefixed by the scheme flag byte.
    """
    if len(secret_key) == SEED_LENGTH + 1:
        if secret_key[:1] != ED25519_FLAG:
            raise ValueError("wallet key is not an Ed25519 key")
        secret_key = secret_key[1:]
    if len(secret_key) != SEED_LENGTH:
        raise ValueError(f"wallet key must be {SEED_LENGTH} bytes")
    public_key = Ed25519PrivateKey.from_private_bytes(secret_key).public_key().public_bytes(
        Encoding.Raw, PublicFormat.Raw
    )
    digest = hashlib.blake2b(ED25519_FLAG + public_key, digest_size=32).hexdigest()
    return f"0x{digest}"


def _fallback_symbol(coin_type: str) -> str:
    return coin_type.rsplit("::", 1)[-1] or coin_type


class WalletBalanceService:
    def __init__(
        self,
        chain: ChainClient,
        secret_key_b64: str | None = None,
        coin_types: list[str] | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self.chain = chain
        self._secret_key_b64 = secret_key_b64 if secret_key_b64 is not None else settings.wallet_secret_key
        self.coin_types = coin_types if coin_types is not None else settings.wallet_coin_types_list
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.wallet_balance_ttl_seconds
        self._lock = threading.Lock()
        self._address: str | None = None
        self._snapshot: WalletBalanceSnapshot | None = None
        self._snapshot_at = 0.0

    @property
    def address(self) -> str:
        """Computed once. Derivation runs outside the lock; the first stored value wins."""
        if self._address is not None:
            return self._address
        if not self._secret_key_b64:
            raise ChainUnavailable("Service wallet is not configured", retryable=False)
        computed = derive_address(base64.b64decode(self._secret_key_b64))
        with self._lock:
            if self._address is None:
                self._address = computed
            return self._address

    def get_balances(self) -> WalletBalanceSnapshot:
        """Balances of every configured coin. Raises ChainUnavailable; stale snapshots are never returned."""
        with self._lock:
            snapshot = self._snapshot
            if snapshot is not None and time.monotonic() - self._snapshot_at < self.ttl_seconds:
                return snapshot

        address = self.address
        coins = [self._fetch_coin(address, coin_type) for coin_type in self.coin_types]
        snapshot = WalletBalanceSnapshot(
            address=address,
            coins=coins,
            fetched_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._snapshot = snapshot
            self._snapshot_at = time.monotonic()
        return snapshot

    def _fetch_coin(self, owner: str, coin_type: str) -> CoinBalance:
        balance = self.chain.get_balance(owner, coin_type)
        try:
            metadata = self.chain.get_coin_metadata(coin_type) or {}
        except ChainUnavailable as e:
            # symbol/decimals fall back below
            logger.warning("coin_metadata_unavailable", extra={"error": str(e)})
            metadata = {}
        decimals = metadata.get("decimals")
        symbol = (metadata.get("symbol") or "").strip()
        return CoinBalance(
            coin_type=coin_type,
            symbol=symbol or _fallback_symbol(coin_type),
            total_balance=str(balance.get("totalBalance", "0")),
            decimals=decimals if isinstance(decimals, int) else 0,
        )

    def clear(self) -> None:
        with self._lock:
            self._snapshot = None
            self._snapshot_at = 0.0
