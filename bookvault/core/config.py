"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
import base64
import binascii

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # CORS: comma-separated origins of the Mini App frontends. Empty = default list in main.py.
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # TELEGRAM BOT (payment rail)
    # ===========================================
    telegram_bot_token: str  # Required, no default
    # Value of X-Telegram-Bot-Api-Secret-Token set via setWebhook. Empty = webhook disabled.
    telegram_webhook_secret: str = ""
    # Mini App initData older than this is rejected
    init_data_max_age_seconds: int = 86400

    # ===========================================
    # TELEGRAM STARS
    # ===========================================
    stars_currency: str = "XTR"
    stars_transactions_page_size: int = 100
    # How many getStarTransactions pages to scan when verifying a payment
    stars_transactions_max_pages: int = 3

    # ===========================================
    # CONTENT ENCRYPTION
    # ===========================================
    book_encryption_key: str  # Required, base64 of 32 bytes (AES-256-GCM)

    # ===========================================
    # CONTENT STORAGE (Walrus aggregator)
    # ===========================================
    walrus_aggregator_url: str = "https://aggregator.walrus-mainnet.walrus.space"
    storage_timeout: float = 30.0
    blob_cache_max_entries: int = 100

    # ===========================================
    # BLOCKCHAIN
    # ===========================================
    chain_rpc_url: str = "https://fullnode.mainnet.sui.io:443"
    # JSON-RPC relay that mints proof-of-purchase NFTs. Empty = chain_rpc_url.
    nft_mint_rpc_url: str = ""
    nft_mint_rpc_method: str = "bookvault_mintProofOfPurchase"
    chain_rpc_timeout: float = 20.0
    # base64 Ed25519 seed (32 bytes, optionally prefixed with the scheme flag byte)
    wallet_secret_key: str = ""
    wallet_coin_types: str = (
        "0x2::sui::SUI,"
        "0x8270feb7375eee355e64fdb69c50abb6b5f9393a722883c1cf45f8e26048810a::wal::WAL"
    )
    wallet_balance_ttl_seconds: int = 15

    # ===========================================
    # NFT MINTING
    # ===========================================
    mint_retry_max_attempts: int = 5
    mint_retry_backoff_seconds: float = 2.0
    mint_retry_backoff_max_seconds: float = 60.0
    # Redis dedup window for mint scheduling
    mint_schedule_ttl: int = 3600
    # PENDING rows older than this may be claimed again (crashed worker)
    mint_pending_stale_minutes: int = 30
    # Sweep only picks purchases older than this (fresh ones are still in the queue)
    mint_sweep_min_age_minutes: int = 10
    mint_sweep_batch_size: int = 100

    # ===========================================
    # INTERNAL SERVICES
    # ===========================================
    http_client_timeout: float = 10.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    # ===========================================
    # STATE MANAGEMENT
    # ===========================================
    idempotency_ttl: int = 300  # 5 minutes

    @field_validator("book_encryption_key")
    @classmethod
    def validate_encryption_key(cls, v: str) -> str:
        """Key must be a base64 encoded 32-byte AES key."""
        try:
            decoded = base64.b64decode(v.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("book_encryption_key must be base64 encoded") from e
        if len(decoded) != 32:
            raise ValueError(
                f"book_encryption_key must decode to 32 bytes (received {len(decoded)} bytes)"
            )
        return v.strip()

    @field_validator("wallet_secret_key")
    @classmethod
    def validate_wallet_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            return v
        try:
            decoded = base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("wallet_secret_key must be base64 encoded") from e
        if len(decoded) not in (32, 33):
            raise ValueError("wallet_secret_key must decode to 32 or 33 bytes")
        return v

    @property
    def wallet_coin_types_list(self) -> list[str]:
        return [t.strip() for t in self.wallet_coin_types.split(",") if t.strip()]

    @property
    def effective_mint_rpc_url(self) -> str:
        return self.nft_mint_rpc_url or self.chain_rpc_url

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
