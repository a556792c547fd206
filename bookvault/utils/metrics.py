"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
invoices_created_total = Counter(
    "invoices_created_total",
    "Total Stars invoices issued",
    ["status"],  # success, error
)

purchases_confirmed_total = Counter(
    "purchases_confirmed_total",
    "Purchase confirmations by outcome",
    ["result"],  # created, duplicate, replay, rejected
)

content_deliveries_total = Counter(
    "content_deliveries_total",
    "Content delivery requests by outcome",
    ["result"],  # success, not_entitled, storage_error, corrupted
)

blob_cache_requests_total = Counter(
    "blob_cache_requests_total",
    "Blob cache lookups",
    ["result"],  # hit, miss
)

blob_cache_evictions_total = Counter(
    "blob_cache_evictions_total",
    "Blob cache LRU evictions",
)

nft_mint_attempts_total = Counter(
    "nft_mint_attempts_total",
    "NFT mint submissions by outcome",
    ["result"],  # minted, retry, failed, skipped
)

telegram_requests_total = Counter(
    "telegram_requests_total",
    "Total Telegram API requests",
    ["method", "status"],
)

storage_requests_total = Counter(
    "storage_requests_total",
    "Total blob storage requests",
    ["status"],
)

chain_requests_total = Counter(
    "chain_requests_total",
    "Total chain JSON-RPC requests",
    ["method", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

blob_cache_entries = Gauge(
    "blob_cache_entries",
    "Entries currently held by the blob cache",
)

# Histograms
telegram_request_duration_seconds = Histogram(
    "telegram_request_duration_seconds",
    "Telegram API request duration",
    ["method"],
    buckets=[0.1, 0.5, 1, 2, 5, 10],
)

storage_request_duration_seconds = Histogram(
    "storage_request_duration_seconds",
    "Blob storage fetch duration",
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30],
)

chain_request_duration_seconds = Histogram(
    "chain_request_duration_seconds",
    "Chain JSON-RPC request duration",
    ["method"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 20],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
