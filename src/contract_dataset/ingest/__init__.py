"""
取得（Ingest）モジュール

Etherscan APIからコントラクトを取得し、データセット・DBに保存する。
"""

from contract_dataset.ingest.etherscan_client import (
    ApiError,
    DecodeError,
    EtherscanClient,
    FetchError,
    FetchOutcome,
    NotVerifiedError,
    TransportError,
)
from contract_dataset.ingest.pipeline import (
    BatchOutcome,
    FetchPipeline,
    FetchResult,
    FetchState,
    ImportPipeline,
    ImportResult,
    ImportState,
    StoreSink,
    run_fetch,
    run_fetch_to_db,
    run_import,
)
from contract_dataset.ingest.rate_limiter import RateLimiter

__all__ = [
    "RateLimiter",
    "EtherscanClient",
    "FetchOutcome",
    "FetchError",
    "NotVerifiedError",
    "TransportError",
    "DecodeError",
    "ApiError",
    "FetchPipeline",
    "FetchResult",
    "FetchState",
    "ImportPipeline",
    "ImportResult",
    "ImportState",
    "BatchOutcome",
    "StoreSink",
    "run_fetch",
    "run_fetch_to_db",
    "run_import",
]
