from .errors import (
    AccountNotFoundError,
    ErrorKind,
    InsufficientBalanceError,
    MarketplaceError,
    NetworkError,
    RateLimitError,
    TransactionError,
    ValidationError,
    WalletConnectionError,
    classify,
    log_error,
)
from .validation import validate_fee, validate_marketplace_name, validate_price, validate_public_key
from .rate_limiter import DEFAULT_RULES, RateLimiter, RateLimiterRegistry, RateLimitStore, MemoryRateLimitStore
from .mutation_gateway import MutationGateway

__all__ = [
    "AccountNotFoundError",
    "ErrorKind",
    "InsufficientBalanceError",
    "MarketplaceError",
    "NetworkError",
    "RateLimitError",
    "TransactionError",
    "ValidationError",
    "WalletConnectionError",
    "classify",
    "log_error",
    "validate_fee",
    "validate_marketplace_name",
    "validate_price",
    "validate_public_key",
    "DEFAULT_RULES",
    "RateLimiter",
    "RateLimiterRegistry",
    "RateLimitStore",
    "MemoryRateLimitStore",
    "MutationGateway",
]
