"""
Closed error taxonomy for the marketplace client.

Every failure that reaches a caller of a mutating operation is a
``MarketplaceError`` with one of the ``ErrorKind`` values. ``classify`` turns
arbitrary exceptions (solana-py RPC errors, aiohttp/transport failures,
wallet errors) into that taxonomy; each kind carries one fixed user message
and a short list of recovery actions.
"""

from __future__ import annotations

import asyncio
import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    WALLET_CONNECTION = "WALLET_CONNECTION"
    TRANSACTION = "TRANSACTION"
    VALIDATION = "VALIDATION"
    NETWORK = "NETWORK"
    RATE_LIMIT = "RATE_LIMIT"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    UNKNOWN = "UNKNOWN"


USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.WALLET_CONNECTION: "Please connect your wallet and try again.",
    ErrorKind.TRANSACTION: "Transaction failed. Please check your balance and try again.",
    ErrorKind.VALIDATION: "Invalid input provided.",
    ErrorKind.NETWORK: "Network connection issue. Please check your connection and try again.",
    ErrorKind.RATE_LIMIT: "You're making requests too quickly. Please wait a moment and try again.",
    ErrorKind.INSUFFICIENT_BALANCE: "Insufficient balance to complete this transaction.",
    ErrorKind.UNKNOWN: "Something went wrong. Please try again or contact support if the problem persists.",
}

RECOVERY_ACTIONS: Dict[ErrorKind, List[str]] = {
    ErrorKind.WALLET_CONNECTION: ["Connect your wallet", "Check the keypair file", "Try a different wallet"],
    ErrorKind.TRANSACTION: [
        "Check your SOL balance",
        "Wait a moment and try again",
        "Reduce transaction amount",
        "Check network connection",
    ],
    ErrorKind.VALIDATION: ["Correct the highlighted field", "Try again"],
    ErrorKind.NETWORK: ["Check your internet connection", "Try again shortly", "Switch to a different RPC endpoint"],
    ErrorKind.RATE_LIMIT: ["Wait 1-2 minutes", "Reduce request frequency"],
    ErrorKind.INSUFFICIENT_BALANCE: ["Add more funds", "Choose a lower price", "Check for network fees"],
    ErrorKind.UNKNOWN: ["Try again", "Check your wallet connection", "Contact support if issue persists"],
}

# Marketplace program (6000+), Anchor framework (100+) and JSON-RPC error codes
PROGRAM_ERROR_MESSAGES: Dict[int, str] = {
    6000: "The name shouldn't be empty or exceed 32 characters",
    6001: "The fee cannot exceed 10,000 basis points (100%)",
    6002: "The listing price must be greater than zero",
    6003: "The listing owner does not match the signer",
    6004: "The NFT token account has insufficient balance",
    6005: "The NFT is not transferable",
    6006: "The NFT account is frozen and cannot be transferred",
    6007: "The provided metadata account does not match the NFT mint",
    6008: "The royalty percentage is invalid",
    6009: "The authority is not authorized to perform this action",
    6010: "Rate limit exceeded. Please try again later",
    100: "Invalid account provided",
    101: "Invalid instruction data",
    102: "Invalid account data",
    103: "Account already in use",
    104: "Invalid program ID",
    105: "Not enough account keys",
    106: "Account data too small",
    107: "Invalid account owner",
    108: "Account already exists",
    109: "Invalid signature",
    110: "Transaction failed to confirm",
    -32002: "Transaction simulation failed",
    -32003: "Transaction was not confirmed",
    -32005: "Node is unhealthy",
    -32007: "Transaction expired",
}
RPC_NETWORK_CODES = {-32005}
USER_REJECTED_CODE = 4001

WALLET_ERROR_CODES = {"WalletNotConnectedError", "WalletConnectionError"}
SEND_ERROR_CODES = {"SendTransactionError"}
INSUFFICIENT_FUNDS_CODES = {"InsufficientFundsError"}

_CUSTOM_ERROR_RE = re.compile(r"custom program error: 0x([0-9a-fA-F]+)")


class MarketplaceError(Exception):
    kind: ErrorKind = ErrorKind.UNKNOWN
    # details keys that carry no vendor text and are always returned to callers
    public_details: Tuple[str, ...] = ()

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        kind: Optional[ErrorKind] = None,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        raw: Optional[BaseException] = None,
    ):
        if kind is not None:
            self.kind = kind
        self.message = message or USER_MESSAGES[self.kind]
        self.field = field
        self.details = details or {}
        self.raw = raw
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        if self.kind == ErrorKind.VALIDATION:
            return self.message
        return USER_MESSAGES[self.kind]

    @property
    def recovery_actions(self) -> List[str]:
        return list(RECOVERY_ACTIONS[self.kind])

    def to_payload(self, debug: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.user_message,
            "field": self.field,
            "recovery_actions": self.recovery_actions,
        }
        for name in self.public_details:
            if name in self.details:
                payload[name] = _jsonable(self.details[name])
        if debug:
            payload["detail"] = self.message
            payload["details"] = {k: _jsonable(v) for k, v in self.details.items()}
            if self.raw is not None:
                payload["raw"] = f"{type(self.raw).__name__}: {self.raw}"
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value}, message={self.message!r}, field={self.field!r})"


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


class WalletConnectionError(MarketplaceError):
    kind = ErrorKind.WALLET_CONNECTION


class TransactionError(MarketplaceError):
    kind = ErrorKind.TRANSACTION
    public_details = ("signature", "code")

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        signature: Optional[str] = None,
        code: Optional[int] = None,
        logs: Optional[List[str]] = None,
        raw: Optional[BaseException] = None,
    ):
        details = {"signature": signature, "code": code, "logs": logs or []}
        super().__init__(message, details=details, raw=raw)
        self.signature = signature
        self.code = code
        self.logs = logs or []


class ValidationError(MarketplaceError):
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: str):
        super().__init__(message, field=field)


class NetworkError(MarketplaceError):
    kind = ErrorKind.NETWORK
    public_details = ("timed_out", "outcome_unknown")

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        timed_out: bool = False,
        outcome_unknown: bool = False,
        raw: Optional[BaseException] = None,
    ):
        super().__init__(message, details={"timed_out": timed_out, "outcome_unknown": outcome_unknown}, raw=raw)
        self.timed_out = timed_out
        self.outcome_unknown = outcome_unknown


class RateLimitError(MarketplaceError):
    kind = ErrorKind.RATE_LIMIT
    public_details = ("retry_after_ms", "retry_after_sec", "category")

    def __init__(self, retry_after_ms: int, category: str = "transactions"):
        seconds = max(1, -(-retry_after_ms // 1000))
        super().__init__(
            f"Too many {category.replace('_', ' ')}. Please wait {seconds}s and try again.",
            details={"retry_after_ms": retry_after_ms, "retry_after_sec": seconds, "category": category},
        )
        self.retry_after_ms = retry_after_ms
        self.category = category


class InsufficientBalanceError(MarketplaceError):
    kind = ErrorKind.INSUFFICIENT_BALANCE
    public_details = ("required", "available")

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        required: Optional[int] = None,
        available: Optional[int] = None,
        raw: Optional[BaseException] = None,
    ):
        super().__init__(message, details={"required": required, "available": available}, raw=raw)
        self.required = required
        self.available = available


class AccountNotFoundError(MarketplaceError):
    kind = ErrorKind.TRANSACTION
    public_details = ("account",)

    def __init__(self, address: Any, what: str = "marketplace"):
        message = (
            "Marketplace not initialized" if what == "marketplace" else f"{what.capitalize()} account not found"
        )
        super().__init__(message, details={"address": str(address), "account": what})
        self.address = address


def _rpc_error_code(raw: BaseException) -> Optional[int]:
    code = getattr(raw, "code", None)
    if isinstance(code, int):
        return code
    if raw.args:
        inner = raw.args[0]
        if isinstance(inner, dict):
            code = inner.get("code")
        else:
            code = getattr(inner, "code", None)
        if isinstance(code, int):
            return code
    return None


def _rpc_logs(raw: BaseException) -> List[str]:
    if raw.args:
        inner = raw.args[0]
        data = getattr(inner, "data", None)
        logs = getattr(data, "logs", None)
        if logs:
            return list(logs)
    return []


def _classify_program_code(code: int, raw: BaseException, logs: List[str]) -> Optional[MarketplaceError]:
    if code == 1:
        return InsufficientBalanceError("Insufficient funds for transaction", raw=raw)
    if code == USER_REJECTED_CODE:
        return TransactionError("Transaction was cancelled by user", code=code, raw=raw)
    if code in RPC_NETWORK_CODES:
        return NetworkError(PROGRAM_ERROR_MESSAGES[code], raw=raw)
    if code in PROGRAM_ERROR_MESSAGES:
        return TransactionError(PROGRAM_ERROR_MESSAGES[code], code=code, logs=logs, raw=raw)
    return None


def classify(raw: BaseException) -> MarketplaceError:
    """
    Map any exception onto the closed taxonomy. Order matters: known error
    objects, then wallet / RPC / program codes, then transport failures, then
    field-tagged validation errors, otherwise UNKNOWN with the raw message kept.
    """
    if isinstance(raw, MarketplaceError):
        return raw

    message = str(raw) or type(raw).__name__
    lowered = message.lower()
    code = getattr(raw, "code", None)
    if not isinstance(code, str):
        code = None
    name = type(raw).__name__

    if code in WALLET_ERROR_CODES or name in WALLET_ERROR_CODES:
        return WalletConnectionError(None if code == "WalletNotConnectedError" else message, raw=raw)
    if code in SEND_ERROR_CODES or name in SEND_ERROR_CODES:
        return TransactionError(message, raw=raw)
    if code in INSUFFICIENT_FUNDS_CODES or name in INSUFFICIENT_FUNDS_CODES:
        return InsufficientBalanceError(raw=raw)

    if "user rejected" in lowered:
        return _classify_program_code(USER_REJECTED_CODE, raw, [])

    match = _CUSTOM_ERROR_RE.search(message)
    if match:
        classified = _classify_program_code(int(match.group(1), 16), raw, _rpc_logs(raw))
        if classified is not None:
            return classified

    rpc_code = _rpc_error_code(raw)
    if rpc_code is not None:
        classified = _classify_program_code(rpc_code, raw, _rpc_logs(raw))
        if classified is not None:
            return classified

    if "insufficient funds" in lowered or "insufficient lamports" in lowered:
        return InsufficientBalanceError("Insufficient funds for transaction", raw=raw)
    if "account does not exist" in lowered or "could not find account" in lowered:
        return TransactionError("Account not found - make sure the marketplace is initialized", raw=raw)
    if isinstance(raw, RPCException):
        return TransactionError(message, logs=_rpc_logs(raw), raw=raw)

    timed_out = isinstance(raw, asyncio.TimeoutError) or "timeout" in lowered or "timed out" in lowered
    if timed_out:
        return NetworkError("Request timed out. Please try again.", timed_out=True, raw=raw)
    if (
        isinstance(raw, (aiohttp.ClientError, ConnectionError, SolanaRpcException))
        or name == "NetworkError"
        or "network" in lowered
    ):
        return NetworkError(message, raw=raw)

    field = getattr(raw, "field", None)
    if isinstance(field, str) and field:
        return ValidationError(message, field)

    return MarketplaceError(message, kind=ErrorKind.UNKNOWN, raw=raw)


def log_error(err: MarketplaceError, context: str = "", debug: bool = False):
    where = f" in {context}" if context else ""
    logger.error(f"[Errors] {err.kind.value}{where}: {err.message}")
    if debug:
        logger.debug(f"[Errors] details={err.details} field={err.field} raw={err.raw!r}")
