from __future__ import annotations

import math
import re
from numbers import Integral, Real
from typing import Any

import base58
from solders.pubkey import Pubkey

from gateway.errors import ValidationError

MIN_PRICE_SOL = 0.001
MAX_PRICE_SOL = 1_000_000
MIN_FEE_BPS = 0
MAX_FEE_BPS = 2000  # 20%
MAX_NAME_BYTES = 32  # PDA seed limit

_DANGEROUS_CHARS = re.compile(r"[<>'\"&]")


def validate_price(price: Any) -> float:
    if isinstance(price, bool) or not isinstance(price, Real):
        raise ValidationError("Price must be a valid number", "price")
    price = float(price)
    if not math.isfinite(price):
        raise ValidationError("Price must be a valid number", "price")
    if price < MIN_PRICE_SOL:
        raise ValidationError(f"Price must be at least {MIN_PRICE_SOL} SOL", "price")
    if price > MAX_PRICE_SOL:
        raise ValidationError(f"Price cannot exceed {MAX_PRICE_SOL:,} SOL", "price")
    return price


def validate_fee(fee_bps: Any) -> int:
    if isinstance(fee_bps, bool) or not isinstance(fee_bps, Integral):
        raise ValidationError("Fee must be a whole number in basis points", "fee")
    if fee_bps < MIN_FEE_BPS:
        raise ValidationError("Fee cannot be negative", "fee")
    if fee_bps > MAX_FEE_BPS:
        raise ValidationError(f"Fee cannot exceed {MAX_FEE_BPS / 100:g}%", "fee")
    return int(fee_bps)


def validate_marketplace_name(name: Any) -> str:
    if not isinstance(name, str) or not name:
        raise ValidationError("Marketplace name is required", "name")
    if not name.strip():
        raise ValidationError("Marketplace name cannot be empty", "name")
    if len(name.encode("utf-8")) > MAX_NAME_BYTES:
        raise ValidationError(f"Marketplace name cannot exceed {MAX_NAME_BYTES} bytes", "name")
    if _DANGEROUS_CHARS.search(name):
        raise ValidationError("Marketplace name contains invalid characters", "name")
    return name


def validate_public_key(value: Any, field: str = "public_key") -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if not isinstance(value, str) or not value:
        raise ValidationError("Public key must be a valid string", field)
    try:
        decoded = base58.b58decode(value)
    except ValueError:
        raise ValidationError("Invalid Solana public key format", field) from None
    if len(decoded) != 32:
        raise ValidationError("Invalid Solana public key format", field)
    return Pubkey.from_bytes(decoded)


def sanitize_string(value: Any, max_length: int = 100) -> str:
    if not isinstance(value, str):
        return ""
    cleaned = _DANGEROUS_CHARS.sub("", value.strip())
    return re.sub(r"\s+", " ", cleaned)[:max_length]
