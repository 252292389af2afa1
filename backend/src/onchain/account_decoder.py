"""
Typed decoding of marketplace, listing and Metaplex metadata accounts.

Every decoder returns either ``Ok(record)`` or ``DecodeError(reason)`` so callers
have to handle the failure branch explicitly. Metadata decoding is two-tier:
the structured construct layout first, then a manual length-prefixed scan.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from typing import Generic, List, Literal, Optional, TypeVar, Union

from solders.pubkey import Pubkey

from onchain.layouts import (
    LISTING_DISCRIMINATOR,
    LISTING_LAYOUT,
    LISTING_SIZE,
    MARKETPLACE_DISCRIMINATOR,
    MARKETPLACE_LAYOUT,
    METADATA_LAYOUT,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_FEE_BASIS_POINTS = 10_000

# Sanity bounds for the manual metadata scan; anything larger means misaligned offsets.
MANUAL_NAME_LIMIT = 200
MANUAL_SYMBOL_LIMIT = 50
MANUAL_URI_LIMIT = 1000


class AccountDecodeError(Exception):
    pass


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class DecodeError:
    reason: str


Decoded = Union[Ok[T], DecodeError]


@dataclass
class MarketplaceConfig:
    authority: Pubkey
    fee_basis_points: int
    treasury: Pubkey
    name: str
    marketplace_bump: int
    treasury_bump: int


@dataclass
class ListingRecord:
    maker: Pubkey
    nft_mint: Pubkey
    price_lamports: int
    metadata: Pubkey
    bump: int
    address: Optional[Pubkey] = None


@dataclass
class Creator:
    address: Pubkey
    verified: bool
    share: int


@dataclass
class OnChainMetadata:
    update_authority: Pubkey
    mint: Pubkey
    name: str
    symbol: str
    uri: str
    seller_fee_basis_points: int = 0
    creators: Optional[List[Creator]] = None
    source: Literal["structured", "manual"] = "structured"
    extra: dict = field(default_factory=dict)


def _clean(text: str) -> str:
    return text.rstrip("\x00").rstrip()


def decode_marketplace(raw: bytes) -> Decoded[MarketplaceConfig]:
    if raw[:8] != MARKETPLACE_DISCRIMINATOR:
        return DecodeError("marketplace discriminator mismatch")
    try:
        parsed = MARKETPLACE_LAYOUT.parse(raw)
    except Exception as e:
        return DecodeError(f"marketplace layout: {e}")
    if parsed.fee_bps > MAX_FEE_BASIS_POINTS:
        return DecodeError(f"fee {parsed.fee_bps} bps out of range")
    return Ok(
        MarketplaceConfig(
            authority=Pubkey.from_bytes(parsed.authority),
            fee_basis_points=int(parsed.fee_bps),
            treasury=Pubkey.from_bytes(parsed.treasury),
            name=parsed.name,
            marketplace_bump=int(parsed.marketplace_bump),
            treasury_bump=int(parsed.treasury_bump),
        )
    )


def decode_listing(raw: bytes, address: Optional[Pubkey] = None) -> Decoded[ListingRecord]:
    if len(raw) < LISTING_SIZE:
        return DecodeError(f"listing account too short ({len(raw)} < {LISTING_SIZE} bytes)")
    if raw[:8] != LISTING_DISCRIMINATOR:
        return DecodeError("listing discriminator mismatch")
    parsed = LISTING_LAYOUT.parse(raw)
    return Ok(
        ListingRecord(
            maker=Pubkey.from_bytes(parsed.maker),
            nft_mint=Pubkey.from_bytes(parsed.nft_mint),
            price_lamports=int(parsed.price),
            metadata=Pubkey.from_bytes(parsed.metadata),
            bump=int(parsed.bump),
            address=address,
        )
    )


def _decode_metadata_structured(raw: bytes) -> OnChainMetadata:
    parsed = METADATA_LAYOUT.parse(raw)
    creators = None
    if parsed.has_creators:
        creators = [
            Creator(
                address=Pubkey.from_bytes(c.address),
                verified=bool(c.verified),
                share=int(c.share),
            )
            for c in parsed.creators
        ]
    return OnChainMetadata(
        update_authority=Pubkey.from_bytes(parsed.update_authority),
        mint=Pubkey.from_bytes(parsed.mint),
        name=_clean(parsed.name),
        symbol=_clean(parsed.symbol),
        uri=_clean(parsed.uri),
        seller_fee_basis_points=int(parsed.seller_fee_basis_points),
        creators=creators,
        source="structured",
        extra={
            "primary_sale_happened": bool(parsed.primary_sale_happened),
            "is_mutable": bool(parsed.is_mutable),
        },
    )


def parse_metadata_manual(raw: bytes) -> OnChainMetadata:
    """
    Fallback scan: 1 version byte, two 32-byte keys, then u32-LE prefixed
    name / symbol / uri. Raises AccountDecodeError instead of returning garbage.
    """
    offset = 1 + 32 + 32
    if len(raw) < offset:
        raise AccountDecodeError(f"metadata account too short ({len(raw)} bytes)")

    update_authority = Pubkey.from_bytes(raw[1:33])
    mint = Pubkey.from_bytes(raw[33:65])

    fields = {}
    for name, limit in (("name", MANUAL_NAME_LIMIT), ("symbol", MANUAL_SYMBOL_LIMIT), ("uri", MANUAL_URI_LIMIT)):
        if offset + 4 > len(raw):
            raise AccountDecodeError(f"metadata truncated before {name} length")
        (length,) = struct.unpack_from("<I", raw, offset)
        offset += 4
        if length > limit:
            raise AccountDecodeError(f"metadata {name} length {length} exceeds {limit}")
        if offset + length > len(raw):
            raise AccountDecodeError(f"metadata {name} length {length} overruns buffer")
        fields[name] = _clean(raw[offset:offset + length].decode("utf-8", errors="replace"))
        offset += length

    return OnChainMetadata(
        update_authority=update_authority,
        mint=mint,
        name=fields["name"],
        symbol=fields["symbol"],
        uri=fields["uri"],
        source="manual",
    )


def decode_metadata(raw: bytes) -> Decoded[OnChainMetadata]:
    try:
        return Ok(_decode_metadata_structured(raw))
    except Exception as e:
        logger.debug(f"[Decoder] Structured metadata decode failed, trying manual scan: {e}")

    try:
        return Ok(parse_metadata_manual(raw))
    except AccountDecodeError as e:
        return DecodeError(str(e))
