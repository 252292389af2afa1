from __future__ import annotations

from hashlib import sha256

from construct import Bytes, Const, Flag, If, Int8ul, Int16ul, Int32ul, Int64ul, PascalString, PrefixedArray, Struct, this

# Anchor discriminators: first 8 bytes of sha256("account:<Name>") / sha256("global:<ix_name>")


def account_discriminator(name: str) -> bytes:
    return sha256(f"account:{name}".encode()).digest()[:8]


def instruction_discriminator(name: str) -> bytes:
    return sha256(f"global:{name}".encode()).digest()[:8]


MARKETPLACE_DISCRIMINATOR = account_discriminator("Marketplace")
LISTING_DISCRIMINATOR = account_discriminator("Listing")

AnchorString = PascalString(Int32ul, "utf8")

MARKETPLACE_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "authority" / Bytes(32),
    "fee_bps" / Int16ul,
    "marketplace_bump" / Int8ul,
    "treasury" / Bytes(32),
    "treasury_bump" / Int8ul,
    "name" / AnchorString,
)

LISTING_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "maker" / Bytes(32),
    "nft_mint" / Bytes(32),
    "price" / Int64ul,
    "metadata" / Bytes(32),
    "bump" / Int8ul,
)
LISTING_SIZE = LISTING_LAYOUT.sizeof()

# Metaplex token metadata (MetadataV1). Only the prefix we consume is described;
# collection / uses / programmable config that follow are ignored.
METADATA_V1_KEY = 4

CREATOR_LAYOUT = Struct(
    "address" / Bytes(32),
    "verified" / Flag,
    "share" / Int8ul,
)

METADATA_LAYOUT = Struct(
    "key" / Const(METADATA_V1_KEY, Int8ul),
    "update_authority" / Bytes(32),
    "mint" / Bytes(32),
    "name" / AnchorString,
    "symbol" / AnchorString,
    "uri" / AnchorString,
    "seller_fee_basis_points" / Int16ul,
    "has_creators" / Flag,
    "creators" / If(this.has_creators, PrefixedArray(Int32ul, CREATOR_LAYOUT)),
    "primary_sale_happened" / Flag,
    "is_mutable" / Flag,
)

# Instruction arguments (borsh, following the 8-byte discriminator)
INITIALIZE_MARKETPLACE_ARGS = Struct(
    "name" / AnchorString,
    "fee" / Int16ul,
)
LIST_NFT_ARGS = Struct("price" / Int64ul)
UPDATE_FEE_ARGS = Struct("new_fee" / Int16ul)
