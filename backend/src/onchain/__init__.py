from .addresses import (
    METADATA_PROGRAM_ID,
    AddressDerivationError,
    derive_listing_addresses,
    derive_marketplace_addresses,
    find_listing_address,
    find_marketplace_address,
    find_master_edition_address,
    find_metadata_address,
    find_treasury_address,
    find_vault_address,
)
from .account_decoder import (
    AccountDecodeError,
    DecodeError,
    ListingRecord,
    MarketplaceConfig,
    Ok,
    OnChainMetadata,
    decode_listing,
    decode_marketplace,
    decode_metadata,
    parse_metadata_manual,
)
from .account_fetcher import AccountFetcher, AccountFound, AccountNotFound
from .cache import MetadataCache
from .units import LAMPORTS_PER_SOL, lamports_to_sol, sol_to_lamports

__all__ = [
    "METADATA_PROGRAM_ID",
    "AddressDerivationError",
    "derive_listing_addresses",
    "derive_marketplace_addresses",
    "find_listing_address",
    "find_marketplace_address",
    "find_master_edition_address",
    "find_metadata_address",
    "find_treasury_address",
    "find_vault_address",
    "AccountDecodeError",
    "DecodeError",
    "ListingRecord",
    "MarketplaceConfig",
    "Ok",
    "OnChainMetadata",
    "decode_listing",
    "decode_marketplace",
    "decode_metadata",
    "parse_metadata_manual",
    "AccountFetcher",
    "AccountFound",
    "AccountNotFound",
    "MetadataCache",
    "LAMPORTS_PER_SOL",
    "lamports_to_sol",
    "sol_to_lamports",
]
