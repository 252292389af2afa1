from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")

MARKETPLACE_SEED = b"marketplace"
TREASURY_SEED = b"treasury"
METADATA_SEED = b"metadata"
EDITION_SEED = b"edition"

# Solana rejects any single PDA seed longer than this.
MAX_SEED_LENGTH = 32


class AddressDerivationError(ValueError):
    pass


@dataclass(frozen=True)
class MarketplaceAddresses:
    marketplace: Pubkey
    marketplace_bump: int
    treasury: Pubkey
    treasury_bump: int


@dataclass(frozen=True)
class ListingAddresses:
    listing: Pubkey
    listing_bump: int
    vault: Pubkey
    metadata: Pubkey
    master_edition: Pubkey


def _find(seeds: List[bytes], program_id: Pubkey) -> Tuple[Pubkey, int]:
    for seed in seeds:
        if len(seed) > MAX_SEED_LENGTH:
            raise AddressDerivationError(
                f"Seed of {len(seed)} bytes exceeds the {MAX_SEED_LENGTH} byte limit"
            )
    try:
        return Pubkey.find_program_address(seeds, program_id)
    except Exception as exc:  # noqa: BLE001
        raise AddressDerivationError(f"No valid bump for seeds under {program_id}: {exc}") from exc


def find_marketplace_address(name: str, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return _find([MARKETPLACE_SEED, name.encode("utf-8")], program_id)


def find_treasury_address(marketplace: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return _find([TREASURY_SEED, bytes(marketplace)], program_id)


def find_listing_address(marketplace: Pubkey, nft_mint: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    """
    Listing PDA. The program seeds it with the marketplace and mint only, no prefix.
    """
    return _find([bytes(marketplace), bytes(nft_mint)], program_id)


def find_vault_address(listing: Pubkey, nft_mint: Pubkey) -> Pubkey:
    """
    Escrow token account: the associated token account owned by the listing PDA.
    """
    return get_associated_token_address(listing, nft_mint)


def find_metadata_address(nft_mint: Pubkey) -> Tuple[Pubkey, int]:
    return _find([METADATA_SEED, bytes(METADATA_PROGRAM_ID), bytes(nft_mint)], METADATA_PROGRAM_ID)


def find_master_edition_address(nft_mint: Pubkey) -> Tuple[Pubkey, int]:
    return _find(
        [METADATA_SEED, bytes(METADATA_PROGRAM_ID), bytes(nft_mint), EDITION_SEED],
        METADATA_PROGRAM_ID,
    )


def derive_marketplace_addresses(name: str, program_id: Pubkey) -> MarketplaceAddresses:
    marketplace, marketplace_bump = find_marketplace_address(name, program_id)
    treasury, treasury_bump = find_treasury_address(marketplace, program_id)
    return MarketplaceAddresses(
        marketplace=marketplace,
        marketplace_bump=marketplace_bump,
        treasury=treasury,
        treasury_bump=treasury_bump,
    )


def derive_listing_addresses(marketplace: Pubkey, nft_mint: Pubkey, program_id: Pubkey) -> ListingAddresses:
    listing, listing_bump = find_listing_address(marketplace, nft_mint, program_id)
    return ListingAddresses(
        listing=listing,
        listing_bump=listing_bump,
        vault=find_vault_address(listing, nft_mint),
        metadata=find_metadata_address(nft_mint)[0],
        master_edition=find_master_edition_address(nft_mint)[0],
    )
